from __future__ import annotations

import datetime as dt
import json
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from chainscope.core.models import CrawlResult, GraphNode, NodeStats, Topology
from chainscope.io.schemas import crawl_result_to_dict, topology_to_dict


def write_topology_json(
    topology: Topology,
    out_dir: str,
    filename: str = "graph.json",
    crawl: Optional[CrawlResult] = None,
) -> str:
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)

    payload = topology_to_dict(topology)
    if crawl is not None:
        payload["crawl"] = crawl_result_to_dict(crawl)

    out_path = p / filename
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    return str(out_path)


def write_summary_md(
    topology: Topology,
    out_dir: str,
    filename: str = "summary.md",
    base_addresses: Iterable[str] = (),
    crawl: Optional[CrawlResult] = None,
    details: Sequence[NodeStats] = (),
    history_limit: int = 5,
) -> str:
    """
    Minimal, investigator-friendly summary.
    """
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)

    out_path = p / filename

    bases = sorted({b.lower() for b in base_addresses})
    nodes = topology.nodes

    hop_counts: Dict[int, int] = {}
    unreachable = 0
    for n in nodes:
        if n.hop is None:
            unreachable += 1
        else:
            hop_counts[n.hop] = hop_counts.get(n.hop, 0) + 1

    clusters: Dict[str, List[GraphNode]] = {}
    for n in nodes:
        if n.group_id == 1:
            clusters.setdefault(n.group_key or n.id, []).append(n)

    top = sorted(nodes, key=lambda n: n.balance, reverse=True)[:10]
    bidirectional = sum(1 for l in topology.links if l.is_bidirectional)

    def fmt(x: Decimal) -> str:
        return f"{x:.4f}"

    def short(addr: str) -> str:
        return addr if len(addr) <= 14 else f"{addr[:10]}..."

    lines = []
    lines.append("# Topology Summary\n")
    lines.append(f"- Nodes: **{len(nodes)}**\n")
    lines.append(f"- Links: **{len(topology.links)}** ({bidirectional} bidirectional)\n")
    if bases:
        lines.append(f"- Base addresses: **{', '.join(bases)}**\n")
    lines.append("\n")

    lines.append("## Hop Distribution\n\n")
    if not hop_counts:
        lines.append("_No node is reachable from a base address._\n\n")
    else:
        for hop in sorted(hop_counts):
            name = "Base (0)" if hop == 0 else f"Hop {hop}"
            lines.append(f"- {name}: {hop_counts[hop]}\n")
        if unreachable:
            lines.append(f"- Unreachable: {unreachable}\n")
        lines.append("\n")

    lines.append("## Clusters\n\n")
    if not clusters:
        lines.append("_No cluster exceeds the size threshold._\n\n")
    else:
        for members in sorted(clusters.values(), key=len, reverse=True):
            lines.append(
                f"- **{len(members)} addresses** | color {members[0].group_color} | e.g. {short(members[0].id)}\n"
            )
        lines.append("\n")

    lines.append("## Top Balances\n\n")
    if not top:
        lines.append("_No transfers matched the current filters._\n\n")
    else:
        for n in top:
            hop = "-" if n.hop is None else str(n.hop)
            label = f" ({n.label})" if n.label else ""
            lines.append(f"- **{fmt(n.balance)}** | {n.type} | hop {hop} | {n.id}{label}\n")
        lines.append("\n")

    if details:
        lines.append("## Node Details\n\n")
        for s in details:
            lines.append(f"### {s.address}\n\n")
            lines.append(f"- Sent: {fmt(s.sent)} | Received: {fmt(s.received)} | Transfers: {s.count}\n")
            for t in s.history[:history_limit]:
                when = dt.datetime.fromtimestamp(t.timestamp, tz=dt.timezone.utc).strftime("%Y-%m-%d %H:%M")
                direction = "out" if (t.from_address or "").lower() == s.address.lower() else "in"
                other = t.to_address if direction == "out" else t.from_address
                token = f" {t.token}" if t.token else ""
                lines.append(f"  - {when} {direction} {fmt(t.value)}{token} | {other or '-'}\n")
            if s.count > history_limit:
                lines.append(f"  - ... {s.count - history_limit} older\n")
            lines.append("\n")

    if crawl is not None:
        lines.append("## Last Trace\n\n")
        lines.append(f"- Status: **{crawl.status}**\n")
        lines.append(f"- Transfers collected: {len(crawl.transfers)} ({crawl.ingested} new)\n")
        for r in crawl.layers:
            lines.append(
                f"- Layer {r.layer}: {r.queried} queried, {r.failed} failed, "
                f"{r.transfers} transfer(s), {len(r.discovered)} new neighbor(s)\n"
            )
        if crawl.frontier:
            lines.append(f"- Untraced frontier: {len(crawl.frontier)} address(es)\n")
        lines.append("\n")

    with out_path.open("w", encoding="utf-8") as f:
        f.writelines(lines)

    return str(out_path)
