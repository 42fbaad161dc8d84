from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from chainscope.config import settings
from chainscope.core.models import (
    NODE_CONTRACT,
    NODE_EXCHANGE,
    NODE_TYPES,
    NODE_WALLET,
    GraphNode,
    NodeStats,
    Topology,
    TopologyFilter,
    Transfer,
)
from chainscope.graph.builder import build_graph
from chainscope.graph.clusters import find_clusters
from chainscope.graph.hops import label_hops
from chainscope.graph.scale import radius_scale_for
from chainscope.ports.label_port import LabelPort

logger = logging.getLogger(__name__)


class TopologyService:
    """
    Turns a transfer set into the address graph the analyst looks at.

    - Builder: filters transfers, aggregates balances/links/adjacency
    - Hops: multi-source BFS from the base addresses
    - Clusters: union-find components + deterministic colors
    - Optional "related only" view and a sqrt radius scale

    Pure over its inputs; rebuild on every filter change.
    """

    def __init__(
        self,
        labels: Optional[LabelPort] = None,
        group_threshold: int = settings.GROUP_THRESHOLD,
    ) -> None:
        self.labels = labels
        self.group_threshold = group_threshold

    def build(
        self,
        transfers: Iterable[Transfer],
        base_addresses: Iterable[str] = (),
        flt: Optional[TopologyFilter] = None,
    ) -> Topology:
        flt = flt or TopologyFilter()

        g = build_graph(transfers, flt)
        hops = label_hops(g.adjacency, g.universe, base_addresses)
        clusters = find_clusters(
            g.links,
            g.universe,
            threshold=self.group_threshold,
            display_mode=flt.display_mode,
        )

        nodes: List[GraphNode] = []
        for key in g.universe:
            node_type, label = self.infer_node_type(g.display_id(key))
            root = clusters.roots[key]
            nodes.append(
                GraphNode(
                    id=g.display_id(key),
                    balance=g.balances[key],
                    type=node_type,
                    group_id=clusters.group_ids[key],
                    group_key=g.display_id(root),
                    group_size=clusters.sizes[root],
                    group_color=clusters.colors[key],
                    hop=hops.get(key),
                    label=label,
                )
            )

        if flt.related_only:
            nodes = related_nodes(nodes, g.adjacency, hops)

        kept = {n.id.lower() for n in nodes}
        links = [
            l for l in g.links
            if l.source.lower() in kept and l.target.lower() in kept
        ]

        logger.debug(
            "topology: %d nodes, %d links, %d reachable, %d components",
            len(nodes), len(links), len(hops), clusters.component_count(),
        )

        return Topology(
            nodes=nodes,
            links=links,
            radius_scale=radius_scale_for(n.balance for n in nodes),
        )

    # -------------------------
    # Helpers
    # -------------------------

    def infer_node_type(self, address: str) -> Tuple[str, Optional[str]]:
        label = None
        if self.labels is not None:
            hit = self.labels.lookup_label(address)
            if hit is not None:
                label = hit.label
                tag = (hit.tag_type or "").lower()
                if tag in NODE_TYPES:
                    return tag, label

        addr = address.lower()
        if any(h in addr for h in settings.EXCHANGE_HINTS):
            return NODE_EXCHANGE, label
        if any(h in addr for h in settings.CONTRACT_HINTS):
            return NODE_CONTRACT, label
        return NODE_WALLET, label


def related_nodes(
    nodes: Iterable[GraphNode],
    adjacency: Mapping[str, Set[str]],
    hops: Dict[str, int],
) -> List[GraphNode]:
    """
    Keep hop 0, hop >= 2, and hop-1 nodes that bridge further out (at least
    one neighbor with a defined hop > 0). Unreachable nodes are dropped.
    """
    out: List[GraphNode] = []
    for n in nodes:
        if n.hop is None:
            continue
        if n.hop == 0 or n.hop >= 2:
            out.append(n)
            continue
        for neighbor in adjacency.get(n.id.lower(), ()):
            h = hops.get(neighbor)
            if h is not None and h > 0:
                out.append(n)
                break
    return out


def node_stats(transfers: Iterable[Transfer], address: str, tx_type: str) -> NodeStats:
    """
    Sent/received totals and history for one address over transfers of
    `tx_type`. Only the type applies; date, dust and token filters do not.
    A self-transfer counts on both sides but appears once in the history.
    """
    key = address.lower()
    stats = NodeStats(address=address)
    for t in transfers:
        if t.type != tx_type:
            continue
        is_from = (t.from_address or "").lower() == key
        is_to = (t.to_address or "").lower() == key
        if not (is_from or is_to):
            continue
        if is_from:
            stats.sent += t.value
        if is_to:
            stats.received += t.value
        stats.history.append(t)

    stats.history.sort(key=lambda t: t.timestamp, reverse=True)
    return stats
