from __future__ import annotations

import argparse
import datetime as dt
import logging
import os
import sys
import time
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Set

from chainscope.config import settings
from chainscope.core.errors import ConfigError, CrawlFailedError, LoaderError
from chainscope.core.models import (
    CRAWL_NO_NEW_DATA,
    DIRECTIONS,
    TX_TYPES,
    DateRange,
    Topology,
    TopologyFilter,
    TraceConfig,
    TraceSession,
)
from chainscope.services.crawler_service import CrawlerService, auto_select_targets
from chainscope.services.topology_service import TopologyService, node_stats
from chainscope.io.output_writer import write_summary_md, write_topology_json
from chainscope.io.transfer_loader import (
    load_labels,
    load_session,
    load_transfers,
    save_session,
    save_transfers,
)

from chainscope.adapters.chain.etherscan_chain_adapter import EtherscanChainAdapter
from chainscope.adapters.chain.static_chain_adapter import StaticChainAdapter
from chainscope.adapters.labels.static_label_adapter import StaticLabelAdapter
from chainscope.adapters.store.memory_store import InMemoryTransferStore


def _date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from None


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from None


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chainscope", description="Address graph explorer + multi-hop trace crawler")
    p.add_argument("--transfers", help="Transfer file (.json or .csv) to load")
    p.add_argument("--labels", help="Label file (.json or .csv: address,label,tag_type)")
    p.add_argument("--base", action="append", default=[], help="Base (hop 0) address; repeatable")
    p.add_argument("--out", default="out", help="Output folder")
    p.add_argument("--inspect", action="append", default=[], help="Address to detail in summary.md; repeatable")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    g = p.add_argument_group("topology filters")
    g.add_argument("--type", choices=TX_TYPES, default="native", help="Transfer type to graph")
    g.add_argument("--start", type=_date, help="Include transfers on/after this date (UTC)")
    g.add_argument("--end", type=_date, help="Include transfers up to the end of this date (UTC)")
    g.add_argument("--min-value", type=_decimal, default=Decimal("0"), help="Dust threshold (0=off)")
    g.add_argument("--token", action="append", help="Token symbol to keep; repeatable (default: all)")
    g.add_argument("--related-only", action="store_true", help="Only show base nodes and nodes bridging further out")
    g.add_argument("--dark", action="store_true", help="Use the dark-mode default cluster color")

    t = p.add_argument_group("trace")
    t.add_argument("--trace", action="store_true", help="Crawl the provider from the trace targets")
    t.add_argument("--target", action="append", default=[], help="Trace target; repeatable (default: deepest untraced hop)")
    t.add_argument("--hops", type=int, default=1, help="Hop budget")
    t.add_argument("--direction", choices=DIRECTIONS, default="both", help="Follow outgoing, incoming or both")
    t.add_argument("--network", default=settings.DEFAULT_NETWORK, help="Provider network (ETH, BSC, ...)")
    t.add_argument("--no-native", action="store_true", help="Skip native transfers while tracing")
    t.add_argument("--no-erc20", action="store_true", help="Skip ERC-20 transfers while tracing")
    t.add_argument("--trace-start", type=_date, help="Provider query window start (UTC date)")
    t.add_argument("--trace-end", type=_date, help="Provider query window end (UTC date)")
    t.add_argument("--session", help="JSON file holding already-traced addresses (read + updated)")
    t.add_argument("--use-static", metavar="FILE", help="Answer provider queries from a local transfer file (dev/testing)")
    return p


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, str(settings.LOG_LEVEL).upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _make_progress_reporter(cfg: TraceConfig):
    start_time = time.time()
    is_tty = sys.stdout.isatty()

    def _short_addr(addr: str) -> str:
        if not addr:
            return ""
        if len(addr) <= 12:
            return addr
        return f"{addr[:6]}...{addr[-4:]}"

    def _ts() -> str:
        return dt.datetime.now().strftime("%H:%M:%S")

    def _print_line(message: str) -> None:
        if is_tty:
            sys.stdout.write("\r" + message.ljust(88))
            sys.stdout.flush()
        else:
            print(message)

    def _clear_line() -> None:
        if is_tty:
            sys.stdout.write("\r" + (" " * 88) + "\r")
            sys.stdout.flush()

    def progress(event: str, data: dict) -> None:
        if event == "start":
            print(f"[{_ts()}] Tracing {data['targets']} target(s) • {cfg.network} • {cfg.hops} hop(s) • {cfg.direction}")
            return
        if event == "layer":
            _clear_line()
            print(f"[{_ts()}] Scanning hop layer {data['layer']}/{data['hops']} ({data['targets']} targets)")
            return
        if event == "batch":
            done = data["offset"] + data["size"]
            _print_line(f"Layer {data['layer']} • fetching {done}/{data['total']}")
            return
        if event == "fetch_error":
            _clear_line()
            print(f"[{_ts()}] Skipped {_short_addr(data['address'])}: {data['message']}", file=sys.stderr)
            return
        if event == "done":
            _clear_line()
            elapsed = time.time() - start_time
            print(
                f"[{_ts()}] Trace {data['status']} in {elapsed:.1f}s • "
                f"{data['transfers']} transfer(s) • {data['ingested']} new"
            )
            return
        if event == "error":
            _clear_line()
            print(f"[{_ts()}] Error: {data.get('message', 'Unknown error')}", file=sys.stderr)

    return progress


def _detail_addresses(topology: Topology, bases: List[str], extra: List[str], top: int = 3) -> List[str]:
    """
    Base nodes, then the largest balances, then explicitly requested
    addresses. Case-insensitive, first spelling wins.
    """
    picked: List[str] = []
    for b in bases:
        n = topology.node(b)
        if n is not None:
            picked.append(n.id)
    picked.extend(n.id for n in sorted(topology.nodes, key=lambda n: n.balance, reverse=True)[:top])
    for a in extra:
        n = topology.node(a)
        picked.append(n.id if n is not None else a)

    seen: Set[str] = set()
    out: List[str] = []
    for a in picked:
        if a.lower() not in seen:
            seen.add(a.lower())
            out.append(a)
    return out


def _filter_from_args(args: argparse.Namespace) -> TopologyFilter:
    date_range = DateRange(args.start, args.end) if (args.start or args.end) else None
    return TopologyFilter(
        tx_type=args.type,
        date_range=date_range,
        min_value=args.min_value,
        tokens=frozenset(args.token) if args.token else None,
        related_only=args.related_only,
        display_mode="dark" if args.dark else "light",
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        store = InMemoryTransferStore(load_transfers(args.transfers) if args.transfers else None)
        labels = StaticLabelAdapter(load_labels(args.labels) if args.labels else None)
        session = load_session(args.session) if args.session else TraceSession()
    except LoaderError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    svc = TopologyService(labels=labels)
    flt = _filter_from_args(args)
    topology = svc.build(store.all_transfers(), args.base, flt)
    print(
        f"Loaded {len(store)} transfer(s) • {len(labels)} label(s) • "
        f"{len(topology.nodes)} nodes • {len(topology.links)} links"
    )

    crawl = None
    if args.trace:
        trace_range = None
        if args.trace_start or args.trace_end:
            trace_range = DateRange(args.trace_start, args.trace_end)
        cfg = TraceConfig(
            network=args.network,
            include_native=not args.no_native,
            include_erc20=not args.no_erc20,
            direction=args.direction,
            hops=args.hops,
            date_range=trace_range,
        )
        progress = _make_progress_reporter(cfg)

        if args.use_static:
            try:
                chain = StaticChainAdapter(load_transfers(args.use_static))
            except LoaderError as exc:
                progress("error", {"message": str(exc)})
                return 2
            adapter_label = "StaticChainAdapter (dev/testing)"
        else:
            # Etherscan key should come from env or settings file
            if not os.getenv("ETHERSCAN_API_KEY"):
                progress("error", {"message": "Missing ETHERSCAN_API_KEY environment variable"})
                return 2
            chain = EtherscanChainAdapter()
            adapter_label = "EtherscanChainAdapter"

        targets = args.target or auto_select_targets(topology.nodes, session)
        crawler = CrawlerService(chain=chain, store=store)
        print(f"Adapter: {adapter_label}")
        try:
            crawl = crawler.crawl(targets, cfg, session=session, on_progress=progress)
        except ConfigError as exc:
            progress("error", {"message": str(exc)})
            return 2
        except CrawlFailedError as exc:
            progress("error", {"message": f"Trace failed: {exc}"})
            return 1

        if crawl.status == CRAWL_NO_NEW_DATA:
            print("Trace complete. No *new* data found.")
        if args.session:
            print(f"Wrote: {save_session(crawl.session, args.session)}")

        topology = svc.build(store.all_transfers(), args.base, flt)

    # Outputs
    print("Writing outputs...")
    graph_path = write_topology_json(topology, args.out, crawl=crawl)
    transfers = store.all_transfers()
    details = [node_stats(transfers, a, flt.tx_type) for a in _detail_addresses(topology, args.base, args.inspect)]
    summary_path = write_summary_md(topology, args.out, base_addresses=args.base, crawl=crawl, details=details)
    transfers_path = save_transfers(transfers, args.out)

    print(f"Wrote: {graph_path}")
    print(f"Wrote: {summary_path}")
    print(f"Wrote: {transfers_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
