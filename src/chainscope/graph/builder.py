from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from chainscope.core.models import Link, TopologyFilter, Transfer


@dataclass
class GraphBuild:
    """
    Raw topology of one filtered transfer set.

    Every mapping is keyed by lowercase address. `canonical` maps back to the
    first-seen spelling, which is what links and nodes display.
    """

    balances: Dict[str, Decimal] = field(default_factory=dict)
    adjacency: Dict[str, Set[str]] = field(default_factory=dict)
    links: List[Link] = field(default_factory=list)
    universe: List[str] = field(default_factory=list)
    canonical: Dict[str, str] = field(default_factory=dict)

    def display_id(self, key: str) -> str:
        return self.canonical.get(key, key)


def available_tokens(transfers: Iterable[Transfer], tx_type: str) -> List[str]:
    tokens: Set[str] = set()
    for t in transfers:
        if t.type == tx_type and t.token:
            tokens.add(t.token)
    return sorted(tokens)


def filter_transfers(transfers: Iterable[Transfer], flt: TopologyFilter) -> List[Transfer]:
    """
    Type -> date range -> dust threshold -> token membership.
    """
    transfers = list(transfers)
    out = [t for t in transfers if t.type == flt.tx_type]

    if flt.date_range is not None:
        out = [t for t in out if flt.date_range.contains(t.timestamp)]

    min_value = Decimal(str(flt.min_value or 0))
    if min_value > 0:
        out = [t for t in out if t.value >= min_value]

    available = available_tokens(transfers, flt.tx_type)
    if available:
        allowed = _allowed_tokens(flt, available)
        out = [t for t in out if t.token and t.token in allowed]

    return out


def _allowed_tokens(flt: TopologyFilter, available: List[str]) -> Set[str]:
    if flt.tokens is None:
        return set(available)
    if not flt.tokens and flt.empty_token_selection_matches_all:
        return set(available)
    return set(flt.tokens)


def build_graph(transfers: Iterable[Transfer], flt: Optional[TopologyFilter] = None) -> GraphBuild:
    if flt is not None:
        transfers = filter_transfers(transfers, flt)

    g = GraphBuild()
    link_map: Dict[Tuple[str, str], Link] = {}

    for tx in transfers:
        # malformed records are skipped, never fatal
        if not tx.from_address or not tx.to_address:
            continue

        src = _register(g, tx.from_address)
        dst = _register(g, tx.to_address)

        g.balances[src] = g.balances.get(src, Decimal("0")) + tx.value
        g.balances[dst] = g.balances.get(dst, Decimal("0")) + tx.value

        g.adjacency.setdefault(src, set()).add(dst)
        g.adjacency.setdefault(dst, set()).add(src)

        key = (src, dst)
        link = link_map.get(key)
        if link is None:
            link = Link(source=g.canonical[src], target=g.canonical[dst])
            link_map[key] = link
        link.value += tx.value
        link.count += 1

    g.universe = list(g.balances.keys())
    valid = set(g.universe)

    kept = {k: l for k, l in link_map.items() if k[0] in valid and k[1] in valid}
    for (src, dst), link in kept.items():
        link.is_bidirectional = (dst, src) in kept
    g.links = list(kept.values())

    return g


def _register(g: GraphBuild, address: str) -> str:
    key = address.lower()
    if key not in g.canonical:
        g.canonical[key] = address
    return key
