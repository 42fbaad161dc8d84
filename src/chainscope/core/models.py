from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, FrozenSet, Iterable, List, Optional

if TYPE_CHECKING:
    from chainscope.graph.scale import SqrtScale


TX_NATIVE = "native"
TX_ERC20 = "erc20"
TX_TYPES = (TX_NATIVE, TX_ERC20)

NODE_WALLET = "wallet"
NODE_EXCHANGE = "exchange"
NODE_CONTRACT = "contract"
NODE_TYPES = (NODE_WALLET, NODE_EXCHANGE, NODE_CONTRACT)

DIRECTION_BOTH = "both"
DIRECTION_FROM = "from"
DIRECTION_TO = "to"
DIRECTIONS = (DIRECTION_BOTH, DIRECTION_FROM, DIRECTION_TO)

CRAWL_COMPLETED = "completed"
CRAWL_STOPPED_EARLY = "stopped_early"
CRAWL_CANCELLED = "cancelled"
CRAWL_NO_NEW_DATA = "no_new_data"



# Transfer records

@dataclass(frozen=True)
class Transfer:
    """
    One on-chain value movement. Owned by the transfer store; read-only here.
    """

    id: str
    hash: str
    from_address: Optional[str]
    to_address: Optional[str]
    value: Decimal
    timestamp: int              # unix seconds, UTC
    type: str = TX_NATIVE

    token: Optional[str] = None
    method: Optional[str] = None
    block: Optional[int] = None
    fee: Optional[Decimal] = None

    @property
    def dedupe_key(self) -> str:
        return self.id or self.hash


@dataclass(frozen=True)
class DateRange:
    """
    Calendar-day window in UTC. Start is inclusive from midnight, end is
    inclusive through the last second of that day. Either side may be open.
    """

    start: Optional[date] = None
    end: Optional[date] = None

    def start_ts(self) -> Optional[int]:
        if self.start is None:
            return None
        return int(datetime.combine(self.start, time.min, tzinfo=timezone.utc).timestamp())

    def end_ts(self) -> Optional[int]:
        if self.end is None:
            return None
        return int(datetime.combine(self.end, time.max, tzinfo=timezone.utc).timestamp())

    def contains(self, timestamp: int) -> bool:
        lo = self.start_ts()
        hi = self.end_ts()
        if lo is not None and timestamp < lo:
            return False
        if hi is not None and timestamp > hi:
            return False
        return True


@dataclass(frozen=True)
class AddressLabel:
    address: str
    label: str
    tag_type: str = "general"



# Topology models

@dataclass(frozen=True)
class TopologyFilter:
    """
    Everything that, when changed, forces a topology rebuild.

    An explicitly empty `tokens` set excludes every transfer. A cleared token
    picker in an interactive view usually means "show everything" instead;
    set `empty_token_selection_matches_all` for that.
    """

    tx_type: str = TX_NATIVE
    date_range: Optional[DateRange] = None
    min_value: Decimal | int | float = Decimal("0")     # dust threshold, 0 = off
    tokens: Optional[FrozenSet[str]] = None             # None = all available tokens
    related_only: bool = False

    # knobs
    empty_token_selection_matches_all: bool = False
    display_mode: str = "light"


@dataclass
class Link:

    source: str
    target: str
    value: Decimal = Decimal("0")
    count: int = 0
    is_bidirectional: bool = False


@dataclass
class GraphNode:

    id: str
    balance: Decimal
    type: str = NODE_WALLET
    group_id: int = 0
    group_key: str = ""         # component root, display spelling
    group_size: int = 1
    group_color: str = ""
    hop: Optional[int] = None
    label: Optional[str] = None


@dataclass
class Topology:

    nodes: List[GraphNode] = field(default_factory=list)
    links: List[Link] = field(default_factory=list)
    radius_scale: Optional["SqrtScale"] = None

    def radius(self, balance: Decimal | float) -> float:
        if self.radius_scale is None:
            raise ValueError("topology has no radius scale")
        return self.radius_scale(balance)

    def node(self, address: str) -> Optional[GraphNode]:
        key = address.lower()
        for n in self.nodes:
            if n.id.lower() == key:
                return n
        return None

    def hops(self) -> Dict[str, Optional[int]]:
        return {n.id: n.hop for n in self.nodes}


@dataclass
class NodeStats:
    """
    Per-address drill-down over one transfer type: totals in each
    direction and the matching transfers, newest first.
    """

    address: str
    sent: Decimal = Decimal("0")
    received: Decimal = Decimal("0")
    history: List[Transfer] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.history)



# Trace models

@dataclass(frozen=True)
class TraceConfig:
    """
    Crawl configuration for one trace invocation.
    """

    network: str = "ETH"
    include_native: bool = True
    include_erc20: bool = True
    direction: str = DIRECTION_BOTH
    hops: int = 1
    date_range: Optional[DateRange] = None


@dataclass(frozen=True)
class TraceSession:
    """
    Addresses already queried against the provider. Lowercase.
    Crawls never mutate a session; they return a new one.
    """

    traced: FrozenSet[str] = frozenset()

    def is_traced(self, address: str) -> bool:
        return address.lower() in self.traced

    def with_traced(self, addresses: Iterable[str]) -> TraceSession:
        merged = set(self.traced)
        merged.update(a.lower() for a in addresses)
        return replace(self, traced=frozenset(merged))


@dataclass
class LayerReport:

    layer: int
    queried: int
    succeeded: int = 0
    failed: int = 0
    transfers: int = 0
    discovered: List[str] = field(default_factory=list)


@dataclass
class CrawlResult:

    status: str
    session: TraceSession
    transfers: List[Transfer] = field(default_factory=list)
    layers: List[LayerReport] = field(default_factory=list)
    frontier: List[str] = field(default_factory=list)
    ingested: int = 0
