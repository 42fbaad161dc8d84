from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from chainscope.config import settings
from chainscope.core.models import Link


class UnionFind:
    """
    Disjoint sets over addresses: parent pointers in a dict, path compression
    on find, union by size.
    """

    def __init__(self) -> None:
        self._parent: Dict[str, str] = {}
        self._size: Dict[str, int] = {}

    def add(self, x: str) -> None:
        if x not in self._parent:
            self._parent[x] = x
            self._size[x] = 1

    def find(self, x: str) -> str:
        self.add(x)
        root = x
        while self._parent[root] != root:
            root = self._parent[root]
        # compress
        while self._parent[x] != root:
            self._parent[x], x = root, self._parent[x]
        return root

    def union(self, a: str, b: str) -> str:
        ra = self.find(a)
        rb = self.find(b)
        if ra == rb:
            return ra
        if self._size[ra] < self._size[rb]:
            ra, rb = rb, ra
        self._parent[rb] = ra
        self._size[ra] += self._size[rb]
        return ra

    def __contains__(self, x: object) -> bool:
        return x in self._parent


def sinebow(t: float) -> str:
    """Cyclic rainbow hue map, t in [0, 1). Returns a css rgb() string."""
    t = (0.5 - t) * math.pi
    r = 255 * math.sin(t) ** 2
    g = 255 * math.sin(t + math.pi / 3) ** 2
    b = 255 * math.sin(t + 2 * math.pi / 3) ** 2
    return "rgb({}, {}, {})".format(_channel(r), _channel(g), _channel(b))


def _channel(v: float) -> int:
    return max(0, min(255, int(math.floor(v + 0.5))))


@dataclass
class ClusterAssignment:

    roots: Dict[str, str] = field(default_factory=dict)
    sizes: Dict[str, int] = field(default_factory=dict)
    colors: Dict[str, str] = field(default_factory=dict)
    group_ids: Dict[str, int] = field(default_factory=dict)

    def component_count(self) -> int:
        return len(set(self.roots.values()))

    def colored_components(self) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {}
        for addr, gid in self.group_ids.items():
            if gid == 1:
                out.setdefault(self.roots[addr], []).append(addr)
        return out


def find_clusters(
    links: Iterable[Link],
    universe: Iterable[str],
    threshold: int = settings.GROUP_THRESHOLD,
    display_mode: str = "light",
) -> ClusterAssignment:
    """
    Connected components over the filtered links. Keys are lowercase.

    Nodes are visited in universe order; the first node seen for each
    component larger than `threshold` draws that component's color from the
    golden-ratio sequence.
    """
    universe = [u.lower() for u in universe]
    uf = UnionFind()

    for link in links:
        uf.union(link.source.lower(), link.target.lower())

    for addr in universe:
        uf.add(addr)

    out = ClusterAssignment()
    for addr in universe:
        root = uf.find(addr)
        out.roots[addr] = root
        out.sizes[root] = out.sizes.get(root, 0) + 1

    default_color = settings.DEFAULT_GROUP_COLORS.get(
        display_mode, settings.DEFAULT_GROUP_COLORS["light"]
    )
    root_colors: Dict[str, str] = {}
    counter = 0.0

    for addr in universe:
        root = out.roots[addr]
        if out.sizes[root] > threshold:
            if root not in root_colors:
                counter = (counter + settings.GOLDEN_RATIO_CONJUGATE) % 1
                root_colors[root] = sinebow(counter)
            out.colors[addr] = root_colors[root]
            out.group_ids[addr] = 1
        else:
            out.colors[addr] = default_color
            out.group_ids[addr] = 0

    return out
