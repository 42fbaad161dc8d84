from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Iterable, Mapping, Set, Tuple


def label_hops(
    adjacency: Mapping[str, Set[str]],
    universe: Iterable[str],
    base_addresses: Iterable[str],
) -> Dict[str, int]:
    """
    Multi-source BFS over the undirected adjacency map.

    Every universe node matching a base address (case-insensitive) starts at
    hop 0. Returned map holds only reachable nodes, keyed by lowercase
    address; anything missing has no hop.
    """
    bases = {b.lower() for b in base_addresses if b}
    hops: Dict[str, int] = {}
    q: Deque[Tuple[str, int]] = deque()

    for node in universe:
        key = node.lower()
        if key in bases and key not in hops:
            hops[key] = 0
            q.append((key, 0))

    while q:
        addr, level = q.popleft()
        for neighbor in adjacency.get(addr, ()):
            n = neighbor.lower()
            if n in hops:
                continue
            hops[n] = level + 1
            q.append((n, level + 1))

    return hops
