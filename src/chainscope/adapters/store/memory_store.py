from __future__ import annotations

import threading
from typing import Iterable, List, Optional, Set

from chainscope.core.models import Transfer
from chainscope.ports.transfer_store_port import TransferStorePort


class InMemoryTransferStore(TransferStorePort):
    """
    Append-only working set. Duplicates (same id, or same hash when the id
    is empty) are dropped so a rebuild never counts a transfer twice.
    """

    def __init__(self, transfers: Optional[Iterable[Transfer]] = None) -> None:
        self._items: List[Transfer] = []
        self._keys: Set[str] = set()
        self._lock = threading.Lock()
        if transfers:
            self.ingest(transfers)

    def all_transfers(self) -> List[Transfer]:
        with self._lock:
            return list(self._items)

    def ingest(self, transfers: Iterable[Transfer]) -> int:
        added = 0
        with self._lock:
            for t in transfers:
                key = t.dedupe_key
                if key and key in self._keys:
                    continue
                if key:
                    self._keys.add(key)
                self._items.append(t)
                added += 1
        return added

    def __len__(self) -> int:
        return len(self._items)
