from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, List

from chainscope.core.models import Transfer


class TransferStorePort(ABC):

    @abstractmethod
    def all_transfers(self) -> List[Transfer]:
        raise NotImplementedError

    # --- idempotent append; returns how many transfers were new ---
    @abstractmethod
    def ingest(self, transfers: Iterable[Transfer]) -> int:
        raise NotImplementedError
