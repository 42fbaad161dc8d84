import threading
from typing import Iterable, List, Optional

from chainscope.core.errors import ProviderError
from chainscope.core.models import DateRange, Transfer
from chainscope.ports.chain_data_port import ChainDataPort


class StaticChainAdapter(ChainDataPort):
    def __init__(self,
                 transfers: Optional[Iterable[Transfer]] = None,
                 failing: Optional[Iterable[str]] = None,
                 ):
        self._transfers = list(transfers or [])
        self._failing = {a.lower() for a in (failing or [])}
        self._lock = threading.Lock()
        self.calls: List[str] = []

    def fetch_address_history(self, address, network, date_range: Optional[DateRange] = None):
        ad = address.lower()
        with self._lock:
            self.calls.append(ad)

        if ad in self._failing:
            raise ProviderError(f"Static provider refused {address}")

        items = [
            t for t in self._transfers
            if ((t.from_address or "").lower() == ad or (t.to_address or "").lower() == ad)
            and (date_range is None or date_range.contains(t.timestamp))
        ]
        items.sort(key=lambda x: (x.block or 0, x.timestamp))
        return items
