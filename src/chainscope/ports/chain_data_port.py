from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from chainscope.core.models import DateRange, Transfer


class ChainDataPort(ABC):
    """
    Abstract Class for fetching one address's transfer history.

    Implementations raise ProviderError when the provider is unreachable,
    rate limited, or answers with something unparseable.
    """

    @abstractmethod
    def fetch_address_history(
        self,
        address: str,
        network: str,
        date_range: Optional[DateRange] = None,
    ) -> List[Transfer]:
        raise NotImplementedError
