from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from chainscope.core.models import AddressLabel


class LabelPort(ABC):
    @abstractmethod
    def lookup_label(self, address: str) -> Optional[AddressLabel]:
        raise NotImplementedError
