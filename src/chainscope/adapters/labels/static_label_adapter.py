from __future__ import annotations

from typing import Dict, Iterable, Optional

from chainscope.core.models import AddressLabel
from chainscope.ports.label_port import LabelPort


class StaticLabelAdapter(LabelPort):
    def __init__(self, labels: Optional[Iterable[AddressLabel]] = None) -> None:
        self._labels: Dict[str, AddressLabel] = {}
        for l in labels or []:
            self._labels[l.address.lower()] = l

    def lookup_label(self, address: str) -> Optional[AddressLabel]:
        return self._labels.get(address.lower())

    def __len__(self) -> int:
        return len(self._labels)
