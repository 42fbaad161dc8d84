from __future__ import annotations

import math
from decimal import Decimal
from typing import Iterable, Tuple

from chainscope.config import settings


class SqrtScale:
    """
    Clamped square-root scale: domain -> range, with sqrt applied to the
    domain before interpolating, so bubble area tracks the input value.
    """

    def __init__(
        self,
        domain: Tuple[float, float],
        range_: Tuple[float, float] = settings.RADIUS_RANGE,
        clamp: bool = True,
    ) -> None:
        self.domain = (float(domain[0]), float(domain[1]))
        self.range = (float(range_[0]), float(range_[1]))
        self.clamp = clamp

    @staticmethod
    def _sqrt(x: float) -> float:
        return math.copysign(math.sqrt(abs(x)), x)

    def normalize(self, value: Decimal | float) -> float:
        lo = self._sqrt(self.domain[0])
        hi = self._sqrt(self.domain[1])
        if hi == lo:
            return 0.5
        t = (self._sqrt(float(value)) - lo) / (hi - lo)
        if self.clamp:
            t = min(1.0, max(0.0, t))
        return t

    def __call__(self, value: Decimal | float) -> float:
        r0, r1 = self.range
        return r0 + self.normalize(value) * (r1 - r0)


def radius_scale_for(balances: Iterable[Decimal | float]) -> SqrtScale:
    """
    Domain is [min, max] of the balances. An empty set falls back to the
    configured default domain, as does a zero bound.
    """
    values = [float(b) for b in balances]
    fallback_lo, fallback_hi = settings.RADIUS_DOMAIN_FALLBACK
    if not values:
        return SqrtScale((fallback_lo, fallback_hi))
    lo = min(values) or fallback_lo
    hi = max(values) or fallback_hi
    return SqrtScale((lo, hi))
