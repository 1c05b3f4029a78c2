"""
Netting - Obligation Normalizer.

============================================================
PURPOSE
============================================================
Converts raw obligations into USD-valued snapshots.

RULES:
- Every obligation is normalized independently
- A failed price lookup falls back to the static rate table;
  the batch is never aborted for one bad price
- USD values are rounded half-up to cents, once, here

============================================================
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

from ..config import DEFAULT_FALLBACK_RATES
from ..types import NormalizedObligation, Obligation, USD_QUANTUM


logger = logging.getLogger(__name__)

PriceFunction = Callable[[str], Union[Decimal, Awaitable[Decimal]]]


def round_usd(value: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return value.quantize(USD_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass
class NormalizationResult:
    """Normalized obligations plus the rate snapshot used."""

    obligations: List[NormalizedObligation]
    rates: Dict[str, Decimal]
    """Unit -> USD rate actually applied."""

    fallback_units: List[str] = field(default_factory=list)
    """Units whose rate came from the fallback table."""

    timestamp: datetime = field(default_factory=datetime.utcnow)


class ObligationNormalizer:
    """
    Normalizes obligations to USD using an injected price function.

    The price function may be sync or async and may raise for
    any unit.
    """

    def __init__(
        self,
        price_fn: Optional[PriceFunction] = None,
        fallback_rates: Optional[Mapping[str, Decimal]] = None,
        default_rate: Decimal = Decimal("1"),
    ):
        self._price_fn = price_fn
        self._fallback_rates = dict(
            fallback_rates if fallback_rates is not None else DEFAULT_FALLBACK_RATES
        )
        self._default_rate = default_rate

    def fallback_rate(self, unit: str) -> Decimal:
        return self._fallback_rates.get(unit.lower(), self._default_rate)

    async def _lookup(self, unit: str) -> Tuple[Decimal, bool]:
        if self._price_fn is None:
            return self.fallback_rate(unit), True
        try:
            rate = self._price_fn(unit)
            if inspect.isawaitable(rate):
                rate = await rate
            if rate is None:
                raise ValueError("no price")
            rate = Decimal(str(rate))
            if not rate.is_finite() or rate <= 0:
                raise ValueError(f"non-positive price {rate}")
            return rate, False
        except Exception as e:
            fallback = self.fallback_rate(unit)
            logger.warning(
                f"Price lookup failed for {unit}: {e}. Using fallback rate {fallback}"
            )
            return fallback, True

    async def normalize(self, obligations: List[Obligation]) -> NormalizationResult:
        """
        Normalize a batch of obligations.

        Each distinct unit is priced once; lookups run concurrently.
        """
        units = list(dict.fromkeys(o.unit for o in obligations))
        lookups = await asyncio.gather(*(self._lookup(unit) for unit in units))

        rates: Dict[str, Decimal] = {}
        fallback_units: List[str] = []
        for unit, (rate, used_fallback) in zip(units, lookups):
            rates[unit] = rate
            if used_fallback:
                fallback_units.append(unit)

        normalized = [
            NormalizedObligation(
                obligation=o,
                value_usd=round_usd(o.amount * rates[o.unit]),
                rate_usd=rates[o.unit],
                used_fallback=o.unit in fallback_units,
            )
            for o in obligations
        ]
        logger.debug(
            f"Normalized {len(normalized)} obligations across {len(units)} units "
            f"({len(fallback_units)} via fallback)"
        )
        return NormalizationResult(
            obligations=normalized,
            rates=rates,
            fallback_units=fallback_units,
        )
