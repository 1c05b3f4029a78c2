"""
Netting - Savings Metrics.

Estimates what netting saves compared with paying every
obligation individually.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict


# Estimated network fee per transfer, USD
FEE_PER_TRANSFER_USD: Dict[str, Decimal] = {
    "ethereum": Decimal("15"),
    "base": Decimal("0.5"),
    "arbitrum": Decimal("0.8"),
    "optimism": Decimal("0.6"),
    "polygon": Decimal("0.3"),
}

DEFAULT_FEE_USD = Decimal("1")

MINUTES_PER_PAYMENT = 5
SETTLEMENT_OVERHEAD_MINUTES = 2


@dataclass
class SavingsReport:
    payment_reduction_pct: int
    """Percentage fewer payments, rounded."""

    estimated_fees_usd: Decimal
    """Fees for the optimized payment set."""

    time_saved_minutes: int

    @property
    def time_saved(self) -> str:
        return format_duration(self.time_saved_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_reduction": self.payment_reduction_pct,
            "estimated_fees": str(self.estimated_fees_usd),
            "time_saved": self.time_saved,
        }


def estimate_total_fees(payment_count: int, chain: str = "base") -> Decimal:
    fee = FEE_PER_TRANSFER_USD.get(chain.lower(), DEFAULT_FEE_USD)
    return fee * payment_count


def format_duration(minutes: int) -> str:
    if minutes > 60:
        return f"{minutes // 60}h {minutes % 60}m"
    return f"{minutes}m"


def calculate_savings(original_count: int, optimized_count: int, chain: str = "base") -> SavingsReport:
    """
    Savings of `optimized_count` transfers over `original_count`.

    Time assumes 5 minutes per payment plus 2 minutes overhead.
    """
    if original_count > 0:
        ratio = Decimal(original_count - optimized_count) / Decimal(original_count) * 100
        reduction = int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        reduction = 0

    original_time = original_count * MINUTES_PER_PAYMENT + SETTLEMENT_OVERHEAD_MINUTES
    optimized_time = optimized_count * MINUTES_PER_PAYMENT + SETTLEMENT_OVERHEAD_MINUTES

    return SavingsReport(
        payment_reduction_pct=reduction,
        estimated_fees_usd=estimate_total_fees(optimized_count, chain),
        time_saved_minutes=max(0, original_time - optimized_time),
    )
