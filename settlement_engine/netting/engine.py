"""
Netting - Engine.

============================================================
PURPOSE
============================================================
Runs normalize -> aggregate -> match over an obligation set.

FLOW:
    Obligations
        │
        ▼
    ObligationNormalizer   (USD snapshot, fallback rates)
        │
        ▼
    compute_net_balances   (signed balance per party)
        │
        ▼
    greedy_match           (net payments)

The matching half is synchronous and deterministic; only
price lookup suspends.

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from ..types import BALANCE_EPSILON, NetPayment, NormalizedObligation, Obligation
from .aggregator import balance_total, compute_net_balances
from .graph import DebtGraph, build_obligation_graph, build_payment_graph
from .matcher import greedy_match
from .normalizer import ObligationNormalizer, PriceFunction
from .savings import SavingsReport, calculate_savings


logger = logging.getLogger(__name__)


@dataclass
class NettingResult:
    """Everything one netting run produces."""

    net_payments: List[NetPayment]
    before_graph: DebtGraph
    after_graph: DebtGraph

    normalized: List[NormalizedObligation] = field(default_factory=list)
    balances: Dict[str, Decimal] = field(default_factory=dict)
    rates: Dict[str, Decimal] = field(default_factory=dict)
    rates_timestamp: datetime = field(default_factory=datetime.utcnow)
    savings: Optional[SavingsReport] = None

    @property
    def original_count(self) -> int:
        return len(self.normalized)

    @property
    def optimized_count(self) -> int:
        return len(self.net_payments)

    @property
    def total_settled_usd(self) -> Decimal:
        return sum((p.value_usd for p in self.net_payments), Decimal("0"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "net_payments": [p.to_dict() for p in self.net_payments],
            "before_graph": self.before_graph.to_dict(),
            "after_graph": self.after_graph.to_dict(),
            "original_count": self.original_count,
            "optimized_count": self.optimized_count,
            "rates": {unit: str(rate) for unit, rate in self.rates.items()},
            "rates_timestamp": self.rates_timestamp.isoformat(),
            "savings": self.savings.to_dict() if self.savings else None,
        }


def net_normalized(normalized: List[NormalizedObligation]) -> List[NetPayment]:
    """Aggregate and match already-normalized obligations."""
    balances = compute_net_balances(normalized)
    return greedy_match(balances)


async def compute_netting(
    obligations: List[Obligation],
    price_fn: Optional[PriceFunction] = None,
    fallback_rates: Optional[Mapping[str, Decimal]] = None,
    default_rate: Decimal = Decimal("1"),
) -> NettingResult:
    """
    Convert raw obligations into net payments plus before/after graphs.

    Args:
        obligations: Validated obligations
        price_fn: unit -> USD rate (sync or async; may fail per unit)
        fallback_rates: Static rates used when price_fn fails
        default_rate: Rate for units missing from the fallback table

    Returns:
        NettingResult
    """
    normalizer = ObligationNormalizer(price_fn, fallback_rates, default_rate)
    normalization = await normalizer.normalize(list(obligations))

    balances = compute_net_balances(normalization.obligations)
    drift = balance_total(balances)
    if abs(drift) > BALANCE_EPSILON:
        # Cannot happen with cent-quantized values; log if it ever does.
        logger.error(f"Net balances do not sum to zero (drift {drift})")

    payments = greedy_match(balances)

    before = build_obligation_graph(obligations)
    after = build_payment_graph(before.nodes, payments)

    result = NettingResult(
        net_payments=payments,
        before_graph=before,
        after_graph=after,
        normalized=normalization.obligations,
        balances=balances,
        rates=normalization.rates,
        rates_timestamp=normalization.timestamp,
        savings=calculate_savings(len(obligations), len(payments)),
    )
    logger.info(
        f"Netting reduced {result.original_count} obligations "
        f"to {result.optimized_count} payments (${result.total_settled_usd})"
    )
    return result
