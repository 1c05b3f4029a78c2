"""
Settlement Engine - Netting Package.

Obligation normalization, balance aggregation, greedy matching,
debt graphs and savings metrics.
"""

from .normalizer import (
    ObligationNormalizer,
    NormalizationResult,
    PriceFunction,
    round_usd,
)
from .aggregator import (
    compute_net_balances,
    to_party_balances,
    balance_total,
    is_conserved,
)
from .matcher import partition_balances, greedy_match
from .graph import DebtGraph, GraphEdge, build_obligation_graph, build_payment_graph
from .savings import (
    SavingsReport,
    calculate_savings,
    estimate_total_fees,
    format_duration,
    FEE_PER_TRANSFER_USD,
)
from .engine import NettingResult, compute_netting, net_normalized


__all__ = [
    "ObligationNormalizer",
    "NormalizationResult",
    "PriceFunction",
    "round_usd",
    "compute_net_balances",
    "to_party_balances",
    "balance_total",
    "is_conserved",
    "partition_balances",
    "greedy_match",
    "DebtGraph",
    "GraphEdge",
    "build_obligation_graph",
    "build_payment_graph",
    "SavingsReport",
    "calculate_savings",
    "estimate_total_fees",
    "format_duration",
    "FEE_PER_TRANSFER_USD",
    "NettingResult",
    "compute_netting",
    "net_normalized",
]
