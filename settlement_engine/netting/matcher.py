"""
Netting - Greedy Settlement Matcher.

============================================================
ALGORITHM
============================================================
1. Partition balances into debtors (< -epsilon) and
   creditors (> +epsilon); the rest are settled.
2. Sort both lists by magnitude, descending. Ties keep
   insertion order.
3. Match the current debtor with the current creditor for
   min(debtor, creditor), decrement both, and advance past
   whichever drops below epsilon.
4. Stop when either list is exhausted.

This is a greedy heuristic, not a minimum-transfer solver.
Its exact sort and tie-break order is part of the output
contract and must not change.

============================================================
"""

import logging
from decimal import Decimal
from typing import Dict, List, Tuple

from ..types import BALANCE_EPSILON, NetPayment


logger = logging.getLogger(__name__)


def partition_balances(
    balances: Dict[str, Decimal],
    epsilon: Decimal = BALANCE_EPSILON,
) -> Tuple[List[List], List[List]]:
    """
    Split into sorted [party, magnitude] lists of debtors and creditors.

    `sorted` is stable, so equal magnitudes stay in insertion order.
    """
    debtors = [[party, -net] for party, net in balances.items() if net < -epsilon]
    creditors = [[party, net] for party, net in balances.items() if net > epsilon]
    debtors.sort(key=lambda entry: -entry[1])
    creditors.sort(key=lambda entry: -entry[1])
    return debtors, creditors


def greedy_match(
    balances: Dict[str, Decimal],
    epsilon: Decimal = BALANCE_EPSILON,
) -> List[NetPayment]:
    """
    Pair debtors with creditors.

    Args:
        balances: Party -> signed net USD
        epsilon: Settled-balance tolerance

    Returns:
        Net payments in emission order
    """
    debtors, creditors = partition_balances(balances, epsilon)
    payments: List[NetPayment] = []

    d = c = 0
    while d < len(debtors) and c < len(creditors):
        debtor = debtors[d]
        creditor = creditors[c]
        amount = min(debtor[1], creditor[1])

        if amount > 0:
            payments.append(NetPayment(
                from_party=debtor[0],
                to_party=creditor[0],
                value_usd=amount,
            ))

        debtor[1] -= amount
        creditor[1] -= amount

        if debtor[1] < epsilon:
            d += 1
        if creditor[1] < epsilon:
            c += 1

    logger.debug(
        f"Matched {len(debtors)} debtors with {len(creditors)} creditors "
        f"into {len(payments)} payments"
    )
    return payments
