"""
Netting - Net Balance Aggregator.

Reduces normalized obligations to one signed balance per party.
Accumulation is insertion-ordered, so repeated runs over the same
input produce the same party order.
"""

from decimal import Decimal
from typing import Dict, Iterable, List

from ..types import BALANCE_EPSILON, NormalizedObligation, PartyBalance


def compute_net_balances(obligations: Iterable[NormalizedObligation]) -> Dict[str, Decimal]:
    """
    Debit `from_party` and credit `to_party` by each value.

    Returns:
        Party -> signed net USD, in first-seen order
    """
    balances: Dict[str, Decimal] = {}
    for item in obligations:
        balances[item.to_party] = balances.get(item.to_party, Decimal("0")) + item.value_usd
        balances[item.from_party] = balances.get(item.from_party, Decimal("0")) - item.value_usd
    return balances


def to_party_balances(balances: Dict[str, Decimal]) -> List[PartyBalance]:
    return [PartyBalance(party=party, net_usd=net) for party, net in balances.items()]


def balance_total(balances: Dict[str, Decimal]) -> Decimal:
    """Sum of every balance. Zero (within epsilon) for any valid input."""
    return sum(balances.values(), Decimal("0"))


def is_conserved(balances: Dict[str, Decimal], tolerance: Decimal = BALANCE_EPSILON) -> bool:
    return abs(balance_total(balances)) <= tolerance
