"""
Settlement Engine - Types.

============================================================
PURPOSE
============================================================
All type definitions for the Settlement Engine.

CRITICAL PRINCIPLE:
    "Value is conserved across the debt graph."
    "Every USD owed by a debtor is paid to some creditor."

============================================================
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from enum import Enum
from decimal import Decimal, InvalidOperation


# ============================================================
# CONSTANTS
# ============================================================

BALANCE_EPSILON = Decimal("0.01")
"""Balances within +/- this value are settled. Shared by aggregation and matching."""

USD_QUANTUM = Decimal("0.01")
"""USD values are quantized to cents at normalization time."""


def _to_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidObligationError(f"{field_name} is not a number: {value!r}")


# ============================================================
# STATUS ENUMS
# ============================================================

class SettlementStatus(Enum):
    """
    Settlement lifecycle status.

    State Machine:

        DRAFT ──► READY ──► EXECUTING ──┬──► COMPLETED
                                        └──► FAILED
    """

    DRAFT = "draft"
    """Obligations recorded, netting not run."""

    READY = "ready"
    """Net payments computed, awaiting execution."""

    EXECUTING = "executing"
    """Exchange orders created, awaiting convergence."""

    COMPLETED = "completed"
    """Every order completed."""

    FAILED = "failed"
    """At least one order failed."""

    def is_terminal(self) -> bool:
        """Check if this is a terminal status."""
        return self in {SettlementStatus.COMPLETED, SettlementStatus.FAILED}


class OrderStatus(Enum):
    """Closed set of exchange order statuses."""

    WAITING = "waiting"
    """Waiting for the deposit."""

    CONFIRMING = "confirming"
    """Deposit seen, awaiting confirmations."""

    EXCHANGING = "exchanging"
    """Exchange in progress."""

    COMPLETED = "completed"
    """Settle transaction sent to the recipient."""

    FAILED = "failed"
    """Refunded, expired or otherwise failed."""

    def is_terminal(self) -> bool:
        """Check if this is a terminal status."""
        return self in {OrderStatus.COMPLETED, OrderStatus.FAILED}


class ComplianceStatus(Enum):
    """Outcome of the compliance gate."""

    ALLOWED = "allowed"
    DENIED = "denied"


# ============================================================
# OBLIGATIONS
# ============================================================

@dataclass(frozen=True)
class Obligation:
    """
    A single declared debt from one party to another.

    Immutable once created. Construction rejects self-payment
    and non-positive amounts.
    """

    from_party: str
    """Party that owes."""

    to_party: str
    """Party that is owed."""

    amount: Decimal
    """Amount in `unit`. Must be positive."""

    unit: str
    """Unit (token symbol), lowercase."""

    chain: str = ""
    """Chain the obligation is denominated on, if known."""

    reference: str = ""
    """Free-text reference (invoice number, memo)."""

    def __post_init__(self) -> None:
        if not self.from_party or not self.to_party:
            raise InvalidObligationError("Obligation requires both from_party and to_party")
        if self.from_party == self.to_party:
            raise InvalidObligationError(
                f"Obligation cannot be a self-payment ({self.from_party})"
            )
        amount = _to_decimal(self.amount, "amount")
        if not amount.is_finite() or amount <= 0:
            raise InvalidObligationError(f"Obligation amount must be positive, got {amount}")
        if not self.unit:
            raise InvalidObligationError("Obligation requires a unit")
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "unit", self.unit.lower())
        object.__setattr__(self, "chain", (self.chain or "").lower())


@dataclass(frozen=True)
class NormalizedObligation:
    """Obligation with its USD value snapshotted at normalization time."""

    obligation: Obligation
    value_usd: Decimal
    rate_usd: Decimal
    """Unit price used for the conversion."""

    used_fallback: bool = False
    """Whether the rate came from the fallback table."""

    @property
    def from_party(self) -> str:
        return self.obligation.from_party

    @property
    def to_party(self) -> str:
        return self.obligation.to_party


@dataclass(frozen=True)
class PartyBalance:
    """Signed net position. Negative is a net debtor, positive a net creditor."""

    party: str
    net_usd: Decimal

    @property
    def is_debtor(self) -> bool:
        return self.net_usd < -BALANCE_EPSILON

    @property
    def is_creditor(self) -> bool:
        return self.net_usd > BALANCE_EPSILON


@dataclass(frozen=True)
class NetPayment:
    """A computed transfer replacing one or more obligations."""

    from_party: str
    to_party: str
    value_usd: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_party,
            "to": self.to_party,
            "value_usd": str(self.value_usd),
        }


# ============================================================
# RECIPIENT PREFERENCES
# ============================================================

@dataclass(frozen=True)
class RecipientPreference:
    """How a creditor wants to be paid. Read-only input."""

    party: str
    receive_unit: str
    receive_chain: str
    receive_address: str
    refund_address: str = ""
    memo: str = ""


# ============================================================
# ORDERS
# ============================================================

@dataclass
class Order:
    """An exchange order created for one net payment."""

    recipient: str
    """Party being paid."""

    external_order_id: str
    """Exchange-assigned order id."""

    status: OrderStatus
    """Current mapped status."""

    deposit_address: str
    deposit_amount: Decimal
    deposit_unit: str
    deposit_chain: str

    settle_amount: Decimal
    settle_unit: str
    settle_chain: str
    settle_address: str

    quote_id: str
    quote_expires_at: datetime
    created_at: datetime = field(default_factory=datetime.utcnow)

    payer: str = ""
    """Party funding the deposit."""

    value_usd: Decimal = Decimal("0")
    """USD value of the underlying net payment."""

    deposit_memo: str = ""
    idempotency_key: str = ""

    settle_tx_hash: str = ""
    """Settle transaction hash, once known."""

    external_status: str = ""
    """Raw status string last reported by the exchange."""

    failure_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    last_polled_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient": self.recipient,
            "payer": self.payer,
            "external_order_id": self.external_order_id,
            "status": self.status.value,
            "external_status": self.external_status,
            "deposit_address": self.deposit_address,
            "deposit_memo": self.deposit_memo,
            "deposit_amount": str(self.deposit_amount),
            "deposit_unit": self.deposit_unit,
            "deposit_chain": self.deposit_chain,
            "settle_amount": str(self.settle_amount),
            "settle_unit": self.settle_unit,
            "settle_chain": self.settle_chain,
            "settle_address": self.settle_address,
            "quote_id": self.quote_id,
            "quote_expires_at": self.quote_expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "settle_tx_hash": self.settle_tx_hash,
            "failure_reason": self.failure_reason,
        }


@dataclass(frozen=True)
class FailureRecord:
    """A net payment that did not become an order."""

    recipient: str
    code: str
    """Failure code from the error registry."""

    reason: str
    """Human-readable reason."""

    payer: str = ""
    value_usd: Decimal = Decimal("0")
    http_status: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recipient": self.recipient,
            "payer": self.payer,
            "value_usd": str(self.value_usd),
            "code": self.code,
            "reason": self.reason,
            "http_status": self.http_status,
        }


# ============================================================
# SETTLEMENT AGGREGATE
# ============================================================

@dataclass
class NettingSummary:
    """What the draft->ready transition stores."""

    net_payments: List[NetPayment]
    original_count: int
    optimized_count: int
    rates: Dict[str, Decimal]
    rates_timestamp: datetime
    savings: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Settlement:
    """
    Aggregate root for one netting run.

    Owns obligations, preferences, net payments and orders.
    Mutated only through SettlementStateMachine.
    """

    settlement_id: str
    obligations: List[Obligation] = field(default_factory=list)
    recipient_preferences: List[RecipientPreference] = field(default_factory=list)
    status: SettlementStatus = SettlementStatus.DRAFT

    netting: Optional[NettingSummary] = None
    orders: List[Order] = field(default_factory=list)

    name: str = ""
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def net_payments(self) -> List[NetPayment]:
        if self.netting is None:
            return []
        return list(self.netting.net_payments)

    def preference_for(self, party: str) -> Optional[RecipientPreference]:
        for pref in self.recipient_preferences:
            if pref.party == party:
                return pref
        return None


# ============================================================
# EXCEPTIONS
# ============================================================

class SettlementEngineError(Exception):
    """Base exception for the Settlement Engine."""
    pass


class InvalidObligationError(SettlementEngineError):
    """Malformed obligation (self-payment, non-positive amount)."""
    pass


class SettlementStateError(SettlementEngineError):
    """Requested lifecycle transition is not allowed."""

    def __init__(self, message: str, code: str = "INVALID_STATUS"):
        super().__init__(message)
        self.code = code


class ComplianceDeniedError(SettlementEngineError):
    """Caller is in a restricted jurisdiction."""

    def __init__(self, message: str, caller_ip: str = ""):
        super().__init__(message)
        self.caller_ip = caller_ip


class AllOrdersFailedError(SettlementEngineError):
    """Every net payment in an execute call failed."""

    def __init__(self, failures: List[FailureRecord]):
        summary = "; ".join(f"{f.recipient}: {f.reason}" for f in failures)
        super().__init__(f"All orders failed to create: {summary}")
        self.failures = list(failures)


class ExchangeError(SettlementEngineError):
    """Exchange communication error."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        category: Optional[str] = None,
        http_status: Optional[int] = None,
        is_retryable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.category = category
        self.http_status = http_status
        self.is_retryable = is_retryable
