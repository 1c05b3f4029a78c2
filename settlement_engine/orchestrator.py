"""
Settlement Engine - Exchange Order Orchestrator.

============================================================
PURPOSE
============================================================
Turns a ready settlement's net payments into exchange orders.

FLOW (per execute call):

    check_compliance (once per batch)
        │  DENIED -> ComplianceDeniedError, nothing else runs
        │  error  -> warn, continue
        ▼
    for each net payment, concurrently:
        preference -> address -> pair bounds -> quote -> order
        quote expiry is checked again inside the orders slot
        any failure becomes a FailureRecord for that
        recipient only
        ▼
    zero orders  -> AllOrdersFailedError (settlement stays READY)
    >= 1 order   -> READY -> EXECUTING, failures reported

Throttling and retries live in ExchangeClient; the channel
limiters are the only concurrency control.

============================================================
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from .address_validation import AddressValidator, FormatAddressValidator
from .adapters.base import CreateOrderRequest, QuoteRequest
from .config import ExchangeConfig
from .errors import get_error_info
from .exchange_client import ExchangeClient
from .state_machine import SettlementStateMachine
from .types import (
    AllOrdersFailedError,
    ComplianceDeniedError,
    ComplianceStatus,
    ExchangeError,
    FailureRecord,
    NetPayment,
    Order,
    RecipientPreference,
    Settlement,
)


logger = logging.getLogger(__name__)


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class ExecutionResult:
    """Orders created and payments that failed, for one execute call."""

    settlement_id: str
    orders: List[Order] = field(default_factory=list)
    failures: List[FailureRecord] = field(default_factory=list)

    compliance_warning: Optional[str] = None
    """Set when the compliance check errored and execution failed open."""

    @property
    def success_count(self) -> int:
        return len(self.orders)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    @property
    def failed_recipients(self) -> List[str]:
        return [f.recipient for f in self.failures]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "settlement_id": self.settlement_id,
            "orders": [o.to_dict() for o in self.orders],
            "failures": [f.to_dict() for f in self.failures],
            "compliance_warning": self.compliance_warning,
        }


class RecipientFailure(Exception):
    """A per-recipient step failed. Never escapes the orchestrator."""

    def __init__(self, code: str, reason: str, http_status: Optional[int] = None, **details: Any):
        super().__init__(reason)
        self.code = code
        self.reason = reason
        self.http_status = http_status
        self.details = details


def make_idempotency_key(
    settlement_id: str,
    payer: str,
    recipient: str,
    created_at: datetime,
) -> str:
    """Stable key for one order attempt."""
    raw = f"{settlement_id}|{payer}|{recipient}|{created_at.isoformat()}"
    return hashlib.sha256(raw.encode()).hexdigest()[:32]


# ============================================================
# ORCHESTRATOR
# ============================================================

class ExchangeOrderOrchestrator:
    """
    Executes a settlement against the exchange.

    Dependencies are injected:
    - client: throttled, retrying ExchangeClient
    - address_validator: AddressValidator (format checks by default)
    - config: deposit leg and quote lifetime
    """

    def __init__(
        self,
        client: ExchangeClient,
        address_validator: Optional[AddressValidator] = None,
        config: Optional[ExchangeConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._client = client
        self._validator = address_validator or FormatAddressValidator()
        self._config = config or ExchangeConfig()
        self._clock = clock

    # --------------------------------------------------------
    # PUBLIC API
    # --------------------------------------------------------

    async def execute_settlement(
        self,
        settlement: Settlement,
        preferences: Optional[List[RecipientPreference]] = None,
        caller_ip: str = "",
        state_machine: Optional[SettlementStateMachine] = None,
    ) -> ExecutionResult:
        """
        Create orders for every net payment and move the settlement
        to EXECUTING.

        Raises:
            SettlementStateError: Settlement is not executable
            ComplianceDeniedError: Caller is in a restricted jurisdiction
            AllOrdersFailedError: No order could be created
        """
        machine = state_machine or SettlementStateMachine(settlement)
        machine.ensure_can_execute()

        if preferences is not None:
            settlement.recipient_preferences = list(preferences)

        result = await self.create_orders(settlement, caller_ip)

        if not result.orders:
            logger.error(
                f"Settlement {settlement.settlement_id}: all "
                f"{len(result.failures)} orders failed"
            )
            raise AllOrdersFailedError(result.failures)

        machine.mark_executing(result.orders)
        logger.info(
            f"Settlement {settlement.settlement_id}: {result.success_count} orders created, "
            f"{result.failure_count} failed"
        )
        return result

    async def create_orders(self, settlement: Settlement, caller_ip: str = "") -> ExecutionResult:
        """
        Compliance gate plus per-payment order creation.

        Does not change settlement status.
        """
        result = ExecutionResult(settlement_id=settlement.settlement_id)
        result.compliance_warning = await self._check_compliance(caller_ip)

        payments = settlement.net_payments
        outcomes = await asyncio.gather(*(
            self._process_payment(settlement, payment, caller_ip)
            for payment in payments
        ))

        for outcome in outcomes:
            if isinstance(outcome, Order):
                result.orders.append(outcome)
            else:
                result.failures.append(outcome)
        return result

    # --------------------------------------------------------
    # COMPLIANCE
    # --------------------------------------------------------

    async def _check_compliance(self, caller_ip: str) -> Optional[str]:
        try:
            status = await self._client.check_compliance(caller_ip)
        except ExchangeError as e:
            if e.http_status == 403:
                status = ComplianceStatus.DENIED
            else:
                logger.warning(f"Compliance check failed, proceeding: {e}")
                return str(e)
        except Exception as e:
            logger.warning(f"Compliance check failed, proceeding: {e}")
            return str(e)

        if status == ComplianceStatus.DENIED:
            logger.warning(f"Compliance check denied caller {caller_ip or '<unknown>'}")
            raise ComplianceDeniedError(
                "Exchange is not available in your jurisdiction",
                caller_ip=caller_ip,
            )
        return None

    # --------------------------------------------------------
    # PER-RECIPIENT PIPELINE
    # --------------------------------------------------------

    async def _process_payment(
        self,
        settlement: Settlement,
        payment: NetPayment,
        caller_ip: str,
    ) -> Union[Order, FailureRecord]:
        try:
            return await self._create_order_for(settlement, payment, caller_ip)
        except RecipientFailure as f:
            return self._failure(payment, f.code, f.reason, f.http_status, f.details)
        except ExchangeError as e:
            code = e.code if e.code == "RETRIES_EXHAUSTED" else "ORDER_CREATION_FAILED"
            return self._failure(payment, code, str(e), e.http_status)
        except Exception as e:
            logger.exception(f"Unexpected error creating order for {payment.to_party}: {e}")
            return self._failure(payment, "INTERNAL_ERROR", f"Internal error: {e}")

    async def _create_order_for(
        self,
        settlement: Settlement,
        payment: NetPayment,
        caller_ip: str,
    ) -> Order:
        recipient = payment.to_party
        pref = settlement.preference_for(recipient)
        if pref is None:
            raise RecipientFailure(
                "PREFERENCE_MISSING", f"No receive preference for {recipient}",
            )
        if not pref.receive_address:
            raise RecipientFailure(
                "ADDRESS_MISSING", f"No receive address for {recipient}",
            )

        # Address precondition
        check = await self._validator.validate_address(
            pref.receive_unit, pref.receive_chain, pref.receive_address, pref.memo or None,
        )
        if not check.ok:
            raise RecipientFailure("ADDRESS_INVALID", check.reason)

        deposit_unit = self._config.deposit_unit
        deposit_chain = self._config.deposit_chain
        amount = payment.value_usd

        # Pair bounds
        bounds = await self._step(
            "PAIR_UNAVAILABLE",
            self._client.get_pair_bounds(
                deposit_unit, deposit_chain,
                pref.receive_unit, pref.receive_chain,
                amount, caller_ip,
            ),
        )
        if amount < bounds.min_amount:
            raise RecipientFailure(
                "AMOUNT_BELOW_MINIMUM",
                f"Amount {amount} below minimum {bounds.min_amount} {deposit_unit}",
                min_amount=str(bounds.min_amount),
            )
        if amount > bounds.max_amount:
            raise RecipientFailure(
                "AMOUNT_ABOVE_MAXIMUM",
                f"Amount {amount} above maximum {bounds.max_amount} {deposit_unit}",
                max_amount=str(bounds.max_amount),
            )

        # Quote
        quote = await self._step(
            "QUOTE_FAILED",
            self._client.request_quote(QuoteRequest(
                deposit_unit=deposit_unit,
                deposit_chain=deposit_chain,
                settle_unit=pref.receive_unit,
                settle_chain=pref.receive_chain,
                deposit_amount=amount,
                caller_ip=caller_ip,
            )),
        )
        self._ensure_quote_live(quote, self._clock())

        # Order: expiry re-checked and stamped inside the orders slot.
        # The first attempt fixes created_at and the key; retries reuse them.
        submitted: Dict[str, Any] = {}

        def prepare(request: CreateOrderRequest) -> CreateOrderRequest:
            now = self._clock()
            self._ensure_quote_live(quote, now)
            if "request" not in submitted:
                submitted["created_at"] = now
                submitted["request"] = replace(
                    request,
                    idempotency_key=make_idempotency_key(
                        settlement.settlement_id, payment.from_party, recipient, now,
                    ),
                )
            return submitted["request"]

        receipt = await self._step(
            "ORDER_CREATION_FAILED",
            self._client.create_order(
                CreateOrderRequest(
                    quote_id=quote.quote_id,
                    settle_address=pref.receive_address,
                    idempotency_key="",
                    settle_memo=pref.memo,
                    refund_address=pref.refund_address,
                    caller_ip=caller_ip,
                ),
                prepare=prepare,
            ),
        )
        created_at = submitted["created_at"]
        key = submitted["request"].idempotency_key

        order = Order(
            recipient=recipient,
            payer=payment.from_party,
            value_usd=amount,
            external_order_id=receipt.order_id,
            status=receipt.status,
            external_status=receipt.external_status,
            deposit_address=receipt.deposit_address,
            deposit_memo=receipt.deposit_memo,
            deposit_amount=receipt.deposit_amount or quote.deposit_amount,
            deposit_unit=deposit_unit,
            deposit_chain=deposit_chain,
            settle_amount=receipt.settle_amount or quote.settle_amount,
            settle_unit=pref.receive_unit,
            settle_chain=pref.receive_chain,
            settle_address=pref.receive_address,
            quote_id=quote.quote_id,
            quote_expires_at=quote.expires_at,
            created_at=created_at,
            idempotency_key=key,
        )
        logger.info(
            f"Order {order.external_order_id} created: {payment.from_party} -> {recipient} "
            f"${amount} as {order.settle_amount} {order.settle_unit.upper()}"
        )
        return order

    @staticmethod
    def _ensure_quote_live(quote, now: datetime) -> None:
        if quote.expires_at <= now:
            raise RecipientFailure(
                "QUOTE_EXPIRED", f"Quote {quote.quote_id} expired at {quote.expires_at.isoformat()}",
            )

    async def _step(self, code: str, call):
        """Await an exchange call, tagging failures with this step's code."""
        try:
            return await call
        except ExchangeError as e:
            if e.code == "RETRIES_EXHAUSTED":
                code = e.code
            raise RecipientFailure(code, str(e), http_status=e.http_status)

    def _failure(
        self,
        payment: NetPayment,
        code: str,
        reason: str,
        http_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> FailureRecord:
        info = get_error_info(code)
        logger.error(
            f"Order for {payment.to_party} failed [{code}]: {reason} "
            f"({info.recommended_action})"
        )
        return FailureRecord(
            recipient=payment.to_party,
            payer=payment.from_party,
            value_usd=payment.value_usd,
            code=code,
            reason=reason,
            http_status=http_status,
            details=details or {},
        )
