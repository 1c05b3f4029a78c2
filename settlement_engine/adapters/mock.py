"""
Settlement Engine - Mock Exchange Adapter.

============================================================
PURPOSE
============================================================
Mock adapter for testing the settlement engine.

FEATURES:
- Configurable latency
- Configurable error injection (per operation)
- Configurable pair bounds and rates
- Idempotent order creation keyed by idempotency key
- Expired quotes rejected at order creation
- Full state tracking

============================================================
"""

import asyncio
import logging
import random
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional, Dict, Any, List, Tuple
from dataclasses import dataclass, field
from decimal import Decimal

from ..config import DEFAULT_FALLBACK_RATES
from ..types import ComplianceStatus, ExchangeError
from .base import (
    ExchangeAdapter,
    PairBounds,
    QuoteRequest,
    Quote,
    CreateOrderRequest,
    OrderReceipt,
    OrderStatusResponse,
    CoinInfo,
    map_external_status,
)


logger = logging.getLogger(__name__)


# ============================================================
# MOCK CONFIGURATION
# ============================================================

@dataclass
class MockConfig:
    """Configuration for mock adapter."""

    # Latency simulation
    min_latency_ms: float = 0.0
    """Minimum simulated latency."""

    max_latency_ms: float = 0.0
    """Maximum simulated latency."""

    # Pair bounds
    min_amount: Decimal = Decimal("1")
    """Minimum deposit for every pair."""

    max_amount: Decimal = Decimal("100000")
    """Maximum deposit for every pair."""

    unsupported_pairs: List[Tuple[str, str]] = field(default_factory=list)
    """(deposit_unit, settle_unit) pairs the mock refuses."""

    # Pricing
    usd_rates: Dict[str, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_FALLBACK_RATES)
    )
    """Unit prices used to derive settle amounts."""

    quote_ttl_seconds: float = 900.0
    """Lifetime of issued quotes."""

    # Compliance
    compliance_denied: bool = False
    """Whether the permission check denies the caller."""

    # Error injection
    network_error_probability: float = 0.0
    """Probability of a retryable network error on any call."""


# ============================================================
# MOCK ORDER
# ============================================================

@dataclass
class MockOrder:
    """Mock order state."""

    order_id: str
    quote_id: str
    settle_address: str
    deposit_address: str
    deposit_amount: Decimal
    settle_amount: Decimal
    idempotency_key: str
    settle_memo: str = ""
    refund_address: str = ""

    status: str = "waiting"
    settle_tx_hash: str = ""
    created_at: datetime = field(default_factory=datetime.utcnow)


# ============================================================
# MOCK EXCHANGE ADAPTER
# ============================================================

class MockExchangeAdapter(ExchangeAdapter):
    """
    Mock exchange adapter for testing.

    Simulates exchange behavior including:
    - Compliance gating
    - Pair bounds, quotes and orders
    - Status progression (driven by the test)
    - Error injection
    """

    def __init__(
        self,
        config: Optional[MockConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize mock adapter.

        Args:
            config: Mock configuration
            clock: Time source for quote expiry
        """
        self._config = config or MockConfig()
        self._clock = clock
        self._connected = False

        # State
        self._quotes: Dict[str, Quote] = {}
        self._orders: Dict[str, MockOrder] = {}
        self._orders_by_key: Dict[str, str] = {}

        # Error injection hooks, keyed by operation name
        self._forced_errors: Dict[str, List[Exception]] = {}

        # Call log
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    @property
    def exchange_id(self) -> str:
        return "mock"

    @property
    def is_connected(self) -> bool:
        return self._connected

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """Connect to mock exchange."""
        self._connected = True
        logger.info("MockExchangeAdapter connected")

    async def disconnect(self) -> None:
        """Disconnect from mock exchange."""
        self._connected = False
        logger.info("MockExchangeAdapter disconnected")

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    async def check_compliance(self, caller_ip: str) -> ComplianceStatus:
        await self._before("check_compliance", caller_ip=caller_ip)
        if self._config.compliance_denied:
            return ComplianceStatus.DENIED
        return ComplianceStatus.ALLOWED

    async def get_pair_bounds(
        self,
        deposit_unit: str,
        deposit_chain: str,
        settle_unit: str,
        settle_chain: str,
        amount: Optional[Decimal] = None,
        caller_ip: str = "",
    ) -> PairBounds:
        await self._before(
            "get_pair_bounds",
            deposit_unit=deposit_unit,
            settle_unit=settle_unit,
            amount=amount,
        )
        if (deposit_unit.lower(), settle_unit.lower()) in self._config.unsupported_pairs:
            raise ExchangeError(
                f"Pair {deposit_unit}->{settle_unit} not available",
                code="INVALID_REQUEST",
                http_status=400,
            )
        return PairBounds(
            min_amount=self._config.min_amount,
            max_amount=self._config.max_amount,
            rate=self._rate(deposit_unit, settle_unit),
        )

    async def get_order_status(self, order_id: str, caller_ip: str = "") -> OrderStatusResponse:
        await self._before("get_order_status", order_id=order_id)
        order = self._orders.get(order_id)
        if order is None:
            raise ExchangeError(
                f"Order {order_id} not found",
                code="ORDER_NOT_FOUND",
                http_status=404,
            )
        return OrderStatusResponse(
            order_id=order_id,
            status=map_external_status(order.status),
            external_status=order.status,
            settle_tx_hash=order.settle_tx_hash,
        )

    async def get_coins(self) -> List[CoinInfo]:
        await self._before("get_coins")
        return [
            CoinInfo(coin=unit, name=unit.upper(), networks=["mainnet"])
            for unit in sorted(self._config.usd_rates)
        ]

    # --------------------------------------------------------
    # ORDER OPERATIONS
    # --------------------------------------------------------

    async def request_quote(self, request: QuoteRequest) -> Quote:
        await self._before(
            "request_quote",
            deposit_unit=request.deposit_unit,
            settle_unit=request.settle_unit,
            deposit_amount=request.deposit_amount,
        )
        rate = self._rate(request.deposit_unit, request.settle_unit)
        quote = Quote(
            quote_id=str(uuid.uuid4()),
            deposit_amount=request.deposit_amount,
            settle_amount=(request.deposit_amount * rate).quantize(Decimal("0.00000001")),
            expires_at=self._clock() + timedelta(seconds=self._config.quote_ttl_seconds),
            rate=rate,
        )
        self._quotes[quote.quote_id] = quote
        return quote

    async def create_order(self, request: CreateOrderRequest) -> OrderReceipt:
        await self._before(
            "create_order",
            quote_id=request.quote_id,
            settle_address=request.settle_address,
            idempotency_key=request.idempotency_key,
        )

        existing_id = self._orders_by_key.get(request.idempotency_key)
        if existing_id is not None:
            return self._receipt(self._orders[existing_id])

        quote = self._quotes.get(request.quote_id)
        if quote is None:
            raise ExchangeError(
                f"Unknown quote {request.quote_id}",
                code="INVALID_REQUEST",
                http_status=400,
            )
        if quote.expires_at <= self._clock():
            raise ExchangeError(
                f"Quote {quote.quote_id} has expired",
                code="INVALID_REQUEST",
                http_status=400,
            )

        order = MockOrder(
            order_id=uuid.uuid4().hex[:20],
            quote_id=quote.quote_id,
            settle_address=request.settle_address,
            deposit_address="0x" + uuid.uuid4().hex + uuid.uuid4().hex[:8],
            deposit_amount=quote.deposit_amount,
            settle_amount=quote.settle_amount,
            idempotency_key=request.idempotency_key,
            settle_memo=request.settle_memo,
            refund_address=request.refund_address,
        )
        self._orders[order.order_id] = order
        self._orders_by_key[request.idempotency_key] = order.order_id
        return self._receipt(order)

    async def cancel_order(self, order_id: str) -> bool:
        await self._before("cancel_order", order_id=order_id)
        order = self._orders.get(order_id)
        if order is None or order.status != "waiting":
            return False
        order.status = "expired"
        return True

    # --------------------------------------------------------
    # TEST HELPERS
    # --------------------------------------------------------

    def inject_error(self, operation: str, error: Exception) -> None:
        """Inject an error for the next call to `operation`."""
        self._forced_errors.setdefault(operation, []).append(error)

    def set_order_status(self, order_id: str, status: str, settle_tx_hash: str = "") -> None:
        """Set the raw exchange status of an order."""
        order = self._orders[order_id]
        order.status = status
        if settle_tx_hash:
            order.settle_tx_hash = settle_tx_hash

    def set_all_order_statuses(self, status: str) -> None:
        for order_id in self._orders:
            self.set_order_status(order_id, status, settle_tx_hash=f"0xtx{order_id}")

    def get_orders(self) -> List[MockOrder]:
        return list(self._orders.values())

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def reset(self) -> None:
        """Reset mock state."""
        self._quotes.clear()
        self._orders.clear()
        self._orders_by_key.clear()
        self._forced_errors.clear()
        self.calls.clear()

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    async def _before(self, operation: str, **kwargs: Any) -> None:
        self.calls.append((operation, kwargs))
        await self._simulate_latency()

        queued = self._forced_errors.get(operation)
        if queued:
            raise queued.pop(0)

        if random.random() < self._config.network_error_probability:
            raise ExchangeError(
                "Simulated network error",
                code="NETWORK_ERROR",
                is_retryable=True,
            )

    async def _simulate_latency(self) -> None:
        """Simulate network latency."""
        if self._config.max_latency_ms <= 0:
            return
        latency_ms = random.uniform(
            self._config.min_latency_ms,
            self._config.max_latency_ms,
        )
        await asyncio.sleep(latency_ms / 1000)

    def _rate(self, deposit_unit: str, settle_unit: str) -> Decimal:
        rates = self._config.usd_rates
        deposit_usd = rates.get(deposit_unit.lower(), Decimal("1"))
        settle_usd = rates.get(settle_unit.lower(), Decimal("1"))
        return deposit_usd / settle_usd

    def _receipt(self, order: MockOrder) -> OrderReceipt:
        return OrderReceipt(
            order_id=order.order_id,
            deposit_address=order.deposit_address,
            deposit_amount=order.deposit_amount,
            settle_amount=order.settle_amount,
            status=map_external_status(order.status),
            external_status=order.status,
        )
