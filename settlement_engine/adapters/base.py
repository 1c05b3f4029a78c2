"""
Settlement Engine - Exchange Adapter Base.

============================================================
PURPOSE
============================================================
Abstract interface for fixed-rate exchange adapters.

DESIGN PRINCIPLES:
- Exchange-agnostic interface
- Clean separation from orchestration logic
- Fully testable with mock adapters

============================================================
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from decimal import Decimal

from ..types import ComplianceStatus, OrderStatus


logger = logging.getLogger(__name__)


# ============================================================
# STATUS MAPPING
# ============================================================

EXTERNAL_STATUS_MAPPING: Dict[str, OrderStatus] = {
    "waiting": OrderStatus.WAITING,
    "pending": OrderStatus.CONFIRMING,
    "processing": OrderStatus.EXCHANGING,
    "review": OrderStatus.EXCHANGING,
    "settling": OrderStatus.EXCHANGING,
    "multiple": OrderStatus.EXCHANGING,
    "settled": OrderStatus.COMPLETED,
    "completed": OrderStatus.COMPLETED,
    "refund": OrderStatus.FAILED,
    "refunding": OrderStatus.FAILED,
    "refunded": OrderStatus.FAILED,
    "expired": OrderStatus.FAILED,
    "failed": OrderStatus.FAILED,
}


def map_external_status(status: Optional[str]) -> OrderStatus:
    """
    Map an exchange status string to OrderStatus.

    Unknown statuses are logged and treated as WAITING so that
    the poller never invents a terminal state.

    Args:
        status: Exchange status string

    Returns:
        OrderStatus enum value
    """
    key = (status or "").strip().lower()
    mapped = EXTERNAL_STATUS_MAPPING.get(key)
    if mapped is None:
        logger.warning(f"Unknown external order status '{status}', treating as waiting")
        return OrderStatus.WAITING
    return mapped


# ============================================================
# ADAPTER REQUEST/RESPONSE TYPES
# ============================================================

@dataclass
class PairBounds:
    """Tradeable range for a deposit/settle pair."""

    min_amount: Decimal
    """Minimum deposit amount."""

    max_amount: Decimal
    """Maximum deposit amount."""

    rate: Decimal
    """Indicative settle units per deposit unit."""

    raw_response: Dict[str, Any] = field(default_factory=dict)

    def contains(self, amount: Decimal) -> bool:
        return self.min_amount <= amount <= self.max_amount


@dataclass
class QuoteRequest:
    """Request for a fixed-rate quote."""

    deposit_unit: str
    deposit_chain: str
    settle_unit: str
    settle_chain: str
    deposit_amount: Decimal
    caller_ip: str = ""


@dataclass
class Quote:
    """Fixed-rate quote returned by the exchange."""

    quote_id: str
    """Exchange quote id."""

    deposit_amount: Decimal
    settle_amount: Decimal
    expires_at: datetime
    """Hard deadline for creating an order from this quote."""

    rate: Optional[Decimal] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CreateOrderRequest:
    """Request to create a fixed-rate order from a quote."""

    quote_id: str
    settle_address: str
    idempotency_key: str
    """Sent as the external id so repeated submissions are recognizable."""

    settle_memo: str = ""
    refund_address: str = ""
    refund_memo: str = ""
    caller_ip: str = ""


@dataclass
class OrderReceipt:
    """Response from order creation."""

    order_id: str
    """Exchange-assigned order id."""

    deposit_address: str
    deposit_amount: Decimal
    status: OrderStatus
    external_status: str = ""
    deposit_memo: str = ""
    settle_amount: Optional[Decimal] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class OrderStatusResponse:
    """Response from an order status read."""

    order_id: str
    status: OrderStatus
    external_status: str = ""
    settle_tx_hash: str = ""
    raw_response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CoinInfo:
    """A coin the exchange supports."""

    coin: str
    """Coin symbol, lowercase."""

    name: str = ""
    networks: List[str] = field(default_factory=list)
    has_memo: bool = False


# ============================================================
# ABSTRACT EXCHANGE ADAPTER
# ============================================================

class ExchangeAdapter(ABC):
    """
    Abstract interface for exchange adapters.

    Implementations:
    - SideShiftAdapter: Real SideShift v2 API
    - MockExchangeAdapter: For testing
    """

    @property
    @abstractmethod
    def exchange_id(self) -> str:
        """Get exchange identifier."""
        pass

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """Open any underlying resources."""
        pass

    async def disconnect(self) -> None:
        """Release any underlying resources."""
        pass

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    @abstractmethod
    async def check_compliance(self, caller_ip: str) -> ComplianceStatus:
        """
        Check whether the caller may create orders.

        Returns:
            ALLOWED or DENIED

        Raises:
            ExchangeError: If the check itself could not be performed
        """
        pass

    @abstractmethod
    async def get_pair_bounds(
        self,
        deposit_unit: str,
        deposit_chain: str,
        settle_unit: str,
        settle_chain: str,
        amount: Optional[Decimal] = None,
        caller_ip: str = "",
    ) -> PairBounds:
        """
        Get min/max/rate for a pair.

        Raises:
            ExchangeError: If the pair is unsupported or the read fails
        """
        pass

    @abstractmethod
    async def get_order_status(self, order_id: str, caller_ip: str = "") -> OrderStatusResponse:
        """
        Get current status of an order.

        Raises:
            ExchangeError: If the read fails
        """
        pass

    @abstractmethod
    async def get_coins(self) -> List[CoinInfo]:
        """List supported coins."""
        pass

    # --------------------------------------------------------
    # ORDER OPERATIONS
    # --------------------------------------------------------

    @abstractmethod
    async def request_quote(self, request: QuoteRequest) -> Quote:
        """
        Request a fixed-rate quote for an exact deposit amount.

        Raises:
            ExchangeError: If the quote is refused
        """
        pass

    @abstractmethod
    async def create_order(self, request: CreateOrderRequest) -> OrderReceipt:
        """
        Create an order from a quote.

        Raises:
            ExchangeError: If creation fails
        """
        pass

    @abstractmethod
    async def cancel_order(self, order_id: str) -> bool:
        """
        Cancel an order that has not received a deposit.

        Returns:
            True if the exchange accepted the cancellation
        """
        pass
