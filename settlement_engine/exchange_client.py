"""
Settlement Engine - Exchange Client.

============================================================
RESPONSIBILITY
============================================================
Throttled, retrying front for an ExchangeAdapter.

- Routes every call through its rate-limit channel
- Retries rate-limit and server errors with backoff
- Provides the exchange primitives the orchestrator
  and poller consume

============================================================
CHANNELS
============================================================
- quotes: request_quote()
- orders: create_order(), cancel_order()
- reads:  check_compliance(), get_pair_bounds(),
          get_order_status(), get_coins()

Every retry attempt takes a fresh slot on its channel.
create_order() accepts a prepare hook that runs inside the
slot, so time-sensitive checks see the actual submit time.

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, List, Optional, TypeVar

from .adapters.base import (
    ExchangeAdapter,
    PairBounds,
    QuoteRequest,
    Quote,
    CreateOrderRequest,
    OrderReceipt,
    OrderStatusResponse,
    CoinInfo,
)
from .rate_limit import RequestScheduler
from .retry import RetryPolicy, retry
from .types import ComplianceStatus


logger = logging.getLogger(__name__)

T = TypeVar("T")

QUOTES = "quotes"
ORDERS = "orders"
READS = "reads"


class ExchangeClient:
    """
    Exchange primitives with global throttling and bounded retry.

    One client (and one scheduler) should be shared by every
    settlement in the process.
    """

    def __init__(
        self,
        adapter: ExchangeAdapter,
        scheduler=None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize client.

        Args:
            adapter: Exchange adapter doing the wire calls
            scheduler: RequestScheduler (or NoOpScheduler in tests)
            retry_policy: Retry schedule and classification
            sleep: Sleep used between retries
        """
        self._adapter = adapter
        self._scheduler = scheduler or RequestScheduler()
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @property
    def adapter(self) -> ExchangeAdapter:
        return self._adapter

    @property
    def exchange_id(self) -> str:
        return self._adapter.exchange_id

    async def _call(
        self,
        channel: str,
        description: str,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        return await retry(
            lambda: self._scheduler.run(channel, operation),
            self._retry_policy,
            sleep=self._sleep,
            description=description,
        )

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    async def check_compliance(self, caller_ip: str) -> ComplianceStatus:
        return await self._call(
            READS,
            "check_compliance",
            lambda: self._adapter.check_compliance(caller_ip),
        )

    async def get_pair_bounds(
        self,
        deposit_unit: str,
        deposit_chain: str,
        settle_unit: str,
        settle_chain: str,
        amount: Optional[Decimal] = None,
        caller_ip: str = "",
    ) -> PairBounds:
        return await self._call(
            READS,
            f"get_pair_bounds {deposit_unit}-{deposit_chain}/{settle_unit}-{settle_chain}",
            lambda: self._adapter.get_pair_bounds(
                deposit_unit, deposit_chain, settle_unit, settle_chain, amount, caller_ip,
            ),
        )

    async def get_order_status(self, order_id: str, caller_ip: str = "") -> OrderStatusResponse:
        return await self._call(
            READS,
            f"get_order_status {order_id}",
            lambda: self._adapter.get_order_status(order_id, caller_ip),
        )

    async def get_coins(self) -> List[CoinInfo]:
        return await self._call(READS, "get_coins", self._adapter.get_coins)

    # --------------------------------------------------------
    # ORDER OPERATIONS
    # --------------------------------------------------------

    async def request_quote(self, request: QuoteRequest) -> Quote:
        return await self._call(
            QUOTES,
            f"request_quote {request.deposit_unit}->{request.settle_unit}",
            lambda: self._adapter.request_quote(request),
        )

    async def create_order(
        self,
        request: CreateOrderRequest,
        prepare: Optional[Callable[[CreateOrderRequest], CreateOrderRequest]] = None,
    ) -> OrderReceipt:
        """
        Create an order on the orders channel.

        Args:
            request: Order to submit
            prepare: Called inside the channel slot before every
                attempt; returns the request to send or raises to
                abandon the order without calling the exchange
        """
        async def submit() -> OrderReceipt:
            to_send = prepare(request) if prepare is not None else request
            return await self._adapter.create_order(to_send)

        return await self._call(
            ORDERS,
            f"create_order quote={request.quote_id}",
            submit,
        )

    async def cancel_order(self, order_id: str) -> bool:
        return await self._call(
            ORDERS,
            f"cancel_order {order_id}",
            lambda: self._adapter.cancel_order(order_id),
        )

    async def close(self) -> None:
        await self._adapter.disconnect()
