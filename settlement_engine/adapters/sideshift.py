"""
Settlement Engine - SideShift Adapter.

============================================================
PURPOSE
============================================================
Production adapter for the SideShift v2 REST API.

FEATURES:
- Secret authentication (x-sideshift-secret)
- Caller IP forwarding (x-user-ip)
- Error mapping (HTTP status -> ExchangeError)
- Pair bounds and coin list caching
- Connection management

Throttling and retries are NOT done here; the throttled
ExchangeClient wraps this adapter.

============================================================
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Tuple

import aiohttp

from ..types import ComplianceStatus, ExchangeError
from ..errors import classify_http_status, code_for_http_status, RetryEligibility
from ..config import ExchangeConfig, TimeoutConfig
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
from .logging_utils import AdapterLogger


logger = logging.getLogger(__name__)


def _decimal(value: Any, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal(default)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - (parsed.utcoffset() or timedelta(0))
    return parsed


# ============================================================
# SIDESHIFT ADAPTER
# ============================================================

class SideShiftAdapter(ExchangeAdapter):
    """
    SideShift v2 exchange adapter.

    Implements the ExchangeAdapter interface for fixed-rate shifts.
    """

    def __init__(
        self,
        config: Optional[ExchangeConfig] = None,
        timeout_config: Optional[TimeoutConfig] = None,
    ):
        """
        Initialize SideShift adapter.

        Args:
            config: Exchange configuration
            timeout_config: Timeout configuration
        """
        self._config = config or ExchangeConfig()
        self._config.load_credentials()
        self._timeout_config = timeout_config or TimeoutConfig()
        self._rest_url = self._config.rest_url.rstrip("/")

        # Session
        self._session: Optional[aiohttp.ClientSession] = None
        self._log = AdapterLogger(self.exchange_id)

        # Caches: key -> (expires_at_monotonic, value)
        self._pair_cache: Dict[Tuple[str, ...], Tuple[float, PairBounds]] = {}
        self._coins_cache: Optional[Tuple[float, List[CoinInfo]]] = None

    @property
    def exchange_id(self) -> str:
        return "sideshift"

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self.is_connected:
            return
        timeout = aiohttp.ClientTimeout(
            connect=self._timeout_config.connection_timeout_seconds,
            total=self._timeout_config.read_timeout_seconds,
        )
        self._session = aiohttp.ClientSession(timeout=timeout)
        logger.info(f"SideShift adapter connected to {self._rest_url}")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.info("SideShift adapter disconnected")

    # --------------------------------------------------------
    # READS
    # --------------------------------------------------------

    async def check_compliance(self, caller_ip: str) -> ComplianceStatus:
        try:
            data = await self._request(
                "GET", "/permissions", operation="check_compliance", caller_ip=caller_ip,
            )
        except ExchangeError as e:
            if e.http_status == 403:
                return ComplianceStatus.DENIED
            raise
        if isinstance(data, dict) and data.get("createShift") is False:
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
        from_id = self._coin_network(deposit_unit, deposit_chain)
        to_id = self._coin_network(settle_unit, settle_chain)
        cache_key = (from_id, to_id, str(amount) if amount is not None else "")

        cached = self._pair_cache.get(cache_key)
        if cached is not None and cached[0] > time.monotonic():
            return cached[1]

        params: Dict[str, Any] = {"commissionRate": str(self._config.commission_rate)}
        if self._config.affiliate_id:
            params["affiliateId"] = self._config.affiliate_id
        if amount is not None:
            params["amount"] = str(amount)

        data = await self._request(
            "GET",
            f"/pair/{from_id}/{to_id}",
            operation="get_pair_bounds",
            params=params,
            caller_ip=caller_ip,
        )
        bounds = PairBounds(
            min_amount=_decimal(data.get("min")),
            max_amount=_decimal(data.get("max"), default="Infinity"),
            rate=_decimal(data.get("rate")),
            raw_response=data,
        )
        self._pair_cache[cache_key] = (
            time.monotonic() + self._config.pair_cache_ttl_seconds,
            bounds,
        )
        return bounds

    async def get_order_status(self, order_id: str, caller_ip: str = "") -> OrderStatusResponse:
        data = await self._request(
            "GET", f"/shifts/{order_id}", operation="get_order_status", caller_ip=caller_ip,
        )
        external_status = str(data.get("status", ""))
        return OrderStatusResponse(
            order_id=str(data.get("id", order_id)),
            status=map_external_status(external_status),
            external_status=external_status,
            settle_tx_hash=data.get("settleHash") or "",
            raw_response=data,
        )

    async def get_coins(self) -> List[CoinInfo]:
        if self._coins_cache is not None and self._coins_cache[0] > time.monotonic():
            return self._coins_cache[1]

        data = await self._request("GET", "/coins", operation="get_coins")
        coins = [
            CoinInfo(
                coin=str(item.get("coin", "")).lower(),
                name=item.get("name", ""),
                networks=list(item.get("networks", [])),
                has_memo=bool(item.get("hasMemo", False)),
            )
            for item in (data or [])
        ]
        self._coins_cache = (time.monotonic() + self._config.coins_cache_ttl_seconds, coins)
        return coins

    # --------------------------------------------------------
    # ORDER OPERATIONS
    # --------------------------------------------------------

    async def request_quote(self, request: QuoteRequest) -> Quote:
        body = {
            "depositCoin": request.deposit_unit.lower(),
            "depositNetwork": self._network(request.deposit_chain),
            "settleCoin": request.settle_unit.lower(),
            "settleNetwork": self._network(request.settle_chain),
            "depositAmount": str(request.deposit_amount),
            "settleAmount": None,
            "commissionRate": str(self._config.commission_rate),
        }
        if self._config.affiliate_id:
            body["affiliateId"] = self._config.affiliate_id

        data = await self._request(
            "POST", "/quotes", operation="request_quote", body=body, caller_ip=request.caller_ip,
        )
        expires_at = _parse_timestamp(data.get("expiresAt")) or (
            datetime.utcnow() + timedelta(seconds=self._config.quote_lifetime_seconds)
        )
        return Quote(
            quote_id=str(data["id"]),
            deposit_amount=_decimal(data.get("depositAmount"), str(request.deposit_amount)),
            settle_amount=_decimal(data.get("settleAmount")),
            expires_at=expires_at,
            rate=_decimal(data.get("rate")) if data.get("rate") is not None else None,
            raw_response=data,
        )

    async def create_order(self, request: CreateOrderRequest) -> OrderReceipt:
        body: Dict[str, Any] = {
            "quoteId": request.quote_id,
            "settleAddress": request.settle_address,
            "externalId": request.idempotency_key,
        }
        if self._config.affiliate_id:
            body["affiliateId"] = self._config.affiliate_id
        if request.settle_memo:
            body["settleMemo"] = request.settle_memo
        if request.refund_address:
            body["refundAddress"] = request.refund_address
        if request.refund_memo:
            body["refundMemo"] = request.refund_memo

        data = await self._request(
            "POST", "/shifts/fixed", operation="create_order", body=body, caller_ip=request.caller_ip,
        )
        external_status = str(data.get("status") or "waiting")
        self._log.info(f"Shift {data.get('id')} created for quote {request.quote_id}")
        return OrderReceipt(
            order_id=str(data["id"]),
            deposit_address=data.get("depositAddress", ""),
            deposit_memo=data.get("depositMemo") or "",
            deposit_amount=_decimal(data.get("depositAmount")),
            settle_amount=_decimal(data.get("settleAmount")) if data.get("settleAmount") else None,
            status=map_external_status(external_status),
            external_status=external_status,
            raw_response=data,
        )

    async def cancel_order(self, order_id: str) -> bool:
        await self._request(
            "POST", "/cancel-order", operation="cancel_order", body={"orderId": order_id},
        )
        return True

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _network(self, chain: str) -> str:
        return (chain or self._config.default_network).lower()

    def _coin_network(self, unit: str, chain: str) -> str:
        return f"{unit.lower()}-{self._network(chain)}"

    def _headers(self, caller_ip: str) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._config.secret:
            headers["x-sideshift-secret"] = self._config.secret
        ip = self._config.force_user_ip or caller_ip
        if ip:
            headers["x-user-ip"] = ip
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        caller_ip: str = "",
    ) -> Any:
        """Make API request."""
        if not self.is_connected:
            await self.connect()

        url = f"{self._rest_url}{path}"
        headers = self._headers(caller_ip)
        if body is not None:
            body = {k: v for k, v in body.items() if v is not None}
        request_id = self._log.log_request(operation, method, path, headers, params, body)
        started = time.monotonic()

        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=body,
                headers=headers,
            ) as response:
                latency_ms = (time.monotonic() - started) * 1000
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = {}

                if response.status >= 400:
                    message = self._error_message(data) or response.reason or "Unknown error"
                    self._log.log_response(
                        operation, request_id, response.status, latency_ms, False, message,
                    )
                    raise self._map_error(response.status, message)

                self._log.log_response(operation, request_id, response.status, latency_ms, True)
                return data

        except aiohttp.ClientError as e:
            raise ExchangeError(
                f"Network error: {e}",
                code="NETWORK_ERROR",
                category="NETWORK",
                is_retryable=True,
            )
        except asyncio.TimeoutError:
            raise ExchangeError(
                "Request timeout",
                code="NETWORK_ERROR",
                category="NETWORK",
                is_retryable=True,
            )

    @staticmethod
    def _error_message(data: Any) -> str:
        if not isinstance(data, dict):
            return ""
        error = data.get("error")
        if isinstance(error, dict):
            return str(error.get("message", ""))
        if error:
            return str(error)
        return str(data.get("message", ""))

    @staticmethod
    def _map_error(status: int, message: str) -> ExchangeError:
        category, eligibility = classify_http_status(status)
        return ExchangeError(
            message,
            code=code_for_http_status(status),
            category=category.value,
            http_status=status,
            is_retryable=eligibility != RetryEligibility.NO_RETRY,
        )
