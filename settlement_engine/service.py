"""
Settlement Engine - Settlement Service.

============================================================
PURPOSE
============================================================
Main entry point for the Settlement Engine.

Owns one exchange client (and therefore one global rate
limiter) shared by every settlement, and coordinates:

    create_settlement ──► compute_netting ──► execute_settlement
                                                    │
                                                    ▼
                                              poll_status (repeat)
                                                    │
                                                    ▼
                                               build_proof

============================================================
DESIGN PRINCIPLES
============================================================
- One lock per settlement: compute, execute and poll on the
  same settlement never interleave
- Unrelated settlements run concurrently and share only the
  rate-limit channels
- Storage is the caller's concern; settlements are held in
  memory for the life of the service

============================================================
"""

import asyncio
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from .address_validation import AddressValidator
from .adapters import ExchangeAdapter, SideShiftAdapter
from .adapters.base import CoinInfo
from .config import SettlementEngineConfig
from .exchange_client import ExchangeClient
from .netting import NettingResult, PriceFunction, compute_netting
from .orchestrator import ExchangeOrderOrchestrator, ExecutionResult
from .poller import PollResult, StatusPoller
from .price_oracle import CoinGeckoPriceOracle
from .rate_limit import RequestScheduler
from .retry import RetryPolicy
from .schemas import parse_settlement_request
from .state_machine import SettlementStateMachine, StateTransitionEvent
from .types import (
    NettingSummary,
    Obligation,
    OrderStatus,
    RecipientPreference,
    Settlement,
    SettlementEngineError,
    SettlementStatus,
)


logger = logging.getLogger(__name__)


# ============================================================
# SETTLEMENT SERVICE
# ============================================================

class SettlementService:
    """
    Facade over netting, order orchestration and polling.

    Collaborators are built from config unless injected.
    """

    def __init__(
        self,
        config: Optional[SettlementEngineConfig] = None,
        adapter: Optional[ExchangeAdapter] = None,
        client: Optional[ExchangeClient] = None,
        scheduler=None,
        price_fn: Optional[PriceFunction] = None,
        address_validator: Optional[AddressValidator] = None,
    ):
        """
        Initialize settlement service.

        Args:
            config: Engine configuration
            adapter: Exchange adapter (SideShift by default)
            client: Prebuilt ExchangeClient; overrides adapter/scheduler
            scheduler: Rate-limit scheduler (NoOpScheduler in tests)
            price_fn: unit -> USD rate (CoinGecko by default)
            address_validator: Recipient address validator
        """
        self._config = config or SettlementEngineConfig()

        if client is None:
            adapter = adapter or SideShiftAdapter(self._config.exchange, self._config.timeout)
            client = ExchangeClient(
                adapter,
                scheduler=scheduler or RequestScheduler(self._config.rate_limit),
                retry_policy=RetryPolicy.from_config(self._config.retry),
            )
        self._client = client

        if price_fn is None:
            price_fn = CoinGeckoPriceOracle(self._config.price_oracle, self._config.timeout)
        self._price_fn = price_fn

        self._orchestrator = ExchangeOrderOrchestrator(
            client,
            address_validator=address_validator,
            config=self._config.exchange,
        )
        self._poller = StatusPoller(client)

        self._settlements: Dict[str, Settlement] = {}
        self._machines: Dict[str, SettlementStateMachine] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        self._stats = {
            "settlements_created": 0,
            "nettings_computed": 0,
            "executions": 0,
            "orders_created": 0,
            "order_failures": 0,
        }

    @property
    def client(self) -> ExchangeClient:
        return self._client

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        logger.info(f"Starting Settlement Service ({self._client.exchange_id})...")
        await self._client.adapter.connect()

    async def close(self) -> None:
        logger.info("Stopping Settlement Service...")
        await self._client.close()

    # --------------------------------------------------------
    # SETTLEMENTS
    # --------------------------------------------------------

    def create_settlement(
        self,
        obligations: List[Obligation],
        preferences: Optional[List[RecipientPreference]] = None,
        name: str = "",
        settlement_id: Optional[str] = None,
    ) -> Settlement:
        """Register a new settlement in DRAFT."""
        settlement = Settlement(
            settlement_id=settlement_id or uuid.uuid4().hex,
            obligations=list(obligations),
            recipient_preferences=list(preferences or []),
            name=name,
        )
        self._register(settlement)
        self._stats["settlements_created"] += 1
        logger.info(
            f"Settlement {settlement.settlement_id} created with "
            f"{len(settlement.obligations)} obligations"
        )
        return settlement

    def create_from_request(self, payload: Mapping[str, Any]) -> Settlement:
        """
        Validate a raw request payload and register the settlement.

        Raises:
            InvalidObligationError: Payload failed validation
        """
        request = parse_settlement_request(payload)
        return self.create_settlement(
            request.to_obligations(),
            request.to_preferences(),
            name=request.name or "",
        )

    def get_settlement(self, settlement_id: str) -> Optional[Settlement]:
        return self._settlements.get(settlement_id)

    def get_history(self, settlement_id: str) -> List[StateTransitionEvent]:
        machine = self._machines.get(settlement_id)
        return machine.history if machine else []

    def get_statistics(self) -> Dict[str, int]:
        return dict(self._stats)

    # --------------------------------------------------------
    # NETTING
    # --------------------------------------------------------

    async def compute_netting(self, settlement: Settlement) -> NettingResult:
        """
        Net the settlement's obligations and move it to READY.

        Allowed in DRAFT, and in READY to recompute.

        Raises:
            SettlementStateError: Settlement is executing or terminal
        """
        machine = self._register(settlement)
        async with self._lock_for(settlement):
            machine.ensure_can_compute()

            oracle = self._config.price_oracle
            result = await compute_netting(
                settlement.obligations,
                price_fn=self._price_fn,
                fallback_rates=oracle.fallback_rates,
                default_rate=oracle.default_rate,
            )

            machine.mark_ready(NettingSummary(
                net_payments=result.net_payments,
                original_count=result.original_count,
                optimized_count=result.optimized_count,
                rates=dict(result.rates),
                rates_timestamp=result.rates_timestamp,
                savings=result.savings.to_dict() if result.savings else {},
            ))
            self._stats["nettings_computed"] += 1
            return result

    # --------------------------------------------------------
    # EXECUTION
    # --------------------------------------------------------

    async def execute_settlement(
        self,
        settlement: Settlement,
        caller_ip: str = "",
        preferences: Optional[List[RecipientPreference]] = None,
    ) -> ExecutionResult:
        """
        Create exchange orders for a READY settlement.

        Raises:
            SettlementStateError: Not READY, already executing/terminal,
                or no net payments
            ComplianceDeniedError: Caller is in a restricted jurisdiction
            AllOrdersFailedError: No order could be created
        """
        machine = self._register(settlement)
        caller_ip = self._config.exchange.force_user_ip or caller_ip
        async with self._lock_for(settlement):
            self._stats["executions"] += 1
            try:
                result = await self._orchestrator.execute_settlement(
                    settlement,
                    preferences=preferences,
                    caller_ip=caller_ip,
                    state_machine=machine,
                )
            except SettlementEngineError as e:
                failures = getattr(e, "failures", None)
                if failures:
                    self._stats["order_failures"] += len(failures)
                raise

            self._stats["orders_created"] += result.success_count
            self._stats["order_failures"] += result.failure_count
            return result

    async def poll_status(self, settlement: Settlement, caller_ip: str = "") -> PollResult:
        """Refresh order status and converge the settlement."""
        machine = self._register(settlement)
        caller_ip = self._config.exchange.force_user_ip or caller_ip
        async with self._lock_for(settlement):
            return await self._poller.poll_settlement(settlement, caller_ip, machine)

    async def cancel_order(self, order_id: str) -> bool:
        """Cancel an exchange order that has not received its deposit."""
        cancelled = await self._client.cancel_order(order_id)
        if cancelled:
            logger.info(f"Order {order_id} cancelled")
        else:
            logger.warning(f"Order {order_id} could not be cancelled")
        return cancelled

    async def get_supported_coins(self) -> List[CoinInfo]:
        return await self._client.get_coins()

    # --------------------------------------------------------
    # PROOF
    # --------------------------------------------------------

    def build_proof(self, settlement: Settlement) -> Dict[str, Any]:
        """
        Summary of what each recipient received.

        Only completed orders count toward the total.
        """
        recipients = []
        total = Decimal("0")
        for order in settlement.orders:
            completed = order.status == OrderStatus.COMPLETED
            if completed:
                total += order.value_usd
            recipients.append({
                "name": order.recipient,
                "received_amount": str(order.settle_amount),
                "token": order.settle_unit,
                "chain": order.settle_chain,
                "order_id": order.external_order_id,
                "tx_hash": order.settle_tx_hash,
                "status": order.status.value,
                "value_usd": str(order.value_usd),
            })

        return {
            "settlement_id": settlement.settlement_id,
            "name": settlement.name,
            "status": settlement.status.value,
            "completed": settlement.status == SettlementStatus.COMPLETED,
            "recipients": recipients,
            "total_settled_usd": str(total),
            "generated_at": datetime.utcnow().isoformat(),
        }

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _register(self, settlement: Settlement) -> SettlementStateMachine:
        settlement_id = settlement.settlement_id
        machine = self._machines.get(settlement_id)
        if machine is None or machine.settlement is not settlement:
            machine = SettlementStateMachine(settlement)
            self._settlements[settlement_id] = settlement
            self._machines[settlement_id] = machine
        return machine

    def _lock_for(self, settlement: Settlement) -> asyncio.Lock:
        lock = self._locks.get(settlement.settlement_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[settlement.settlement_id] = lock
        return lock
