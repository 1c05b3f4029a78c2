"""
Settlement Engine - Status Convergence Poller.

============================================================
PURPOSE
============================================================
Reads external order status and converges the settlement.

RULES:
- Status strings are mapped into the closed OrderStatus set
- COMPLETED only when every order is completed
- FAILED as soon as any order is failed (first failure wins)
- A read error keeps the order's last known status
- A terminal settlement is returned as stored; no reads
- The poller never invents a timeout status; the caller
  decides how long to keep polling

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .exchange_client import ExchangeClient
from .state_machine import SettlementStateMachine
from .types import Order, OrderStatus, Settlement, SettlementStatus


logger = logging.getLogger(__name__)


@dataclass
class PollResult:
    """Snapshot after one polling pass."""

    orders: List[Order]
    all_terminal: bool
    any_failed: bool
    all_completed: bool

    settlement_status: Optional[SettlementStatus] = None
    """Settlement status after the pass, when polling a settlement."""

    errors: Dict[str, str] = field(default_factory=dict)
    """external_order_id -> read error, for orders that could not be read."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orders": [o.to_dict() for o in self.orders],
            "all_terminal": self.all_terminal,
            "any_failed": self.any_failed,
            "all_completed": self.all_completed,
            "settlement_status": self.settlement_status.value if self.settlement_status else None,
            "errors": dict(self.errors),
        }


def summarize(orders: List[Order]) -> Dict[str, bool]:
    """Aggregate flags over a list of orders."""
    statuses = [o.status for o in orders]
    return {
        "all_terminal": bool(statuses) and all(s.is_terminal() for s in statuses),
        "any_failed": any(s == OrderStatus.FAILED for s in statuses),
        "all_completed": bool(statuses) and all(s == OrderStatus.COMPLETED for s in statuses),
    }


class StatusPoller:
    """
    Polls order status through the throttled ExchangeClient.
    """

    def __init__(
        self,
        client: ExchangeClient,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._client = client
        self._clock = clock

    async def _refresh(self, order: Order, caller_ip: str) -> Optional[str]:
        if order.status.is_terminal():
            return None
        try:
            response = await self._client.get_order_status(order.external_order_id, caller_ip)
        except Exception as e:
            logger.warning(
                f"Status read failed for order {order.external_order_id}, "
                f"keeping {order.status.value}: {e}"
            )
            return str(e)

        now = self._clock()
        order.last_polled_at = now
        order.external_status = response.external_status
        if response.settle_tx_hash:
            order.settle_tx_hash = response.settle_tx_hash

        if response.status != order.status:
            logger.info(
                f"Order {order.external_order_id} ({order.recipient}): "
                f"{order.status.value} -> {response.status.value}"
            )
            order.status = response.status
            if response.status == OrderStatus.COMPLETED:
                order.completed_at = now
            elif response.status == OrderStatus.FAILED:
                order.failure_reason = f"Exchange reported {response.external_status}"
        return None

    async def poll_status(self, orders: List[Order], caller_ip: str = "") -> PollResult:
        """
        Refresh every non-terminal order in place.

        Returns:
            PollResult with all_terminal / any_failed flags
        """
        errors = await asyncio.gather(*(self._refresh(o, caller_ip) for o in orders))
        flags = summarize(orders)
        return PollResult(
            orders=list(orders),
            errors={
                o.external_order_id: err
                for o, err in zip(orders, errors) if err is not None
            },
            **flags,
        )

    async def poll_settlement(
        self,
        settlement: Settlement,
        caller_ip: str = "",
        state_machine: Optional[SettlementStateMachine] = None,
    ) -> PollResult:
        """
        Poll an executing settlement and converge its status.

        Terminal settlements are returned unchanged with no reads.
        """
        if settlement.status != SettlementStatus.EXECUTING:
            flags = summarize(settlement.orders)
            return PollResult(
                orders=list(settlement.orders),
                settlement_status=settlement.status,
                **flags,
            )

        machine = state_machine or SettlementStateMachine(settlement)
        result = await self.poll_status(settlement.orders, caller_ip)

        if result.any_failed:
            failed = [o.recipient for o in settlement.orders if o.status == OrderStatus.FAILED]
            machine.mark_failed(f"Orders failed for: {', '.join(failed)}")
        elif result.all_completed:
            machine.mark_completed()

        result.settlement_status = settlement.status
        return result
