"""
Settlement Engine - Settlement State Machine.

============================================================
PURPOSE
============================================================
Manages settlement lifecycle with strict state transitions.

STATE MACHINE:

      DRAFT
        │  netting computed
        ▼
      READY ◄──┐ recompute
        │  ────┘
        │  at least one order created
        ▼
    EXECUTING ──────► FAILED      (any order failed)
        │
        ▼
    COMPLETED                     (every order completed)

INVARIANTS:
- Terminal states are final; history is never overwritten
- An execute that creates zero orders leaves READY untouched
- All transitions are logged

============================================================
"""

import logging
from datetime import datetime
from typing import Optional, Set, Dict, Callable, List, Any
from dataclasses import dataclass, field

from .types import (
    NettingSummary,
    Order,
    Settlement,
    SettlementStateError,
    SettlementStatus,
)


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[SettlementStatus, Set[SettlementStatus]] = {
    SettlementStatus.DRAFT: {
        SettlementStatus.READY,
    },
    SettlementStatus.READY: {
        SettlementStatus.EXECUTING,
    },
    SettlementStatus.EXECUTING: {
        SettlementStatus.COMPLETED,
        SettlementStatus.FAILED,
    },
    # Terminal states - no transitions out
    SettlementStatus.COMPLETED: set(),
    SettlementStatus.FAILED: set(),
}

# Error code when an operation hits a settlement in this status
BLOCKING_STATUS_CODES: Dict[SettlementStatus, str] = {
    SettlementStatus.EXECUTING: "ALREADY_EXECUTING",
    SettlementStatus.COMPLETED: "ALREADY_COMPLETED",
    SettlementStatus.FAILED: "ALREADY_FAILED",
}


# ============================================================
# STATE TRANSITION EVENT
# ============================================================

@dataclass
class StateTransitionEvent:
    """Event representing a state transition."""

    settlement_id: str
    """Settlement ID."""

    from_state: SettlementStatus
    """Previous state."""

    to_state: SettlementStatus
    """New state."""

    timestamp: datetime = field(default_factory=datetime.utcnow)
    """When transition occurred."""

    reason: str = ""
    """Reason for transition."""

    details: Dict[str, Any] = field(default_factory=dict)
    """Additional details."""


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """
    Guard for state transitions.

    Ensures transitions are valid and provides reason for denial.
    """

    @staticmethod
    def can_transition(
        from_state: SettlementStatus,
        to_state: SettlementStatus,
    ) -> tuple[bool, str]:
        """
        Check if transition is allowed.

        Returns:
            Tuple of (allowed, reason)
        """
        if from_state == to_state:
            return True, "Same state"

        if to_state in VALID_TRANSITIONS.get(from_state, set()):
            return True, "Valid transition"

        if from_state.is_terminal():
            return False, f"Cannot transition from terminal state {from_state.value}"

        return False, f"Invalid transition: {from_state.value} -> {to_state.value}"


# ============================================================
# SETTLEMENT STATE MACHINE
# ============================================================

class SettlementStateMachine:
    """
    State machine for the settlement lifecycle.

    The only writer of Settlement.status, netting and orders.
    """

    def __init__(self, settlement: Settlement):
        self._settlement = settlement
        self._history: List[StateTransitionEvent] = []
        self._listeners: List[Callable[[StateTransitionEvent], None]] = []

    @property
    def current_state(self) -> SettlementStatus:
        return self._settlement.status

    @property
    def settlement(self) -> Settlement:
        return self._settlement

    @property
    def history(self) -> List[StateTransitionEvent]:
        return list(self._history)

    def add_listener(self, listener: Callable[[StateTransitionEvent], None]) -> None:
        """Add a transition listener."""
        self._listeners.append(listener)

    def transition_to(
        self,
        target_state: SettlementStatus,
        reason: str = "",
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[StateTransitionEvent]:
        """
        Transition to a new state.

        Returns:
            StateTransitionEvent, or None when already in target_state

        Raises:
            SettlementStateError: If transition is not allowed
        """
        allowed, guard_reason = TransitionGuard.can_transition(self.current_state, target_state)
        if not allowed:
            raise SettlementStateError(
                f"Cannot transition {self._settlement.settlement_id} from "
                f"{self.current_state.value} to {target_state.value}: {guard_reason}",
                code=BLOCKING_STATUS_CODES.get(self.current_state, "INVALID_STATUS"),
            )

        if self.current_state == target_state:
            return None

        event = StateTransitionEvent(
            settlement_id=self._settlement.settlement_id,
            from_state=self.current_state,
            to_state=target_state,
            reason=reason,
            details=details or {},
        )

        self._settlement.status = target_state
        self._settlement.updated_at = event.timestamp
        self._history.append(event)

        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"State listener error: {e}")

        logger.info(
            f"Settlement {self._settlement.settlement_id}: "
            f"{event.from_state.value} -> {event.to_state.value} "
            f"({reason})"
        )
        return event

    # --------------------------------------------------------
    # PRECONDITIONS
    # --------------------------------------------------------

    def ensure_can_compute(self) -> None:
        """Netting may run in draft, or re-run in ready."""
        status = self.current_state
        if status in (SettlementStatus.DRAFT, SettlementStatus.READY):
            return
        raise SettlementStateError(
            f"Settlement {self._settlement.settlement_id} is {status.value}; "
            f"netting cannot be recomputed",
            code=BLOCKING_STATUS_CODES.get(status, "INVALID_STATUS"),
        )

    def ensure_can_execute(self) -> None:
        """Execute requires ready and at least one net payment."""
        status = self.current_state
        settlement_id = self._settlement.settlement_id
        if status in BLOCKING_STATUS_CODES:
            raise SettlementStateError(
                f"Settlement {settlement_id} is already {status.value}",
                code=BLOCKING_STATUS_CODES[status],
            )
        if status != SettlementStatus.READY:
            raise SettlementStateError(
                f"Settlement must be in 'ready' status to execute. "
                f"Current status: {status.value}",
                code="INVALID_STATUS",
            )
        if not self._settlement.net_payments:
            raise SettlementStateError(
                f"Settlement {settlement_id} has no net payments",
                code="NO_PAYMENTS",
            )

    # --------------------------------------------------------
    # CONVENIENCE METHODS
    # --------------------------------------------------------

    def mark_ready(self, netting: NettingSummary) -> Optional[StateTransitionEvent]:
        """Store netting output and move to READY."""
        self.ensure_can_compute()
        recompute = self.current_state == SettlementStatus.READY
        self._settlement.netting = netting
        self._settlement.updated_at = datetime.utcnow()
        event = self.transition_to(
            SettlementStatus.READY,
            "Netting computed",
            details={
                "original_count": netting.original_count,
                "optimized_count": netting.optimized_count,
            },
        )
        if recompute:
            logger.info(
                f"Settlement {self._settlement.settlement_id}: netting recomputed "
                f"({netting.optimized_count} payments)"
            )
        return event

    def mark_executing(self, orders: List[Order]) -> Optional[StateTransitionEvent]:
        """Store created orders and move to EXECUTING."""
        if not orders:
            raise SettlementStateError(
                f"Settlement {self._settlement.settlement_id} cannot execute with no orders",
                code="INVALID_STATUS",
            )
        self.ensure_can_execute()
        self._settlement.orders = list(orders)
        return self.transition_to(
            SettlementStatus.EXECUTING,
            f"{len(orders)} orders created",
            details={"order_ids": [o.external_order_id for o in orders]},
        )

    def mark_completed(self, reason: str = "All orders completed") -> Optional[StateTransitionEvent]:
        return self.transition_to(SettlementStatus.COMPLETED, reason)

    def mark_failed(self, reason: str = "Order failed") -> Optional[StateTransitionEvent]:
        return self.transition_to(SettlementStatus.FAILED, reason)
