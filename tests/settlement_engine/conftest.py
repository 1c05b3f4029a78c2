"""
Shared fixtures for Settlement Engine tests.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

import pytest

from settlement_engine import (
    ExchangeClient,
    MockExchangeAdapter,
    MockConfig,
    NettingSummary,
    NetPayment,
    NoOpScheduler,
    Order,
    OrderStatus,
    RecipientPreference,
    RetryPolicy,
    Settlement,
    SettlementStateMachine,
)


EVM_ADDRESSES = {
    "alice": "0x" + "a1" * 20,
    "bob": "0x" + "b2" * 20,
    "charlie": "0x" + "c3" * 20,
    "diana": "0x" + "d4" * 20,
}


async def no_sleep(_seconds: float) -> None:
    return None


def make_client(adapter: MockExchangeAdapter, max_retries: int = 1) -> ExchangeClient:
    return ExchangeClient(
        adapter,
        scheduler=NoOpScheduler(),
        retry_policy=RetryPolicy(max_retries=max_retries, initial_delay_seconds=0.0),
        sleep=no_sleep,
    )


def make_preference(party: str, address: Optional[str] = None, unit: str = "usdc",
                    chain: str = "ethereum", memo: str = "") -> RecipientPreference:
    return RecipientPreference(
        party=party,
        receive_unit=unit,
        receive_chain=chain,
        receive_address=EVM_ADDRESSES.get(party, "") if address is None else address,
        memo=memo,
    )


def make_ready_settlement(
    payments: List[NetPayment],
    preferences: Optional[List[RecipientPreference]] = None,
    settlement_id: str = "stl-1",
) -> Settlement:
    """A settlement already moved to READY with the given payments."""
    settlement = Settlement(
        settlement_id=settlement_id,
        recipient_preferences=list(preferences or []),
    )
    SettlementStateMachine(settlement).mark_ready(NettingSummary(
        net_payments=list(payments),
        original_count=len(payments),
        optimized_count=len(payments),
        rates={"usdc": Decimal("1")},
        rates_timestamp=datetime.utcnow(),
    ))
    return settlement


def make_order(recipient: str, order_id: str, status: OrderStatus = OrderStatus.WAITING) -> Order:
    return Order(
        recipient=recipient,
        external_order_id=order_id,
        status=status,
        deposit_address="0x" + "0" * 40,
        deposit_amount=Decimal("100"),
        deposit_unit="usdc",
        deposit_chain="base",
        settle_amount=Decimal("100"),
        settle_unit="usdc",
        settle_chain="ethereum",
        settle_address=EVM_ADDRESSES.get(recipient, ""),
        quote_id=f"q-{order_id}",
        quote_expires_at=datetime.utcnow() + timedelta(minutes=15),
        payer="dao",
        value_usd=Decimal("100"),
    )


@pytest.fixture
def three_payments() -> List[NetPayment]:
    return [
        NetPayment("dao", "alice", Decimal("100.00")),
        NetPayment("dao", "bob", Decimal("200.00")),
        NetPayment("dao", "charlie", Decimal("300.00")),
    ]


@pytest.fixture
def preferences() -> List[RecipientPreference]:
    return [make_preference(p) for p in ("alice", "bob", "charlie")]


@pytest.fixture
def adapter() -> MockExchangeAdapter:
    return MockExchangeAdapter(MockConfig())


@pytest.fixture
def client(adapter) -> ExchangeClient:
    return make_client(adapter)


@pytest.fixture
def build_client():
    return make_client


@pytest.fixture
def ready_settlement():
    return make_ready_settlement


@pytest.fixture
def preference():
    return make_preference


@pytest.fixture
def order_factory():
    return make_order


@pytest.fixture
def sleep_stub():
    return no_sleep


@pytest.fixture
def addresses():
    return dict(EVM_ADDRESSES)
