"""
Exchange Order Orchestrator Tests.

============================================================
PURPOSE
============================================================
Tests for turning net payments into exchange orders.

TEST CATEGORIES:
- Partial failure isolation
- All-fail rejection
- Compliance gate (deny, 403, fail open)
- Pair bounds, quotes, retries
- Idempotency keys

============================================================
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from settlement_engine import (
    AddressCheck,
    AllOrdersFailedError,
    ChannelLimit,
    ComplianceDeniedError,
    ExchangeClient,
    ExchangeError,
    ExchangeOrderOrchestrator,
    MockConfig,
    MockExchangeAdapter,
    NetPayment,
    OrderStatus,
    RateLimitConfig,
    RequestScheduler,
    RetryPolicy,
    SettlementStateError,
    SettlementStatus,
    make_idempotency_key,
)


class ExplodingValidator:
    """Validator that raises for one party's address."""

    def __init__(self, bad_address: str):
        self.bad_address = bad_address

    async def validate_address(self, unit, chain, address, memo=None):
        if address == self.bad_address:
            raise RuntimeError("validator crashed")
        return AddressCheck(ok=True)


class GatedValidator:
    """Validator that holds one party's address until the gate opens."""

    def __init__(self, slow_address: str, gate: asyncio.Event):
        self.slow_address = slow_address
        self.gate = gate

    async def validate_address(self, unit, chain, address, memo=None):
        if address == self.slow_address:
            await self.gate.wait()
        return AddressCheck(ok=True)


class SteppedClock:
    """Shared fake time for the scheduler, the exchange and the orchestrator."""

    def __init__(self):
        self.base = datetime(2024, 1, 1, 12, 0, 0)
        self.now = 0.0

    def monotonic(self) -> float:
        return self.now

    def utcnow(self) -> datetime:
        return self.base + timedelta(seconds=self.now)

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


def throttled_setup(clock: SteppedClock, quote_ttl_seconds: float, order_spacing: float):
    """Mock exchange behind a real scheduler, all on the stepped clock."""
    adapter = MockExchangeAdapter(MockConfig(quote_ttl_seconds=quote_ttl_seconds), clock=clock.utcnow)
    scheduler = RequestScheduler(
        RateLimitConfig(
            quotes=ChannelLimit(0.0, 1),
            orders=ChannelLimit(order_spacing, 1),
            reads=ChannelLimit(0.0, 2),
        ),
        clock=clock.monotonic,
        sleep=clock.sleep,
    )
    client = ExchangeClient(
        adapter,
        scheduler=scheduler,
        retry_policy=RetryPolicy(max_retries=0),
        sleep=clock.sleep,
    )
    return adapter, ExchangeOrderOrchestrator(client, clock=clock.utcnow)


# ============================================================
# PARTIAL FAILURE TESTS
# ============================================================

class TestPartialFailure:
    """Tests for per-recipient failure isolation."""

    @pytest.mark.asyncio
    async def test_one_invalid_address(self, client, adapter, ready_settlement,
                                       three_payments, preference):
        """Test 2 orders and 1 failure when recipient #2 is invalid."""
        settlement = ready_settlement(three_payments, [
            preference("alice"),
            preference("bob", address="not-an-address"),
            preference("charlie"),
        ])
        orchestrator = ExchangeOrderOrchestrator(client)

        result = await orchestrator.execute_settlement(settlement, caller_ip="1.2.3.4")

        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.failed_recipients == ["bob"]
        assert result.failures[0].code == "ADDRESS_INVALID"
        assert settlement.status == SettlementStatus.EXECUTING
        assert {o.recipient for o in settlement.orders} == {"alice", "charlie"}

    @pytest.mark.asyncio
    async def test_orders_carry_payment_details(self, client, ready_settlement,
                                                three_payments, preferences):
        """Test order fields for a successful execute."""
        settlement = ready_settlement(three_payments, preferences)

        result = await ExchangeOrderOrchestrator(client).execute_settlement(settlement)

        by_recipient = {o.recipient: o for o in result.orders}
        alice = by_recipient["alice"]
        assert alice.payer == "dao"
        assert alice.value_usd == Decimal("100.00")
        assert alice.deposit_unit == "usdc"
        assert alice.deposit_chain == "base"
        assert alice.deposit_amount == Decimal("100.00")
        assert alice.status == OrderStatus.WAITING
        assert alice.idempotency_key
        assert alice.quote_expires_at > alice.created_at

    @pytest.mark.asyncio
    async def test_missing_preference(self, client, ready_settlement, three_payments, preference):
        """Test PREFERENCE_MISSING for a recipient without preferences."""
        settlement = ready_settlement(three_payments, [preference("alice"), preference("bob")])

        result = await ExchangeOrderOrchestrator(client).execute_settlement(settlement)

        assert result.failed_recipients == ["charlie"]
        assert result.failures[0].code == "PREFERENCE_MISSING"

    @pytest.mark.asyncio
    async def test_missing_address(self, client, ready_settlement, three_payments, preference):
        """Test ADDRESS_MISSING for an empty receive address."""
        settlement = ready_settlement(three_payments, [
            preference("alice"), preference("bob"), preference("charlie", address=""),
        ])

        result = await ExchangeOrderOrchestrator(client).execute_settlement(settlement)

        assert result.failures[0].code == "ADDRESS_MISSING"

    @pytest.mark.asyncio
    async def test_unexpected_error_isolated(self, client, ready_settlement,
                                             three_payments, preferences, addresses):
        """Test that an unexpected exception fails only its recipient."""
        settlement = ready_settlement(three_payments, preferences)
        orchestrator = ExchangeOrderOrchestrator(
            client, address_validator=ExplodingValidator(addresses["bob"]),
        )

        result = await orchestrator.execute_settlement(settlement)

        assert result.success_count == 2
        assert result.failures[0].code == "INTERNAL_ERROR"

    @pytest.mark.asyncio
    async def test_memo_required(self, client, ready_settlement, preference):
        """Test that an XRP recipient without a destination tag fails."""
        settlement = ready_settlement(
            [NetPayment("dao", "alice", Decimal("50")), NetPayment("dao", "bob", Decimal("50"))],
            [
                preference("alice"),
                preference("bob", address="rPEPPER7kfTD9w2To4CQk6UCfuHM9c6GDY",
                           unit="xrp", chain="xrp"),
            ],
        )

        result = await ExchangeOrderOrchestrator(client).execute_settlement(settlement)

        assert result.failures[0].code == "ADDRESS_INVALID"
        assert "Destination Tag" in result.failures[0].reason


# ============================================================
# ALL-FAIL TESTS
# ============================================================

class TestAllFail:
    """Tests for the all-orders-failed signal."""

    @pytest.mark.asyncio
    async def test_all_invalid_addresses(self, client, adapter, ready_settlement,
                                         three_payments, preference):
        """Test that all-invalid raises and leaves the settlement ready."""
        settlement = ready_settlement(three_payments, [
            preference(p, address="bogus") for p in ("alice", "bob", "charlie")
        ])

        with pytest.raises(AllOrdersFailedError) as exc:
            await ExchangeOrderOrchestrator(client).execute_settlement(settlement)

        assert len(exc.value.failures) == 3
        assert str(exc.value).startswith("All orders failed to create")
        assert settlement.status == SettlementStatus.READY
        assert settlement.orders == []
        assert adapter.call_count("request_quote") == 0

    @pytest.mark.asyncio
    async def test_pair_unavailable(self, build_client, ready_settlement, three_payments, preferences):
        """Test PAIR_UNAVAILABLE when the exchange refuses the pair."""
        adapter = MockExchangeAdapter(MockConfig(unsupported_pairs=[("usdc", "usdc")]))
        settlement = ready_settlement(three_payments, preferences)

        with pytest.raises(AllOrdersFailedError) as exc:
            await ExchangeOrderOrchestrator(build_client(adapter)).execute_settlement(settlement)

        assert {f.code for f in exc.value.failures} == {"PAIR_UNAVAILABLE"}

    @pytest.mark.asyncio
    async def test_not_ready(self, client, ready_settlement, three_payments, preferences):
        """Test that executing twice is rejected."""
        settlement = ready_settlement(three_payments, preferences)
        orchestrator = ExchangeOrderOrchestrator(client)
        await orchestrator.execute_settlement(settlement)

        with pytest.raises(SettlementStateError) as exc:
            await orchestrator.execute_settlement(settlement)

        assert exc.value.code == "ALREADY_EXECUTING"


# ============================================================
# COMPLIANCE TESTS
# ============================================================

class TestCompliance:
    """Tests for the batch compliance gate."""

    @pytest.mark.asyncio
    async def test_denied_aborts_batch(self, build_client, ready_settlement,
                                       three_payments, preferences):
        """Test that a denial stops everything before any quote."""
        adapter = MockExchangeAdapter(MockConfig(compliance_denied=True))
        settlement = ready_settlement(three_payments, preferences)

        with pytest.raises(ComplianceDeniedError) as exc:
            await ExchangeOrderOrchestrator(build_client(adapter)).execute_settlement(
                settlement, caller_ip="5.6.7.8",
            )

        assert exc.value.caller_ip == "5.6.7.8"
        assert adapter.call_count("get_pair_bounds") == 0
        assert adapter.call_count("request_quote") == 0
        assert settlement.status == SettlementStatus.READY

    @pytest.mark.asyncio
    async def test_forbidden_status_is_denial(self, client, adapter, ready_settlement,
                                              three_payments, preferences):
        """Test that a 403 from the permission check is a denial."""
        adapter.inject_error("check_compliance", ExchangeError("forbidden", http_status=403))
        settlement = ready_settlement(three_payments, preferences)

        with pytest.raises(ComplianceDeniedError):
            await ExchangeOrderOrchestrator(client).execute_settlement(settlement)

    @pytest.mark.asyncio
    async def test_check_error_fails_open(self, client, adapter, ready_settlement,
                                          three_payments, preferences):
        """Test that a non-denial error is logged and execution proceeds."""
        adapter.inject_error("check_compliance", ExchangeError("bad gateway", http_status=400))
        settlement = ready_settlement(three_payments, preferences)

        result = await ExchangeOrderOrchestrator(client).execute_settlement(settlement)

        assert result.compliance_warning is not None
        assert result.success_count == 3

    @pytest.mark.asyncio
    async def test_checked_once_per_batch(self, client, adapter, ready_settlement,
                                          three_payments, preferences):
        """Test one permission call per execute, not per order."""
        settlement = ready_settlement(three_payments, preferences)

        await ExchangeOrderOrchestrator(client).execute_settlement(settlement)

        assert adapter.call_count("check_compliance") == 1


# ============================================================
# BOUNDS / QUOTE / RETRY TESTS
# ============================================================

class TestExchangeSteps:
    """Tests for pair bounds, quotes and retries."""

    @pytest.mark.asyncio
    async def test_below_minimum(self, build_client, ready_settlement, three_payments, preferences):
        """Test AMOUNT_BELOW_MINIMUM."""
        adapter = MockExchangeAdapter(MockConfig(min_amount=Decimal("150")))
        settlement = ready_settlement(three_payments, preferences)

        result = await ExchangeOrderOrchestrator(build_client(adapter)).execute_settlement(settlement)

        assert result.failed_recipients == ["alice"]
        assert result.failures[0].code == "AMOUNT_BELOW_MINIMUM"
        assert result.failures[0].details["min_amount"] == "150"

    @pytest.mark.asyncio
    async def test_above_maximum(self, build_client, ready_settlement, three_payments, preferences):
        """Test AMOUNT_ABOVE_MAXIMUM."""
        adapter = MockExchangeAdapter(MockConfig(max_amount=Decimal("250")))
        settlement = ready_settlement(three_payments, preferences)

        result = await ExchangeOrderOrchestrator(build_client(adapter)).execute_settlement(settlement)

        assert result.failed_recipients == ["charlie"]
        assert result.failures[0].code == "AMOUNT_ABOVE_MAXIMUM"

    @pytest.mark.asyncio
    async def test_expired_quote(self, client, ready_settlement, three_payments, preferences):
        """Test QUOTE_EXPIRED when the quote is already past expiry."""
        settlement = ready_settlement(three_payments, preferences)
        orchestrator = ExchangeOrderOrchestrator(
            client, clock=lambda: datetime.utcnow() + timedelta(hours=1),
        )

        with pytest.raises(AllOrdersFailedError) as exc:
            await orchestrator.execute_settlement(settlement)

        assert {f.code for f in exc.value.failures} == {"QUOTE_EXPIRED"}

    @pytest.mark.asyncio
    async def test_quote_rejected(self, client, adapter, ready_settlement, preferences):
        """Test QUOTE_FAILED on a definitive quote error."""
        settlement = ready_settlement([NetPayment("dao", "alice", Decimal("10"))], preferences)
        adapter.inject_error("request_quote", ExchangeError("bad amount", http_status=400))

        result = await ExchangeOrderOrchestrator(client).create_orders(settlement)

        assert result.failures[0].code == "QUOTE_FAILED"
        assert result.failures[0].http_status == 400

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, client, adapter, ready_settlement, preferences):
        """Test that spent retries become a per-recipient failure."""
        settlement = ready_settlement([NetPayment("dao", "alice", Decimal("10"))], preferences)
        for _ in range(2):
            adapter.inject_error(
                "create_order", ExchangeError("busy", http_status=503, is_retryable=True),
            )

        result = await ExchangeOrderOrchestrator(client).create_orders(settlement)

        assert result.failures[0].code == "RETRIES_EXHAUSTED"
        assert adapter.call_count("create_order") == 2
        assert settlement.status == SettlementStatus.READY

    @pytest.mark.asyncio
    async def test_rate_limit_recovered(self, client, adapter, ready_settlement, preferences):
        """Test that a single 429 is retried and the order created."""
        settlement = ready_settlement([NetPayment("dao", "alice", Decimal("10"))], preferences)
        adapter.inject_error(
            "create_order", ExchangeError("slow down", http_status=429, is_retryable=True),
        )

        result = await ExchangeOrderOrchestrator(client).execute_settlement(settlement)

        assert result.success_count == 1
        assert len(adapter.get_orders()) == 1


# ============================================================
# THROTTLED SUBMISSION TESTS
# ============================================================

class TestThrottledSubmission:
    """Tests for quote expiry and timestamps under the orders channel."""

    @pytest.mark.asyncio
    async def test_quote_expiring_in_queue(self, ready_settlement, three_payments, preferences):
        """Test a quote that expires while waiting for an order slot is never submitted."""
        clock = SteppedClock()
        adapter, orchestrator = throttled_setup(clock, quote_ttl_seconds=5.0, order_spacing=10.0)
        settlement = ready_settlement(three_payments, preferences)

        result = await orchestrator.create_orders(settlement)

        assert result.success_count == 1
        assert [f.code for f in result.failures] == ["QUOTE_EXPIRED", "QUOTE_EXPIRED"]
        assert adapter.call_count("create_order") == 1
        assert all(o.created_at < o.quote_expires_at for o in result.orders)

    @pytest.mark.asyncio
    async def test_created_at_is_submit_time(self, ready_settlement, three_payments, preferences):
        """Test created_at and the idempotency key reflect the order slot time."""
        clock = SteppedClock()
        adapter, orchestrator = throttled_setup(clock, quote_ttl_seconds=25.0, order_spacing=10.0)
        settlement = ready_settlement(three_payments, preferences)

        result = await orchestrator.create_orders(settlement)

        assert result.success_count == 3
        offsets = sorted((o.created_at - clock.base).total_seconds() for o in result.orders)
        assert offsets == [0.0, 10.0, 20.0]
        for order in result.orders:
            assert order.idempotency_key == make_idempotency_key(
                settlement.settlement_id, order.payer, order.recipient, order.created_at,
            )
        sent_keys = {o.idempotency_key for o in adapter.get_orders()}
        assert sent_keys == {o.idempotency_key for o in result.orders}

    @pytest.mark.asyncio
    async def test_retry_keeps_key(self, ready_settlement, preferences):
        """Test a retried submission resends the same idempotency key."""
        clock = SteppedClock()
        adapter = MockExchangeAdapter(clock=clock.utcnow)
        adapter.inject_error("create_order", ExchangeError("busy", http_status=503, is_retryable=True))
        client = ExchangeClient(
            adapter,
            scheduler=RequestScheduler(clock=clock.monotonic, sleep=clock.sleep),
            retry_policy=RetryPolicy(max_retries=1, initial_delay_seconds=1.0),
            sleep=clock.sleep,
        )
        settlement = ready_settlement([NetPayment("dao", "alice", Decimal("10"))], preferences)

        result = await ExchangeOrderOrchestrator(client, clock=clock.utcnow).create_orders(settlement)

        sent = [kwargs["idempotency_key"] for name, kwargs in adapter.calls if name == "create_order"]
        assert result.success_count == 1
        assert len(sent) == 2
        assert sent[0] == sent[1] == result.orders[0].idempotency_key


# ============================================================
# SIBLING ISOLATION TESTS
# ============================================================

class TestSiblingIsolation:
    """Tests that a slow recipient does not hold up the others."""

    @pytest.mark.asyncio
    async def test_slow_recipient_does_not_block(self, client, adapter, ready_settlement,
                                                 three_payments, preferences, addresses):
        """Test siblings get their orders while one recipient is stalled."""
        gate = asyncio.Event()
        orchestrator = ExchangeOrderOrchestrator(
            client, address_validator=GatedValidator(addresses["bob"], gate),
        )
        settlement = ready_settlement(three_payments, preferences)

        task = asyncio.ensure_future(orchestrator.create_orders(settlement))
        for _ in range(100):
            if len(adapter.get_orders()) == 2:
                break
            await asyncio.sleep(0)

        assert {o.settle_address for o in adapter.get_orders()} == {
            addresses["alice"], addresses["charlie"],
        }
        assert not task.done()

        gate.set()
        result = await task

        assert result.success_count == 3
        assert result.failures == []


# ============================================================
# IDEMPOTENCY TESTS
# ============================================================

class TestIdempotencyKey:
    """Tests for make_idempotency_key."""

    def test_stable(self):
        """Test the same inputs give the same key."""
        ts = datetime(2024, 1, 1, 12, 0, 0)

        assert make_idempotency_key("s", "dao", "alice", ts) == make_idempotency_key("s", "dao", "alice", ts)
        assert len(make_idempotency_key("s", "dao", "alice", ts)) == 32

    def test_payer_distinguishes(self):
        """Test that two payers to one recipient get distinct keys."""
        ts = datetime(2024, 1, 1, 12, 0, 0)

        assert make_idempotency_key("s", "a", "z", ts) != make_idempotency_key("s", "b", "z", ts)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
