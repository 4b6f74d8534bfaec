"""
Test suite for order repositories.

The in-memory adapter is exercised directly; the SQL adapter is checked
against a mocked async session.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from conftest import order_payload
from delivery_tracker.services.orders.enums import CLAIMABLE_STATUSES, OrderStatus
from delivery_tracker.services.orders.repository import SqlOrderRepository


# ============================================================================
# In-Memory Repository Tests
# ============================================================================


class TestInMemoryClaim:
    """Test the conditional partner claim."""

    async def test_first_claim_wins(self, store, order_repository) -> None:
        order = await store.create_order(uuid4(), order_payload())
        first, second = uuid4(), uuid4()

        assert await order_repository.claim(order.id, first, CLAIMABLE_STATUSES) is True
        assert await order_repository.claim(order.id, second, CLAIMABLE_STATUSES) is False
        assert order.delivery_partner_id == first

    async def test_unclaimable_status(self, store, order_repository) -> None:
        order = await store.create_order(uuid4(), order_payload())
        store.update_status(order, OrderStatus.CANCELLED)

        assert await order_repository.claim(order.id, uuid4(), CLAIMABLE_STATUSES) is False
        assert order.delivery_partner_id is None

    async def test_unknown_order(self, order_repository) -> None:
        assert await order_repository.claim("FGO0MISSING", uuid4(), CLAIMABLE_STATUSES) is False


class TestInMemoryLock:
    """Test per-order serialization."""

    async def test_yields_current_order(self, store, order_repository) -> None:
        order = await store.create_order(uuid4(), order_payload())

        async with order_repository.lock(order.id) as locked:
            assert locked is order

    async def test_yields_none_for_unknown_order(self, order_repository) -> None:
        async with order_repository.lock("FGO0MISSING") as locked:
            assert locked is None

    async def test_mutations_are_serialized(self, store, order_repository) -> None:
        order = await store.create_order(uuid4(), order_payload())
        events: list[str] = []

        async def hold(name: str) -> None:
            async with order_repository.lock(order.id):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(hold("a"), hold("b"))

        assert events == ["a-start", "a-end", "b-start", "b-end"]


class TestInMemoryQueries:
    """Test partner aggregates and listings."""

    async def test_partner_counts_and_fees(self, store, order_repository, clock) -> None:
        partner_id = uuid4()
        since = clock()

        delivered = await store.create_order(uuid4(), order_payload())
        delivered.delivery_partner_id = partner_id
        store.update_status(delivered, OrderStatus.DELIVERED)

        active = await store.create_order(uuid4(), order_payload())
        active.delivery_partner_id = partner_id
        store.update_status(active, OrderStatus.PICKED_UP)

        clock.advance(days=-1)
        old = await store.create_order(uuid4(), order_payload())
        old.delivery_partner_id = partner_id
        store.update_status(old, OrderStatus.DELIVERED)

        assert await order_repository.count_for_partner(partner_id) == 3
        assert await order_repository.count_for_partner(partner_id, OrderStatus.DELIVERED) == 2
        assert await order_repository.count_for_partner(partner_id, since=since) == 2
        assert await order_repository.sum_delivery_fees(partner_id, since) == Decimal("40.00")

    async def test_fees_default_to_zero(self, order_repository, clock) -> None:
        assert await order_repository.sum_delivery_fees(uuid4(), clock()) == Decimal("0.00")

    async def test_list_by_partner_filters_status(self, store, order_repository, clock) -> None:
        partner_id = uuid4()
        picked = await store.create_order(uuid4(), order_payload())
        picked.delivery_partner_id = partner_id
        store.update_status(picked, OrderStatus.PICKED_UP)
        clock.advance(minutes=1)
        confirmed = await store.create_order(uuid4(), order_payload())
        confirmed.delivery_partner_id = partner_id
        store.update_status(confirmed, OrderStatus.CONFIRMED)

        orders = await order_repository.list_by_partner(
            partner_id, {OrderStatus.PICKED_UP, OrderStatus.ON_THE_WAY}
        )

        assert [o.id for o in orders] == [picked.id]

    async def test_list_orders_newest_first(self, store, order_repository, clock) -> None:
        older = await store.create_order(uuid4(), order_payload())
        clock.advance(minutes=5)
        newer = await store.create_order(uuid4(), order_payload())

        orders, total = await order_repository.list_orders()

        assert total == 2
        assert [o.id for o in orders] == [newer.id, older.id]


# ============================================================================
# SQL Repository Tests
# ============================================================================


@pytest.fixture
def session() -> MagicMock:
    """Mocked async session.

    Returns:
        MagicMock with awaitable execute/flush/commit/rollback
    """
    mock = MagicMock()
    mock.execute = AsyncMock()
    mock.flush = AsyncMock()
    mock.commit = AsyncMock()
    mock.rollback = AsyncMock()
    return mock


class TestSqlClaim:
    """Test the conditional UPDATE claim."""

    @pytest.mark.parametrize("rowcount,won", [(1, True), (0, False)])
    async def test_claim_reports_rowcount(self, session, rowcount, won) -> None:
        session.execute.return_value = MagicMock(rowcount=rowcount)
        repository = SqlOrderRepository(session)

        assert await repository.claim("FGO1", uuid4(), CLAIMABLE_STATUSES) is won
        session.execute.assert_awaited_once()

    async def test_claim_statement_is_conditional(self, session) -> None:
        session.execute.return_value = MagicMock(rowcount=1)
        repository = SqlOrderRepository(session)

        await repository.claim("FGO1", uuid4(), CLAIMABLE_STATUSES)

        statement = session.execute.await_args.args[0]
        compiled = str(statement)
        assert compiled.startswith("UPDATE orders")
        assert "delivery_partner_id IS NULL" in compiled
        assert "status IN" in compiled


class TestSqlUnitOfWork:
    """Test commit, rollback and staging delegation."""

    async def test_commit_and_rollback(self, session) -> None:
        repository = SqlOrderRepository(session)

        await repository.commit()
        await repository.rollback()

        session.commit.assert_awaited_once()
        session.rollback.assert_awaited_once()

    async def test_save_flushes(self, session) -> None:
        repository = SqlOrderRepository(session)
        order = MagicMock()

        assert await repository.save(order) is order
        session.add.assert_called_once_with(order)
        session.flush.assert_awaited_once()

    async def test_get_returns_scalar(self, session) -> None:
        order = MagicMock()
        result = MagicMock()
        result.scalar_one_or_none.return_value = order
        session.execute.return_value = result
        repository = SqlOrderRepository(session)

        assert await repository.get("FGO1") is order
