"""
Order data access repositories.

``OrderRepository`` is the storage interface the order store and the
assignment engine depend on. Two adapters implement it:

- ``SqlOrderRepository``: SQLAlchemy async session; per-order serialization
  via ``SELECT ... FOR UPDATE`` and claims via a conditional ``UPDATE``.
- ``InMemoryOrderRepository``: process-local dict guarded by per-order
  asyncio locks, used in development and tests.

Storage errors propagate unchanged.
"""

import asyncio
import weakref
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracker.core.logging import get_logger
from delivery_tracker.database.models.order import Order
from delivery_tracker.services.orders.enums import OrderStatus

logger = get_logger(__name__)


class OrderRepository(ABC):
    """Storage interface for delivery orders."""

    @abstractmethod
    async def add(self, order: Order) -> Order:
        """Persist a new order (visible to others after ``commit``)."""

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        """Fetch an order with its status history, or None."""

    @abstractmethod
    def lock(self, order_id: str) -> AbstractAsyncContextManager[Optional[Order]]:
        """Serialize mutations of one order; yields the current order or None."""

    @abstractmethod
    async def claim(
        self,
        order_id: str,
        partner_id: UUID,
        claimable: Iterable[OrderStatus],
    ) -> bool:
        """
        Atomically assign a partner to an unassigned, claimable order.

        Returns:
            True when this call won the claim, False otherwise
        """

    @abstractmethod
    async def save(self, order: Order) -> Order:
        """Stage changes made to a loaded order."""

    @abstractmethod
    async def list_orders(
        self,
        customer_id: Optional[UUID] = None,
        partner_id: Optional[UUID] = None,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[Sequence[Order], int]:
        """Filtered page of orders, newest first, with the total match count."""

    @abstractmethod
    async def list_unassigned(
        self,
        statuses: Iterable[OrderStatus],
        limit: int = 20,
    ) -> Sequence[Order]:
        """Orders without a partner in one of ``statuses``, newest first."""

    @abstractmethod
    async def list_by_partner(
        self,
        partner_id: UUID,
        statuses: Iterable[OrderStatus],
    ) -> Sequence[Order]:
        """Orders assigned to a partner in one of ``statuses``, newest first."""

    @abstractmethod
    async def count_for_partner(
        self,
        partner_id: UUID,
        status: Optional[OrderStatus] = None,
        since: Optional[datetime] = None,
    ) -> int:
        """Number of orders assigned to a partner matching the filters."""

    @abstractmethod
    async def sum_delivery_fees(self, partner_id: UUID, since: datetime) -> Decimal:
        """Delivery fees of a partner's orders delivered since ``since``."""

    @abstractmethod
    async def commit(self) -> None:
        """Make staged changes durable."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard staged changes."""


class InMemoryOrderRepository(OrderRepository):
    """
    Process-local order storage.

    Orders are held by reference, so ``save``/``commit`` have nothing to do;
    callers validate before mutating since there is no rollback.
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, order_id: str) -> asyncio.Lock:
        lock = self._locks.get(order_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[order_id] = lock
        return lock

    async def add(self, order: Order) -> Order:
        self._orders[order.id] = order
        logger.debug("Order stored in memory", order_id=order.id)
        return order

    async def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    @asynccontextmanager
    async def lock(self, order_id: str) -> AsyncIterator[Optional[Order]]:
        lock = self._lock_for(order_id)
        async with lock:
            yield self._orders.get(order_id)

    async def claim(
        self,
        order_id: str,
        partner_id: UUID,
        claimable: Iterable[OrderStatus],
    ) -> bool:
        order = self._orders.get(order_id)
        if (
            order is None
            or order.delivery_partner_id is not None
            or order.status not in set(claimable)
        ):
            return False
        order.delivery_partner_id = partner_id
        return True

    async def save(self, order: Order) -> Order:
        self._orders[order.id] = order
        return order

    async def list_orders(
        self,
        customer_id: Optional[UUID] = None,
        partner_id: Optional[UUID] = None,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[Sequence[Order], int]:
        matches = [
            order
            for order in self._orders.values()
            if (customer_id is None or order.customer_id == customer_id)
            and (partner_id is None or order.delivery_partner_id == partner_id)
            and (status is None or order.status == status)
        ]
        matches.sort(key=lambda order: order.created_at, reverse=True)
        return matches[offset : offset + limit], len(matches)

    async def list_unassigned(
        self,
        statuses: Iterable[OrderStatus],
        limit: int = 20,
    ) -> Sequence[Order]:
        wanted = set(statuses)
        matches = [
            order
            for order in self._orders.values()
            if order.delivery_partner_id is None and order.status in wanted
        ]
        matches.sort(key=lambda order: order.created_at, reverse=True)
        return matches[:limit]

    async def list_by_partner(
        self,
        partner_id: UUID,
        statuses: Iterable[OrderStatus],
    ) -> Sequence[Order]:
        wanted = set(statuses)
        matches = [
            order
            for order in self._orders.values()
            if order.delivery_partner_id == partner_id and order.status in wanted
        ]
        matches.sort(key=lambda order: order.created_at, reverse=True)
        return matches

    async def count_for_partner(
        self,
        partner_id: UUID,
        status: Optional[OrderStatus] = None,
        since: Optional[datetime] = None,
    ) -> int:
        return sum(
            1
            for order in self._orders.values()
            if order.delivery_partner_id == partner_id
            and (status is None or order.status == status)
            and (since is None or order.created_at >= since)
        )

    async def sum_delivery_fees(self, partner_id: UUID, since: datetime) -> Decimal:
        return sum(
            (
                Decimal(order.delivery_fee)
                for order in self._orders.values()
                if order.delivery_partner_id == partner_id
                and order.status == OrderStatus.DELIVERED
                and order.created_at >= since
            ),
            Decimal("0.00"),
        )

    async def commit(self) -> None:
        return None

    async def rollback(self) -> None:
        return None


class SqlOrderRepository(OrderRepository):
    """
    Order repository over an async SQLAlchemy session.

    The session is shared with the user repository of the same unit of work
    so a single ``commit`` covers both.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def add(self, order: Order) -> Order:
        self.session.add(order)
        await self.session.flush()
        logger.debug("Order staged", order_id=order.id)
        return order

    async def get(self, order_id: str) -> Optional[Order]:
        result = await self.session.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    @asynccontextmanager
    async def lock(self, order_id: str) -> AsyncIterator[Optional[Order]]:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        yield result.scalar_one_or_none()

    async def claim(
        self,
        order_id: str,
        partner_id: UUID,
        claimable: Iterable[OrderStatus],
    ) -> bool:
        stmt = (
            update(Order)
            .where(
                and_(
                    Order.id == order_id,
                    Order.delivery_partner_id.is_(None),
                    Order.status.in_(list(claimable)),
                )
            )
            .values(delivery_partner_id=partner_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        won = result.rowcount == 1

        logger.debug(
            "Conditional order claim executed",
            order_id=order_id,
            partner_id=str(partner_id),
            won=won,
        )
        return won

    async def save(self, order: Order) -> Order:
        self.session.add(order)
        await self.session.flush()
        return order

    async def list_orders(
        self,
        customer_id: Optional[UUID] = None,
        partner_id: Optional[UUID] = None,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[Sequence[Order], int]:
        conditions = []
        if customer_id is not None:
            conditions.append(Order.customer_id == customer_id)
        if partner_id is not None:
            conditions.append(Order.delivery_partner_id == partner_id)
        if status is not None:
            conditions.append(Order.status == status)

        stmt = (
            select(Order)
            .where(*conditions)
            .order_by(Order.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Order).where(*conditions)

        result = await self.session.execute(stmt)
        count_result = await self.session.execute(count_stmt)
        return result.scalars().all(), count_result.scalar_one()

    async def list_unassigned(
        self,
        statuses: Iterable[OrderStatus],
        limit: int = 20,
    ) -> Sequence[Order]:
        stmt = (
            select(Order)
            .where(
                Order.delivery_partner_id.is_(None),
                Order.status.in_(list(statuses)),
            )
            .order_by(Order.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_by_partner(
        self,
        partner_id: UUID,
        statuses: Iterable[OrderStatus],
    ) -> Sequence[Order]:
        stmt = (
            select(Order)
            .where(
                Order.delivery_partner_id == partner_id,
                Order.status.in_(list(statuses)),
            )
            .order_by(Order.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_for_partner(
        self,
        partner_id: UUID,
        status: Optional[OrderStatus] = None,
        since: Optional[datetime] = None,
    ) -> int:
        conditions = [Order.delivery_partner_id == partner_id]
        if status is not None:
            conditions.append(Order.status == status)
        if since is not None:
            conditions.append(Order.created_at >= since)

        result = await self.session.execute(
            select(func.count()).select_from(Order).where(*conditions)
        )
        return result.scalar_one()

    async def sum_delivery_fees(self, partner_id: UUID, since: datetime) -> Decimal:
        stmt = select(func.coalesce(func.sum(Order.delivery_fee), 0)).where(
            Order.delivery_partner_id == partner_id,
            Order.status == OrderStatus.DELIVERED,
            Order.created_at >= since,
        )
        result = await self.session.execute(stmt)
        return Decimal(result.scalar_one())

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
