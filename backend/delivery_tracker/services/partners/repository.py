"""
User data access repositories.

``UserRepository`` is the storage interface of the partner registry, with a
SQLAlchemy adapter and a process-local adapter mirroring the order
repositories. ``lock`` serializes read-modify-write updates of one user
(ratings, earnings).
"""

import asyncio
import weakref
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from delivery_tracker.core.geo import BoundingBox
from delivery_tracker.core.logging import get_logger
from delivery_tracker.database.models.user import User, UserRole

logger = get_logger(__name__)


class UserRepository(ABC):
    """Storage interface for platform users."""

    @abstractmethod
    async def add(self, user: User) -> User:
        """Persist a new user."""

    @abstractmethod
    async def get(self, user_id: UUID) -> Optional[User]:
        """Fetch a user by identifier, or None."""

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[User]:
        """Fetch a user by (lower-cased) email, or None."""

    @abstractmethod
    async def find_by_email_or_phone(self, email: str, phone: str) -> Optional[User]:
        """Any user already holding ``email`` or ``phone``."""

    @abstractmethod
    def lock(self, user_id: UUID) -> AbstractAsyncContextManager[Optional[User]]:
        """Serialize updates of one user; yields the current user or None."""

    @abstractmethod
    async def find_partners_in_box(self, box: BoundingBox) -> Sequence[User]:
        """Online, verified delivery partners whose location is inside ``box``."""

    @abstractmethod
    async def save(self, user: User) -> User:
        """Stage changes made to a loaded user."""

    @abstractmethod
    async def commit(self) -> None:
        """Make staged changes durable."""

    @abstractmethod
    async def rollback(self) -> None:
        """Discard staged changes."""


class InMemoryUserRepository(UserRepository):
    """Process-local user storage keyed by identifier."""

    def __init__(self) -> None:
        self._users: dict[UUID, User] = {}
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    async def add(self, user: User) -> User:
        self._users[user.id] = user
        return user

    async def get(self, user_id: UUID) -> Optional[User]:
        return self._users.get(user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        email = email.lower()
        return next((user for user in self._users.values() if user.email == email), None)

    async def find_by_email_or_phone(self, email: str, phone: str) -> Optional[User]:
        email = email.lower()
        return next(
            (
                user
                for user in self._users.values()
                if user.email == email or user.phone == phone
            ),
            None,
        )

    @asynccontextmanager
    async def lock(self, user_id: UUID) -> AsyncIterator[Optional[User]]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        async with lock:
            yield self._users.get(user_id)

    async def find_partners_in_box(self, box: BoundingBox) -> Sequence[User]:
        return [
            user
            for user in self._users.values()
            if user.is_available
            and box.contains(user.current_latitude, user.current_longitude)
        ]

    async def save(self, user: User) -> User:
        self._users[user.id] = user
        return user

    async def commit(self) -> None:
        return None

    async def rollback(self) -> None:
        return None


class SqlUserRepository(UserRepository):
    """User repository over an async SQLAlchemy session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, user: User) -> User:
        self.session.add(user)
        await self.session.flush()
        logger.debug("User staged", user_id=str(user.id), role=user.role.value)
        return user

    async def get(self, user_id: UUID) -> Optional[User]:
        return await self.session.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    async def find_by_email_or_phone(self, email: str, phone: str) -> Optional[User]:
        result = await self.session.execute(
            select(User)
            .where(or_(func.lower(User.email) == email.lower(), User.phone == phone))
            .limit(1)
        )
        return result.scalar_one_or_none()

    @asynccontextmanager
    async def lock(self, user_id: UUID) -> AsyncIterator[Optional[User]]:
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        yield result.scalar_one_or_none()

    async def find_partners_in_box(self, box: BoundingBox) -> Sequence[User]:
        if box.crosses_antimeridian:
            longitude_filter = or_(
                User.current_longitude >= box.min_longitude,
                User.current_longitude <= box.max_longitude,
            )
        else:
            longitude_filter = User.current_longitude.between(
                box.min_longitude, box.max_longitude
            )
        stmt = select(User).where(
            User.role == UserRole.DELIVERY_PARTNER,
            User.is_online.is_(True),
            User.is_verified.is_(True),
            User.current_latitude.between(box.min_latitude, box.max_latitude),
            longitude_filter,
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def save(self, user: User) -> User:
        self.session.add(user)
        await self.session.flush()
        return user

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
