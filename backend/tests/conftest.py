"""
Pytest configuration and shared test fixtures.

Tests run against the in-memory storage and realtime backends. Users are
built directly rather than through registration so most tests avoid bcrypt
hashing.
"""

import asyncio
import os

os.environ["APP_ENVIRONMENT"] = "test"
os.environ["APP_STORAGE_BACKEND"] = "memory"
os.environ["APP_REALTIME_BACKEND"] = "memory"
os.environ["APP_SECRET_KEY"] = "test-secret-key-that-is-at-least-32-characters-long"
os.environ["APP_LOG_LEVEL"] = "WARNING"

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Generator
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from delivery_tracker.core.config import Settings, get_settings
from delivery_tracker.core.security import Identity, create_access_token
from delivery_tracker.database.models.user import User, UserRole, VehicleType
from delivery_tracker.realtime.broker import InMemoryBroker
from delivery_tracker.services.assignment.engine import AssignmentEngine
from delivery_tracker.services.orders.repository import InMemoryOrderRepository
from delivery_tracker.services.orders.store import OrderStore
from delivery_tracker.services.partners.registry import PartnerRegistry
from delivery_tracker.services.partners.repository import InMemoryUserRepository

# Connaught Place and Pitampura, New Delhi
RESTAURANT_COORDINATES = {"latitude": 28.6139, "longitude": 77.2090}
DELIVERY_COORDINATES = {"latitude": 28.7041, "longitude": 77.1025}


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def identity_for(user: User) -> Identity:
    return Identity(user_id=user.id, role=user.role)


def bearer(user: User) -> dict[str, str]:
    """Authorization header for a user."""
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


def build_user(role: UserRole = UserRole.CUSTOMER, **overrides: Any) -> User:
    """Build a user without hashing a password."""
    suffix = uuid4().hex[:8]
    now = datetime.now(timezone.utc)
    values: dict[str, Any] = {
        "id": uuid4(),
        "name": f"User {suffix}",
        "email": f"user-{suffix}@example.com",
        "phone": f"+9198{suffix}",
        "password_hash": "not-a-real-hash",
        "role": role,
        "is_active": True,
        "vehicle_type": None,
        "license_number": None,
        "vehicle_number": None,
        "is_verified": False,
        "rating_average": Decimal("0.0"),
        "rating_count": 0,
        "earnings_total": Decimal("0.00"),
        "earnings_pending": Decimal("0.00"),
        "is_online": False,
        "current_latitude": None,
        "current_longitude": None,
        "location_updated_at": None,
        "created_at": now,
        "updated_at": now,
    }
    if role == UserRole.DELIVERY_PARTNER:
        values.update(
            vehicle_type=VehicleType.BIKE,
            license_number=f"DL-{suffix}",
            vehicle_number=f"DL01{suffix[:4]}",
        )
    values.update(overrides)
    return User(**values)


def order_payload(**overrides: Any) -> dict[str, Any]:
    """Valid order placement payload with both coordinates present."""
    payload: dict[str, Any] = {
        "restaurant": {
            "name": "Saravana Bhavan",
            "address": "Janpath, Connaught Place",
            "phone": "+911123456789",
            "coordinates": dict(RESTAURANT_COORDINATES),
            "platform": "swiggy",
        },
        "items": [
            {"name": "Masala Dosa", "quantity": 2, "price": "120.00"},
            {"name": "Filter Coffee", "quantity": 1, "price": "60.00", "customizations": ["less sugar"]},
        ],
        "pricing": {
            "subtotal": "300.00",
            "delivery_fee": "40.00",
            "taxes": "15.00",
            "discount": "0.00",
            "total": "355.00",
        },
        "delivery_address": {
            "street": "12 Pitampura Road",
            "city": "New Delhi",
            "zip_code": "110034",
            "coordinates": dict(DELIVERY_COORDINATES),
        },
        "payment_method": "card",
        "special_instructions": "Ring the bell twice",
    }
    payload.update(overrides)
    return payload


# ============================================================================
# Core Fixtures
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def order_repository() -> InMemoryOrderRepository:
    return InMemoryOrderRepository()


@pytest.fixture
def user_repository() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def store(order_repository, settings, clock) -> OrderStore:
    return OrderStore(order_repository, settings=settings, clock=clock)


@pytest.fixture
def registry(user_repository, settings, clock) -> PartnerRegistry:
    return PartnerRegistry(user_repository, settings=settings, clock=clock)


@pytest.fixture
def broker() -> InMemoryBroker:
    return InMemoryBroker(queue_size=100)


@pytest.fixture
def engine(store, registry, broker, settings, clock) -> AssignmentEngine:
    return AssignmentEngine(store, registry, broker, settings=settings, clock=clock)


# ============================================================================
# User Fixtures
# ============================================================================


@pytest.fixture
def make_user(user_repository) -> Callable[..., Awaitable[User]]:
    """Factory storing a freshly built user in the user repository."""

    async def _make(role: UserRole = UserRole.CUSTOMER, **overrides: Any) -> User:
        return await user_repository.add(build_user(role, **overrides))

    return _make


@pytest.fixture
async def customer(make_user) -> User:
    return await make_user(UserRole.CUSTOMER)


@pytest.fixture
async def partner(make_user) -> User:
    """Online, verified partner standing next to the restaurant."""
    return await make_user(
        UserRole.DELIVERY_PARTNER,
        is_online=True,
        is_verified=True,
        current_latitude=28.6145,
        current_longitude=77.2095,
    )


@pytest.fixture
async def admin(make_user) -> User:
    return await make_user(UserRole.ADMIN)


# ============================================================================
# Application Fixtures
# ============================================================================


@pytest.fixture
def app():
    """Fresh application with its own in-memory repositories and broker."""
    from delivery_tracker.main import create_app

    return create_app(get_settings())


@pytest.fixture
def test_client(app) -> Generator[TestClient, None, None]:
    """
    Synchronous test client with the application lifespan running.

    Yields:
        TestClient: Client bound to a fresh application
    """
    with TestClient(app) as client:
        yield client


@pytest.fixture
def app_users(app):
    """User repository backing the test application."""
    return app.state.repositories.users


@pytest.fixture
def seed_user(app_users) -> Callable[..., User]:
    """Factory storing a user directly in the test application's repository."""

    def _seed(role: UserRole = UserRole.CUSTOMER, **overrides: Any) -> User:
        return asyncio.run(app_users.add(build_user(role, **overrides)))

    return _seed
