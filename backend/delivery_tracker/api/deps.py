"""
FastAPI dependencies for authentication, storage and service wiring.

Bearer tokens are decoded into an ``Identity`` without touching storage.
Repositories come from the configured storage backend: process-wide
in-memory repositories kept on ``app.state``, or SQL repositories sharing
one session per request.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Annotated, AsyncIterator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from delivery_tracker.core.config import Settings
from delivery_tracker.core.logging import get_logger, set_user_id
from delivery_tracker.core.security import Identity, TokenError, identity_from_token
from delivery_tracker.database.connection import get_session
from delivery_tracker.database.models.user import UserRole
from delivery_tracker.services.assignment.engine import AssignmentEngine
from delivery_tracker.services.orders.repository import (
    InMemoryOrderRepository,
    OrderRepository,
    SqlOrderRepository,
)
from delivery_tracker.services.orders.store import OrderStore
from delivery_tracker.services.partners.registry import PartnerRegistry
from delivery_tracker.services.partners.repository import (
    InMemoryUserRepository,
    SqlUserRepository,
    UserRepository,
)
from delivery_tracker.services.payments.service import PaymentService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Repositories:
    """Order and user repositories belonging to one unit of work."""

    orders: OrderRepository
    users: UserRepository


def memory_repositories() -> Repositories:
    return Repositories(orders=InMemoryOrderRepository(), users=InMemoryUserRepository())


@asynccontextmanager
async def open_repositories(app: FastAPI) -> AsyncIterator[Repositories]:
    """
    Repositories for the app's storage backend.

    The SQL backend opens a session for the duration of the block; anything
    left uncommitted when it exits is discarded.
    """
    settings: Settings = app.state.settings
    if settings.storage_backend == "memory":
        yield app.state.repositories
        return

    async with get_session() as session:
        yield Repositories(
            orders=SqlOrderRepository(session),
            users=SqlUserRepository(session),
        )


def identity_from_credentials(token: Optional[str]) -> Identity:
    """
    Resolve a raw bearer token to the caller identity.

    Raises:
        TokenError: If the token is missing or invalid
    """
    if not token:
        raise TokenError("Authentication credentials were not provided")
    identity = identity_from_token(token)
    set_user_id(str(identity.user_id))
    return identity


async def get_current_identity(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Identity:
    """
    Validate the bearer token and return the caller identity.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    try:
        return identity_from_credentials(credentials.credentials if credentials else None)
    except TokenError as e:
        logger.warning("Authentication failed", reason=e.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def require_role(*allowed_roles: UserRole):
    """
    Create dependency that admits only the given roles.

    Args:
        *allowed_roles: Roles allowed to access the endpoint

    Returns:
        Dependency function returning the caller identity
    """

    async def role_checker(
        identity: Annotated[Identity, Depends(get_current_identity)],
    ) -> Identity:
        if identity.role not in allowed_roles:
            logger.warning(
                "Authorization failed: insufficient permissions",
                user_id=str(identity.user_id),
                user_role=identity.role.value,
                required_roles=[role.value for role in allowed_roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return identity

    return role_checker


def get_settings_from_app(request: Request) -> Settings:
    return request.app.state.settings


async def get_repositories(request: Request) -> AsyncIterator[Repositories]:
    async with open_repositories(request.app) as repositories:
        yield repositories


def get_order_store(
    request: Request,
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> OrderStore:
    return OrderStore(repositories.orders, settings=request.app.state.settings)


def get_partner_registry(
    request: Request,
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> PartnerRegistry:
    return PartnerRegistry(repositories.users, settings=request.app.state.settings)


def get_assignment_engine(
    request: Request,
    store: Annotated[OrderStore, Depends(get_order_store)],
    registry: Annotated[PartnerRegistry, Depends(get_partner_registry)],
) -> AssignmentEngine:
    return AssignmentEngine(
        store,
        registry,
        request.app.state.broker,
        settings=request.app.state.settings,
    )


def get_payment_service(
    request: Request,
    repositories: Annotated[Repositories, Depends(get_repositories)],
) -> PaymentService:
    return PaymentService(repositories.orders, request.app.state.payment_gateway)


# Type aliases for common dependencies
CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
AdminIdentity = Annotated[Identity, Depends(require_role(UserRole.ADMIN))]
AppSettings = Annotated[Settings, Depends(get_settings_from_app)]
Store = Annotated[OrderStore, Depends(get_order_store)]
Registry = Annotated[PartnerRegistry, Depends(get_partner_registry)]
Engine = Annotated[AssignmentEngine, Depends(get_assignment_engine)]
Payments = Annotated[PaymentService, Depends(get_payment_service)]
