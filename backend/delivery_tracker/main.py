"""
FastAPI application entry point with health endpoints and service routing.

``create_app`` wires the storage backend, the realtime broker and the payment
gateway onto ``app.state``, installs CORS, rate limiting and request logging,
and maps domain errors to HTTP responses in a single exception handler.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from delivery_tracker.api.deps import memory_repositories
from delivery_tracker.api.v1 import api_router, realtime_router
from delivery_tracker.core.config import Settings, get_settings
from delivery_tracker.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DeliveryTrackerError,
    ExternalServiceError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from delivery_tracker.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from delivery_tracker.core.security import TokenError
from delivery_tracker.database.connection import (
    check_database_health,
    close_database_connections,
)
from delivery_tracker.realtime.broker import ChannelBroker, InMemoryBroker
from delivery_tracker.realtime.redis_broker import RedisBroker
from delivery_tracker.realtime.redis_client import RedisClient
from delivery_tracker.services.payments.gateway import SimulatedPaymentGateway

logger = get_logger(__name__)

# Most specific classes first; the first isinstance match wins.
ERROR_STATUS_CODES: list[tuple[type[DeliveryTrackerError], int]] = [
    (TokenError, status.HTTP_401_UNAUTHORIZED),
    (InsufficientFundsError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
]


def status_code_for(exc: DeliveryTrackerError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def build_broker(settings: Settings) -> ChannelBroker:
    """Realtime broker for the configured backend."""
    if settings.realtime_backend == "redis":
        return RedisBroker(
            RedisClient(url=settings.redis_url, max_connections=settings.redis_max_connections),
            queue_size=settings.subscriber_queue_size,
        )
    return InMemoryBroker(queue_size=settings.subscriber_queue_size)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan context manager for startup and shutdown events.

    Connects the realtime broker and checks the database on startup; closes
    both on shutdown.
    """
    settings: Settings = app.state.settings
    broker: ChannelBroker = app.state.broker

    logger.info(
        "Application starting",
        environment=settings.environment,
        storage_backend=settings.storage_backend,
        realtime_backend=settings.realtime_backend,
        version=settings.app_version,
    )

    with log_performance(logger, "application_startup"):
        await broker.start()
        if settings.storage_backend == "database" and not await check_database_health():
            logger.warning("Database unavailable at startup")
        logger.info("Resources initialized successfully")

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await broker.close()
        if isinstance(broker, RedisBroker):
            await broker.client.disconnect()
        if settings.storage_backend == "database":
            await close_database_connections()
        logger.info("Resources cleaned up successfully")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Settings to use; defaults to the cached environment settings

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    configure_logging()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Multi-platform delivery order tracking backend API",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.state.settings = settings
    app.state.broker = build_broker(settings)
    app.state.payment_gateway = SimulatedPaymentGateway(settings.payment_success_rate)
    if settings.storage_backend == "memory":
        app.state.repositories = memory_repositories()

    # Configure rate limiting
    app.state.limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit],
        enabled=not settings.is_test,
    )
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """
        Middleware for request logging and correlation ID management.

        Sets request ID for correlation, logs request details, and measures
        response time. Clears context after request processing.
        """
        request_id = set_request_id(request.headers.get("X-Request-ID"))

        logger.info(
            "Request received",
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None,
        )

        try:
            with log_performance(
                logger,
                "request_processing",
                method=request.method,
                path=request.url.path,
            ):
                response = await call_next(request)

            response.headers["X-Request-ID"] = request_id
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )
            return response
        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        finally:
            clear_context()

    @app.exception_handler(DeliveryTrackerError)
    async def domain_exception_handler(
        request: Request, exc: DeliveryTrackerError
    ) -> JSONResponse:
        """
        Map domain errors to HTTP responses.

        Returns:
            JSON response with error code, message, details and request id
        """
        status_code = status_code_for(exc)
        logger.warning(
            "Request rejected",
            method=request.method,
            path=request.url.path,
            error=exc.code,
            message=exc.message,
            status_code=status_code,
        )
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, TokenError) else None
        return JSONResponse(
            status_code=status_code,
            content={**exc.to_dict(), "request_id": get_request_id()},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors with structured error response."""
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"]),
                "message": error["msg"],
            }
            for error in exc.errors()
        ]
        logger.warning(
            "Request validation failed",
            method=request.method,
            path=request.url.path,
            errors=errors,
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": ValidationError.code,
                "message": "Request validation failed",
                "details": {"errors": errors},
                "request_id": get_request_id(),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Handle unexpected exceptions with structured error response.

        Logs error with full context and returns generic error message
        to avoid exposing internal details.
        """
        logger.error(
            "Unhandled exception",
            method=request.method,
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "details": {},
                "request_id": get_request_id(),
            },
        )

    @app.get("/health", tags=["Health"], summary="Health check endpoint")
    async def health_check() -> dict[str, str]:
        """Always 200 while the process is serving requests."""
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        }

    @app.get("/ready", tags=["Health"], summary="Readiness check endpoint")
    async def readiness_check() -> JSONResponse:
        """
        Readiness check endpoint for orchestration.

        Verifies the configured database and Redis broker are reachable.
        """
        checks: dict[str, str] = {}
        if settings.storage_backend == "database":
            healthy = await check_database_health(max_retries=1)
            checks["database"] = "healthy" if healthy else "unhealthy"
        broker = app.state.broker
        if isinstance(broker, RedisBroker):
            healthy = await broker.client.health_check()
            checks["redis"] = "healthy" if healthy else "unhealthy"

        ready = all(value == "healthy" for value in checks.values())
        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "ready" if ready else "not_ready", "checks": checks},
        )

    @app.get("/live", tags=["Health"], summary="Liveness check endpoint")
    async def liveness_check() -> dict[str, str]:
        return {"status": "alive"}

    app.include_router(api_router, prefix=settings.api_v1_prefix)
    app.include_router(realtime_router)

    logger.info(
        "Application configured",
        app_name=settings.app_name,
        api_prefix=settings.api_v1_prefix,
    )
    return app


app = create_app()
