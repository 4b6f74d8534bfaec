"""
User account API endpoints: registration, login and the caller's profile.
"""

from fastapi import APIRouter, HTTPException, status

from delivery_tracker.api.deps import AppSettings, CurrentIdentity, Registry
from delivery_tracker.core.exceptions import AuthorizationError
from delivery_tracker.core.logging import get_logger
from delivery_tracker.core.security import create_access_token
from delivery_tracker.database.models.user import User
from delivery_tracker.schemas.users import TokenResponse, UserCreate, UserLogin, UserResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _token_response(user: User, settings) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id, user.role),
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=UserResponse.model_validate(user),
    )


@router.post(
    "",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
async def register(request: UserCreate, registry: Registry, settings: AppSettings) -> TokenResponse:
    user = await registry.register_user(
        name=request.name,
        email=request.email,
        phone=request.phone,
        password=request.password,
        role=request.role,
        vehicle_type=request.vehicle_type,
        license_number=request.license_number,
        vehicle_number=request.vehicle_number,
    )
    await registry.commit()
    return _token_response(user, settings)


@router.post("/login", response_model=TokenResponse, summary="Obtain an access token")
async def login(request: UserLogin, registry: Registry, settings: AppSettings) -> TokenResponse:
    try:
        user = await registry.authenticate(request.email, request.password)
    except AuthorizationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
    logger.info("User logged in", user_id=str(user.id), role=user.role.value)
    return _token_response(user, settings)


@router.get("/me", response_model=UserResponse, summary="Current user profile")
async def get_me(identity: CurrentIdentity, registry: Registry) -> UserResponse:
    user = await registry.get_user(identity.user_id)
    return UserResponse.model_validate(user)
