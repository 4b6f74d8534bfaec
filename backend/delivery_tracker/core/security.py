"""
Security utilities for password hashing and bearer-token handling.

This module provides:
- Password hashing with bcrypt (passlib)
- JWT access token encoding and decoding (python-jose)
- The caller ``Identity`` every core operation is authorized against

Token issuance beyond ``create_access_token`` (login flows, refresh tokens)
lives outside this service; the API only decodes tokens presented to it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import JWTError, jwt
from passlib.context import CryptContext

from delivery_tracker.core.config import get_settings
from delivery_tracker.core.exceptions import DeliveryTrackerError, ValidationError
from delivery_tracker.core.logging import get_logger
from delivery_tracker.database.models.user import UserRole

logger = get_logger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=12,
    bcrypt__ident="2b",
)


class TokenError(DeliveryTrackerError):
    """Raised when a bearer token is missing, expired or malformed."""

    code = "TOKEN_INVALID"


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as seen by the core services."""

    user_id: UUID
    role: UserRole

    @property
    def is_customer(self) -> bool:
        return self.role == UserRole.CUSTOMER

    @property
    def is_partner(self) -> bool:
        return self.role == UserRole.DELIVERY_PARTNER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password to hash

    Returns:
        Hashed password string

    Raises:
        ValidationError: If password is empty
    """
    if not password:
        logger.error("Attempted to hash empty password")
        raise ValidationError("Password cannot be empty")

    hashed = pwd_context.hash(password)
    logger.debug("Password hashed successfully", password_length=len(password))
    return hashed


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Returns:
        True if password matches, False otherwise (including empty inputs)
    """
    if not plain_password or not hashed_password:
        logger.warning(
            "Password verification attempted with empty values",
            has_plain=bool(plain_password),
            has_hashed=bool(hashed_password),
        )
        return False

    is_valid = pwd_context.verify(plain_password, hashed_password)
    logger.debug("Password verification completed", is_valid=is_valid)
    return is_valid


def create_access_token(
    user_id: UUID,
    role: UserRole,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Encode a signed access token for a user.

    Args:
        user_id: Subject of the token
        role: Role claim carried alongside the subject
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta
        or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    )

    claims = {
        "sub": str(user_id),
        "role": role.value,
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    token = jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)

    logger.info(
        "Access token created",
        subject=str(user_id),
        role=role.value,
        expires_at=expire.isoformat(),
    )
    return token


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT token.

    Raises:
        TokenError: If token is empty, expired or malformed
    """
    if not token:
        logger.warning("Attempted to decode empty token")
        raise TokenError("Token cannot be empty")

    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired") from e
    except JWTError as e:
        logger.warning("Invalid token", error=str(e), error_type=type(e).__name__)
        raise TokenError("Invalid token") from e

    logger.debug(
        "Token decoded successfully",
        subject=payload.get("sub"),
        token_type=payload.get("type"),
    )
    return payload


def identity_from_token(token: str) -> Identity:
    """
    Resolve the caller identity carried by a bearer token.

    Raises:
        TokenError: If the token is invalid or lacks a usable subject/role
    """
    payload = decode_token(token)

    subject = payload.get("sub")
    role = payload.get("role")
    if not subject or not role:
        logger.warning("Token missing required claims", has_sub=bool(subject))
        raise TokenError("Token missing required claims")

    try:
        return Identity(user_id=UUID(str(subject)), role=UserRole(role))
    except ValueError as e:
        logger.warning("Token carries malformed claims", subject=subject, role=role)
        raise TokenError("Token carries malformed claims") from e
