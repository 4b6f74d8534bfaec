"""
Partner registry: accounts, availability, location, earnings and ratings.

The registry owns the user entity, including its credentials: password
hashes are produced and checked here and never leave it. Rating and earnings
updates are read-modify-write operations performed under the per-user lock.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Optional, Sequence, Union
from uuid import UUID, uuid4

from delivery_tracker.core import geo
from delivery_tracker.core.config import Settings, get_settings
from delivery_tracker.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
)
from delivery_tracker.core.logging import get_logger
from delivery_tracker.core.security import hash_password, verify_password
from delivery_tracker.database.models.user import User, UserRole, VehicleType
from delivery_tracker.services.partners.repository import UserRepository

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6
RATING_QUANTUM = Decimal("0.1")
MONEY_QUANTUM = Decimal("0.01")
EARNINGS_MODES = ("add", "withdraw")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def rolling_average(average: Decimal, count: int, rating: int) -> Decimal:
    """
    Fold one rating into an incremental mean, rounded half-up to 0.1.

    Example:
        >>> rolling_average(Decimal("4.0"), 2, 5)
        Decimal('4.3')
    """
    total = Decimal(average) * count + rating
    return (total / (count + 1)).quantize(RATING_QUANTUM, rounding=ROUND_HALF_UP)


class PartnerRegistry:
    """User accounts and delivery-partner state over a ``UserRepository``."""

    def __init__(
        self,
        repository: UserRepository,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.settings = settings or get_settings()
        self._now = clock

    async def register_user(
        self,
        name: str,
        email: str,
        phone: str,
        password: str,
        role: Union[UserRole, str] = UserRole.CUSTOMER,
        vehicle_type: Optional[Union[VehicleType, str]] = None,
        license_number: Optional[str] = None,
        vehicle_number: Optional[str] = None,
    ) -> User:
        """
        Create a user account.

        Partner profile columns are populated only for delivery partners.

        Raises:
            ValidationError: If any field is malformed
            ConflictError: If the email or phone is already registered
        """
        name = (name or "").strip()
        email = (email or "").strip().lower()
        phone = (phone or "").strip()

        if not name:
            raise ValidationError("Name is required")
        if "@" not in email or "." not in email.split("@")[-1]:
            raise ValidationError("Invalid email format", email=email)
        if not phone:
            raise ValidationError("Phone is required")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        try:
            role = role if isinstance(role, UserRole) else UserRole.from_string(role)
            if vehicle_type is not None and not isinstance(vehicle_type, VehicleType):
                vehicle_type = VehicleType(str(vehicle_type).lower())
        except ValueError as e:
            raise ValidationError(str(e)) from e

        existing = await self.repository.find_by_email_or_phone(email, phone)
        if existing is not None:
            field = "email" if existing.email == email else "phone"
            logger.warning("Registration rejected: duplicate account", field=field)
            raise ConflictError(f"A user with this {field} already exists", field=field)

        is_partner = role == UserRole.DELIVERY_PARTNER
        now = self._now()
        user = User(
            id=uuid4(),
            name=name,
            email=email,
            phone=phone,
            password_hash=hash_password(password),
            role=role,
            is_active=True,
            vehicle_type=vehicle_type if is_partner else None,
            license_number=license_number if is_partner else None,
            vehicle_number=vehicle_number if is_partner else None,
            is_verified=False,
            rating_average=Decimal("0.0"),
            rating_count=0,
            earnings_total=Decimal("0.00"),
            earnings_pending=Decimal("0.00"),
            is_online=False,
            current_latitude=None,
            current_longitude=None,
            location_updated_at=None,
            created_at=now,
            updated_at=now,
        )
        await self.repository.add(user)

        logger.info("User registered", user_id=str(user.id), role=role.value)
        return user

    async def authenticate(self, email: str, password: str) -> User:
        """
        Check credentials.

        Raises:
            AuthorizationError: If the credentials are wrong or the account is inactive
        """
        user = await self.repository.get_by_email((email or "").strip())
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Authentication failed: invalid credentials")
            raise AuthorizationError("Invalid email or password")
        if not user.is_active:
            logger.warning("Authentication failed: inactive account", user_id=str(user.id))
            raise AuthorizationError("Account is inactive")
        return user

    async def get_user(self, user_id: UUID) -> User:
        """
        Raises:
            NotFoundError: If the user does not exist
        """
        user = await self.repository.get(user_id)
        if user is None:
            raise NotFoundError("User not found", user_id=user_id)
        return user

    async def get_partner(self, partner_id: UUID) -> User:
        """
        Fetch a delivery partner.

        Raises:
            NotFoundError: If unknown or not a delivery partner
        """
        user = await self.repository.get(partner_id)
        if user is None or not user.is_partner:
            raise NotFoundError("Delivery partner not found", partner_id=partner_id)
        return user

    async def set_online(self, partner_id: UUID, online: bool) -> User:
        partner = await self.get_partner(partner_id)
        partner.is_online = bool(online)
        await self.repository.save(partner)
        logger.info("Partner availability changed", partner_id=str(partner_id), is_online=partner.is_online)
        return partner

    async def toggle_online(self, partner_id: UUID) -> User:
        partner = await self.get_partner(partner_id)
        return await self.set_online(partner_id, not partner.is_online)

    async def set_verified(self, partner_id: UUID, verified: bool = True) -> User:
        partner = await self.get_partner(partner_id)
        partner.is_verified = bool(verified)
        await self.repository.save(partner)
        logger.info("Partner verification changed", partner_id=str(partner_id), is_verified=partner.is_verified)
        return partner

    async def set_location(self, partner_id: UUID, latitude: Any, longitude: Any) -> User:
        """
        Record a partner's reported position.

        Raises:
            ValidationError: If the coordinates are invalid
            NotFoundError: If the partner is unknown
        """
        lat, lon = geo.validate_coordinates(latitude, longitude)
        partner = await self.get_partner(partner_id)
        partner.current_latitude = lat
        partner.current_longitude = lon
        partner.location_updated_at = self._now()
        await self.repository.save(partner)
        return partner

    async def find_nearby(
        self,
        latitude: Any,
        longitude: Any,
        radius_km: Optional[float] = None,
        exact: bool = False,
    ) -> Sequence[User]:
        """
        Online, verified partners around a point.

        Args:
            latitude: Centre latitude
            longitude: Centre longitude
            radius_km: Search radius; defaults to the dispatch radius
            exact: Also drop partners outside the great-circle radius

        Returns:
            Partners inside the bounding box (and radius when ``exact``)
        """
        lat, lon = geo.validate_coordinates(latitude, longitude)
        radius = self.settings.dispatch_radius_km if radius_km is None else radius_km
        if radius <= 0:
            raise ValidationError("Radius must be positive", radius_km=radius)

        box = geo.bounding_box(lat, lon, radius, km_per_degree=self.settings.km_per_degree)
        partners = list(await self.repository.find_partners_in_box(box))
        if exact:
            partners = [
                partner
                for partner in partners
                if geo.haversine_distance_km(
                    lat, lon, partner.current_latitude, partner.current_longitude
                )
                <= radius
            ]

        logger.debug(
            "Nearby partners found",
            latitude=lat,
            longitude=lon,
            radius_km=radius,
            exact=exact,
            count=len(partners),
        )
        return partners

    async def adjust_earnings(
        self,
        partner_id: UUID,
        amount: Any,
        mode: str = "add",
    ) -> dict[str, Decimal]:
        """
        Credit or withdraw partner earnings.

        ``add`` increments both total and pending earnings; ``withdraw``
        decrements pending earnings only.

        Raises:
            ValidationError: If the amount is not positive or the mode is unknown
            InsufficientFundsError: If a withdrawal exceeds pending earnings
            NotFoundError: If the partner is unknown
        """
        if mode not in EARNINGS_MODES:
            raise ValidationError(
                f"Mode must be one of: {', '.join(EARNINGS_MODES)}", mode=mode
            )
        try:
            value = Decimal(str(amount)).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)
        except (InvalidOperation, ValueError) as e:
            raise ValidationError("Valid amount is required", amount=amount) from e
        if isinstance(amount, bool) or not value.is_finite() or value <= 0:
            raise ValidationError("Valid amount is required", amount=amount)

        async with self.repository.lock(partner_id) as partner:
            if partner is None or not partner.is_partner:
                raise NotFoundError("Delivery partner not found", partner_id=partner_id)

            pending = Decimal(partner.earnings_pending)
            if mode == "add":
                partner.earnings_total = Decimal(partner.earnings_total) + value
                partner.earnings_pending = pending + value
            else:
                if value > pending:
                    logger.warning(
                        "Withdrawal rejected: insufficient pending earnings",
                        partner_id=str(partner_id),
                        amount=str(value),
                        pending=str(pending),
                    )
                    raise InsufficientFundsError(
                        "Insufficient pending earnings",
                        amount=str(value),
                        pending=str(pending),
                    )
                partner.earnings_pending = pending - value

            await self.repository.save(partner)

        logger.info(
            "Partner earnings updated",
            partner_id=str(partner_id),
            mode=mode,
            amount=str(value),
        )
        return {
            "total": Decimal(partner.earnings_total),
            "pending": Decimal(partner.earnings_pending),
        }

    async def apply_rating(self, partner_id: UUID, rating: int) -> User:
        """
        Fold a customer rating into the partner's rolling average.

        Raises:
            ValidationError: If the rating is not an integer from 1 to 5
            NotFoundError: If the partner is unknown
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5", rating=rating)

        async with self.repository.lock(partner_id) as partner:
            if partner is None or not partner.is_partner:
                raise NotFoundError("Delivery partner not found", partner_id=partner_id)

            count = partner.rating_count or 0
            partner.rating_average = rolling_average(
                Decimal(partner.rating_average or 0), count, rating
            )
            partner.rating_count = count + 1
            await self.repository.save(partner)

        logger.info(
            "Partner rating updated",
            partner_id=str(partner_id),
            rating=rating,
            average=str(partner.rating_average),
            count=partner.rating_count,
        )
        return partner

    async def commit(self) -> None:
        await self.repository.commit()
