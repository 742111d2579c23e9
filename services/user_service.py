"""
User Accounts, Profiles and Presence Persistence.

This module provides the `UserService`, which covers everything stored on a
user row:

- Sign-up and login with email/phone and password, and federated login
  through a `FederatedIdentityProvider`. Each returns a signed access token.
- Profile create, patch and read. A patch only applies the fields present in
  the request; a changed email or phone is checked for uniqueness before
  commit.
- Public profiles, nearby users and ratings (one rating per rater and rated
  user, the running average is recomputed from the stored ratings).
- The `isOnline` flag. It is written by the presence tracker through
  `set_online`, and `mark_all_offline` clears it at startup because no
  connection survives a restart.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func as sa_func
from sqlmodel import col, or_, select

from core import config
from core.auth import JWTManager, PasswordManager
from core.database import session_scope
from core.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
)
from core.models import (
    AuthToken,
    Gender,
    ProfileRole,
    ProfileSummary,
    RatingResult,
    TokenStatus,
    User,
    UserProfileOut,
    UserRating,
)
from core.validation import InputValidator
from providers.identity_provider import FederatedIdentityProvider

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {
    "full_name",
    "age",
    "gender",
    "location",
    "role",
    "bio",
    "avatar",
    "images",
    "email",
    "phone",
}
NEARBY_LIMIT = 50


def _enum_value(enum_cls, field: str, value):
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidArgumentError(
            field,
            value,
            f"{field} must be one of: {', '.join(item.value for item in enum_cls)}",
        )


def validate_profile_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and normalize profile fields; None clears an optional field"""
    unknown = set(fields) - PROFILE_FIELDS
    if unknown:
        raise InvalidArgumentError(
            "profile", ", ".join(sorted(unknown)), "Unknown profile field"
        )

    cleaned = {}
    for field, value in fields.items():
        if value is None:
            if field in ("email", "phone", "images"):
                raise InvalidArgumentError(field, value, f"{field} cannot be cleared")
            cleaned[field] = None
        elif field == "full_name":
            cleaned[field] = InputValidator.sanitize_string(
                value, "fullName", max_length=100, min_length=1
            )
        elif field == "age":
            cleaned[field] = InputValidator.validate_integer(value, "age", 18, 99)
        elif field == "gender":
            cleaned[field] = _enum_value(Gender, "gender", value)
        elif field == "role":
            cleaned[field] = _enum_value(ProfileRole, "role", value)
        elif field == "location":
            cleaned[field] = InputValidator.sanitize_string(
                value, "location", max_length=120
            )
        elif field == "bio":
            cleaned[field] = InputValidator.sanitize_string(value, "bio", max_length=300)
        elif field == "avatar":
            cleaned[field] = InputValidator.validate_url(value, "avatar")
        elif field == "images":
            cleaned[field] = InputValidator.validate_url_list(
                value, "images", config.MAX_PROFILE_IMAGES
            )
        elif field == "email":
            cleaned[field] = InputValidator.validate_email(value)
        elif field == "phone":
            cleaned[field] = InputValidator.validate_phone(value)
    return cleaned


class UserService:
    """Service for accounts, profiles and ratings"""

    def __init__(
        self,
        jwt_manager: JWTManager,
        identity_provider: Optional[FederatedIdentityProvider] = None,
    ):
        self.jwt_manager = jwt_manager
        self.identity_provider = identity_provider

    async def signup(self, email: str, phone: str, password: str) -> AuthToken:
        if not email or not phone or not password:
            raise InvalidArgumentError(
                "signup", "", "Email, phone, and password are required"
            )

        email = InputValidator.validate_email(email)
        phone = InputValidator.validate_phone(phone)
        password_hash = PasswordManager.hash_password(password)

        async with session_scope("signup") as session:
            await self._ensure_unique(session, email=email, phone=phone)

            user = User(email=email, phone=phone, password_hash=password_hash)
            session.add(user)
            await session.commit()

        logger.info(f"User {user.id} signed up", extra={"user_id": user.id})
        return AuthToken(token=self.jwt_manager.create_access_token(user), is_new_user=True)

    async def login(self, identifier: str, password: str) -> AuthToken:
        """Log in with an email address or phone number"""
        if not identifier or not password:
            raise InvalidArgumentError("login", "", "Email and password are required")

        identifier = identifier.strip()
        async with session_scope("login") as session:
            result = await session.exec(
                select(User).where(
                    or_(User.email == identifier.lower(), User.phone == identifier)
                )
            )
            user = result.first()

        if user is None or not PasswordManager.verify_password(
            password, user.password_hash
        ):
            logger.warning("Failed login attempt")
            raise AuthenticationError("Invalid credentials")

        logger.info(f"User {user.id} logged in", extra={"user_id": user.id})
        return AuthToken(token=self.jwt_manager.create_access_token(user), is_new_user=False)

    async def federated_login(self, credential: str) -> AuthToken:
        """Sign in (or sign up) with a federated identity credential"""
        if self.identity_provider is None:
            raise AuthenticationError("Federated sign-in is not available")

        identity = await self.identity_provider.verify(credential)

        async with session_scope("federated_login") as session:
            conditions = [User.google_id == identity.subject]
            if identity.email:
                conditions.append(User.email == identity.email)
            result = await session.exec(select(User).where(or_(*conditions)))
            user = result.first()

            is_new_user = user is None
            if user is None:
                user = User(
                    google_id=identity.subject,
                    email=identity.email,
                    full_name=identity.name,
                    avatar=identity.picture,
                    verified=identity.email_verified,
                )
            else:
                user.google_id = identity.subject
                user.full_name = identity.name or user.full_name
                user.avatar = identity.picture or user.avatar
                user.updated_at = datetime.utcnow()
            session.add(user)
            await session.commit()

        logger.info(
            f"Federated login for user {user.id}",
            extra={"user_id": user.id, "provider": self.identity_provider.source_name},
        )
        return AuthToken(
            token=self.jwt_manager.create_access_token(user), is_new_user=is_new_user
        )

    async def verify_token(self, token: str) -> TokenStatus:
        """Check a token and report whether the profile still needs completing"""
        claims = self.jwt_manager.verify_token(token)

        async with session_scope("verify_token") as session:
            user = await session.get(User, claims["sub"])

        if user is None:
            raise AuthenticationError("User not found")

        return TokenStatus(valid=True, is_new_user=not user.full_name, user_id=user.id)

    async def create_profile(self, user_id: str, fields: Dict[str, Any]) -> UserProfileOut:
        if not fields.get("full_name"):
            raise InvalidArgumentError("fullName", "", "Full name is required")
        return await self._apply_profile(user_id, fields, "create_profile")

    async def update_profile(self, user_id: str, fields: Dict[str, Any]) -> UserProfileOut:
        """Apply only the fields present in `fields`"""
        return await self._apply_profile(user_id, fields, "update_profile")

    async def get_profile(self, user_id: str) -> UserProfileOut:
        async with session_scope("get_profile") as session:
            user = await self._get_user(session, user_id)
        return UserProfileOut.from_user(user)

    async def get_current(self, user_id: str) -> ProfileSummary:
        async with session_scope("get_current") as session:
            user = await self._get_user(session, user_id)
        return ProfileSummary.from_user(user)

    async def get_public_profile(self, user_id: str) -> UserProfileOut:
        InputValidator.validate_identifier(user_id, "userId")
        async with session_scope("get_public_profile") as session:
            user = await self._get_user(session, user_id)
        return UserProfileOut.from_user(user, include_contact=False)

    async def nearby(self, user_id: str) -> List[UserProfileOut]:
        """Users in the same location, online users first"""
        async with session_scope("nearby_users") as session:
            user = await self._get_user(session, user_id)
            if not user.location:
                return []

            result = await session.exec(
                select(User)
                .where(
                    sa_func.lower(User.location) == user.location.lower(),
                    User.id != user_id,
                )
                .order_by(col(User.is_online).desc(), col(User.updated_at).desc())
                .limit(NEARBY_LIMIT)
            )
            users = result.all()

        return [UserProfileOut.from_user(other, include_contact=False) for other in users]

    async def rate_user(self, rater_id: str, rated_id: str, value) -> RatingResult:
        """Create or replace the rater's rating and recompute the average"""
        InputValidator.validate_identifier(rated_id, "userId")
        value = InputValidator.validate_integer(value, "rating", 1, 5)
        if rater_id == rated_id:
            raise InvalidArgumentError("userId", rated_id, "You cannot rate yourself")

        async with session_scope("rate_user") as session:
            rated = await self._get_user(session, rated_id)

            result = await session.exec(
                select(UserRating).where(
                    UserRating.rater_id == rater_id, UserRating.rated_id == rated_id
                )
            )
            rating = result.first()
            if rating is None:
                rating = UserRating(rater_id=rater_id, rated_id=rated_id, value=value)
            else:
                rating.value = value
            session.add(rating)
            await session.flush()

            stats = await session.exec(
                select(sa_func.avg(UserRating.value), sa_func.count()).where(
                    UserRating.rated_id == rated_id
                )
            )
            average, count = stats.one()

            rated.rating_average = round(float(average or 0.0), 2)
            rated.rating_count = count
            session.add(rated)
            await session.commit()

        logger.info(f"User {rated_id} rated {value} by {rater_id}")
        return RatingResult(average_rating=rated.rating_average, rating_count=rated.rating_count)

    async def set_online(self, user_id: str, is_online: bool) -> bool:
        """Persist the presence flag. Returns False for an unknown user."""
        async with session_scope("set_online") as session:
            user = await session.get(User, user_id)
            if user is None:
                logger.warning(f"Presence update for unknown user {user_id}")
                return False
            user.is_online = is_online
            session.add(user)
            await session.commit()
        return True

    async def mark_all_offline(self) -> int:
        async with session_scope("mark_all_offline") as session:
            result = await session.exec(select(User).where(User.is_online == True))  # noqa: E712
            users = result.all()
            for user in users:
                user.is_online = False
                session.add(user)
            if users:
                await session.commit()

        if users:
            logger.info(f"Reset presence for {len(users)} user(s)")
        return len(users)

    async def _apply_profile(
        self, user_id: str, fields: Dict[str, Any], operation: str
    ) -> UserProfileOut:
        cleaned = validate_profile_fields(fields)

        async with session_scope(operation) as session:
            user = await self._get_user(session, user_id)
            await self._ensure_unique(
                session,
                email=cleaned.get("email"),
                phone=cleaned.get("phone"),
                exclude_id=user_id,
            )

            for field, value in cleaned.items():
                setattr(user, field, value)
            user.updated_at = datetime.utcnow()
            session.add(user)
            await session.commit()

        logger.info(
            f"Profile of user {user_id} saved",
            extra={"user_id": user_id, "fields": sorted(cleaned)},
        )
        return UserProfileOut.from_user(user)

    async def _ensure_unique(
        self,
        session,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        exclude_id: Optional[str] = None,
    ):
        checks = [
            (email, User.email, "Email already registered", "email"),
            (phone, User.phone, "Phone number already registered", "phone"),
        ]
        for value, column, message, field in checks:
            if value is None:
                continue
            statement = select(User.id).where(column == value)
            if exclude_id is not None:
                statement = statement.where(User.id != exclude_id)
            result = await session.exec(statement)
            if result.first() is not None:
                raise ConflictError(message, field)

    async def _get_user(self, session, user_id: str) -> User:
        user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user
