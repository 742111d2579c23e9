"""
Core Authentication Primitives.

This module issues and verifies the bearer tokens carried by every
authenticated request and websocket connection, and hashes passwords.

Key Components:
- `JWTManager`: creates and verifies HS256 JSON Web Tokens. A token carries
  the user id (`sub`), profile role, admin flag and a few cached profile
  fields (`fullName`, `avatar`) and expires after seven days by default.
- `PasswordManager`: bcrypt hashing and verification with a basic strength
  policy.
- `AuthenticatedUser`: the identity extracted from a verified token. It is
  what routers receive from the `get_current_user` dependency.

Account storage lives in `services.user_service`; this module never touches
the database.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

import bcrypt
import jwt

from core import config
from core.logging_config import get_logger
from core.exceptions import AuthenticationError, InvalidArgumentError
from core.models import User

logger = get_logger(__name__)


class TokenType(Enum):
    """Token types"""

    ACCESS = "access"


@dataclass
class AuthenticatedUser:
    """Identity carried by a verified access token"""

    id: str
    role: Optional[str] = None
    is_admin: bool = False
    full_name: Optional[str] = None
    avatar: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "AuthenticatedUser":
        return cls(
            id=claims["sub"],
            role=claims.get("role"),
            is_admin=bool(claims.get("isAdmin", False)),
            full_name=claims.get("fullName"),
            avatar=claims.get("avatar"),
        )


class JWTManager:
    """JWT token management"""

    def __init__(self, secret_key: str = None, algorithm: str = config.JWT_ALGORITHM):
        self.secret_key = secret_key or config.JWT_SECRET_KEY or self._generate_secret_key()
        self.algorithm = algorithm
        self.access_token_expire = timedelta(days=config.ACCESS_TOKEN_EXPIRE_DAYS)

    def _generate_secret_key(self) -> str:
        """Generate a secure secret key"""
        key = secrets.token_urlsafe(32)
        logger.warning(
            "Generated new JWT secret key. This should be set via JWT_SECRET_KEY environment variable."
        )
        return key

    def create_access_token(self, user: User, expires_delta: timedelta = None) -> str:
        """Create JWT access token"""
        if expires_delta is None:
            expires_delta = self.access_token_expire

        now = datetime.utcnow()
        payload = {
            "sub": user.id,
            "role": user.role.value if user.role else None,
            "isAdmin": user.is_admin,
            "fullName": user.full_name,
            "avatar": user.avatar,
            "type": TokenType.ACCESS.value,
            "exp": now + expires_delta,
            "iat": now,
            "jti": secrets.token_urlsafe(16),
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"Created access token for user {user.id}")
        return token

    def verify_token(
        self, token: str, token_type: TokenType = TokenType.ACCESS
    ) -> Dict[str, Any]:
        """Verify and decode JWT token"""
        if not token:
            raise AuthenticationError("No token provided")

        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {str(e)}")

        if payload.get("type") != token_type.value:
            raise AuthenticationError(f"Invalid token type. Expected {token_type.value}")

        if not payload.get("sub"):
            raise AuthenticationError("Token has no subject")

        return payload

    def authenticate(self, token: str) -> AuthenticatedUser:
        return AuthenticatedUser.from_claims(self.verify_token(token))


class PasswordManager:
    """Password hashing and verification"""

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash password using bcrypt"""
        PasswordManager.validate_password_strength(password)

        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def verify_password(password: str, hashed: Optional[str]) -> bool:
        """Verify password against hash"""
        if not password or not hashed:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError as e:
            logger.error(f"Password verification error: {e}")
            return False

    # (check, message); bcrypt only looks at the first 72 bytes
    PASSWORD_RULES = (
        (lambda p: len(p) >= 8, "Password must be at least 8 characters long"),
        (lambda p: len(p.encode("utf-8")) <= 72, "Password must be no more than 72 bytes long"),
        (
            lambda p: any(c.isalpha() for c in p) and any(c.isdigit() for c in p),
            "Password must contain at least one letter and one digit",
        ),
    )

    @classmethod
    def validate_password_strength(cls, password: str) -> bool:
        if not isinstance(password, str):
            raise InvalidArgumentError("password", "***", "Password is required")
        for check, message in cls.PASSWORD_RULES:
            if not check(password):
                raise InvalidArgumentError("password", "***", message)
        return True


# Global token manager
_jwt_manager: Optional[JWTManager] = None


def get_jwt_manager() -> JWTManager:
    """Get global JWT manager"""
    global _jwt_manager
    if _jwt_manager is None:
        _jwt_manager = JWTManager()
    return _jwt_manager


def init_jwt_manager(secret_key: str = None) -> JWTManager:
    """Initialize global JWT manager"""
    global _jwt_manager
    _jwt_manager = JWTManager(secret_key=secret_key)
    logger.info("Initialized JWT manager")
    return _jwt_manager
