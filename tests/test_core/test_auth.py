from datetime import timedelta

import jwt
import pytest

from core.auth import AuthenticatedUser, JWTManager, PasswordManager, TokenType
from core.exceptions import AuthenticationError, InvalidArgumentError
from core.models import ProfileRole, User, new_id


@pytest.fixture
def manager():
    return JWTManager(secret_key="unit-test-secret-key-0123456789abcdef")


@pytest.fixture
def user():
    return User(
        id=new_id(),
        email="token@example.com",
        full_name="Token User",
        role=ProfileRole.FRIENDS,
        avatar="/Uploads/a.png",
    )


class TestJWTManager:
    """Test JWT token management."""

    def test_create_and_verify(self, manager, user):
        token = manager.create_access_token(user)

        claims = manager.verify_token(token)

        assert claims["sub"] == user.id
        assert claims["role"] == "friends"
        assert claims["isAdmin"] is False
        assert claims["fullName"] == "Token User"
        assert claims["type"] == TokenType.ACCESS.value
        assert claims["exp"] - claims["iat"] == int(timedelta(days=7).total_seconds())

    def test_authenticate_returns_user(self, manager, user):
        current = manager.authenticate(manager.create_access_token(user))

        assert isinstance(current, AuthenticatedUser)
        assert current.id == user.id
        assert current.full_name == "Token User"
        assert current.is_admin is False

    def test_expired_token(self, manager, user):
        token = manager.create_access_token(user, expires_delta=timedelta(seconds=-1))

        with pytest.raises(AuthenticationError) as exc_info:
            manager.verify_token(token)
        assert exc_info.value.message == "Token has expired"

    def test_token_signed_with_other_key(self, manager, user):
        other = JWTManager(secret_key="another-secret-key-0123456789abcdef")
        with pytest.raises(AuthenticationError):
            manager.verify_token(other.create_access_token(user))

    @pytest.mark.parametrize("token", ["", None, "not.a.token"])
    def test_malformed_token(self, manager, token):
        with pytest.raises(AuthenticationError):
            manager.verify_token(token)

    def test_wrong_token_type(self, manager, user):
        token = jwt.encode(
            {"sub": user.id, "type": "refresh"}, manager.secret_key, algorithm="HS256"
        )
        with pytest.raises(AuthenticationError):
            manager.verify_token(token)

    def test_missing_subject(self, manager):
        token = jwt.encode({"type": "access"}, manager.secret_key, algorithm="HS256")
        with pytest.raises(AuthenticationError):
            manager.verify_token(token)


class TestPasswordManager:
    def test_hash_and_verify(self):
        hashed = PasswordManager.hash_password("Passw0rd!")

        assert hashed != "Passw0rd!"
        assert PasswordManager.verify_password("Passw0rd!", hashed)
        assert not PasswordManager.verify_password("Passw0rd?", hashed)

    def test_verify_without_hash(self):
        assert PasswordManager.verify_password("Passw0rd!", None) is False
        assert PasswordManager.verify_password("Passw0rd!", "not-a-bcrypt-hash") is False

    @pytest.mark.parametrize("password", ["short1", "onlyletters", "12345678", "a1" * 40])
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(InvalidArgumentError) as exc_info:
            PasswordManager.validate_password_strength(password)
        assert exc_info.value.details["value"] == "***"
