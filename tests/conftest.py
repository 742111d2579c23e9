import os
import sys
import uuid
from types import SimpleNamespace
from typing import Generator

import pytest
from fastapi.testclient import TestClient

# Settings are read at import time
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-jwt-signing-0123456789")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")

# Add the parent directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core import config, database
from core.auth import JWTManager, PasswordManager
from core.models import Payment, PaymentPurpose, PaymentStatus, User
from services.chat_service import ChatService
from services.notification_service import NotificationDispatcher
from services.payment_service import PaymentService, payment_reference
from services.post_service import PostService
from services.presence_service import PresenceTracker
from services.user_service import UserService

TEST_PASSWORD = "Passw0rd!"
TEST_SECRET = os.environ["JWT_SECRET_KEY"]


class FakeHandle:
    """Stands in for a websocket connection and records what it was sent"""

    def __init__(self, fail: bool = False):
        self.handle_id = uuid.uuid4().hex
        self.sent = []
        self.fail = fail
        self.closed_with = None

    async def send(self, event, payload):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append((event, payload))

    async def close(self, code=4000):
        self.closed_with = code

    def events(self, name=None):
        return [payload for event, payload in self.sent if name is None or event == name]


@pytest.fixture
def make_handle():
    return FakeHandle


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    monkeypatch.setattr(config, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest.fixture
async def db(database_url):
    """Fresh SQLite database with all tables"""
    database.configure_engine(database_url)
    await database.create_db_and_tables()
    yield database
    await database.engine.dispose()


@pytest.fixture
def jwt_manager():
    return JWTManager(secret_key=TEST_SECRET)


@pytest.fixture
async def services(db, jwt_manager):
    """Service graph wired the way the application wires it"""
    user_service = UserService(jwt_manager)
    tracker = PresenceTracker(status_store=user_service.set_online)
    dispatcher = NotificationDispatcher(tracker)
    chat_service = ChatService(dispatcher)
    payment_service = PaymentService()
    post_service = PostService(chat_service, payment_service, dispatcher)
    return SimpleNamespace(
        users=user_service,
        tracker=tracker,
        dispatcher=dispatcher,
        chats=chat_service,
        payments=payment_service,
        posts=post_service,
    )


@pytest.fixture
def user_factory(db):
    """Insert users directly"""
    counter = {"n": 0}
    password_hash = PasswordManager.hash_password(TEST_PASSWORD)

    async def create(**fields) -> User:
        counter["n"] += 1
        n = counter["n"]
        fields.setdefault("email", f"user{n}@example.com")
        fields.setdefault("phone", f"+1555000{n:04d}")
        fields.setdefault("full_name", f"User {n}")
        fields.setdefault("password_hash", password_hash)
        user = User(**fields)
        async with database.session_scope("test_create_user") as session:
            session.add(user)
            await session.commit()
        return user

    return create


@pytest.fixture
def payment_factory(db):
    """Insert payments directly, in any status"""

    async def create(
        user_id: str,
        status: PaymentStatus = PaymentStatus.VERIFIED,
        purpose: PaymentPurpose = PaymentPurpose.UNLOCK_ACCEPTANCES,
        post_id: str = None,
    ) -> Payment:
        payment = Payment(
            user_id=user_id,
            post_id=post_id,
            purpose=purpose,
            proof_url="/Uploads/proof.png",
            status=status,
            reference=payment_reference(),
        )
        async with database.session_scope("test_create_payment") as session:
            session.add(payment)
            await session.commit()
        return payment

    return create


@pytest.fixture
def test_client(database_url, upload_dir) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app on a fresh database."""
    from main import app

    database.configure_engine(database_url)
    with TestClient(app) as client:
        yield client


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(test_client):
    """Sign up users through the API"""

    def signup(n: int, name: str = None) -> dict:
        return _signup(test_client, n, name)

    return signup


def _signup(client: TestClient, n: int, name: str = None) -> dict:
    response = client.post(
        "/auth/signup",
        json={
            "email": f"member{n}@example.com",
            "phone": f"+1444000{n:04d}",
            "password": TEST_PASSWORD,
        },
    )
    assert response.status_code == 200, response.text
    token = response.json()["token"]
    headers = auth_headers(token)

    if name:
        profile = client.post("/users/profile", json={"fullName": name}, headers=headers)
        assert profile.status_code == 200, profile.text

    user_id = JWTManager(secret_key=TEST_SECRET).verify_token(token)["sub"]
    return {"id": user_id, "token": token, "headers": headers}


@pytest.fixture
def png_bytes():
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
