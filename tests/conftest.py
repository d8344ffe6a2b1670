"""
Test configuration and fixtures for the dashboard API.
"""
import os
import uuid
import pytest
import httpx
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment before importing app
os.environ["DEV_MODE"] = "true"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key-not-for-production"
os.environ["ENCRYPTION_SALT"] = "dGVzdC1zYWx0LW5vdC1mb3ItcHJvZHVjdGlvbg=="
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["BREVO_API_KEY"] = ""

from dashboard.auth.backend import LocalIdentityBackend, get_identity_backend, hash_password
from dashboard.auth.identity import issue_token, to_identity
from dashboard.database import get_db
from dashboard.models import Base, IdentityAccount, User, UsageData
from dashboard.services.elevenlabs import ElevenLabsClient, get_elevenlabs_client
from dashboard.utils.mailer import BrevoMailer, Mailer
from main import app

PROVIDER_URL = "https://api.elevenlabs.test"
TEST_PASSWORD = "correct-horse-battery"


# Create test database
engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingMailer(Mailer):
    """Mailer that keeps sent reset links in memory."""

    def __init__(self):
        self.sent = []

    async def send_password_reset(self, to_email: str, reset_link: str) -> None:
        self.sent.append((to_email, reset_link))


class StubProvider:
    """
    In-process stand-in for the ElevenLabs API.

    `routes` maps a request path to either an httpx.Response or a callable
    taking the request and returning one. Unknown paths answer 404.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"detail": "not found"})
        return route(request) if callable(route) else route

    def client(self) -> ElevenLabsClient:
        return ElevenLabsClient(base_url=PROVIDER_URL, timeout=5,
                                transport=httpx.MockTransport(self.handler))


@pytest.fixture(scope="function")
def db():
    """Create fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def unreachable_mailer():
    """Brevo mailer whose transport refuses every connection."""
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)
    return BrevoMailer("brevo-test-key", "noreply@example.com", transport=httpx.MockTransport(refuse))


@pytest.fixture
def backend(db, mailer):
    return LocalIdentityBackend(db, mailer=mailer)


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def provider_client(provider):
    return provider.client()


@pytest.fixture
def make_user(db):
    """Factory creating a login plus directory entry; returns its Identity."""
    def _make_user(email=None, role="user", is_active=True, agent_id_filter=None, display_name="Test User"):
        user_id = uuid.uuid4().hex
        email = email or f"{user_id[:8]}@example.com"
        db.add(IdentityAccount(id=user_id, email=email, password_hash=hash_password(TEST_PASSWORD)))
        user = User(
            id=user_id,
            email=email,
            display_name=display_name,
            role=role,
            is_active=is_active,
            agent_id_filter=agent_id_filter,
        )
        db.add(user)
        db.add(UsageData(owner_id=user_id, history=[]))
        db.commit()
        return to_identity(user)
    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", role="admin", display_name="Admin User")


@pytest.fixture
def regular_user(make_user):
    return make_user(email="user@example.com", role="user", display_name="Regular User")


@pytest.fixture
def client(db, mailer, provider):
    """Create test client with database, identity backend and provider overrides."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_backend] = lambda: LocalIdentityBackend(db, mailer=mailer)
    app.dependency_overrides[get_elevenlabs_client] = provider.client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Factory returning a Bearer header for a test identity."""
    def _auth_headers(identity):
        return {"Authorization": f"Bearer {issue_token(identity)}"}
    return _auth_headers
