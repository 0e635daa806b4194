import hashlib
import hmac
import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from flashcard_svc.app import app
from flashcard_svc.config import Settings, get_settings
from flashcard_svc.exceptions import AuthenticationError
from flashcard_svc.identity import AuthenticatedUser, get_identity_verifier
from flashcard_svc.models import flashcard_set, user  # noqa: F401
from flashcard_svc.models.base import Base, get_db

WEBHOOK_SECRET = "whsec_test_secret"

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeIdentityVerifier:
    """Accepts tokens of the form ``token-<uid>``."""

    def verify(self, id_token):
        if not id_token.startswith("token-"):
            raise AuthenticationError("Invalid token")
        uid = id_token[len("token-"):]
        return AuthenticatedUser(uid=uid, email=f"{uid}@example.com")


def auth_headers(uid):
    return {"Authorization": f"Bearer token-{uid}"}


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header for a payload string."""
    if timestamp is None:
        timestamp = int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        stripe_secret_key="sk_test_dummy",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_price_id="price_test",
        anthropic_api_key="sk-ant-test",
        firebase_project_id="test-project",
    )


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db_session, settings):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_identity_verifier] = lambda: FakeIdentityVerifier()

    yield TestClient(app)

    app.dependency_overrides.clear()
