import os

# Must be set before lumepay modules build their engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "console")

import json
from datetime import datetime

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lumepay.main import app
from lumepay.core.clock import FrozenClock, get_clock
from lumepay.core.security import hash_password
from lumepay.database import Base, get_db
from lumepay.models.api_key import ApiKey
from lumepay.models.merchant import Merchant
from lumepay.services.system_settings import SettingsCache, get_waitlist_cache, load_waitlist_config
from lumepay.services.verification import VerificationClient, get_verification_client
from lumepay.services.webhooks import WebhookDispatcher, get_dispatcher

MERCHANT_ACCOUNT = "1234567890123"
MERCHANT_NAME = "Abebe Kebede"


def pytest_configure(config):
    config.addinivalue_line("markers", "payment: intent and payment engine tests")
    config.addinivalue_line("markers", "webhook: webhook signing and delivery tests")


# =========================
# DATABASE
# =========================
@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        # One shared connection; a closing session must not roll back the dispatcher's writes
        pool_reset_on_return=None,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def frozen_clock():
    return FrozenClock(datetime(2025, 1, 15, 12, 0, 0))


# =========================
# FACTORIES
# =========================
def make_merchant(db, email="merchant@example.com", name=MERCHANT_NAME, bank_account=MERCHANT_ACCOUNT,
                  bank_name="CBE", is_admin=False, password="correct-horse"):
    merchant = Merchant(
        email=email,
        name=name,
        hashed_password=hash_password(password),
        bank_account=bank_account,
        bank_name=bank_name,
        is_admin=is_admin,
    )
    db.add(merchant)
    db.commit()
    db.refresh(merchant)
    return merchant


def make_api_key(db, merchant, key="lume_test_key", credits=100, enabled=True,
                 rate_limit_enabled=True, window=60 * 60 * 24, limit=1000):
    api_key = ApiKey(
        name="Default Key",
        key=key,
        merchant_id=merchant.id,
        remaining_credits=credits,
        enabled=enabled,
        rate_limit_enabled=rate_limit_enabled,
        rate_limit_time_window=window,
        rate_limit_max=limit,
    )
    db.add(api_key)
    db.commit()
    db.refresh(api_key)
    return api_key


@pytest.fixture
def merchant(db):
    return make_merchant(db)


@pytest.fixture
def api_key(db, merchant):
    return make_api_key(db, merchant)


# =========================
# FAKE VERIFICATION SERVICE
# =========================
def verification_ok(amount="500", payer="X", receiver=MERCHANT_ACCOUNT, date="2025-01-15T11:58:00Z"):
    return {
        "success": True,
        "details": {"payer": payer, "amount": amount, "date": date, "receiver": receiver},
    }


class FakeVerificationService:
    """Stands in for the bank verification service behind httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.result = verification_ok()
        self.on_request = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if self.on_request is not None:
            hook, self.on_request = self.on_request, None
            hook(body)
        return httpx.Response(self.status_code, json=self.result)


@pytest.fixture
def verification_service():
    return FakeVerificationService()


@pytest.fixture
def verifier(verification_service):
    return VerificationClient(
        base_url="http://verifier.local",
        timeout=5,
        transport=httpx.MockTransport(verification_service),
    )


# =========================
# FAKE MERCHANT ENDPOINT
# =========================
class WebhookReceiver:
    """Merchant endpoint double. Answers 200 unless told otherwise."""

    def __init__(self):
        self.requests = []
        self.responses = []

    def respond_with(self, *responses):
        self.responses.extend(responses)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return httpx.Response(response)
        return httpx.Response(200)


@pytest.fixture
def webhook_receiver():
    return WebhookReceiver()


@pytest.fixture
def dispatcher(session_factory, webhook_receiver, frozen_clock):
    return WebhookDispatcher(
        session_factory=session_factory,
        retry_delays=(0, 0, 0),
        timeout=1,
        transport=httpx.MockTransport(webhook_receiver),
        clock=frozen_clock,
    )


@pytest.fixture
def waitlist_cache(session_factory, frozen_clock):
    def loader():
        session = session_factory()
        try:
            return load_waitlist_config(session)
        finally:
            session.close()

    return SettingsCache(loader=loader, ttl_seconds=300, clock=frozen_clock)


# =========================
# APP
# =========================
@pytest.fixture
def client(session_factory, frozen_clock, verifier, dispatcher, waitlist_cache):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: frozen_clock
    app.dependency_overrides[get_verification_client] = lambda: verifier
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_waitlist_cache] = lambda: waitlist_cache

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
