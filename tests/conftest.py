"""
tests/conftest.py -- Shared fixtures for authcore unit and integration tests.

This module provides:
  - settings: explicit Settings with fixed secrets and bcrypt_rounds=4
  - clock / store / otp_manager / token_issuer / service: wired auth core on
    an in-memory SQLite store, with a controllable clock
  - FakeMailSender / FakeHumanVerifier / FakeIdentityProvider: recording
    stand-ins for the external collaborators
  - api_client: TestClient on the real FastAPI app with a patched lifespan

Async tests: coroutine test functions are run with asyncio.run() by the
pytest_pyfunc_call hook below, so no extra pytest plugin is required.

The DEBUG env var must be set before any api/ import: api/main.py reads
get_settings() at import time, and DEBUG lets it generate dev secrets instead
of raising ValueError.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any core/api import.
os.environ.setdefault("DEBUG", "true")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from auth.errors import InvalidExternalToken, VerificationFailed  # noqa: E402
from auth.models import ExternalIdentity  # noqa: E402
from auth.otp import OtpManager  # noqa: E402
from auth.service import AccountService  # noqa: E402
from auth.spam import SpamFilter  # noqa: E402
from auth.store import AccountStore  # noqa: E402
from auth.tokens import TokenIssuer  # noqa: E402
from core.config import Settings  # noqa: E402

ACCESS_SECRET = "test-access-secret-0123456789abcdef0123456789"
REFRESH_SECRET = "test-refresh-secret-fedcba9876543210fedcba98"

_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Async test support
# ---------------------------------------------------------------------------


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeMailSender:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.fail = fail

    async def send(self, to_email, subject, template_name, variables) -> None:
        if self.fail:
            raise ConnectionError("SMTP unreachable")
        self.sent.append(
            {"to": to_email, "subject": subject, "template": template_name, "variables": dict(variables)}
        )


class FakeHumanVerifier:
    def __init__(self, passes: bool = True) -> None:
        self.passes = passes
        self.tokens: list[str] = []

    async def verify(self, token: str) -> None:
        self.tokens.append(token)
        if not self.passes:
            raise VerificationFailed()


class FakeIdentityProvider:
    """Maps external tokens to identities; unknown tokens are rejected."""

    def __init__(self, identities: dict[str, ExternalIdentity] | None = None) -> None:
        self.identities = identities or {}

    async def introspect(self, external_token: str) -> ExternalIdentity:
        try:
            return self.identities[external_token]
        except KeyError:
            raise InvalidExternalToken() from None


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "jwt_secret": ACCESS_SECRET,
        "jwt_refresh_secret": REFRESH_SECRET,
        "bcrypt_rounds": 4,
        "spam_domains": "blocked-domain.com,mailinator.com",
        "database_url": "sqlite:///:memory:",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def otp_manager(store, settings, clock) -> OtpManager:
    return OtpManager(store, settings, now=clock)


@pytest.fixture
def token_issuer(settings) -> TokenIssuer:
    return TokenIssuer(settings)


@pytest.fixture
def mail() -> FakeMailSender:
    return FakeMailSender()


@pytest.fixture
def human_verifier() -> FakeHumanVerifier:
    return FakeHumanVerifier()


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def service(store, settings, otp_manager, token_issuer, mail, human_verifier, identity_provider) -> AccountService:
    return AccountService(
        store=store,
        settings=settings,
        otp=otp_manager,
        tokens=token_issuer,
        spam_filter=SpamFilter.from_settings(settings),
        mail=mail,
        human_verifier=human_verifier,
        identity_provider=identity_provider,
    )


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, store: AccountStore, mail, verifier, identity):
    """Return a lifespan that wires a test store and fake collaborators into app.state."""
    from api.main import build_components

    @asynccontextmanager
    async def test_lifespan(app):
        build_components(app, settings, store=store)
        service = app.state.account_service
        service.mail = mail
        service.human_verifier = verifier
        service.identity_provider = identity
        yield
        await service.drain()

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, AccountStore, FakeMailSender, FakeIdentityProvider], None, None]:
    """Yield (client, store, mail, identity_provider) for API integration tests.

    Named shared-memory SQLite URIs (not plain :memory:) are required because
    TestClient runs the app on another thread; a plain :memory: database is
    per-connection and would look empty to it.
    """
    from api.main import app

    db_url = f"sqlite:///file:test_auth_api_{next(_db_counter)}?mode=memory&cache=shared&uri=true"
    settings = make_settings(database_url=db_url, service_key="test-service-key")
    store = AccountStore(db_url)
    mail = FakeMailSender()
    identity = FakeIdentityProvider()

    app.router.lifespan_context = _patch_lifespan(settings, store, mail, FakeHumanVerifier(), identity)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client, store, mail, identity

    store.close()
