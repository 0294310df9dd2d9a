"""
Test fixtures for the payment ledger test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - booking_client / payout_gateway: In-memory fakes of the collaborators
  - ledger: A LedgerEngine wired to the test database and the fakes
  - file_ledger: The same against a temporary file database, for tests
    that run operations concurrently on separate connections
  - client: Async HTTP test client with the test engine on app.state
  - member_headers / service_headers / admin_headers: Bearer tokens

Key design decisions:
  - Settings are read from the environment at import time, so the
    required secrets are set before anything from payledger is imported.
  - In-memory SQLite shares one connection between sessions, which is
    fine for sequential operations but can't exercise concurrent writers.
    Concurrency tests use file_ledger.
  - Tokens are minted with create_access_token, the same way the
    marketplace's user system signs them.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault(
    "PAYMENT_METHOD_ENCRYPTION_KEY", "cGF5bGVkZ2VyLXRlc3QtZW5jcnlwdGlvbi1rZXktMzI="
)
os.environ.setdefault("WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from payledger.database import Base, make_session_factory
from payledger.engine import LedgerEngine
from payledger.exceptions import (
    GatewayUnavailableError,
    PayeeNotFoundError,
    PayoutRejectedError,
)
from payledger.main import app
from payledger.models.payment_method import PaymentMethodType
from payledger.security import create_access_token


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class FakeBookingClient:
    """Records booking status updates; payees are registered by the test."""

    def __init__(self):
        self.payees: dict[uuid.UUID, uuid.UUID] = {}
        self.paid: list[tuple[uuid.UUID, uuid.UUID]] = []
        self.refunded: list[tuple[uuid.UUID, uuid.UUID]] = []
        self.unavailable = False

    async def resolve_payee(self, booking_id: uuid.UUID) -> uuid.UUID:
        if booking_id not in self.payees:
            raise PayeeNotFoundError(booking_id)
        return self.payees[booking_id]

    async def mark_paid(self, booking_id: uuid.UUID, transaction_id: uuid.UUID) -> None:
        if self.unavailable:
            raise GatewayUnavailableError("Booking service unreachable")
        self.paid.append((booking_id, transaction_id))

    async def mark_refunded(self, booking_id: uuid.UUID, transaction_id: uuid.UUID) -> None:
        if self.unavailable:
            raise GatewayUnavailableError("Booking service unreachable")
        self.refunded.append((booking_id, transaction_id))


class FakePayoutGateway:
    """
    Accepts payouts unless told otherwise.

    mode: "ok", "unavailable" (GatewayUnavailableError) or "rejected"
    (PayoutRejectedError).
    """

    def __init__(self):
        self.mode = "ok"
        self.submitted: list[uuid.UUID] = []

    async def submit_payout(self, transaction, payment_method) -> str:
        if self.mode == "unavailable":
            raise GatewayUnavailableError("Payout gateway unreachable")
        if self.mode == "rejected":
            raise PayoutRejectedError("Destination account closed")
        self.submitted.append(transaction.id)
        return f"po_{transaction.id.hex[:16]}"


# ---------------------------------------------------------------------------
# Database and engine
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Provide an async session bound to the test engine."""
    async with make_session_factory(db_engine)() as session:
        yield session


@pytest.fixture
def booking_client():
    return FakeBookingClient()


@pytest.fixture
def payout_gateway():
    return FakePayoutGateway()


def build_test_engine(db_engine, booking_client, payout_gateway, **overrides) -> LedgerEngine:
    options = {
        "max_retries": 5,
        "max_withdrawal_amount": 1_000_000,
        "max_daily_withdrawal": 5_000_000,
        "retry_backoff": 0,
    }
    options.update(overrides)
    return LedgerEngine(
        session_factory=make_session_factory(db_engine),
        booking_client=booking_client,
        payout_gateway=payout_gateway,
        **options,
    )


@pytest.fixture
def ledger(db_engine, booking_client, payout_gateway):
    """A LedgerEngine against the in-memory test database."""
    return build_test_engine(db_engine, booking_client, payout_gateway)


@pytest.fixture
def make_ledger(db_engine, booking_client, payout_gateway):
    """Build another engine on the same database with different limits."""

    def _make(**overrides) -> LedgerEngine:
        return build_test_engine(db_engine, booking_client, payout_gateway, **overrides)

    return _make


@pytest_asyncio.fixture
async def file_ledger(tmp_path, booking_client, payout_gateway):
    """
    A LedgerEngine against a SQLite file, so each session gets its own
    connection and concurrent units of work really do race.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_test_engine(
        engine,
        booking_client,
        payout_gateway,
        max_retries=25,
        retry_backoff=0.005,
    )
    await engine.dispose()


# ---------------------------------------------------------------------------
# HTTP client and tokens
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(ledger):
    """
    Async HTTP test client with the test engine injected.

    ASGITransport doesn't run the lifespan, so the engine is put on
    app.state here instead of being built from settings.
    """
    app.state.engine = ledger

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    del app.state.engine


def bearer(user_id: uuid.UUID, role: str = "member") -> dict[str, str]:
    token = create_access_token({"sub": str(user_id), "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def member_headers(user_id):
    return bearer(user_id)


@pytest.fixture
def service_headers():
    return bearer(uuid.uuid4(), role="service")


@pytest.fixture
def admin_headers():
    return bearer(uuid.uuid4(), role="admin")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def make_headers():
    """Build Authorization headers for any user id and role."""
    return bearer


@pytest.fixture
def fund(ledger):
    """Credit an amount to a user through a settled booking payment."""

    async def _fund(user_id: uuid.UUID, amount: int, reference: str | None = None):
        result = await ledger.record_payment(
            booking_id=uuid.uuid4(),
            amount=amount,
            gateway_reference=reference or f"ch_{uuid.uuid4().hex[:12]}",
            user_id=user_id,
        )
        return result.transaction

    return _fund


@pytest.fixture
def add_bank_account(ledger):
    """Register a bank account (verified unless told otherwise) for a user."""

    async def _add(user_id: uuid.UUID, verified: bool = True):
        return await ledger.add_payment_method(
            user_id=user_id,
            method_type=PaymentMethodType.BANK_ACCOUNT,
            last4="6789",
            bank_name="First Test Bank",
            gateway_token="ba_test_token",
            is_verified=verified,
        )

    return _add