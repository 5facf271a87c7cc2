"""
Pytest fixtures for the revenue-share test suite.

Provides:
- Database sessions isolated per test by an outer transaction
- A deterministic clock and the kernel services wired to it
- Factories for agreements, transactions and payouts
- Captured structured logs

Environment Variables:
- DATABASE_URL: connection URL.  Defaults to in-memory SQLite; point it at a
  PostgreSQL database to exercise row locks and the PostgreSQL upsert path.
"""

import json
import logging
import os
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from revshare_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from revshare_kernel.domain.clock import DeterministicClock
from revshare_kernel.domain.enums import (
    AgreementType,
    PayoutStatus,
    TransactionKind,
    TransactionStatus,
)
from revshare_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from revshare_kernel.selectors.agreement_selector import AgreementSelector
from revshare_kernel.selectors.balance_selector import BalanceSelector
from revshare_kernel.services.agreement_service import AgreementService
from revshare_kernel.services.payout_service import PayoutService
from revshare_kernel.services.settlement_service import SettlementService
from revshare_kernel.services.split_lifecycle_service import SplitLifecycleService
from revshare_kernel.services.split_recorder import SplitRecorder
from revshare_kernel.services.transaction_service import TransactionService

DEFAULT_DATABASE_URL = "sqlite:///:memory:"


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def pytest_collection_modifyitems(config, items):
    if get_database_url().startswith("postgresql"):
        return
    skip = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture revshare_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, settlement_service):
            settlement_service.settle_month(...)
            logs = captured_logs()
            assert any(r["message"] == "settlement_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("revshare_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end."""
    drop_tables()
    create_tables()
    yield
    drop_tables()


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    - Opens a dedicated connection with an outer transaction
    - Creates a session that *joins* the outer transaction, so a
      ``session.commit()`` inside the test only releases a savepoint
    - At teardown the outer transaction is rolled back, undoing ALL data
      changes made during the test
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Clock and identities
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2024-06-15 12:00 UTC."""
    return DeterministicClock(datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def merchant_id() -> UUID:
    return uuid4()


@pytest.fixture
def partner_id() -> UUID:
    return uuid4()


@pytest.fixture
def client_id() -> UUID:
    return uuid4()


# =============================================================================
# Services and selectors
# =============================================================================


@pytest.fixture
def agreement_service(session, deterministic_clock) -> AgreementService:
    return AgreementService(session, deterministic_clock)


@pytest.fixture
def agreement_selector(session) -> AgreementSelector:
    return AgreementSelector(session)


@pytest.fixture
def split_recorder(session, deterministic_clock) -> SplitRecorder:
    return SplitRecorder(session, deterministic_clock)


@pytest.fixture
def lifecycle_service(session, deterministic_clock, split_recorder) -> SplitLifecycleService:
    return SplitLifecycleService(session, deterministic_clock, split_recorder)


@pytest.fixture
def transaction_service(session, deterministic_clock, lifecycle_service) -> TransactionService:
    return TransactionService(session, deterministic_clock, lifecycle_service)


@pytest.fixture
def payout_service(session, deterministic_clock) -> PayoutService:
    return PayoutService(session, deterministic_clock)


@pytest.fixture
def settlement_service(session, deterministic_clock) -> SettlementService:
    return SettlementService(session, deterministic_clock)


@pytest.fixture
def balance_selector(session, deterministic_clock) -> BalanceSelector:
    return BalanceSelector(session, deterministic_clock)


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def create_agreement(agreement_service, deterministic_clock, merchant_id, partner_id):
    """
    Factory for agreements.  Advances the clock one second per call so that
    creation order is strictly increasing.
    """

    def _create(
        agreement_type: AgreementType | str = AgreementType.PERCENTAGE,
        percentage_rate: Decimal | str | None = "0.20",
        minimum_guarantee: int | None = None,
        start_date: date = date(2024, 1, 1),
        **kwargs,
    ):
        kwargs.setdefault("merchant_id", merchant_id)
        kwargs.setdefault("partner_id", partner_id)
        info = agreement_service.create_agreement(
            agreement_type=agreement_type,
            percentage_rate=percentage_rate,
            minimum_guarantee=minimum_guarantee,
            start_date=start_date,
            **kwargs,
        )
        deterministic_clock.tick()
        return info

    return _create


@pytest.fixture
def create_transaction(transaction_service, deterministic_clock, merchant_id):
    """Factory for transactions; COMPLETED by default, so the split runs."""

    def _create(
        subtotal: int = 10000,
        transaction_date: date = date(2024, 5, 10),
        status: TransactionStatus | str = TransactionStatus.COMPLETED,
        kind: TransactionKind | str = TransactionKind.PAYMENT,
        **kwargs,
    ):
        kwargs.setdefault("merchant_id", merchant_id)
        info = transaction_service.create_transaction(
            subtotal=subtotal,
            transaction_date=transaction_date,
            status=status,
            kind=kind,
            **kwargs,
        )
        deterministic_clock.tick()
        return info

    return _create


@pytest.fixture
def create_payout(payout_service, merchant_id, partner_id):
    """Factory for payouts; COMPLETED by default, so they count in balances."""

    def _create(
        amount: int,
        scheduled_date: date = date(2024, 5, 20),
        status: PayoutStatus | str = PayoutStatus.COMPLETED,
        **kwargs,
    ):
        kwargs.setdefault("merchant_id", merchant_id)
        kwargs.setdefault("partner_id", partner_id)
        return payout_service.create_payout(
            amount=amount,
            scheduled_date=scheduled_date,
            status=status,
            **kwargs,
        )

    return _create
