"""
Pytest fixtures for the ITAD test suite.

Provides:
- In-memory SQLite sessions (SAVEPOINT-capable engine) for all tests
- Deterministic clock
- Fakes for the ledger recorder and notification channels
- A fully wired BulkOrchestrator
- Structured log capture
"""

import json
import logging
from datetime import datetime
from io import StringIO
from typing import Any, Generator
from uuid import UUID

import pytest
from sqlalchemy.orm import Session

from itad_batch.orchestrator import BulkOrchestrator
from itad_config.schema import AuditSettings, BulkSettings, ITADConfig
from itad_kernel.db.engine import build_engine, create_tables
from itad_kernel.domain.clock import DeterministicClock
from itad_kernel.domain.lifecycle import TransitionKind
from itad_kernel.exceptions import LedgerUnavailableError, NotificationDeliveryError
from itad_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from itad_kernel.services.asset_store import AssetStore
from itad_kernel.services.auditor_service import AuditorService
from itad_kernel.services.lifecycle_service import LifecycleService
from itad_services.evidence import LocalEvidenceStore
from itad_services.ledger import LedgerReceipt
from itad_services.notifications import BulkNotification, NotificationDispatcher

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
    Capture itad_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.run_bulk("register", rows)
            logs = captured_logs()
            assert any(r["message"] == "bulk_run_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("itad_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    eng = build_engine("sqlite:///:memory:")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    db = Session(bind=engine, expire_on_commit=False)
    try:
        yield db
    finally:
        db.rollback()
        db.close()


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def clock():
    # Naive: SQLite hands timestamps back without tzinfo.
    return DeterministicClock(fixed_time=datetime(2026, 2, 1, 12, 0, 0))


# =============================================================================
# Collaborator fakes
# =============================================================================


class FakeLedger:
    """In-memory ledger recorder.  ``fail`` makes every submission raise."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[UUID, TransitionKind, dict[str, Any]]] = []

    def submit_proof(
        self,
        asset_id: UUID,
        kind: TransitionKind,
        payload: dict[str, Any],
    ) -> LedgerReceipt:
        self.calls.append((asset_id, kind, payload))
        if self.fail:
            raise LedgerUnavailableError("ledger offline", str(asset_id))
        n = len(self.calls)
        return LedgerReceipt(
            tx_ref=f"0xtx{n:04d}",
            asset_ref=f"ledger-asset-{n}" if kind == TransitionKind.REGISTER else None,
        )


class RecordingChannel:
    """Notification channel that records payloads, or fails on demand."""

    def __init__(self, name: str = "recording", fail: bool = False):
        self.name = name
        self.fail = fail
        self.sent: list[dict[str, Any]] = []

    def render_bulk_summary(self, notification: BulkNotification) -> dict[str, Any]:
        return notification.as_dict()

    def send(self, payload: dict[str, Any]) -> None:
        if self.fail:
            raise NotificationDeliveryError(self.name, "channel down")
        self.sent.append(payload)


@pytest.fixture
def fake_ledger():
    return FakeLedger()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def evidence_store():
    return LocalEvidenceStore()


@pytest.fixture
def sleeps():
    """Records inter-batch delays instead of sleeping."""
    return []


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def store(session):
    return AssetStore(session)


@pytest.fixture
def lifecycle(session, clock, store):
    return LifecycleService(session, clock, store=store)


@pytest.fixture
def auditor(session, clock):
    return AuditorService(session, clock)


@pytest.fixture
def itad_config():
    return ITADConfig(
        bulk=BulkSettings(default_batch_size=50, inter_batch_delay_seconds=1.0),
        audit=AuditSettings(record_failures=False),
    )


@pytest.fixture
def orchestrator(session, clock, itad_config, fake_ledger, evidence_store, channel, sleeps):
    return BulkOrchestrator.from_session(
        session,
        itad_config,
        clock,
        ledger=fake_ledger,
        evidence=evidence_store,
        notifier=NotificationDispatcher([channel]),
        sleep=sleeps.append,
    )


@pytest.fixture
def register_rows():
    """Factory for register rows with sequential serials."""

    def _rows(count: int, prefix: str = "SN") -> list[dict[str, Any]]:
        return [
            {"serial_number": f"{prefix}-{i:03d}", "model": "Dell OptiPlex 7090"}
            for i in range(1, count + 1)
        ]

    return _rows
