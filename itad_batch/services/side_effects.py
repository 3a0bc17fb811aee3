"""
SideEffectFanout -- best-effort effects that follow a committed mutation.

Responsibility:
    Ledger proof submission and reference attachment, audit emission, and
    the bulk summary notification.

Invariants enforced:
    - Runs only after the asset mutation's SAVEPOINT was released.
    - Every effect is isolated: ledger, attach, and audit writes each sit
      in their own SAVEPOINT and every failure is logged and swallowed.
      Nothing here can turn a successful item into a failed one.
    - The ledger is called through its own bounded retry policy; the
      reference attachment is attempted exactly once.

Transaction boundaries:
    Never commits.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from itad_batch.domain.types import BulkSummary
from itad_kernel.domain.dtos import AuditAction
from itad_kernel.domain.lifecycle import AssetStatus, TransitionKind
from itad_kernel.domain.values import AssetRecord
from itad_kernel.logging_config import get_logger
from itad_kernel.services.asset_store import AssetStore
from itad_kernel.services.auditor_service import AuditorService
from itad_services.ledger import LedgerProofRecorder
from itad_services.notifications import BulkNotification, NotificationDispatcher

logger = get_logger("batch.side_effects")


def ledger_payload(kind: TransitionKind, record: AssetRecord) -> dict[str, Any]:
    """Fields witnessed on the ledger for each transition."""
    if kind == TransitionKind.REGISTER:
        return {"serial_number": record.serial_number, "model": record.model}
    if kind == TransitionKind.SANITIZE:
        return {"sanitization_hash": record.sanitization_hash}
    if kind == TransitionKind.RECYCLE:
        return {"carbon_credits": record.carbon_credits}
    return {"new_owner": record.owner}


class SideEffectFanout:
    """
    Usage:
        fanout = SideEffectFanout(session, auditor, store, ledger=recorder)
        record, tx_ref = fanout.record_ledger_proof(kind, record)
        fanout.record_audit(actor, kind, before, record, tx_ref)
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        store: AssetStore,
        ledger: LedgerProofRecorder | None = None,
        notifier: NotificationDispatcher | None = None,
        record_failures: bool = False,
    ):
        self._session = session
        self._auditor = auditor
        self._store = store
        self._ledger = ledger
        self._notifier = notifier
        self._record_failures = record_failures

    @property
    def ledger_enabled(self) -> bool:
        return self._ledger is not None

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def record_ledger_proof(
        self,
        kind: TransitionKind,
        record: AssetRecord,
    ) -> tuple[AssetRecord, str | None]:
        """
        Submit the proof and attach the returned references.

        Returns the (possibly updated) record and the ledger tx ref, or
        the unchanged record and None when the ledger is disabled or down.
        """
        if self._ledger is None:
            return record, None

        asset_id = str(record.asset_id)
        try:
            receipt = self._ledger.submit_proof(
                record.asset_id, kind, ledger_payload(kind, record),
            )
        except Exception as exc:
            logger.warning(
                "ledger_proof_failed",
                extra={
                    "asset_id": asset_id,
                    "transition": kind.value,
                    "error_code": getattr(exc, "code", type(exc).__name__),
                    "error": str(exc),
                },
            )
            return record, None

        asset_ref = receipt.asset_ref if kind == TransitionKind.REGISTER else None
        try:
            with self._session.begin_nested():
                updated = self._store.attach_ledger_refs(
                    record.asset_id, receipt.tx_ref, asset_ref,
                )
        except Exception as exc:
            logger.warning(
                "ledger_ref_attach_failed",
                extra={
                    "asset_id": asset_id,
                    "tx_ref": receipt.tx_ref,
                    "error_code": getattr(exc, "code", type(exc).__name__),
                    "error": str(exc),
                },
            )
            return record, receipt.tx_ref

        return updated, receipt.tx_ref

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def record_audit(
        self,
        actor: str,
        kind: TransitionKind,
        before: AssetRecord | None,
        after: AssetRecord,
        ledger_tx_ref: str | None = None,
    ) -> bool:
        """Append the success entry.  Returns False if the write failed."""
        try:
            with self._session.begin_nested():
                self._auditor.record_transition(actor, kind, before, after, ledger_tx_ref)
        except Exception:
            logger.warning(
                "audit_write_failed",
                extra={"asset_id": str(after.asset_id), "transition": kind.value},
                exc_info=True,
            )
            return False
        return True

    def record_update(
        self,
        actor: str,
        action: AuditAction,
        before: AssetRecord,
        after: AssetRecord,
        details: dict[str, Any] | None = None,
    ) -> bool:
        try:
            with self._session.begin_nested():
                self._auditor.record_update(actor, action, before, after, details)
        except Exception:
            logger.warning(
                "audit_write_failed",
                extra={"asset_id": str(after.asset_id), "action": action.value},
                exc_info=True,
            )
            return False
        return True

    def record_failure(
        self,
        actor: str,
        kind: TransitionKind,
        resource_id: str,
        error_code: str,
        error_message: str,
        old_status: AssetStatus | None = None,
    ) -> bool:
        """Failure entries are only written when enabled in configuration."""
        if not self._record_failures:
            return False
        try:
            with self._session.begin_nested():
                self._auditor.record_failure(
                    actor, kind, resource_id, error_message,
                    old_status=old_status, error_code=error_code,
                )
        except Exception:
            logger.warning(
                "audit_write_failed",
                extra={"resource_id": resource_id, "transition": kind.value},
                exc_info=True,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify_bulk_summary(self, summary: BulkSummary) -> dict[str, bool]:
        if self._notifier is None:
            return {}
        notification = BulkNotification(
            operation_kind=summary.kind,
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
            duration_ms=summary.duration_ms,
        )
        return self._notifier.emit_bulk_summary(notification)
