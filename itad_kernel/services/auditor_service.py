"""
AuditorService -- append-only, hash-chained audit store.

Responsibility:
    Persists one immutable AuditEntry per audited action on an asset and
    validates the chain on demand.

Architecture position:
    Kernel > Services.  Called by the bulk engine's side-effect fan-out
    after each item commits, and directly by single-item callers.

Invariants enforced:
    - entry_hash = H(resource_id | action | result | payload_hash | prev_hash),
      where payload_hash covers every stored field.  Tampering with any
      row is detectable by ``validate_chain()``.
    - seq is strictly increasing; prev_hash links to the predecessor.
    - Append-only: no update or delete paths exist.

Transaction boundaries:
    Never commits.  The caller decides whether an audit write shares the
    business transaction or sits in its own SAVEPOINT.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from itad_kernel.domain.clock import Clock, SystemClock
from itad_kernel.domain.dtos import (
    ACTION_FOR_KIND,
    AuditAction,
    AuditEntry,
    AuditResult,
)
from itad_kernel.domain.lifecycle import AssetStatus, TransitionKind
from itad_kernel.domain.values import AssetRecord
from itad_kernel.exceptions import AuditChainBrokenError
from itad_kernel.logging_config import get_logger
from itad_kernel.models.audit_entry import AuditEntryModel
from itad_kernel.utils.hashing import hash_audit_entry, hash_payload

logger = get_logger("services.auditor")


class AuditorService:
    """
    Creates and validates tamper-evident audit entries.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT interpret entries; that is reporting's job.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _last_entry(self) -> AuditEntryModel | None:
        return self._session.execute(
            select(AuditEntryModel).order_by(AuditEntryModel.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def append(self, entry: AuditEntry) -> AuditEntry:
        """
        Link ``entry`` onto the chain and flush it.

        Any ``seq``/``prev_hash``/``entry_hash`` on the input are ignored
        and recomputed.
        """
        last = self._last_entry()
        seq = (last.seq + 1) if last is not None else 1
        prev_hash = last.entry_hash if last is not None else None

        payload_hash = hash_payload(entry.hash_payload())
        entry_hash = hash_audit_entry(
            resource_id=entry.resource_id,
            action=entry.action.value,
            result=entry.result.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        model = AuditEntryModel(
            seq=seq,
            actor=entry.actor,
            action=entry.action.value,
            resource_id=entry.resource_id,
            result=entry.result.value,
            old_status=int(entry.old_status) if entry.old_status is not None else None,
            new_status=int(entry.new_status) if entry.new_status is not None else None,
            timestamp=entry.timestamp,
            error_message=entry.error_message,
            ledger_tx_ref=entry.ledger_tx_ref,
            details=entry.details or None,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            entry_hash=entry_hash,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "audit_entry_created",
            extra={
                "resource_id": entry.resource_id,
                "action": entry.action.value,
                "result": entry.result.value,
                "seq": seq,
            },
        )
        return replace(
            entry,
            entry_id=model.id,
            seq=seq,
            prev_hash=prev_hash,
            entry_hash=entry_hash,
        )

    # Domain-specific recording methods

    def record_transition(
        self,
        actor: str,
        kind: TransitionKind,
        before: AssetRecord | None,
        after: AssetRecord,
        ledger_tx_ref: str | None = None,
    ) -> AuditEntry:
        details: dict[str, Any] = {"serial_number": after.serial_number}
        if kind == TransitionKind.SANITIZE:
            details["sanitization_hash"] = after.sanitization_hash
        elif kind == TransitionKind.RECYCLE:
            details["carbon_credits"] = after.carbon_credits
        elif kind == TransitionKind.TRANSFER:
            details["owner"] = after.owner
            if before is not None:
                details["previous_owner"] = before.owner

        return self.append(
            AuditEntry(
                actor=actor,
                action=ACTION_FOR_KIND[kind],
                resource_id=str(after.asset_id),
                result=AuditResult.SUCCESS,
                timestamp=self._clock.now(),
                old_status=before.status if before is not None else None,
                new_status=after.status,
                ledger_tx_ref=ledger_tx_ref,
                details=details,
            )
        )

    def record_failure(
        self,
        actor: str,
        kind: TransitionKind,
        resource_id: str,
        error_message: str,
        old_status: AssetStatus | None = None,
        error_code: str | None = None,
    ) -> AuditEntry:
        return self.append(
            AuditEntry(
                actor=actor,
                action=ACTION_FOR_KIND[kind],
                resource_id=resource_id,
                result=AuditResult.FAILURE,
                timestamp=self._clock.now(),
                old_status=old_status,
                new_status=old_status,
                error_message=error_message,
                details={"error_code": error_code} if error_code else {},
            )
        )

    def record_update(
        self,
        actor: str,
        action: AuditAction,
        before: AssetRecord,
        after: AssetRecord,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Audit a non-status change (detail amendment, credit override)."""
        return self.append(
            AuditEntry(
                actor=actor,
                action=action,
                resource_id=str(after.asset_id),
                result=AuditResult.SUCCESS,
                timestamp=self._clock.now(),
                old_status=before.status,
                new_status=after.status,
                details=details or {},
            )
        )

    # Queries

    def entries_for(self, resource_id: str) -> list[AuditEntry]:
        rows = self._session.execute(
            select(AuditEntryModel)
            .where(AuditEntryModel.resource_id == str(resource_id))
            .order_by(AuditEntryModel.seq)
        ).scalars()
        return [row.to_dto() for row in rows]

    def all_entries(self) -> list[AuditEntry]:
        rows = self._session.execute(
            select(AuditEntryModel).order_by(AuditEntryModel.seq)
        ).scalars()
        return [row.to_dto() for row in rows]

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Returns True only if every stored field still hashes to the
        recorded payload hash, every entry hash recomputes, and every
        prev_hash matches its predecessor.

        Raises:
            AuditChainBrokenError: At the first broken link.
        """
        rows = self._session.execute(
            select(AuditEntryModel).order_by(AuditEntryModel.seq)
        ).scalars().all()

        expected_prev: str | None = None
        for row in rows:
            if row.prev_hash != expected_prev:
                logger.critical("audit_chain_broken", extra={"seq": row.seq})
                raise AuditChainBrokenError(row.seq, str(expected_prev), str(row.prev_hash))

            payload_hash = hash_payload(row.to_dto().hash_payload())
            expected_hash = hash_audit_entry(
                resource_id=row.resource_id,
                action=row.action,
                result=row.result,
                payload_hash=payload_hash,
                prev_hash=row.prev_hash,
            )
            if row.payload_hash != payload_hash or row.entry_hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": row.seq})
                raise AuditChainBrokenError(row.seq, expected_hash, row.entry_hash)

            expected_prev = row.entry_hash

        return True
