"""
TransitionRunner -- one transition, end to end.

The single-item entry point shared by the bulk coordinator and direct
callers:

    evidence upload (sanitize with a proof document only, after the
        status check, once per item)
        -> state machine, inside a SAVEPOINT
        -> ledger proof (best effort)
        -> audit entry (best effort)

A failure of the state machine rolls back its SAVEPOINT and propagates
as the typed kernel exception.  Ledger and audit failures never
propagate.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from uuid import UUID

from sqlalchemy.orm import Session

from itad_batch.services.side_effects import SideEffectFanout
from itad_kernel.domain.dtos import (
    AuditAction,
    SanitizeInput,
    TransitionInput,
)
from itad_kernel.domain.lifecycle import TransitionKind, check_transition
from itad_kernel.domain.values import AssetRecord
from itad_kernel.exceptions import ValidationError
from itad_kernel.logging_config import LogContext, get_logger
from itad_kernel.services.lifecycle_service import LifecycleService
from itad_services.evidence import EvidenceStore
from itad_services.retry import RetryPolicy

logger = get_logger("batch.runner")


@dataclass(frozen=True)
class TransitionOutcome:
    record: AssetRecord
    ledger_tx_ref: str | None = None


class TransitionRunner:

    def __init__(
        self,
        session: Session,
        lifecycle: LifecycleService,
        side_effects: SideEffectFanout,
        evidence: EvidenceStore | None = None,
        evidence_retry: RetryPolicy | None = None,
    ):
        self._session = session
        self._lifecycle = lifecycle
        self._side_effects = side_effects
        self._evidence = evidence
        self._evidence_retry = evidence_retry or RetryPolicy.no_retry()

    @property
    def lifecycle(self) -> LifecycleService:
        return self._lifecycle

    @property
    def side_effects(self) -> SideEffectFanout:
        return self._side_effects

    def run(self, transition_input: TransitionInput, *, actor: str = "system") -> TransitionOutcome:
        """
        Apply one transition and its side effects.

        Raises:
            ValidationError, AssetNotFoundError, DuplicateSerialError,
            InvalidStateError, ImmutableFieldError,
            ConcurrentModificationError: from the state machine.
            EvidenceStoreError: proof document could not be stored.
        """
        kind = transition_input.kind
        transition_input = self.prepare(transition_input)

        with self._session.begin_nested():
            result = self._lifecycle.execute(transition_input)
        before, record = result.before, result.after

        with LogContext.bind(asset_id=str(record.asset_id)):
            record, tx_ref = self._side_effects.record_ledger_proof(kind, record)
            self._side_effects.record_audit(actor, kind, before, record, tx_ref)

        return TransitionOutcome(record=record, ledger_tx_ref=tx_ref)

    def prepare(self, transition_input: TransitionInput) -> TransitionInput:
        """
        Store a sanitize item's proof document and swap in its content hash.

        The asset must exist and be REGISTERED before anything is uploaded.
        The returned input carries the hash, so preparing it again (a
        conflict retry) is a no-op.  Other inputs pass through unchanged.

        Raises:
            ValidationError: Proof document given without an evidence store.
            AssetNotFoundError, InvalidStateError: Sanitize not allowed.
            EvidenceStoreError: Upload failed after retries.
        """
        if not isinstance(transition_input, SanitizeInput):
            return transition_input
        if transition_input.sanitization_hash or transition_input.proof_document is None:
            return transition_input
        if self._evidence is None:
            raise ValidationError(
                "proof_document given but no evidence store is configured",
                field="proof_document",
            )

        current = self._lifecycle.get(transition_input.asset_id)
        check_transition(str(current.asset_id), TransitionKind.SANITIZE, current.status)

        content_hash = self._evidence_retry.call(
            self._evidence.put, transition_input.proof_document,
        )
        logger.info(
            "sanitization_proof_uploaded",
            extra={
                "asset_id": str(transition_input.asset_id),
                "content_hash": content_hash,
            },
        )
        return replace(transition_input, sanitization_hash=content_hash, proof_document=None)

    # ------------------------------------------------------------------
    # Audited non-status updates
    # ------------------------------------------------------------------

    def amend_details(
        self,
        asset_id: UUID,
        *,
        actor: str = "system",
        model: str | None = None,
        customer: str | None = None,
        location: str | None = None,
    ) -> AssetRecord:
        before = self._lifecycle.get(asset_id)
        with self._session.begin_nested():
            after = self._lifecycle.amend_details(
                asset_id, model=model, customer=customer, location=location,
            )
        changes = {
            name: {"old": getattr(before, name), "new": getattr(after, name)}
            for name in ("model", "customer", "location")
            if getattr(before, name) != getattr(after, name)
        }
        self._side_effects.record_update(
            actor, AuditAction.UPDATE_ASSET, before, after, {"changes": changes},
        )
        return after

    def override_carbon_credits(
        self,
        asset_id: UUID,
        credits: int,
        *,
        actor: str = "system",
    ) -> AssetRecord:
        before = self._lifecycle.get(asset_id)
        with self._session.begin_nested():
            after = self._lifecycle.override_carbon_credits(asset_id, credits)
        self._side_effects.record_update(
            actor,
            AuditAction.OVERRIDE_CARBON_CREDITS,
            before,
            after,
            {"old_credits": before.carbon_credits, "new_credits": after.carbon_credits},
        )
        return after
