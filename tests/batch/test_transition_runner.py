"""Tests for itad_batch.services.runner.TransitionRunner."""

from uuid import uuid4

import pytest

from itad_batch.services.runner import TransitionRunner
from itad_batch.services.side_effects import SideEffectFanout
from itad_kernel.domain.dtos import (
    AuditAction,
    RecycleInput,
    RegisterInput,
    SanitizeInput,
    TransferInput,
)
from itad_kernel.domain.lifecycle import AssetStatus
from itad_kernel.exceptions import (
    AssetNotFoundError,
    EvidenceStoreError,
    InvalidStateError,
    ValidationError,
)
from itad_kernel.services.lifecycle_service import LifecycleService
from itad_services.evidence import compute_cid
from itad_services.retry import RetryPolicy

HASH = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"


class FlakyEvidenceStore:
    """Fails ``failures`` puts before storing."""

    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def put(self, blob):
        self.calls += 1
        if self.calls <= self.failures:
            raise EvidenceStoreError("gateway timeout")
        return compute_cid(blob)

    def is_valid_hash(self, content_hash):
        return True


class TestRun:

    def test_register_outcome(self, orchestrator):
        outcome = orchestrator.apply(RegisterInput(serial_number="SN-1", model="Dell"), actor="ops")

        assert outcome.record.status == AssetStatus.REGISTERED
        assert outcome.ledger_tx_ref == "0xtx0001"
        assert outcome.record.ledger_tx_ref == "0xtx0001"
        (entry,) = orchestrator.auditor.entries_for(str(outcome.record.asset_id))
        assert entry.action == AuditAction.CREATE_ASSET
        assert entry.actor == "ops"
        assert entry.ledger_tx_ref == "0xtx0001"

    def test_audit_records_before_status(self, orchestrator):
        asset = orchestrator.apply(RegisterInput(serial_number="SN-1", model="Dell")).record
        orchestrator.apply(SanitizeInput(asset_id=asset.asset_id, sanitization_hash=HASH))
        orchestrator.apply(RecycleInput(asset_id=asset.asset_id))
        orchestrator.apply(TransferInput(asset_id=asset.asset_id, new_owner="0xB"))

        entries = orchestrator.auditor.entries_for(str(asset.asset_id))
        assert [(e.old_status, e.new_status) for e in entries] == [
            (None, AssetStatus.REGISTERED),
            (AssetStatus.REGISTERED, AssetStatus.SANITIZED),
            (AssetStatus.SANITIZED, AssetStatus.RECYCLED),
            (AssetStatus.RECYCLED, AssetStatus.SOLD),
        ]

    def test_state_machine_error_propagates_without_side_effects(self, orchestrator, fake_ledger):
        asset = orchestrator.lifecycle.register("SN-1", "Dell")

        with pytest.raises(InvalidStateError):
            orchestrator.apply(RecycleInput(asset_id=asset.asset_id))

        assert fake_ledger.calls == []
        assert orchestrator.auditor.all_entries() == []
        assert orchestrator.store.get(asset.asset_id) == asset


class TestProofDocuments:

    def test_proof_document_is_stored_and_hashed(self, orchestrator, evidence_store, captured_logs):
        asset = orchestrator.lifecycle.register("SN-1", "Dell")

        outcome = orchestrator.apply(
            SanitizeInput(asset_id=asset.asset_id, proof_document=b"%PDF wipe log", method="DBAN"),
        )

        expected = compute_cid(b"%PDF wipe log")
        assert outcome.record.sanitization_hash == expected
        assert evidence_store.get(expected) == b"%PDF wipe log"
        assert any(r["message"] == "sanitization_proof_uploaded" for r in captured_logs())

    def test_proof_document_in_bulk(self, orchestrator):
        asset = orchestrator.lifecycle.register("SN-1", "Dell")

        summary = orchestrator.run_bulk(
            "sanitize", [{"asset_id": str(asset.asset_id), "proof_document": b"cert"}],
        )

        assert summary.successful == 1
        assert summary.item_results[0].input_echo["proof_document"] == "<4 bytes>"
        assert orchestrator.store.get(asset.asset_id).sanitization_hash == compute_cid(b"cert")

    def test_evidence_upload_is_retried(self, session, lifecycle, auditor, store):
        evidence = FlakyEvidenceStore(failures=2)
        runner = TransitionRunner(
            session,
            lifecycle,
            SideEffectFanout(session, auditor, store),
            evidence=evidence,
            evidence_retry=RetryPolicy(
                max_attempts=3, retry_on=(EvidenceStoreError,), sleep=lambda _: None,
            ),
        )
        asset = lifecycle.register("SN-1", "Dell")

        outcome = runner.run(SanitizeInput(asset_id=asset.asset_id, proof_document=b"cert"))

        assert evidence.calls == 3
        assert outcome.record.status == AssetStatus.SANITIZED

    def test_evidence_failure_fails_item_without_mutation(self, session, lifecycle, auditor, store):
        runner = TransitionRunner(
            session, lifecycle, SideEffectFanout(session, auditor, store),
            evidence=FlakyEvidenceStore(failures=5),
        )
        asset = lifecycle.register("SN-1", "Dell")

        with pytest.raises(EvidenceStoreError):
            runner.run(SanitizeInput(asset_id=asset.asset_id, proof_document=b"cert"))

        assert store.get(asset.asset_id).status == AssetStatus.REGISTERED

    def test_proof_without_evidence_store(self, session, lifecycle, auditor, store):
        runner = TransitionRunner(session, lifecycle, SideEffectFanout(session, auditor, store))
        asset = lifecycle.register("SN-1", "Dell")

        with pytest.raises(ValidationError) as exc_info:
            runner.run(SanitizeInput(asset_id=asset.asset_id, proof_document=b"cert"))
        assert exc_info.value.field == "proof_document"


class TestAuditedUpdates:

    def test_amend_details(self, orchestrator):
        asset = orchestrator.lifecycle.register("SN-1", "Dell", location="Dock 1")

        updated = orchestrator.runner.amend_details(
            asset.asset_id, actor="admin", model="Dell 7090", location="Dock 1",
        )

        assert updated.model == "Dell 7090"
        (entry,) = orchestrator.auditor.all_entries()
        assert entry.action == AuditAction.UPDATE_ASSET
        assert entry.actor == "admin"
        assert entry.details == {"changes": {"model": {"old": "Dell", "new": "Dell 7090"}}}

    def test_amend_after_sanitize_rejected_and_not_audited(self, orchestrator):
        asset = orchestrator.lifecycle.register("SN-1", "Dell")
        orchestrator.lifecycle.sanitize(asset.asset_id, HASH)

        with pytest.raises(InvalidStateError):
            orchestrator.runner.amend_details(asset.asset_id, model="Other")
        assert orchestrator.auditor.all_entries() == []

    def test_override_carbon_credits(self, orchestrator):
        asset = orchestrator.lifecycle.register("SN-1", "Dell")

        updated = orchestrator.runner.override_carbon_credits(asset.asset_id, 25, actor="admin")

        assert updated.carbon_credits == 25
        (entry,) = orchestrator.auditor.all_entries()
        assert entry.action == AuditAction.OVERRIDE_CARBON_CREDITS
        assert entry.details == {"old_credits": 0, "new_credits": 25}


class TestEvidenceOnlyForLegalSanitize:

    @pytest.fixture
    def counting_store(self):
        return FlakyEvidenceStore(failures=0)

    @pytest.fixture
    def runner(self, session, lifecycle, auditor, store, counting_store):
        return TransitionRunner(
            session, lifecycle, SideEffectFanout(session, auditor, store), evidence=counting_store,
        )

    def test_already_sanitized_asset_stores_nothing(self, runner, lifecycle, counting_store, captured_logs):
        asset = lifecycle.register("SN-1", "Dell")
        lifecycle.sanitize(asset.asset_id, HASH)

        with pytest.raises(InvalidStateError):
            runner.run(SanitizeInput(asset_id=asset.asset_id, proof_document=b"cert"))

        assert counting_store.calls == 0
        assert not any(r["message"] == "sanitization_proof_uploaded" for r in captured_logs())
        assert lifecycle.get(asset.asset_id).sanitization_hash == HASH

    def test_unknown_asset_stores_nothing(self, runner, counting_store):
        with pytest.raises(AssetNotFoundError):
            runner.run(SanitizeInput(asset_id=uuid4(), proof_document=b"cert"))

        assert counting_store.calls == 0

    def test_local_store_stays_empty(self, session, lifecycle, auditor, store, evidence_store):
        runner = TransitionRunner(
            session, lifecycle, SideEffectFanout(session, auditor, store), evidence=evidence_store,
        )

        with pytest.raises(AssetNotFoundError):
            runner.run(SanitizeInput(asset_id=uuid4(), proof_document=b"cert"))

        assert evidence_store._blobs == {}

    def test_prepared_input_is_not_uploaded_again(self, runner, lifecycle, counting_store):
        asset = lifecycle.register("SN-1", "Dell")

        prepared = runner.prepare(SanitizeInput(asset_id=asset.asset_id, proof_document=b"cert"))
        assert runner.prepare(prepared) is prepared
        runner.run(prepared)

        assert counting_store.calls == 1
        assert prepared.sanitization_hash == compute_cid(b"cert")
        assert prepared.proof_document is None


class RacingLifecycle(LifecycleService):
    """Recycles the asset just before a transfer, as a competing writer would."""

    def execute(self, transition_input):
        if isinstance(transition_input, TransferInput):
            self.recycle(transition_input.asset_id)
        return super().execute(transition_input)


class TestAuditMatchesSwappedRecord:

    def test_old_status_is_the_status_actually_replaced(self, session, clock, auditor, store):
        lifecycle = RacingLifecycle(session, clock, store=store)
        runner = TransitionRunner(session, lifecycle, SideEffectFanout(session, auditor, store))
        asset = lifecycle.register("SN-1", "Dell")
        lifecycle.sanitize(asset.asset_id, HASH)

        outcome = runner.run(TransferInput(asset_id=asset.asset_id, new_owner="0xB"))

        (entry,) = auditor.entries_for(str(asset.asset_id))
        assert entry.old_status == AssetStatus.RECYCLED
        assert entry.new_status == AssetStatus.SOLD
        assert outcome.record.version == 4
