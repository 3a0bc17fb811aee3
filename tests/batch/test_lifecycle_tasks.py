"""Tests for itad_batch.tasks -- row parsing, registry, and templates."""

from uuid import UUID

import pytest

from itad_batch.tasks import (
    RecycleTask,
    RegisterTask,
    SanitizeTask,
    TaskRegistry,
    TransferTask,
    TransitionTask,
    default_task_registry,
)
from itad_batch.tasks.base import echo_row, normalize_key, normalize_row
from itad_kernel.domain.dtos import RecycleInput, RegisterInput, SanitizeInput, TransferInput
from itad_kernel.domain.lifecycle import TransitionKind
from itad_kernel.exceptions import UnknownTransitionKindError, ValidationError

ASSET_ID = "00000000-0000-4000-8000-000000000001"
HASH = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"


def _parse(task, raw, index=0):
    return task.parse(task.prepare(index, raw))


class TestRowNormalization:

    @pytest.mark.parametrize("header", ["Serial Number", "serial_number", "serialNumber", "SERIAL"])
    def test_serial_headers(self, header):
        assert normalize_row({header: "SN-1"}) == {"serial_number": "SN-1"}

    def test_unknown_columns_kept(self):
        assert normalize_row({"Asset Tag": "T-9"}) == {"assettag": "T-9"}

    def test_non_mapping_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            normalize_row(["SN-1", "Dell"])
        assert exc_info.value.field == "item"

    def test_normalize_key(self):
        assert normalize_key("New Owner") == "newowner"

    def test_echo_hides_binary(self):
        assert echo_row({"proof_document": b"12345", "method": "DBAN"}) == {
            "proof_document": "<5 bytes>",
            "method": "DBAN",
        }


class TestRegisterTask:

    def test_parse_csv_style_row(self):
        parsed = _parse(
            RegisterTask(),
            {"Serial Number": " SN-1 ", "Model": "Dell", "Customer": "Acme", "Location": ""},
        )
        assert parsed == RegisterInput(
            serial_number="SN-1", model="Dell", customer="Acme", location=None,
        )

    def test_item_key(self):
        task = RegisterTask()
        assert task.prepare(0, {"serial_number": "SN-1"}).item_key == "SN-1"
        assert task.prepare(4, {"model": "Dell"}).item_key == "row-5"

    def test_missing_model(self):
        with pytest.raises(ValidationError) as exc_info:
            _parse(RegisterTask(), {"serial_number": "SN-1"})
        assert exc_info.value.field == "model"

    def test_metadata_must_be_mapping(self):
        with pytest.raises(ValidationError):
            _parse(RegisterTask(), {"serial_number": "SN-1", "model": "D", "metadata": "x"})

    def test_strict_owner(self):
        with pytest.raises(ValidationError):
            _parse(RegisterTask(strict_owner_format=True), {"serial": "S", "model": "M", "owner": "0xSHORT"})

    def test_warnings_and_dedupe_key(self):
        task = RegisterTask()
        item = task.prepare(0, {"serial_number": "SN-1", "model": "Dell"})
        assert task.warnings(item) == ("owner not given; the default owner will be used",)
        assert task.dedupe_key(task.parse(item)) == "SN-1"


class TestSanitizeTask:

    def test_hash_row(self):
        parsed = _parse(
            SanitizeTask(),
            {"Asset ID": ASSET_ID, "Sanitization Hash": HASH, "Method": "DBAN", "Operator": "J"},
        )
        assert parsed == SanitizeInput(
            asset_id=UUID(ASSET_ID), sanitization_hash=HASH, method="DBAN", operator="J",
        )

    def test_proof_document_row(self):
        parsed = _parse(SanitizeTask(), {"asset_id": ASSET_ID, "proof_document": b"cert"})
        assert parsed.sanitization_hash is None
        assert parsed.proof_document == b"cert"

    def test_hash_wins_over_proof(self):
        parsed = _parse(
            SanitizeTask(),
            {"asset_id": ASSET_ID, "hash": HASH, "proof_document": b"cert"},
        )
        assert parsed.sanitization_hash == HASH
        assert parsed.proof_document is None

    @pytest.mark.parametrize(
        "row,field",
        [
            ({"asset_id": ASSET_ID}, "sanitization_hash"),
            ({"asset_id": ASSET_ID, "hash": "QmX1234567890abcdef"}, "sanitization_hash"),
            ({"asset_id": ASSET_ID, "proof_document": b""}, "proof_document"),
            ({"asset_id": ASSET_ID, "proof_document": "text"}, "proof_document"),
            ({"asset_id": "AST-001", "hash": HASH}, "asset_id"),
        ],
    )
    def test_rejections(self, row, field):
        with pytest.raises(ValidationError) as exc_info:
            _parse(SanitizeTask(), row)
        assert exc_info.value.field == field

    def test_warns_without_method(self):
        task = SanitizeTask()
        assert task.warnings(task.prepare(0, {"asset_id": ASSET_ID, "hash": HASH}))
        assert task.dedupe_key(_parse(task, {"asset_id": ASSET_ID, "hash": HASH})) is None


class TestRecycleAndTransferTasks:

    def test_recycle_accepts_bare_ids(self):
        assert _parse(RecycleTask(), ASSET_ID) == RecycleInput(asset_id=UUID(ASSET_ID))
        assert _parse(RecycleTask(), UUID(ASSET_ID)) == RecycleInput(asset_id=UUID(ASSET_ID))
        assert RecycleTask().prepare(0, ASSET_ID).item_key == ASSET_ID

    def test_transfer_owner_column(self):
        parsed = _parse(TransferTask(), {"Asset ID": ASSET_ID, "Owner": "0xBUYER"})
        assert parsed == TransferInput(asset_id=UUID(ASSET_ID), new_owner="0xBUYER")

    def test_transfer_requires_owner(self):
        with pytest.raises(ValidationError) as exc_info:
            _parse(TransferTask(), {"asset_id": ASSET_ID})
        assert exc_info.value.field == "owner"


class TestTaskRegistry:

    def test_default_registry(self):
        registry = default_task_registry()
        assert len(registry) == 4
        assert registry.list_kinds() == ("recycle", "register", "sanitize", "transfer")
        for task in (registry.get(k) for k in registry.list_kinds()):
            assert isinstance(task, TransitionTask)

    @pytest.mark.parametrize(
        "name,kind",
        [
            ("register", TransitionKind.REGISTER),
            ("assets", TransitionKind.REGISTER),
            ("Sanitization", TransitionKind.SANITIZE),
            ("recycling", TransitionKind.RECYCLE),
            ("transfers", TransitionKind.TRANSFER),
            (TransitionKind.TRANSFER, TransitionKind.TRANSFER),
        ],
    )
    def test_aliases(self, name, kind):
        assert default_task_registry().get(name).kind == kind

    def test_unknown_kind(self):
        registry = default_task_registry()
        with pytest.raises(UnknownTransitionKindError) as exc_info:
            registry.get("shred")
        assert exc_info.value.available == ("recycle", "register", "sanitize", "transfer")
        assert "shred" not in registry
        assert "assets" in registry

    def test_registered_kind_missing_from_partial_registry(self):
        registry = TaskRegistry()
        registry.register(RecycleTask())
        with pytest.raises(UnknownTransitionKindError):
            registry.get("register")

    def test_duplicate_registration(self):
        registry = TaskRegistry()
        registry.register(RecycleTask())
        with pytest.raises(ValueError, match="already registered"):
            registry.register(RecycleTask())
