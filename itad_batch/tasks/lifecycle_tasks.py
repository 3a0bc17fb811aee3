"""
Bulk tasks: asset lifecycle (register, sanitize, recycle, transfer).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from itad_batch.tasks.base import (
    BulkItemInput,
    TaskRegistry,
    normalize_row,
    text_or_none,
)
from itad_kernel.domain.dtos import (
    RecycleInput,
    RegisterInput,
    SanitizeInput,
    TransferInput,
    TransitionInput,
)
from itad_kernel.domain.lifecycle import TransitionKind
from itad_kernel.domain.values import (
    parse_asset_id,
    validate_content_hash,
    validate_model,
    validate_optional_text,
    validate_owner,
    validate_serial_number,
)
from itad_kernel.exceptions import ValidationError

_EXAMPLE_ASSET_IDS = (
    "00000000-0000-4000-8000-000000000001",
    "00000000-0000-4000-8000-000000000002",
    "00000000-0000-4000-8000-000000000003",
)


def _asset_key(index: int, row: Mapping[str, Any]) -> str:
    return text_or_none(row.get("asset_id")) or f"row-{index + 1}"


class RegisterTask:
    """Registers new assets from serial/model rows."""

    kind = TransitionKind.REGISTER
    description = "Register new assets"
    template_filename = "bulk-assets-template.csv"
    template_columns = ("Serial Number", "Model", "Customer", "Location")
    template_rows = (
        ("DEMO-001", "Dell OptiPlex 7090", "Acme Corp", "Building A"),
        ("DEMO-002", "HP EliteBook 840", "Tech Solutions", "Floor 2"),
    )

    def __init__(self, strict_owner_format: bool = False):
        self._strict_owner_format = strict_owner_format

    def prepare(self, index: int, raw: Any) -> BulkItemInput:
        row = normalize_row(raw)
        key = text_or_none(row.get("serial_number")) or f"row-{index + 1}"
        return BulkItemInput(index=index, item_key=key, payload=row)

    def parse(self, item: BulkItemInput) -> TransitionInput:
        row = item.payload
        owner = text_or_none(row.get("owner"))
        metadata = row.get("metadata")
        if metadata is not None and not isinstance(metadata, Mapping):
            raise ValidationError("metadata must be a mapping", field="metadata", value=metadata)
        return RegisterInput(
            serial_number=validate_serial_number(row.get("serial_number")),
            model=validate_model(row.get("model")),
            owner=(
                validate_owner(owner, strict=self._strict_owner_format)
                if owner is not None else None
            ),
            customer=validate_optional_text(row.get("customer"), "customer"),
            location=validate_optional_text(row.get("location"), "location"),
            metadata=dict(metadata or {}),
        )

    def warnings(self, item: BulkItemInput) -> tuple[str, ...]:
        if text_or_none(item.payload.get("owner")) is None:
            return ("owner not given; the default owner will be used",)
        return ()

    def dedupe_key(self, parsed: TransitionInput) -> str | None:
        return parsed.serial_number if isinstance(parsed, RegisterInput) else None


class SanitizeTask:
    """Records sanitization proofs, by hash or by uploaded proof document."""

    kind = TransitionKind.SANITIZE
    description = "Record sanitization proofs"
    template_filename = "bulk-sanitization-template.csv"
    template_columns = ("Asset ID", "Sanitization Hash", "Method", "Operator")
    template_rows = (
        (
            _EXAMPLE_ASSET_IDS[0],
            "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG",
            "DBAN",
            "John Doe",
        ),
        (
            _EXAMPLE_ASSET_IDS[1],
            "QmT78zSuBmuS4z925WZfrqQ1qHaJ56DQaTfyMUF7F8ff5o",
            "ATA Secure Erase",
            "Jane Smith",
        ),
    )

    def prepare(self, index: int, raw: Any) -> BulkItemInput:
        row = normalize_row(raw)
        return BulkItemInput(index=index, item_key=_asset_key(index, row), payload=row)

    def parse(self, item: BulkItemInput) -> TransitionInput:
        row = item.payload
        asset_id = parse_asset_id(row.get("asset_id"))
        content_hash = text_or_none(row.get("sanitization_hash"))
        proof = row.get("proof_document")

        if content_hash is not None:
            content_hash = validate_content_hash(content_hash)
            proof = None
        elif proof is None:
            raise ValidationError(
                "sanitization_hash or proof_document is required",
                field="sanitization_hash",
            )
        elif not isinstance(proof, (bytes, bytearray)) or not proof:
            raise ValidationError(
                "proof_document must be non-empty bytes",
                field="proof_document",
            )

        return SanitizeInput(
            asset_id=asset_id,
            sanitization_hash=content_hash,
            method=text_or_none(row.get("method")),
            operator=text_or_none(row.get("operator")),
            proof_document=bytes(proof) if proof is not None else None,
        )

    def warnings(self, item: BulkItemInput) -> tuple[str, ...]:
        if text_or_none(item.payload.get("method")) is None:
            return ("no sanitization method recorded",)
        return ()

    def dedupe_key(self, parsed: TransitionInput) -> str | None:
        return None


class RecycleTask:
    """Recycles sanitized assets.  Rows may be bare asset ids."""

    kind = TransitionKind.RECYCLE
    description = "Recycle sanitized assets"
    template_filename = "bulk-recycling-template.csv"
    template_columns = ("Asset ID",)
    template_rows = tuple((asset_id,) for asset_id in _EXAMPLE_ASSET_IDS)

    def prepare(self, index: int, raw: Any) -> BulkItemInput:
        if isinstance(raw, (str, UUID)):
            raw = {"asset_id": str(raw)}
        row = normalize_row(raw)
        return BulkItemInput(index=index, item_key=_asset_key(index, row), payload=row)

    def parse(self, item: BulkItemInput) -> TransitionInput:
        return RecycleInput(asset_id=parse_asset_id(item.payload.get("asset_id")))

    def warnings(self, item: BulkItemInput) -> tuple[str, ...]:
        return ()

    def dedupe_key(self, parsed: TransitionInput) -> str | None:
        return None


class TransferTask:
    """Transfers sanitized or recycled assets to a new owner (-> SOLD)."""

    kind = TransitionKind.TRANSFER
    description = "Transfer assets to a new owner"
    template_filename = "bulk-transfer-template.csv"
    template_columns = ("Asset ID", "New Owner")
    template_rows = (
        (_EXAMPLE_ASSET_IDS[0], "0x742d35Cc6634C0532925a3b8D4C2C4e4C4C4C4C4"),
    )

    def __init__(self, strict_owner_format: bool = False):
        self._strict_owner_format = strict_owner_format

    def prepare(self, index: int, raw: Any) -> BulkItemInput:
        row = normalize_row(raw)
        if "new_owner" not in row and "owner" in row:
            row["new_owner"] = row.pop("owner")
        return BulkItemInput(index=index, item_key=_asset_key(index, row), payload=row)

    def parse(self, item: BulkItemInput) -> TransitionInput:
        row = item.payload
        return TransferInput(
            asset_id=parse_asset_id(row.get("asset_id")),
            new_owner=validate_owner(row.get("new_owner"), strict=self._strict_owner_format),
        )

    def warnings(self, item: BulkItemInput) -> tuple[str, ...]:
        return ()

    def dedupe_key(self, parsed: TransitionInput) -> str | None:
        return None


def default_task_registry(strict_owner_format: bool = False) -> TaskRegistry:
    """Registry holding the four lifecycle tasks and their template aliases."""
    registry = TaskRegistry()
    registry.register(RegisterTask(strict_owner_format), aliases=("assets",))
    registry.register(SanitizeTask(), aliases=("sanitization",))
    registry.register(RecycleTask(), aliases=("recycling",))
    registry.register(TransferTask(strict_owner_format), aliases=("transfers",))
    return registry
