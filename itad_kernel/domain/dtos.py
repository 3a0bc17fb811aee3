"""
Transition inputs and audit entries.

Transition inputs are the single-item payloads accepted by the lifecycle
service; the bulk engine builds one per row.  AuditEntry is the immutable
record produced for every audited transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union
from uuid import UUID

from itad_kernel.domain.lifecycle import AssetStatus, TransitionKind


@dataclass(frozen=True)
class RegisterInput:
    serial_number: str
    model: str
    owner: str | None = None
    customer: str | None = None
    location: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    kind = TransitionKind.REGISTER


@dataclass(frozen=True)
class SanitizeInput:
    """
    Sanitization proof for one asset.

    Either ``sanitization_hash`` is supplied, or ``proof_document`` holds
    the raw proof which the transition runner stores in the evidence
    store to obtain the hash.
    """

    asset_id: UUID
    sanitization_hash: str | None = None
    method: str | None = None
    operator: str | None = None
    proof_document: bytes | None = None

    kind = TransitionKind.SANITIZE


@dataclass(frozen=True)
class RecycleInput:
    asset_id: UUID

    kind = TransitionKind.RECYCLE


@dataclass(frozen=True)
class TransferInput:
    asset_id: UUID
    new_owner: str

    kind = TransitionKind.TRANSFER


TransitionInput = Union[RegisterInput, SanitizeInput, RecycleInput, TransferInput]


class AuditAction(str, Enum):
    """Types of auditable actions on asset records."""

    CREATE_ASSET = "CREATE_ASSET"
    PROVE_SANITIZATION = "PROVE_SANITIZATION"
    RECYCLE_ASSET = "RECYCLE_ASSET"
    TRANSFER_ASSET = "TRANSFER_ASSET"
    UPDATE_ASSET = "UPDATE_ASSET"
    OVERRIDE_CARBON_CREDITS = "OVERRIDE_CARBON_CREDITS"


class AuditResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


ACTION_FOR_KIND: dict[TransitionKind, AuditAction] = {
    TransitionKind.REGISTER: AuditAction.CREATE_ASSET,
    TransitionKind.SANITIZE: AuditAction.PROVE_SANITIZATION,
    TransitionKind.RECYCLE: AuditAction.RECYCLE_ASSET,
    TransitionKind.TRANSFER: AuditAction.TRANSFER_ASSET,
}


@dataclass(frozen=True)
class AuditEntry:
    """
    Immutable audit record.

    ``resource_id`` is the asset id, or the serial number when a register
    attempt failed before an id existed.
    """

    actor: str
    action: AuditAction
    resource_id: str
    result: AuditResult
    timestamp: datetime
    old_status: AssetStatus | None = None
    new_status: AssetStatus | None = None
    error_message: str | None = None
    ledger_tx_ref: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    entry_id: UUID | None = None
    seq: int | None = None
    prev_hash: str | None = None
    entry_hash: str | None = None

    def hash_payload(self) -> dict[str, Any]:
        """Fields covered by the chain hash."""
        return {
            "actor": self.actor,
            "action": self.action.value,
            "resource_id": self.resource_id,
            "result": self.result.value,
            "timestamp": _utc_naive(self.timestamp).isoformat(),
            "old_status": self.old_status.name if self.old_status is not None else None,
            "new_status": self.new_status.name if self.new_status is not None else None,
            "error_message": self.error_message,
            "ledger_tx_ref": self.ledger_tx_ref,
            "details": self.details,
        }


def _utc_naive(value: datetime) -> datetime:
    # Backends disagree on whether timestamps come back tz-aware.
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
