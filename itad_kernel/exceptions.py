"""
Typed exception hierarchy for the ITAD kernel.

Every error is a typed class carrying a machine-readable ``code`` and
structured attributes, so callers (and the bulk engine's per-item result
capture) never have to parse message strings.

    ITADKernelError (base)
    |
    +-- ValidationError
    |   +-- UnknownTransitionKindError
    |
    +-- AssetError
    |   +-- AssetNotFoundError
    |   +-- DuplicateSerialError
    |   +-- InvalidStateError
    |   +-- ImmutableFieldError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- CollaboratorError
    |   +-- LedgerUnavailableError
    |   +-- EvidenceStoreError
    |   +-- NotificationDeliveryError
    |
    +-- AuditError
        +-- AuditChainBrokenError

Code            | When raised
----------------|------------------------------------------------------
VALIDATION_ERROR        | Malformed input, caller's fault, never retried
UNKNOWN_TRANSITION_KIND | Bulk request names an unsupported transition
ASSET_NOT_FOUND         | Unknown asset id
DUPLICATE_SERIAL        | Serial number already registered
INVALID_STATE           | Transition illegal from the current status
IMMUTABLE_FIELD         | Write to a set-once field that is already set
CONCURRENT_MODIFICATION | CAS write lost a race; safe to retry the item
LEDGER_UNAVAILABLE      | Ledger witness down; never an item failure
EVIDENCE_STORE_ERROR    | Content-addressed store rejected a blob
NOTIFICATION_DELIVERY   | A notification channel failed to deliver
AUDIT_CHAIN_BROKEN      | Audit hash chain validation failed
"""

from __future__ import annotations


class ITADKernelError(Exception):
    """
    Base exception for all ITAD kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "ITAD_KERNEL_ERROR"


# Validation


class ValidationError(ITADKernelError):
    """Malformed input.  Caller's fault; never retried automatically."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None, value: object = None):
        self.field = field
        self.value = value
        super().__init__(message)


class UnknownTransitionKindError(ValidationError):
    """Bulk request names a transition kind the engine does not support."""

    code: str = "UNKNOWN_TRANSITION_KIND"

    def __init__(self, kind: str, available: tuple[str, ...]):
        self.kind = kind
        self.available = available
        super().__init__(
            f"Unknown transition kind '{kind}'. Available: {list(available)}",
            field="kind",
            value=kind,
        )


# Asset lifecycle


class AssetError(ITADKernelError):
    """Base exception for asset lifecycle errors."""

    code: str = "ASSET_ERROR"


class AssetNotFoundError(AssetError):
    """No asset record exists for the given id."""

    code: str = "ASSET_NOT_FOUND"

    def __init__(self, asset_id: str):
        self.asset_id = asset_id
        super().__init__(f"Asset not found: {asset_id}")


class DuplicateSerialError(AssetError):
    """An asset with this serial number is already registered."""

    code: str = "DUPLICATE_SERIAL"

    def __init__(self, serial_number: str, existing_asset_id: str | None = None):
        self.serial_number = serial_number
        self.existing_asset_id = existing_asset_id
        detail = f" (asset {existing_asset_id})" if existing_asset_id else ""
        super().__init__(
            f"Asset with serial number '{serial_number}' already exists{detail}"
        )


class InvalidStateError(AssetError):
    """
    The requested transition is illegal from the asset's current status.

    Raised before any field is touched, so the record is unchanged.
    """

    code: str = "INVALID_STATE"

    def __init__(
        self,
        asset_id: str,
        transition: str,
        current_status: str,
        allowed_statuses: tuple[str, ...] = (),
    ):
        self.asset_id = asset_id
        self.transition = transition
        self.current_status = current_status
        self.allowed_statuses = allowed_statuses
        allowed = ", ".join(allowed_statuses) if allowed_statuses else "none"
        super().__init__(
            f"Cannot {transition} asset {asset_id} in status {current_status} "
            f"(allowed from: {allowed})"
        )


class ImmutableFieldError(AssetError):
    """A set-once field already holds a value and cannot be rewritten."""

    code: str = "IMMUTABLE_FIELD"

    def __init__(self, asset_id: str, field_name: str):
        self.asset_id = asset_id
        self.field_name = field_name
        super().__init__(
            f"Field '{field_name}' on asset {asset_id} is already set and immutable"
        )


# Concurrency


class ConcurrencyError(ITADKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """
    Compare-and-swap write lost a race.

    Another transition changed the record between read and write.  The
    single item is safe to retry; the state machine never does so itself.
    """

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        asset_id: str,
        expected_status: str,
        expected_version: int,
    ):
        self.asset_id = asset_id
        self.expected_status = expected_status
        self.expected_version = expected_version
        super().__init__(
            f"Concurrent modification on asset {asset_id}: expected status "
            f"{expected_status} at version {expected_version}"
        )


# External collaborators


class CollaboratorError(ITADKernelError):
    """Base exception for best-effort collaborator failures."""

    code: str = "COLLABORATOR_ERROR"


class LedgerUnavailableError(CollaboratorError):
    """Ledger proof recorder could not accept a proof."""

    code: str = "LEDGER_UNAVAILABLE"

    def __init__(self, reason: str, asset_id: str | None = None):
        self.reason = reason
        self.asset_id = asset_id
        target = f" for asset {asset_id}" if asset_id else ""
        super().__init__(f"Ledger unavailable{target}: {reason}")


class EvidenceStoreError(CollaboratorError):
    """Evidence store could not store or resolve a blob."""

    code: str = "EVIDENCE_STORE_ERROR"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Evidence store error: {reason}")


class NotificationDeliveryError(CollaboratorError):
    """A single notification channel failed to deliver."""

    code: str = "NOTIFICATION_DELIVERY"

    def __init__(self, channel: str, reason: str):
        self.channel = channel
        self.reason = reason
        super().__init__(f"Notification channel '{channel}' failed: {reason}")


# Audit


class AuditError(ITADKernelError):
    """Base exception for audit errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Recomputed audit hash does not match the stored chain."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: expected {expected_hash}, "
            f"got {actual_hash}"
        )
