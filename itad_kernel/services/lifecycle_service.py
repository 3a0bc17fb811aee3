"""
LifecycleService -- the asset lifecycle state machine.

Responsibility:
    Applies exactly one transition to exactly one asset record and returns
    the updated record or raises a typed failure.  This is the only code
    path allowed to change an asset's status.

Architecture position:
    Kernel > Services.  Called directly by single-item callers and by the
    bulk engine's transition runner.

Invariants enforced:
    - Precondition checked against the freshly read status
      (``domain.lifecycle.check_transition``).
    - The write is a compare-and-swap on (status, version); losing the
      race raises ConcurrentModificationError.  No retry happens here.
    - Set-once fields (sanitization hash, lifecycle timestamps) raise
      ImmutableFieldError if already populated.
    - The carbon credit award on recycle is applied only when credits
      are still 0, so a manual override survives.

Failure modes:
    - ValidationError for malformed input (raised before any read).
    - AssetNotFoundError, DuplicateSerialError, InvalidStateError.

Transaction boundaries:
    Never commits.  The caller owns the transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from itad_kernel.domain.clock import Clock, SystemClock
from itad_kernel.domain.dtos import (
    RecycleInput,
    RegisterInput,
    SanitizeInput,
    TransferInput,
    TransitionInput,
)
from itad_kernel.domain.lifecycle import AssetStatus, TransitionKind, check_transition
from itad_kernel.domain.values import (
    CARBON_CREDIT_AWARD,
    DEFAULT_OWNER,
    AssetRecord,
    validate_carbon_credits,
    validate_content_hash,
    validate_model,
    validate_optional_text,
    validate_owner,
    validate_serial_number,
)
from itad_kernel.exceptions import (
    DuplicateSerialError,
    ImmutableFieldError,
    InvalidStateError,
    ValidationError,
)
from itad_kernel.logging_config import get_logger
from itad_kernel.services.asset_store import AssetMutator, AssetStore

logger = get_logger("services.lifecycle")


@dataclass(frozen=True)
class TransitionResult:
    """The record as read by the compare-and-swap (None for register) and as written."""

    before: AssetRecord | None
    after: AssetRecord


def _require_unset(record: AssetRecord, field_name: str) -> None:
    if getattr(record, field_name) is not None:
        raise ImmutableFieldError(str(record.asset_id), field_name)


class LifecycleService:
    """
    Asset lifecycle state machine.

    Usage:
        service = LifecycleService(session, clock)
        asset = service.register("SN-1", "Dell OptiPlex 7090")
        asset = service.sanitize(asset.asset_id, "Qm...")
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        *,
        store: AssetStore | None = None,
        carbon_credit_award: int = CARBON_CREDIT_AWARD,
        default_owner: str = DEFAULT_OWNER,
        strict_owner_format: bool = False,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._store = store or AssetStore(session)
        self._carbon_credit_award = carbon_credit_award
        self._default_owner = default_owner
        self._strict_owner_format = strict_owner_format

    @property
    def store(self) -> AssetStore:
        return self._store

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, asset_id: UUID) -> AssetRecord:
        return self._store.get(asset_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def register(
        self,
        serial_number: str,
        model: str,
        owner: str | None = None,
        *,
        customer: str | None = None,
        location: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AssetRecord:
        """
        Create a record in REGISTERED.

        Raises:
            ValidationError: Missing or malformed fields.
            DuplicateSerialError: Serial number already registered.
        """
        serial = validate_serial_number(serial_number)
        model_name = validate_model(model)
        owner_value = validate_owner(
            owner if owner is not None else self._default_owner,
            strict=self._strict_owner_format,
        )
        customer_value = validate_optional_text(customer, "customer")
        location_value = validate_optional_text(location, "location")

        existing = self._store.get_by_serial(serial)
        if existing is not None:
            raise DuplicateSerialError(serial, str(existing.asset_id))

        record = self._store.create(
            AssetRecord(
                asset_id=uuid4(),
                serial_number=serial,
                model=model_name,
                status=AssetStatus.REGISTERED,
                owner=owner_value,
                registration_time=self._clock.now(),
                customer=customer_value,
                location=location_value,
                metadata=dict(metadata or {}),
            )
        )

        logger.info(
            "asset_registered",
            extra={
                "asset_id": str(record.asset_id),
                "serial_number": record.serial_number,
                "status": record.status.name,
            },
        )
        return record

    def sanitize(
        self,
        asset_id: UUID,
        sanitization_hash: str,
        *,
        method: str | None = None,
        operator: str | None = None,
    ) -> AssetRecord:
        """
        REGISTERED -> SANITIZED, recording the proof's content hash.

        Raises:
            ValidationError: Hash missing or not a content address.
            AssetNotFoundError, InvalidStateError, ImmutableFieldError.
        """
        return self._sanitize(
            asset_id, sanitization_hash, method=method, operator=operator,
        ).after

    def recycle(self, asset_id: UUID) -> AssetRecord:
        """
        SANITIZED -> RECYCLED.  Awards carbon credits only if still 0.

        Raises:
            AssetNotFoundError, InvalidStateError, ImmutableFieldError.
        """
        return self._recycle(asset_id).after

    def transfer(self, asset_id: UUID, new_owner: str) -> AssetRecord:
        """
        SANITIZED | RECYCLED -> SOLD, setting the new owner.

        Raises:
            ValidationError: Owner malformed.
            AssetNotFoundError, InvalidStateError.
        """
        return self._transfer(asset_id, new_owner).after

    def _sanitize(
        self,
        asset_id: UUID,
        sanitization_hash: str,
        *,
        method: str | None,
        operator: str | None,
    ) -> TransitionResult:
        content_hash = validate_content_hash(sanitization_hash)
        now = self._clock.now()

        def _mutate(record: AssetRecord) -> AssetRecord:
            _require_unset(record, "sanitization_hash")
            _require_unset(record, "sanitization_time")
            metadata = dict(record.metadata)
            if method or operator:
                metadata["sanitization"] = {"method": method, "operator": operator}
            return replace(
                record,
                status=AssetStatus.SANITIZED,
                sanitization_hash=content_hash,
                sanitization_time=now,
                metadata=metadata,
            )

        before, record = self._transition(asset_id, TransitionKind.SANITIZE, _mutate)
        logger.info(
            "asset_sanitized",
            extra={
                "asset_id": str(record.asset_id),
                "sanitization_hash": record.sanitization_hash,
                "version": record.version,
            },
        )
        return TransitionResult(before, record)

    def _recycle(self, asset_id: UUID) -> TransitionResult:
        now = self._clock.now()
        award = self._carbon_credit_award

        def _mutate(record: AssetRecord) -> AssetRecord:
            _require_unset(record, "recycling_time")
            credits = record.carbon_credits if record.carbon_credits != 0 else award
            return replace(
                record,
                status=AssetStatus.RECYCLED,
                recycling_time=now,
                carbon_credits=credits,
            )

        before, record = self._transition(asset_id, TransitionKind.RECYCLE, _mutate)
        logger.info(
            "asset_recycled",
            extra={
                "asset_id": str(record.asset_id),
                "carbon_credits": record.carbon_credits,
                "version": record.version,
            },
        )
        return TransitionResult(before, record)

    def _transfer(self, asset_id: UUID, new_owner: str) -> TransitionResult:
        owner = validate_owner(new_owner, strict=self._strict_owner_format)

        def _mutate(record: AssetRecord) -> AssetRecord:
            return replace(record, status=AssetStatus.SOLD, owner=owner)

        before, record = self._transition(asset_id, TransitionKind.TRANSFER, _mutate)
        logger.info(
            "asset_transferred",
            extra={
                "asset_id": str(record.asset_id),
                "owner": record.owner,
                "version": record.version,
            },
        )
        return TransitionResult(before, record)

    def apply(self, transition_input: TransitionInput) -> AssetRecord:
        """Dispatch a transition input to the matching operation."""
        return self.execute(transition_input).after

    def execute(self, transition_input: TransitionInput) -> TransitionResult:
        """
        Like ``apply``, but also returns the record the write swapped from.

        ``before`` is the exact version the compare-and-swap matched, so an
        audit built from it never disagrees with the stored transition.
        """
        if isinstance(transition_input, RegisterInput):
            return TransitionResult(None, self.register(
                transition_input.serial_number,
                transition_input.model,
                transition_input.owner,
                customer=transition_input.customer,
                location=transition_input.location,
                metadata=transition_input.metadata,
            ))
        if isinstance(transition_input, SanitizeInput):
            return self._sanitize(
                transition_input.asset_id,
                transition_input.sanitization_hash,
                method=transition_input.method,
                operator=transition_input.operator,
            )
        if isinstance(transition_input, RecycleInput):
            return self._recycle(transition_input.asset_id)
        if isinstance(transition_input, TransferInput):
            return self._transfer(transition_input.asset_id, transition_input.new_owner)
        raise ValidationError(
            f"Unsupported transition input: {type(transition_input).__name__}",
            field="kind",
        )

    # ------------------------------------------------------------------
    # Non-status updates
    # ------------------------------------------------------------------

    def amend_details(
        self,
        asset_id: UUID,
        *,
        model: str | None = None,
        customer: str | None = None,
        location: str | None = None,
    ) -> AssetRecord:
        """
        Correct descriptive fields.  Only allowed while REGISTERED.

        Raises:
            InvalidStateError: Asset already sanitized.
        """
        current = self._store.get(asset_id)
        if current.status != AssetStatus.REGISTERED:
            raise InvalidStateError(
                asset_id=str(asset_id),
                transition="amend_details",
                current_status=current.status.name,
                allowed_statuses=(AssetStatus.REGISTERED.name,),
            )

        changes: dict[str, Any] = {}
        if model is not None:
            changes["model"] = validate_model(model)
        if customer is not None:
            changes["customer"] = validate_optional_text(customer, "customer")
        if location is not None:
            changes["location"] = validate_optional_text(location, "location")

        record = self._store.compare_and_swap(
            asset_id,
            current.status,
            current.version,
            lambda r: replace(r, **changes),
        )
        logger.info(
            "asset_details_amended",
            extra={"asset_id": str(asset_id), "fields": sorted(changes)},
        )
        return record

    def override_carbon_credits(self, asset_id: UUID, credits: int) -> AssetRecord:
        """Administrative override; status is untouched."""
        value = validate_carbon_credits(credits)
        current = self._store.get(asset_id)
        record = self._store.compare_and_swap(
            asset_id,
            current.status,
            current.version,
            lambda r: replace(r, carbon_credits=value),
        )
        logger.info(
            "carbon_credits_overridden",
            extra={
                "asset_id": str(asset_id),
                "old_credits": current.carbon_credits,
                "new_credits": value,
            },
        )
        return record

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _transition(
        self,
        asset_id: UUID,
        kind: TransitionKind,
        mutate: AssetMutator,
    ) -> tuple[AssetRecord, AssetRecord]:
        current = self._store.get(asset_id)
        check_transition(str(asset_id), kind, current.status)
        updated = self._store.compare_and_swap(
            asset_id, current.status, current.version, mutate,
        )
        return current, updated
