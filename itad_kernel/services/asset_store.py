"""
AssetStore -- durable keyed storage for asset records.

Responsibility:
    Get-by-id, get-by-serial, create, and the compare-and-swap write that
    every lifecycle transition goes through.  Also the listing and
    aggregate reads behind exports and the stats overview.  Exposes frozen AssetRecord
    DTOs; ORM models never leave this module.

Architecture position:
    Kernel > Services.  Used by LifecycleService (all status writes) and by
    the bulk engine's side-effect fan-out (ledger reference attachment).

Invariants enforced:
    - Every write is ``UPDATE ... WHERE id = :id AND status = :expected
      AND version = :expected_version`` and bumps version by one.  A
      zero rowcount means another writer won and raises
      ConcurrentModificationError.  The store never retries.
    - Serial uniqueness is backed by the UNIQUE constraint; a constraint
      violation on INSERT surfaces as DuplicateSerialError.

Transaction boundaries:
    Never commits.  ``create`` wraps its INSERT in a SAVEPOINT so a
    duplicate does not poison the caller's transaction.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from itad_kernel.domain.lifecycle import AssetStatus
from itad_kernel.domain.values import AssetRecord
from itad_kernel.exceptions import (
    AssetNotFoundError,
    ConcurrentModificationError,
    DuplicateSerialError,
)
from itad_kernel.logging_config import get_logger
from itad_kernel.models.asset import AssetModel

logger = get_logger("services.asset_store")

AssetMutator = Callable[[AssetRecord], AssetRecord]


class AssetStore:
    """SQLAlchemy-backed asset record store with optimistic concurrency."""

    def __init__(self, session: Session):
        self._session = session

    def _load(self, asset_id: UUID) -> AssetModel | None:
        # populate_existing: never trust a stale identity-map copy for CAS reads
        return self._session.get(AssetModel, asset_id, populate_existing=True)

    def find(self, asset_id: UUID) -> AssetRecord | None:
        model = self._load(asset_id)
        return model.to_dto() if model is not None else None

    def get(self, asset_id: UUID) -> AssetRecord:
        """
        Raises:
            AssetNotFoundError: No record for ``asset_id``.
        """
        record = self.find(asset_id)
        if record is None:
            raise AssetNotFoundError(str(asset_id))
        return record

    def get_by_serial(self, serial_number: str) -> AssetRecord | None:
        model = self._session.execute(
            select(AssetModel)
            .where(AssetModel.serial_number == serial_number)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def create(self, record: AssetRecord) -> AssetRecord:
        """
        Insert a new REGISTERED record.

        Raises:
            DuplicateSerialError: The serial number is already stored.
        """
        model = AssetModel.from_dto(record)
        try:
            with self._session.begin_nested():
                self._session.add(model)
                self._session.flush()
        except IntegrityError as exc:
            existing = self.get_by_serial(record.serial_number)
            raise DuplicateSerialError(
                record.serial_number,
                str(existing.asset_id) if existing else None,
            ) from exc
        return model.to_dto()

    def compare_and_swap(
        self,
        asset_id: UUID,
        expected_status: AssetStatus,
        expected_version: int,
        mutator: AssetMutator,
    ) -> AssetRecord:
        """
        Apply ``mutator`` to the stored record iff it still holds
        ``expected_status`` at ``expected_version``.

        Returns:
            The stored record after the write (version incremented).

        Raises:
            AssetNotFoundError: Record vanished.
            ConcurrentModificationError: Status or version moved on.
        """
        current = self.get(asset_id)
        if current.status != expected_status or current.version != expected_version:
            raise ConcurrentModificationError(
                str(asset_id), expected_status.name, expected_version,
            )

        updated = mutator(current)
        values = AssetModel.column_values(updated)
        values["version"] = expected_version + 1

        result = self._session.execute(
            update(AssetModel)
            .where(
                AssetModel.id == asset_id,
                AssetModel.status == int(expected_status),
                AssetModel.version == expected_version,
            )
            .values({getattr(AssetModel, key): value for key, value in values.items()})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "asset_cas_conflict",
                extra={
                    "asset_id": str(asset_id),
                    "expected_status": expected_status.name,
                    "expected_version": expected_version,
                },
            )
            raise ConcurrentModificationError(
                str(asset_id), expected_status.name, expected_version,
            )

        return self.get(asset_id)

    def attach_ledger_refs(
        self,
        asset_id: UUID,
        tx_ref: str,
        asset_ref: str | None = None,
    ) -> AssetRecord:
        """
        Follow-up write recording the ledger witness for the latest
        transition.  ``ledger_asset_ref`` is only filled when empty.

        Single attempt; a conflict propagates to the caller.
        """
        current = self.get(asset_id)

        def _attach(record: AssetRecord) -> AssetRecord:
            return replace(
                record,
                ledger_tx_ref=tx_ref,
                ledger_asset_ref=record.ledger_asset_ref or asset_ref,
            )

        return self.compare_and_swap(asset_id, current.status, current.version, _attach)

    def list_assets(
        self,
        status: AssetStatus | None = None,
        asset_ids: Iterable[UUID] | None = None,
        *,
        registered_from: datetime | None = None,
        registered_to: datetime | None = None,
    ) -> list[AssetRecord]:
        """
        Records ordered by registration time then serial number.

        The registration window is inclusive at both ends.
        """
        stmt = select(AssetModel)
        if status is not None:
            stmt = stmt.where(AssetModel.status == int(status))
        if asset_ids is not None:
            stmt = stmt.where(AssetModel.id.in_(list(asset_ids)))
        if registered_from is not None:
            stmt = stmt.where(AssetModel.registration_time >= registered_from)
        if registered_to is not None:
            stmt = stmt.where(AssetModel.registration_time <= registered_to)
        stmt = stmt.order_by(
            AssetModel.registration_time, AssetModel.serial_number,
        ).execution_options(populate_existing=True)
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def recent_registrations(self, limit: int = 5) -> list[AssetRecord]:
        """Newest registrations first."""
        stmt = (
            select(AssetModel)
            .order_by(AssetModel.registration_time.desc(), AssetModel.serial_number)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def status_counts(self) -> dict[AssetStatus, int]:
        """Record count per status; statuses with no records are absent."""
        stmt = select(AssetModel.status, func.count()).group_by(AssetModel.status)
        return {AssetStatus(status): count for status, count in self._session.execute(stmt)}

    def total_carbon_credits(self) -> int:
        stmt = select(func.coalesce(func.sum(AssetModel.carbon_credits), 0))
        return int(self._session.execute(stmt).scalar_one())
