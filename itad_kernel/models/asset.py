"""
Module: itad_kernel.models.asset
Responsibility: ORM persistence for asset records.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - serial_number is UNIQUE at the database level, backing the
      service-level duplicate check.
    - version starts at 1; every UPDATE issued by AssetStore is
      conditioned on (status, version) and increments version.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from itad_kernel.db.base import Base
from itad_kernel.domain.lifecycle import AssetStatus
from itad_kernel.domain.values import AssetRecord


class AssetModel(Base):
    """One row per tracked physical asset."""

    __tablename__ = "assets"

    __table_args__ = (
        Index("idx_asset_status", "status"),
        Index("idx_asset_owner", "owner"),
    )

    serial_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    model: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[int] = mapped_column(Integer, nullable=False)
    owner: Mapped[str] = mapped_column(String(100), nullable=False)

    sanitization_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    carbon_credits: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    registration_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sanitization_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    recycling_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    ledger_tx_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ledger_asset_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)

    customer: Mapped[str | None] = mapped_column(String(200), nullable=True)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    # "metadata" is reserved on declarative classes
    asset_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    def __repr__(self) -> str:
        return f"<AssetModel {self.serial_number} status={self.status} v{self.version}>"

    def to_dto(self) -> AssetRecord:
        return AssetRecord(
            asset_id=self.id,
            serial_number=self.serial_number,
            model=self.model,
            status=AssetStatus(self.status),
            owner=self.owner,
            registration_time=self.registration_time,
            version=self.version,
            sanitization_hash=self.sanitization_hash,
            sanitization_time=self.sanitization_time,
            recycling_time=self.recycling_time,
            carbon_credits=self.carbon_credits,
            ledger_tx_ref=self.ledger_tx_ref,
            ledger_asset_ref=self.ledger_asset_ref,
            customer=self.customer,
            location=self.location,
            metadata=dict(self.asset_metadata or {}),
        )

    @classmethod
    def from_dto(cls, dto: AssetRecord) -> AssetModel:
        return cls(
            id=dto.asset_id,
            serial_number=dto.serial_number,
            model=dto.model,
            status=int(dto.status),
            owner=dto.owner,
            registration_time=dto.registration_time,
            version=dto.version,
            sanitization_hash=dto.sanitization_hash,
            sanitization_time=dto.sanitization_time,
            recycling_time=dto.recycling_time,
            carbon_credits=dto.carbon_credits,
            ledger_tx_ref=dto.ledger_tx_ref,
            ledger_asset_ref=dto.ledger_asset_ref,
            customer=dto.customer,
            location=dto.location,
            asset_metadata=dict(dto.metadata) or None,
        )

    @staticmethod
    def column_values(dto: AssetRecord) -> dict[str, Any]:
        """Mutable column values of ``dto``, keyed for an UPDATE statement."""
        return {
            "model": dto.model,
            "status": int(dto.status),
            "owner": dto.owner,
            "sanitization_hash": dto.sanitization_hash,
            "sanitization_time": dto.sanitization_time,
            "recycling_time": dto.recycling_time,
            "carbon_credits": dto.carbon_credits,
            "ledger_tx_ref": dto.ledger_tx_ref,
            "ledger_asset_ref": dto.ledger_asset_ref,
            "customer": dto.customer,
            "location": dto.location,
            "asset_metadata": dict(dto.metadata) or None,
        }
