"""
Module: itad_kernel.models.audit_entry
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Rows are append-only; AuditorService never updates or deletes.
    - entry_hash = H(resource_id | action | result | payload_hash | prev_hash).
    - seq is unique and monotonically increasing.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from itad_kernel.db.base import Base
from itad_kernel.domain.dtos import AuditAction, AuditEntry, AuditResult
from itad_kernel.domain.lifecycle import AssetStatus


class AuditEntryModel(Base):
    """One link in the audit chain."""

    __tablename__ = "audit_entries"

    __table_args__ = (
        Index("idx_audit_resource", "resource_id"),
        Index("idx_audit_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    actor: Mapped[str] = mapped_column(String(200), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(100), nullable=False)
    result: Mapped[str] = mapped_column(String(20), nullable=False)
    old_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    ledger_tx_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEntryModel #{self.seq} {self.action} on {self.resource_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    def to_dto(self) -> AuditEntry:
        return AuditEntry(
            entry_id=self.id,
            seq=self.seq,
            actor=self.actor,
            action=AuditAction(self.action),
            resource_id=self.resource_id,
            result=AuditResult(self.result),
            timestamp=self.timestamp,
            old_status=AssetStatus(self.old_status) if self.old_status is not None else None,
            new_status=AssetStatus(self.new_status) if self.new_status is not None else None,
            error_message=self.error_message,
            ledger_tx_ref=self.ledger_tx_ref,
            details=dict(self.details or {}),
            prev_hash=self.prev_hash,
            entry_hash=self.entry_hash,
        )
