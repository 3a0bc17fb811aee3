"""
ReportService -- sanitization compliance reports, stats overview and CSV export.

Reads only.  The sanitization report is serialized as canonical JSON and
stored in the evidence store, so the returned content hash is a
verifiable fingerprint of exactly what was reported.
"""

from __future__ import annotations

import csv
import io
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from itad_kernel.domain.clock import Clock, SystemClock
from itad_kernel.domain.lifecycle import AssetStatus
from itad_kernel.domain.values import AssetRecord, parse_asset_id
from itad_kernel.exceptions import ValidationError
from itad_kernel.logging_config import get_logger
from itad_kernel.services.asset_store import AssetStore
from itad_kernel.utils.hashing import canonical_json_bytes
from itad_services.evidence import LocalEvidenceStore
from itad_services.retry import RetryPolicy

logger = get_logger("batch.reports")

CSV_HEADERS = (
    "Asset ID",
    "Serial Number",
    "Model",
    "Status",
    "Registration Date",
    "Sanitization Hash",
    "Carbon Credits",
    "Owner",
    "Ledger Tx",
)


@dataclass(frozen=True)
class SanitizationReport:
    report_id: UUID
    generated_at: datetime
    total_assets: int
    sanitized_assets: int
    pending_assets: int
    compliance_rate: float
    missing_asset_ids: tuple[str, ...] = ()
    methods: dict[str, int] = field(default_factory=dict)
    operators: dict[str, int] = field(default_factory=dict)
    report_hash: str | None = None
    report_url: str | None = None


@dataclass(frozen=True)
class AssetStatsOverview:
    generated_at: datetime
    total_assets: int
    status_counts: dict[AssetStatus, int]
    carbon_credits_earned: int
    recent_assets: tuple[AssetRecord, ...] = ()

    @property
    def sanitized_assets(self) -> int:
        return self.status_counts[AssetStatus.SANITIZED]

    @property
    def recycled_assets(self) -> int:
        return self.status_counts[AssetStatus.RECYCLED]


class ReportService:
    """
    Usage:
        reports = ReportService(store, evidence, clock)
        report = reports.sanitization_report([asset.asset_id, ...])
        csv_text = reports.export_assets_csv(AssetStatus.RECYCLED)
        overview = reports.stats_overview()
    """

    def __init__(
        self,
        store: AssetStore,
        evidence: LocalEvidenceStore | None = None,
        clock: Clock | None = None,
        evidence_retry: RetryPolicy | None = None,
    ):
        self._store = store
        self._evidence = evidence
        self._clock = clock or SystemClock()
        self._evidence_retry = evidence_retry or RetryPolicy.no_retry()

    def sanitization_report(self, asset_ids: Iterable[UUID | str]) -> SanitizationReport:
        """
        Compliance summary for ``asset_ids``.

        An asset counts as sanitized once it is past REGISTERED.  Unknown
        ids are listed in ``missing_asset_ids`` and excluded from totals.

        Raises:
            ValidationError: An id is not a UUID.
            EvidenceStoreError: The report document could not be stored.
        """
        requested: list[UUID] = []
        for value in asset_ids:
            asset_id = parse_asset_id(value)
            if asset_id not in requested:
                requested.append(asset_id)

        records = self._store.list_assets(asset_ids=requested) if requested else []
        found = {r.asset_id for r in records}
        missing = tuple(str(a) for a in requested if a not in found)

        sanitized = [r for r in records if r.is_sanitized]
        total = len(records)
        compliance_rate = round(len(sanitized) / total * 100, 1) if total else 0.0

        methods: Counter[str] = Counter()
        operators: Counter[str] = Counter()
        for record in sanitized:
            details = record.metadata.get("sanitization") or {}
            if details.get("method"):
                methods[details["method"]] += 1
            if details.get("operator"):
                operators[details["operator"]] += 1

        report = SanitizationReport(
            report_id=uuid4(),
            generated_at=self._clock.now(),
            total_assets=total,
            sanitized_assets=len(sanitized),
            pending_assets=total - len(sanitized),
            compliance_rate=compliance_rate,
            missing_asset_ids=missing,
            methods=dict(methods),
            operators=dict(operators),
        )

        if self._evidence is not None:
            document = self._render_document(report, records)
            report_hash = self._evidence_retry.call(self._evidence.put, document)
            report = replace(
                report,
                report_hash=report_hash,
                report_url=self._evidence.url_for(report_hash),
            )

        logger.info(
            "sanitization_report_generated",
            extra={
                "report_id": str(report.report_id),
                "total_assets": report.total_assets,
                "sanitized_assets": report.sanitized_assets,
                "missing": len(missing),
                "report_hash": report.report_hash,
            },
        )
        return report

    def _render_document(self, report: SanitizationReport, records: list[AssetRecord]) -> bytes:
        assets: list[dict[str, Any]] = []
        for record in records:
            entry = {
                "asset_id": str(record.asset_id),
                "serial_number": record.serial_number,
                "model": record.model,
                "status": record.status.name,
                "sanitization_hash": record.sanitization_hash,
                "sanitization_time": (
                    record.sanitization_time.isoformat()
                    if record.sanitization_time else None
                ),
                "evidence_url": None,
            }
            if record.sanitization_hash and self._evidence is not None:
                entry["evidence_url"] = self._evidence.url_for(record.sanitization_hash)
            assets.append(entry)

        document = {
            "report_id": str(report.report_id),
            "generated_at": report.generated_at.isoformat(),
            "total_assets": report.total_assets,
            "sanitized_assets": report.sanitized_assets,
            "pending_assets": report.pending_assets,
            "compliance_rate": report.compliance_rate,
            "missing_asset_ids": list(report.missing_asset_ids),
            "summary": {"methods": report.methods, "operators": report.operators},
            "assets": assets,
        }
        return canonical_json_bytes(document)

    def stats_overview(self, recent_limit: int = 5) -> AssetStatsOverview:
        """
        Portfolio counts per status, total carbon credits and the newest
        registrations.  Every status appears in ``status_counts``.
        """
        counts = {status: 0 for status in AssetStatus}
        counts.update(self._store.status_counts())
        overview = AssetStatsOverview(
            generated_at=self._clock.now(),
            total_assets=sum(counts.values()),
            status_counts=counts,
            carbon_credits_earned=self._store.total_carbon_credits(),
            recent_assets=tuple(self._store.recent_registrations(recent_limit)),
        )
        logger.info(
            "asset_stats_generated",
            extra={
                "total_assets": overview.total_assets,
                "carbon_credits_earned": overview.carbon_credits_earned,
            },
        )
        return overview

    def export_assets_csv(
        self,
        status: AssetStatus | None = None,
        customer: str | None = None,
        *,
        registered_from: datetime | None = None,
        registered_to: datetime | None = None,
    ) -> str:
        """
        Stored records as CSV, ordered by registration time.

        ``registered_from`` and ``registered_to`` bound the registration
        time inclusively; either may be omitted.

        Raises:
            ValidationError: The window ends before it starts.
        """
        if (
            registered_from is not None
            and registered_to is not None
            and registered_to < registered_from
        ):
            raise ValidationError(
                "registered_to is before registered_from", field="registered_to",
            )
        records = self._store.list_assets(
            status=status,
            registered_from=registered_from,
            registered_to=registered_to,
        )
        if customer is not None:
            records = [r for r in records if r.customer == customer]

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for record in records:
            writer.writerow((
                str(record.asset_id),
                record.serial_number,
                record.model,
                record.status.name,
                record.registration_time.isoformat(),
                record.sanitization_hash or "",
                record.carbon_credits,
                record.owner,
                record.ledger_tx_ref or "",
            ))

        logger.info(
            "assets_exported",
            extra={
                "status": status.name if status is not None else None,
                "registered_from": registered_from,
                "registered_to": registered_to,
                "rows": len(records),
            },
        )
        return buffer.getvalue()
