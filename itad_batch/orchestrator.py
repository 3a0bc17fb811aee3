"""
BulkOrchestrator -- DI container for the ITAD bulk engine.

Contract:
    Wires the lifecycle service, asset store, auditor, collaborators
    (ledger, evidence store, notifications), transition runner, bulk
    coordinator, and report service from one session and one
    configuration.  Single place where all dependencies are composed.

Architecture: itad_batch (top-level).  The canonical entry point for
    single-item transitions, bulk runs, and reports.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Collaborators are injected, never module singletons; the ledger
      recorder exists only when ``ledger.enabled`` is set.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy.orm import Session

from itad_batch.domain.types import (
    BulkOptions,
    BulkSummary,
    BulkTemplate,
    CancellationToken,
    ValidationReport,
)
from itad_batch.services.coordinator import BulkOperationCoordinator
from itad_batch.services.reports import ReportService
from itad_batch.services.runner import TransitionOutcome, TransitionRunner
from itad_batch.services.side_effects import SideEffectFanout
from itad_batch.tasks.lifecycle_tasks import default_task_registry
from itad_config.schema import ITADConfig
from itad_kernel.domain.clock import Clock, SystemClock
from itad_kernel.domain.dtos import TransitionInput
from itad_kernel.exceptions import EvidenceStoreError, LedgerUnavailableError
from itad_kernel.logging_config import get_logger
from itad_kernel.services.asset_store import AssetStore
from itad_kernel.services.auditor_service import AuditorService
from itad_kernel.services.lifecycle_service import LifecycleService
from itad_services.evidence import LocalEvidenceStore
from itad_services.ledger import HttpLedgerRecorder, LedgerProofRecorder
from itad_services.notifications import NotificationDispatcher
from itad_services.retry import RetryPolicy

logger = get_logger("batch.orchestrator")


class BulkOrchestrator:
    """DI container for the bulk engine.

    Contract:
        - ``from_session()`` factory creates a fully wired orchestrator.
        - ``apply()`` runs one transition with its side effects.
        - ``run_bulk()``, ``validate()`` and ``template()`` delegate to
          the coordinator.

    Non-goals:
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        config: ITADConfig,
        clock: Clock,
        store: AssetStore,
        lifecycle: LifecycleService,
        auditor: AuditorService,
        runner: TransitionRunner,
        coordinator: BulkOperationCoordinator,
        reports: ReportService,
    ) -> None:
        self._session = session
        self._config = config
        self._clock = clock
        self._store = store
        self._lifecycle = lifecycle
        self._auditor = auditor
        self._runner = runner
        self._coordinator = coordinator
        self._reports = reports

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        config: ITADConfig | None = None,
        clock: Clock | None = None,
        *,
        ledger: LedgerProofRecorder | None = None,
        evidence: LocalEvidenceStore | None = None,
        notifier: NotificationDispatcher | None = None,
        http: Any = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> BulkOrchestrator:
        """Create a fully wired BulkOrchestrator from a session.

        Args:
            session: SQLAlchemy session for persistence.
            config: Effective configuration; defaults apply when None.
            clock: Optional clock for deterministic testing.
            ledger: Recorder override.  When None, an HTTP recorder is
                built only if the ledger is enabled in ``config``.
            evidence: Evidence store override.
            notifier: Dispatcher override.  When None, channels come
                from ``config.notifications``.
            http: Optional requests-compatible session for the HTTP
                collaborators.
            sleep: Sleep used for inter-batch delays and retry backoff.
        """
        cfg = config or ITADConfig()
        effective_clock = clock or SystemClock()

        if ledger is None and cfg.ledger.enabled:
            ledger = HttpLedgerRecorder(
                cfg.ledger.endpoint or "",
                timeout=cfg.ledger.timeout_seconds,
                retry_policy=RetryPolicy.from_settings(
                    cfg.ledger.retry,
                    retry_on=(LedgerUnavailableError,),
                    sleep=sleep,
                    name="ledger",
                ),
                http=http,
            )
        evidence_store = evidence or LocalEvidenceStore(
            root=cfg.evidence.root, gateway_url=cfg.evidence.gateway_url,
        )
        evidence_retry = RetryPolicy.from_settings(
            cfg.evidence.retry,
            retry_on=(EvidenceStoreError,),
            sleep=sleep,
            name="evidence",
        )
        dispatcher = notifier or NotificationDispatcher.from_settings(cfg.notifications, http=http)

        store = AssetStore(session)
        lifecycle = LifecycleService(
            session,
            effective_clock,
            store=store,
            carbon_credit_award=cfg.lifecycle.carbon_credit_award,
            default_owner=cfg.lifecycle.default_owner,
            strict_owner_format=cfg.lifecycle.strict_owner_format,
        )
        auditor = AuditorService(session, effective_clock)
        side_effects = SideEffectFanout(
            session,
            auditor,
            store,
            ledger=ledger,
            notifier=dispatcher,
            record_failures=cfg.audit.record_failures,
        )
        runner = TransitionRunner(
            session, lifecycle, side_effects,
            evidence=evidence_store, evidence_retry=evidence_retry,
        )
        coordinator = BulkOperationCoordinator(
            runner,
            side_effects,
            default_task_registry(cfg.lifecycle.strict_owner_format),
            clock=effective_clock,
            settings=cfg.bulk,
            sleep=sleep,
        )
        reports = ReportService(
            store, evidence_store, effective_clock, evidence_retry=evidence_retry,
        )

        logger.debug(
            "bulk_orchestrator_wired",
            extra={
                "ledger_enabled": ledger is not None,
                "channels": list(dispatcher.channel_names),
                "config_checksum": cfg.checksum,
            },
        )
        return cls(
            session=session,
            config=cfg,
            clock=effective_clock,
            store=store,
            lifecycle=lifecycle,
            auditor=auditor,
            runner=runner,
            coordinator=coordinator,
            reports=reports,
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def apply(self, transition_input: TransitionInput, *, actor: str = "system") -> TransitionOutcome:
        return self._runner.run(transition_input, actor=actor)

    def run_bulk(
        self,
        kind: str,
        items: Iterable[Any],
        options: BulkOptions | None = None,
        *,
        actor: str = "system",
        cancellation: CancellationToken | None = None,
    ) -> BulkSummary:
        return self._coordinator.run_bulk(
            kind, items, options, actor=actor, cancellation=cancellation,
        )

    def validate(
        self,
        kind: str,
        items: Iterable[Any],
        options: BulkOptions | None = None,
    ) -> ValidationReport:
        return self._coordinator.validate(kind, items, options)

    def template(self, kind: str) -> BulkTemplate:
        return self._coordinator.template(kind)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def config(self) -> ITADConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def store(self) -> AssetStore:
        return self._store

    @property
    def lifecycle(self) -> LifecycleService:
        return self._lifecycle

    @property
    def auditor(self) -> AuditorService:
        return self._auditor

    @property
    def runner(self) -> TransitionRunner:
        return self._runner

    @property
    def coordinator(self) -> BulkOperationCoordinator:
        return self._coordinator

    @property
    def reports(self) -> ReportService:
        return self._reports
