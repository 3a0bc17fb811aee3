"""
BulkOperationCoordinator -- ordered bulk transitions with partial-failure tolerance.

Responsibility:
    Validates a list of bulk rows, partitions it into sub-batches, and
    drives every item through the transition runner in input order,
    collecting one BulkItemResult per attempted item.

Architecture position:
    itad_batch > services.  Uses the runner for every mutation; never
    touches the asset store except for the read-only duplicate check.

Invariants enforced:
    - Static validation covers the full list before anything mutates.
    - Each item runs in its own SAVEPOINT (inside the runner), so a failed
      item never rolls back a committed one.
    - Items run strictly in input order; sub-batches are separated by the
      configured inter-batch delay.
    - ConcurrentModificationError is retried for the single item up to
      ``max_conflict_retries`` times.  No other error is retried here.
    - Exactly one notification per run that reaches execution, including
      runs aborted or cancelled mid-way.  An empty run, a validate-only run
      and a run stopped by validation mutate nothing and send no
      notification.
    - A bulk call raises only for malformed requests
      (UnknownTransitionKindError).

Transaction boundaries:
    Never commits.  Items are released SAVEPOINTs; the caller commits the
    enclosing transaction.
"""

from __future__ import annotations

import csv
import io
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

from itad_batch.domain.types import (
    BulkItemResult,
    BulkItemStatus,
    BulkOptions,
    BulkRunStatus,
    BulkSummary,
    BulkTemplate,
    CancellationToken,
    ValidationIssue,
    ValidationReport,
)
from itad_batch.services.runner import TransitionRunner
from itad_batch.services.side_effects import SideEffectFanout
from itad_batch.tasks.base import TaskRegistry, TransitionTask, echo_row
from itad_config.schema import BulkSettings
from itad_kernel.domain.clock import Clock, SystemClock
from itad_kernel.domain.dtos import TransitionInput
from itad_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicateSerialError,
    ITADKernelError,
    ValidationError,
)
from itad_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.coordinator")

_UNHANDLED = "UNHANDLED_EXCEPTION"


@dataclass(frozen=True)
class _CheckedItem:
    """One row after the static validation pass."""

    index: int
    item_key: str
    input_echo: dict[str, Any] = field(default_factory=dict)
    parsed: TransitionInput | None = None
    error: ValidationIssue | None = None


class BulkOperationCoordinator:
    """
    Usage:
        coordinator = BulkOperationCoordinator(runner, side_effects, registry, clock)
        summary = coordinator.run_bulk("register", rows, BulkOptions(batch_size=25))

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT persist run state; the summary is the record of the run.
    """

    def __init__(
        self,
        runner: TransitionRunner,
        side_effects: SideEffectFanout,
        registry: TaskRegistry,
        clock: Clock | None = None,
        settings: BulkSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._runner = runner
        self._side_effects = side_effects
        self._registry = registry
        self._clock = clock or SystemClock()
        self._settings = settings or BulkSettings()
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run_bulk(
        self,
        kind: str,
        items: Iterable[Any],
        options: BulkOptions | None = None,
        *,
        actor: str = "system",
        cancellation: CancellationToken | None = None,
    ) -> BulkSummary:
        """Apply one transition kind to every item.

        Raises:
            UnknownTransitionKindError: ``kind`` is not a supported transition.
        """
        task = self._registry.get(kind)
        options = options or BulkOptions()
        rows = list(items)
        run_id = uuid4()
        batch_size = options.resolve_batch_size(
            self._settings.default_batch_size, self._settings.max_batch_size,
        )

        with LogContext.bind(run_id=str(run_id), actor=actor, transition=task.kind.value):
            logger.info(
                "bulk_run_started",
                extra={
                    "total": len(rows),
                    "batch_size": batch_size,
                    "continue_on_error": options.continue_on_error,
                    "skip_duplicates": options.skip_duplicates,
                    "validate_only": options.validate_only,
                },
            )
            summary = self._run(
                run_id, task, rows, options, batch_size, actor, cancellation,
            )
            logger.info(
                "bulk_run_completed",
                extra={
                    "status": summary.status.value,
                    "total": summary.total,
                    "successful": summary.successful,
                    "failed": summary.failed,
                    "duration_ms": summary.duration_ms,
                },
            )
        return summary

    def _run(
        self,
        run_id: UUID,
        task: TransitionTask,
        rows: list[Any],
        options: BulkOptions,
        batch_size: int,
        actor: str,
        cancellation: CancellationToken | None,
    ) -> BulkSummary:
        start_time = self._clock.now()
        started = time.monotonic()

        if not rows:
            return self._summary(
                run_id, task, BulkRunStatus.COMPLETED, 0, [], start_time, started,
            )

        checked, errors, _ = self._static_pass(task, rows, options)

        if options.validate_only:
            return self._summary(
                run_id, task, BulkRunStatus.VALIDATED, len(rows),
                self._validation_results(checked), start_time, started,
            )

        if errors and not options.continue_on_error:
            first = errors[0]
            logger.warning(
                "bulk_run_validation_aborted",
                extra={"invalid_items": len(errors), "first_error_index": first.index},
            )
            return self._summary(
                run_id, task, BulkRunStatus.ABORTED, len(rows),
                self._validation_results(checked), start_time, started,
                fatal=(first.code, f"Row {first.row}: {first.message}"),
            )

        results: list[BulkItemResult] = []
        status: BulkRunStatus | None = None
        fatal: tuple[str, str] | None = None

        batches = [checked[i:i + batch_size] for i in range(0, len(checked), batch_size)]
        for batch_number, batch in enumerate(batches):
            if batch_number > 0 and self._settings.inter_batch_delay_seconds > 0:
                self._sleep(self._settings.inter_batch_delay_seconds)

            for item in batch:
                if cancellation is not None and cancellation.is_cancelled:
                    logger.warning("bulk_run_cancelled", extra={"next_index": item.index})
                    status = BulkRunStatus.CANCELLED
                    break

                result = self._process_item(task, item, actor)
                results.append(result)

                if result.success or options.continue_on_error:
                    continue
                if options.skip_duplicates and result.error_code == DuplicateSerialError.code:
                    continue
                status = BulkRunStatus.ABORTED
                fatal = (result.error_code or _UNHANDLED, result.error_message or "")
                logger.warning(
                    "bulk_run_aborted",
                    extra={"index": result.index, "error_code": result.error_code},
                )
                break

            if status is not None:
                break

        if status is None:
            succeeded = sum(1 for r in results if r.success)
            if succeeded == len(results):
                status = BulkRunStatus.COMPLETED
            elif succeeded == 0:
                status = BulkRunStatus.FAILED
            else:
                status = BulkRunStatus.PARTIALLY_COMPLETED

        summary = self._summary(
            run_id, task, status, len(rows), results, start_time, started, fatal=fatal,
        )
        self._side_effects.notify_bulk_summary(summary)
        return summary

    def _process_item(
        self,
        task: TransitionTask,
        item: _CheckedItem,
        actor: str,
    ) -> BulkItemResult:
        if item.error is not None or item.parsed is None:
            error = item.error
            return BulkItemResult(
                index=item.index,
                item_key=item.item_key,
                status=BulkItemStatus.FAILED,
                error_code=error.code if error else ValidationError.code,
                error_message=error.message if error else "item did not validate",
                input_echo=item.input_echo,
            )

        item_start = time.monotonic()
        retry_count = 0
        transition_input = item.parsed
        while True:
            try:
                # Uploads sanitize evidence once; retries reuse the prepared input.
                transition_input = self._runner.prepare(transition_input)
                outcome = self._runner.run(transition_input, actor=actor)
            except ConcurrentModificationError as exc:
                if retry_count < self._settings.max_conflict_retries:
                    retry_count += 1
                    logger.warning(
                        "bulk_item_conflict_retry",
                        extra={
                            "index": item.index,
                            "item_key": item.item_key,
                            "attempt": retry_count,
                        },
                    )
                    continue
                return self._failed(task, item, exc.code, str(exc), retry_count, item_start, actor)
            except ITADKernelError as exc:
                return self._failed(task, item, exc.code, str(exc), retry_count, item_start, actor)
            except Exception as exc:
                logger.exception(
                    "bulk_item_unhandled_exception",
                    extra={"index": item.index, "item_key": item.item_key},
                )
                return self._failed(task, item, _UNHANDLED, str(exc), retry_count, item_start, actor)

            return BulkItemResult(
                index=item.index,
                item_key=item.item_key,
                status=BulkItemStatus.SUCCEEDED,
                output_ref=str(outcome.record.asset_id),
                input_echo=item.input_echo,
                ledger_tx_ref=outcome.ledger_tx_ref,
                retry_count=retry_count,
                duration_ms=int((time.monotonic() - item_start) * 1000),
            )

    def _failed(
        self,
        task: TransitionTask,
        item: _CheckedItem,
        error_code: str,
        error_message: str,
        retry_count: int,
        item_start: float,
        actor: str,
    ) -> BulkItemResult:
        logger.warning(
            "bulk_item_failed",
            extra={
                "index": item.index,
                "item_key": item.item_key,
                "error_code": error_code,
                "error": error_message,
            },
        )
        self._side_effects.record_failure(
            actor, task.kind, item.item_key, error_code, error_message,
        )
        return BulkItemResult(
            index=item.index,
            item_key=item.item_key,
            status=BulkItemStatus.FAILED,
            error_code=error_code,
            error_message=error_message,
            input_echo=item.input_echo,
            retry_count=retry_count,
            duration_ms=int((time.monotonic() - item_start) * 1000),
        )

    def _summary(
        self,
        run_id: UUID,
        task: TransitionTask,
        status: BulkRunStatus,
        total: int,
        results: list[BulkItemResult],
        start_time: Any,
        started: float,
        fatal: tuple[str, str] | None = None,
    ) -> BulkSummary:
        ordered = tuple(sorted(results, key=lambda r: r.index))
        return BulkSummary(
            run_id=run_id,
            kind=task.kind.value,
            status=status,
            total=total,
            successful=sum(1 for r in ordered if r.status == BulkItemStatus.SUCCEEDED),
            failed=sum(1 for r in ordered if r.status == BulkItemStatus.FAILED),
            validated=sum(1 for r in ordered if r.status == BulkItemStatus.VALIDATED),
            item_results=ordered,
            start_time=start_time,
            end_time=self._clock.now(),
            duration_ms=int((time.monotonic() - started) * 1000),
            fatal_error_code=fatal[0] if fatal else None,
            fatal_error_message=fatal[1] if fatal else None,
        )

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(
        self,
        kind: str,
        items: Iterable[Any],
        options: BulkOptions | None = None,
    ) -> ValidationReport:
        """Run the static validation pass alone.  Nothing is mutated."""
        task = self._registry.get(kind)
        rows = list(items)
        checked, errors, warnings = self._static_pass(task, rows, options or BulkOptions())
        report = ValidationReport(
            kind=task.kind.value,
            total_rows=len(rows),
            valid_rows=sum(1 for c in checked if c.error is None),
            errors=errors,
            warnings=warnings,
            item_results=self._validation_results(checked),
        )
        logger.info(
            "bulk_validation_completed",
            extra={
                "transition": task.kind.value,
                "total_rows": report.total_rows,
                "valid_rows": report.valid_rows,
                "errors": len(report.errors),
                "warnings": len(report.warnings),
            },
        )
        return report

    def _static_pass(
        self,
        task: TransitionTask,
        rows: list[Any],
        options: BulkOptions,
    ) -> tuple[list[_CheckedItem], tuple[ValidationIssue, ...], tuple[ValidationIssue, ...]]:
        checked: list[_CheckedItem] = []
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        first_seen: dict[str, int] = {}
        store = self._runner.lifecycle.store

        def _reject(index: int, key: str, echo: dict[str, Any], issue: ValidationIssue) -> None:
            errors.append(issue)
            checked.append(_CheckedItem(index, key, echo, error=issue))

        for index, raw in enumerate(rows):
            try:
                item = task.prepare(index, raw)
            except ValidationError as exc:
                key = f"row-{index + 1}"
                echo = echo_row({"value": raw})
                _reject(index, key, echo, ValidationIssue(index, key, str(exc), exc.field, exc.code))
                continue

            echo = echo_row(item.payload)
            try:
                parsed = task.parse(item)
            except ValidationError as exc:
                _reject(
                    index, item.item_key, echo,
                    ValidationIssue(index, item.item_key, str(exc), exc.field, exc.code),
                )
                continue

            for message in task.warnings(item):
                warnings.append(ValidationIssue(index, item.item_key, message, code="WARNING"))

            dedupe_key = task.dedupe_key(parsed)
            if dedupe_key is not None:
                if dedupe_key in first_seen:
                    message = (
                        f"serial number '{dedupe_key}' duplicates row "
                        f"{first_seen[dedupe_key] + 1}"
                    )
                    if not options.skip_duplicates:
                        _reject(
                            index, item.item_key, echo,
                            ValidationIssue(
                                index, item.item_key, message,
                                "serial_number", DuplicateSerialError.code,
                            ),
                        )
                        continue
                    warnings.append(
                        ValidationIssue(
                            index, item.item_key, message,
                            "serial_number", DuplicateSerialError.code,
                        )
                    )
                else:
                    first_seen[dedupe_key] = index
                    if not options.skip_duplicates and store.get_by_serial(dedupe_key) is not None:
                        _reject(
                            index, item.item_key, echo,
                            ValidationIssue(
                                index, item.item_key,
                                f"serial number '{dedupe_key}' is already registered",
                                "serial_number", DuplicateSerialError.code,
                            ),
                        )
                        continue

            checked.append(_CheckedItem(index, item.item_key, echo, parsed=parsed))

        return checked, tuple(errors), tuple(warnings)

    @staticmethod
    def _validation_results(checked: list[_CheckedItem]) -> list[BulkItemResult]:
        results: list[BulkItemResult] = []
        for item in checked:
            if item.error is None:
                results.append(
                    BulkItemResult(
                        index=item.index,
                        item_key=item.item_key,
                        status=BulkItemStatus.VALIDATED,
                        input_echo=item.input_echo,
                    )
                )
            else:
                results.append(
                    BulkItemResult(
                        index=item.index,
                        item_key=item.item_key,
                        status=BulkItemStatus.FAILED,
                        error_code=item.error.code,
                        error_message=item.error.message,
                        input_echo=item.input_echo,
                    )
                )
        return results

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    def template(self, kind: str) -> BulkTemplate:
        """CSV template for ``kind`` (a transition or its template alias)."""
        task = self._registry.get(kind)
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(task.template_columns)
        writer.writerows(task.template_rows)
        return BulkTemplate(
            kind=task.kind.value,
            filename=task.template_filename,
            columns=tuple(task.template_columns),
            content=buffer.getvalue(),
        )
