"""
itad_batch.domain.types -- Pure frozen dataclasses for the bulk engine.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.  ``CancellationToken`` is the one mutable type: it
is the signal a caller flips while a run is in flight.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class BulkRunStatus(str, Enum):
    """Run-level outcome."""

    COMPLETED = "completed"  # Every attempted item succeeded
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed
    FAILED = "failed"  # No item succeeded
    ABORTED = "aborted"  # Stopped by the first fatal error (continue_on_error off)
    CANCELLED = "cancelled"  # External cancellation between items
    VALIDATED = "validated"  # validate_only run; nothing applied


class BulkItemStatus(str, Enum):
    """Per-item outcome."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    VALIDATED = "validated"  # Passed static validation, not applied


# =============================================================================
# Request
# =============================================================================


@dataclass(frozen=True)
class BulkOptions:
    """
    ``batch_size`` of None means the configured default; values below 1
    are coerced to 1 and values above the hard cap are clamped.
    """

    batch_size: int | None = None
    continue_on_error: bool = True
    skip_duplicates: bool = True
    validate_only: bool = False

    def resolve_batch_size(self, default: int, cap: int) -> int:
        size = default if self.batch_size is None else self.batch_size
        return max(1, min(size, cap))


class CancellationToken:
    """Thread-safe cancellation signal checked before every item."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class BulkItemResult:
    """
    Outcome of one input item.  ``index`` is the item's position in the
    caller's list; results are always returned in index order.
    """

    index: int
    item_key: str
    status: BulkItemStatus
    output_ref: str | None = None  # asset id of the mutated record
    error_code: str | None = None
    error_message: str | None = None
    input_echo: dict[str, Any] = field(default_factory=dict)
    ledger_tx_ref: str | None = None
    retry_count: int = 0
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status == BulkItemStatus.SUCCEEDED


@dataclass(frozen=True)
class BulkSummary:
    """
    Deterministic summary of one bulk run.

    ``total`` is the number of input items.  Items never attempted
    (after an abort or cancellation) are absent from ``item_results``.
    """

    run_id: UUID
    kind: str
    status: BulkRunStatus
    total: int
    successful: int
    failed: int
    validated: int = 0
    item_results: tuple[BulkItemResult, ...] = ()
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration_ms: int = 0
    fatal_error_code: str | None = None
    fatal_error_message: str | None = None

    @property
    def attempted(self) -> int:
        return self.successful + self.failed


@dataclass(frozen=True)
class ValidationIssue:
    """One error or warning raised by the static validation pass."""

    index: int
    item_key: str
    message: str
    field: str | None = None
    code: str = "VALIDATION_ERROR"

    @property
    def row(self) -> int:
        """1-based row number for humans."""
        return self.index + 1


@dataclass(frozen=True)
class ValidationReport:
    kind: str
    total_rows: int
    valid_rows: int
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()
    item_results: tuple[BulkItemResult, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class BulkTemplate:
    """CSV template for one transition kind."""

    kind: str
    filename: str
    columns: tuple[str, ...]
    content: str
