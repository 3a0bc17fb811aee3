"""
TransitionTask protocol, supporting types, and TaskRegistry.

Contract:
    ``TransitionTask`` turns one raw bulk row into a typed transition
    input and describes the CSV template for its kind.
    ``TaskRegistry`` stores registered tasks keyed by ``TransitionKind``,
    with optional aliases (the template names used by upload forms).

Architecture:
    itad_batch/tasks.  Imports only kernel domain types (pure, no I/O).
    Tasks never touch the session; the transition runner does.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from itad_kernel.domain.dtos import TransitionInput
from itad_kernel.domain.lifecycle import TransitionKind, parse_transition_kind
from itad_kernel.exceptions import UnknownTransitionKindError, ValidationError


# =============================================================================
# Row normalization
# =============================================================================

# Normalized header -> canonical field name.  Headers are normalized by
# lower-casing and dropping everything but letters and digits, so
# "Serial Number", "serial_number" and "serialNumber" all resolve.
FIELD_ALIASES: dict[str, str] = {
    "serialnumber": "serial_number",
    "serial": "serial_number",
    "model": "model",
    "owner": "owner",
    "customer": "customer",
    "location": "location",
    "metadata": "metadata",
    "assetid": "asset_id",
    "id": "asset_id",
    "sanitizationhash": "sanitization_hash",
    "hash": "sanitization_hash",
    "method": "method",
    "operator": "operator",
    "proofdocument": "proof_document",
    "newowner": "new_owner",
}


def normalize_key(key: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(key).lower())


def normalize_row(raw: Any) -> dict[str, Any]:
    """
    Map a raw row onto canonical field names.

    Unknown columns are kept under their normalized name so they still
    appear in the input echo.

    Raises:
        ValidationError: ``raw`` is not a mapping.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError(
            f"bulk item must be a mapping, got {type(raw).__name__}",
            field="item",
            value=raw,
        )
    row: dict[str, Any] = {}
    for key, value in raw.items():
        normalized = normalize_key(key)
        row[FIELD_ALIASES.get(normalized, normalized)] = value
    return row


def echo_row(row: Mapping[str, Any]) -> dict[str, Any]:
    """Input echo for item results.  Binary payloads are reduced to their size."""
    echo: dict[str, Any] = {}
    for key, value in row.items():
        if isinstance(value, (bytes, bytearray)):
            echo[key] = f"<{len(value)} bytes>"
        else:
            echo[key] = value
    return echo


def text_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass(frozen=True)
class BulkItemInput:
    """One normalized bulk row, created by ``TransitionTask.prepare()``."""

    index: int
    item_key: str
    payload: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# TransitionTask Protocol
# =============================================================================


@runtime_checkable
class TransitionTask(Protocol):
    """Per-kind row handling for the bulk coordinator.

    Contract:
        - ``kind``: the transition this task feeds.
        - ``prepare()``: normalizes a raw row; raises ValidationError when
          the row is not a mapping.
        - ``parse()``: builds the typed input, raising ValidationError
          for anything the state machine would reject statically.
        - ``warnings()``: non-fatal remarks surfaced by validation.
        - ``dedupe_key()``: key used for in-batch duplicate detection,
          or None when the kind has no uniqueness rule.

    Non-goals:
        - Does NOT read or write records -- the runner does.
        - Does NOT retry -- the coordinator owns conflict retry.
    """

    @property
    def kind(self) -> TransitionKind: ...

    @property
    def description(self) -> str: ...

    @property
    def template_filename(self) -> str: ...

    @property
    def template_columns(self) -> tuple[str, ...]: ...

    @property
    def template_rows(self) -> tuple[tuple[str, ...], ...]: ...

    def prepare(self, index: int, raw: Any) -> BulkItemInput: ...

    def parse(self, item: BulkItemInput) -> TransitionInput: ...

    def warnings(self, item: BulkItemInput) -> tuple[str, ...]: ...

    def dedupe_key(self, parsed: TransitionInput) -> str | None: ...


# =============================================================================
# TaskRegistry
# =============================================================================


class TaskRegistry:
    """Registry mapping transition kinds (and aliases) to tasks.

    Contract:
        - ``register()`` adds a task; raises ValueError on duplicate.
        - ``get()`` accepts a kind, its string value, or an alias and
          raises UnknownTransitionKindError if nothing matches.
        - ``list_kinds()`` returns all registered kind values.
    """

    def __init__(self) -> None:
        self._tasks: dict[TransitionKind, TransitionTask] = {}
        self._aliases: dict[str, TransitionKind] = {}

    def register(self, task: TransitionTask, aliases: tuple[str, ...] = ()) -> None:
        """Register a task implementation.

        Raises:
            ValueError: A task for the same kind is already registered.
        """
        if task.kind in self._tasks:
            raise ValueError(f"Transition kind '{task.kind.value}' is already registered")
        self._tasks[task.kind] = task
        for alias in aliases:
            self._aliases[alias.strip().lower()] = task.kind

    def get(self, kind: str | TransitionKind) -> TransitionTask:
        """Resolve ``kind`` to its task.

        Raises:
            UnknownTransitionKindError: No task for ``kind``.
        """
        if isinstance(kind, str) and not isinstance(kind, TransitionKind):
            alias = self._aliases.get(kind.strip().lower())
            if alias is not None:
                return self._tasks[alias]
        try:
            resolved = parse_transition_kind(kind)
        except UnknownTransitionKindError:
            raise UnknownTransitionKindError(str(kind), self.list_kinds()) from None
        try:
            return self._tasks[resolved]
        except KeyError:
            raise UnknownTransitionKindError(str(kind), self.list_kinds()) from None

    def list_kinds(self) -> tuple[str, ...]:
        return tuple(sorted(k.value for k in self._tasks))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, kind: object) -> bool:
        try:
            self.get(kind)  # type: ignore[arg-type]
        except UnknownTransitionKindError:
            return False
        return True
