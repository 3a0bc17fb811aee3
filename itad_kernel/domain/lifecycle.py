"""
Asset lifecycle rules (``itad_kernel.domain.lifecycle``).

Responsibility
--------------
Pure definition of the asset status DAG and the four transitions that
walk it.  The lifecycle service consults these tables before every
write; nothing else decides whether a transition is legal.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.  May import only from
``itad_kernel.exceptions``.

Invariants enforced
-------------------
* Status moves only forward, along exactly four edges::

      (none) --register--> REGISTERED --sanitize--> SANITIZED --recycle--> RECYCLED
                                              \\                               |
                                               \\--transfer----> SOLD <------/

* SOLD is terminal and is only reachable from SANITIZED or RECYCLED,
  so no asset can be sold without a sanitization proof.
"""

from __future__ import annotations

from enum import Enum, IntEnum

from itad_kernel.exceptions import InvalidStateError, UnknownTransitionKindError


class AssetStatus(IntEnum):
    """Asset lifecycle states.  The integer value is the stored status."""

    REGISTERED = 0
    SANITIZED = 1
    RECYCLED = 2
    SOLD = 3


class TransitionKind(str, Enum):
    """Named state-machine operations."""

    REGISTER = "register"
    SANITIZE = "sanitize"
    RECYCLE = "recycle"
    TRANSFER = "transfer"


# Statuses each transition may start from.  REGISTER starts from "no record".
TRANSITION_SOURCES: dict[TransitionKind, frozenset[AssetStatus]] = {
    TransitionKind.REGISTER: frozenset(),
    TransitionKind.SANITIZE: frozenset({AssetStatus.REGISTERED}),
    TransitionKind.RECYCLE: frozenset({AssetStatus.SANITIZED}),
    TransitionKind.TRANSFER: frozenset({
        AssetStatus.SANITIZED,
        AssetStatus.RECYCLED,
    }),
}

TRANSITION_TARGETS: dict[TransitionKind, AssetStatus] = {
    TransitionKind.REGISTER: AssetStatus.REGISTERED,
    TransitionKind.SANITIZE: AssetStatus.SANITIZED,
    TransitionKind.RECYCLE: AssetStatus.RECYCLED,
    TransitionKind.TRANSFER: AssetStatus.SOLD,
}

# Status -> reachable next statuses, derived from the two tables above.
ASSET_TRANSITIONS: dict[AssetStatus, frozenset[AssetStatus]] = {
    status: frozenset(
        TRANSITION_TARGETS[kind]
        for kind, sources in TRANSITION_SOURCES.items()
        if status in sources
    )
    for status in AssetStatus
}

TERMINAL_STATUSES: frozenset[AssetStatus] = frozenset(
    status for status, targets in ASSET_TRANSITIONS.items() if not targets
)


def parse_transition_kind(value: str | TransitionKind) -> TransitionKind:
    """Resolve a caller-supplied kind, raising for anything unsupported."""
    if isinstance(value, TransitionKind):
        return value
    try:
        return TransitionKind(str(value).strip().lower())
    except ValueError:
        raise UnknownTransitionKindError(
            str(value), tuple(k.value for k in TransitionKind),
        ) from None


def is_transition_allowed(kind: TransitionKind, current: AssetStatus) -> bool:
    return current in TRANSITION_SOURCES[kind]


def check_transition(
    asset_id: str,
    kind: TransitionKind,
    current: AssetStatus,
) -> AssetStatus:
    """
    Validate ``kind`` against the freshly read ``current`` status.

    Returns:
        The status the asset will hold after the transition.

    Raises:
        InvalidStateError: The transition is illegal from ``current``.
    """
    if not is_transition_allowed(kind, current):
        raise InvalidStateError(
            asset_id=asset_id,
            transition=kind.value,
            current_status=current.name,
            allowed_statuses=tuple(
                s.name for s in sorted(TRANSITION_SOURCES[kind])
            ),
        )
    return TRANSITION_TARGETS[kind]
