"""
Canonical JSON and SHA-256 helpers.

The audit chain and the sanitization report are both fingerprinted, so
their serialized form must be byte-stable: sorted keys, no whitespace,
and one fixed rendering for datetimes, UUIDs and statuses.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _encode(obj: Any) -> Any:
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.name
    if isinstance(obj, bytes):
        return obj.hex()
    raise TypeError(f"Cannot canonicalize {type(obj).__name__}")


def _normalize(obj: Any) -> Any:
    # json emits IntEnum members as bare ints; hash statuses by name instead.
    if isinstance(obj, IntEnum):
        return obj.name
    if isinstance(obj, dict):
        return {k: _normalize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize(v) for v in obj]
    return obj


def canonical_json(data: Any) -> str:
    return json.dumps(
        _normalize(data),
        sort_keys=True,
        separators=(",", ":"),
        default=_encode,
    )


def canonical_json_bytes(data: Any) -> bytes:
    return canonical_json(data).encode("utf-8")


def sha256_hex(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def hash_payload(payload: dict) -> str:
    """SHA-256 of the canonical JSON of ``payload``."""
    return sha256_hex(canonical_json(payload))


def hash_audit_entry(
    resource_id: str,
    action: str,
    result: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Chain hash of one audit entry.

    Links the entry to its predecessor: changing any field of an earlier
    entry changes every later hash.  The first entry links to ``GENESIS``.
    """
    return sha256_hex("|".join((str(resource_id), action, result, payload_hash, prev_hash or GENESIS)))
