"""
Configuration Loader (``itad_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into typed ``itad_config.schema``
dataclasses.  Runtime callers go through
``itad_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Unknown keys raise ``ValueError``; a typo never silently falls back
  to a default.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  effective (merged) configuration.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from itad_config.schema import (
    AuditSettings,
    BulkSettings,
    EmailSettings,
    EvidenceSettings,
    ITADConfig,
    LedgerSettings,
    LifecycleSettings,
    NotificationSettings,
    RetrySettings,
    SlackSettings,
    TeamsSettings,
)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return data


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` over ``base`` without mutating either."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _section(data: dict[str, Any] | None, cls: type, **nested: Any) -> Any:
    data = dict(data or {})
    allowed = {f.name for f in fields(cls)}
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    data.update(nested)
    return cls(**data)


def parse_retry(data: dict[str, Any] | None) -> RetrySettings:
    retry = _section(data, RetrySettings)
    if retry.max_attempts < 1:
        raise ValueError("retry.max_attempts must be at least 1")
    return retry


def parse_bulk(data: dict[str, Any] | None) -> BulkSettings:
    bulk = _section(data, BulkSettings)
    if bulk.max_batch_size < 1:
        raise ValueError("bulk.max_batch_size must be at least 1")
    if bulk.inter_batch_delay_seconds < 0:
        raise ValueError("bulk.inter_batch_delay_seconds must be non-negative")
    if bulk.max_conflict_retries < 0:
        raise ValueError("bulk.max_conflict_retries must be non-negative")
    return bulk


def parse_lifecycle(data: dict[str, Any] | None) -> LifecycleSettings:
    lifecycle = _section(data, LifecycleSettings)
    if lifecycle.carbon_credit_award < 0:
        raise ValueError("lifecycle.carbon_credit_award must be non-negative")
    return lifecycle


def parse_ledger(data: dict[str, Any] | None) -> LedgerSettings:
    data = dict(data or {})
    retry = parse_retry(data.pop("retry", None))
    ledger = _section(data, LedgerSettings, retry=retry)
    if ledger.enabled and not ledger.endpoint:
        raise ValueError("ledger.endpoint is required when ledger.enabled is true")
    return ledger


def parse_evidence(data: dict[str, Any] | None) -> EvidenceSettings:
    data = dict(data or {})
    retry = parse_retry(data.pop("retry", None))
    return _section(data, EvidenceSettings, retry=retry)


def parse_notifications(data: dict[str, Any] | None) -> NotificationSettings:
    data = dict(data or {})
    email_data = dict(data.pop("email", None) or {})
    email_data["recipients"] = tuple(email_data.get("recipients") or ())
    slack = _section(data.pop("slack", None), SlackSettings)
    teams = _section(data.pop("teams", None), TeamsSettings)
    return _section(
        data,
        NotificationSettings,
        email=_section(email_data, EmailSettings),
        slack=slack,
        teams=teams,
    )


def parse_config(data: dict[str, Any]) -> ITADConfig:
    """Parse a merged configuration mapping into ``ITADConfig``."""
    checksum = compute_checksum(data)
    data = dict(data)
    sections = {
        "bulk": parse_bulk(data.pop("bulk", None)),
        "lifecycle": parse_lifecycle(data.pop("lifecycle", None)),
        "ledger": parse_ledger(data.pop("ledger", None)),
        "evidence": parse_evidence(data.pop("evidence", None)),
        "notifications": parse_notifications(data.pop("notifications", None)),
        "audit": _section(data.pop("audit", None), AuditSettings),
    }
    return _section(data, ITADConfig, checksum=checksum, **sections)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
