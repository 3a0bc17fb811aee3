"""
Value objects and field validators for asset records.

AssetRecord is the frozen, read-only view of one stored asset.  All
mutation goes through the lifecycle service; validators here are pure and
raise ``ValidationError`` with the offending field name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from itad_kernel.domain.lifecycle import TERMINAL_STATUSES, AssetStatus
from itad_kernel.exceptions import ValidationError

MAX_SERIAL_LENGTH = 100
MAX_TEXT_LENGTH = 200
MAX_OWNER_LENGTH = 100

CARBON_CREDIT_AWARD = 10
DEFAULT_OWNER = "0x742d35Cc6634C0532925a3b8D4C2C4e4C4C4C4C4"

# CIDv0 (base58btc multihash) or CIDv1 (base32 lower, multibase prefix "b")
CONTENT_HASH_PATTERN = re.compile(
    r"^(Qm[1-9A-HJ-NP-Za-km-z]{44}|b[a-z2-7]{58})$"
)
OWNER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:@\-]*$")
ETHEREUM_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class AssetRecord:
    """
    One tracked physical asset.

    ``version`` is the optimistic-concurrency token: every store write
    must present the version it read and increments it by one.
    """

    asset_id: UUID
    serial_number: str
    model: str
    status: AssetStatus
    owner: str
    registration_time: datetime
    version: int = 1
    sanitization_hash: str | None = None
    sanitization_time: datetime | None = None
    recycling_time: datetime | None = None
    carbon_credits: int = 0
    ledger_tx_ref: str | None = None
    ledger_asset_ref: str | None = None
    customer: str | None = None
    location: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_sanitized(self) -> bool:
        """True once a sanitization proof exists (any status past REGISTERED)."""
        return self.status > AssetStatus.REGISTERED

    def snapshot(self) -> dict[str, Any]:
        """Flat dict used for CSV export and audit payloads."""
        return {
            "asset_id": str(self.asset_id),
            "serial_number": self.serial_number,
            "model": self.model,
            "status": self.status.name,
            "owner": self.owner,
            "sanitization_hash": self.sanitization_hash,
            "carbon_credits": self.carbon_credits,
            "registration_time": _iso(self.registration_time),
            "sanitization_time": _iso(self.sanitization_time),
            "recycling_time": _iso(self.recycling_time),
            "ledger_tx_ref": self.ledger_tx_ref,
            "ledger_asset_ref": self.ledger_asset_ref,
            "customer": self.customer,
            "location": self.location,
            "version": self.version,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def _require_text(value: Any, field_name: str, max_length: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required", field=field_name, value=value)
    text = value.strip()
    if len(text) > max_length:
        raise ValidationError(
            f"{field_name} must be at most {max_length} characters",
            field=field_name,
            value=value,
        )
    return text


def validate_serial_number(value: Any) -> str:
    return _require_text(value, "serial_number", MAX_SERIAL_LENGTH)


def validate_model(value: Any) -> str:
    return _require_text(value, "model", MAX_TEXT_LENGTH)


def validate_optional_text(value: Any, field_name: str) -> str | None:
    """Customer/location style fields: blank means absent."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _require_text(value, field_name, MAX_TEXT_LENGTH)


def is_valid_content_hash(value: Any) -> bool:
    return isinstance(value, str) and CONTENT_HASH_PATTERN.match(value) is not None


def validate_content_hash(value: Any) -> str:
    """Sanitization hash must be a CIDv0 or CIDv1 content address."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            "sanitization_hash is required",
            field="sanitization_hash",
            value=value,
        )
    text = value.strip()
    if not is_valid_content_hash(text):
        raise ValidationError(
            "sanitization_hash is not a valid content address",
            field="sanitization_hash",
            value=value,
        )
    return text


def validate_owner(value: Any, *, strict: bool = False) -> str:
    """
    Owners are identifiers: alphanumeric start, then ``[A-Za-z0-9_.:@-]``.

    With ``strict`` the owner must be an Ethereum address.
    """
    text = _require_text(value, "owner", MAX_OWNER_LENGTH)
    pattern = ETHEREUM_ADDRESS_PATTERN if strict else OWNER_PATTERN
    if pattern.match(text) is None:
        expected = "an Ethereum address" if strict else "a well-formed identifier"
        raise ValidationError(f"owner must be {expected}", field="owner", value=value)
    return text


def validate_carbon_credits(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(
            "carbon_credits must be a non-negative integer",
            field="carbon_credits",
            value=value,
        )
    return value


def parse_asset_id(value: Any) -> UUID:
    """Accept a UUID or its string form; anything else is a validation error."""
    if isinstance(value, UUID):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return UUID(value.strip())
        except ValueError:
            pass
    raise ValidationError("asset_id must be a UUID", field="asset_id", value=value)
