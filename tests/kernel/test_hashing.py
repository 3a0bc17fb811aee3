"""Tests for itad_kernel.utils.hashing."""

from datetime import datetime
from uuid import UUID

import pytest

from itad_kernel.domain.lifecycle import AssetStatus, TransitionKind
from itad_kernel.utils.hashing import (
    canonical_json,
    canonical_json_bytes,
    hash_audit_entry,
    hash_payload,
    sha256_hex,
)


class TestCanonicalJson:

    def test_sorted_and_compact(self):
        assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_special_types(self):
        data = {
            "asset_id": UUID("00000000-0000-4000-8000-000000000001"),
            "at": datetime(2026, 2, 1, 12, 0),
            "status": AssetStatus.SANITIZED,
            "kind": TransitionKind.RECYCLE,
            "blob": b"\x01\xff",
        }
        assert canonical_json(data) == (
            '{"asset_id":"00000000-0000-4000-8000-000000000001",'
            '"at":"2026-02-01T12:00:00","blob":"01ff","kind":"recycle",'
            '"status":"SANITIZED"}'
        )

    def test_bytes_form(self):
        assert canonical_json_bytes({"a": "é"}) == '{"a":"\\u00e9"}'.encode("utf-8")

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            canonical_json({"x": object()})


class TestHashes:

    def test_payload_hash_ignores_key_order(self):
        assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})
        assert hash_payload({"a": 1}) != hash_payload({"a": 2})

    def test_sha256_hex(self):
        assert sha256_hex("abc") == sha256_hex(b"abc")
        assert sha256_hex("abc").startswith("ba7816bf")

    def test_chain_hash_depends_on_predecessor(self):
        first = hash_audit_entry("a-1", "CREATE_ASSET", "SUCCESS", "p" * 64, None)
        linked = hash_audit_entry("a-1", "PROVE_SANITIZATION", "SUCCESS", "p" * 64, first)
        relinked = hash_audit_entry("a-1", "PROVE_SANITIZATION", "SUCCESS", "p" * 64, "0" * 64)

        assert first == hash_audit_entry("a-1", "CREATE_ASSET", "SUCCESS", "p" * 64, "GENESIS")
        assert linked != relinked
