"""
Evidence store -- content-addressed storage for sanitization proofs.

The kernel only ever needs the content hash.  ``LocalEvidenceStore``
computes IPFS-compatible CIDv1 identifiers (raw codec, sha2-256
multihash, base32 multibase) so hashes it issues pass the same format
check as hashes pinned on a public gateway.
"""

from __future__ import annotations

import base64
import hashlib
from pathlib import Path
from typing import Protocol

from itad_kernel.domain.values import is_valid_content_hash
from itad_kernel.exceptions import EvidenceStoreError
from itad_kernel.logging_config import get_logger

logger = get_logger("services.evidence")

# CIDv1 prefix: version 1, raw codec (0x55), sha2-256 (0x12), 32-byte digest
_CID_V1_RAW_SHA256_PREFIX = bytes([0x01, 0x55, 0x12, 0x20])


def compute_cid(blob: bytes) -> str:
    """CIDv1 (base32, lower case, unpadded) of ``blob``."""
    digest = hashlib.sha256(blob).digest()
    encoded = base64.b32encode(_CID_V1_RAW_SHA256_PREFIX + digest).decode("ascii")
    return "b" + encoded.lower().rstrip("=")


class EvidenceStore(Protocol):
    def put(self, blob: bytes) -> str: ...

    def is_valid_hash(self, content_hash: str) -> bool: ...


class LocalEvidenceStore:
    """
    Content-addressed store kept in memory or, with ``root``, on disk.

    Storing the same blob twice returns the same hash.
    """

    def __init__(
        self,
        root: Path | str | None = None,
        gateway_url: str = "https://ipfs.io/ipfs/",
    ):
        self._root = Path(root) if root is not None else None
        self._blobs: dict[str, bytes] = {}
        self._gateway_url = gateway_url if gateway_url.endswith("/") else gateway_url + "/"
        if self._root is not None:
            self._root.mkdir(parents=True, exist_ok=True)

    def put(self, blob: bytes) -> str:
        if not isinstance(blob, (bytes, bytearray)):
            raise EvidenceStoreError("evidence blob must be bytes")
        if not blob:
            raise EvidenceStoreError("evidence blob is empty")

        content_hash = compute_cid(bytes(blob))
        if self._root is not None:
            try:
                (self._root / content_hash).write_bytes(bytes(blob))
            except OSError as exc:
                raise EvidenceStoreError(str(exc)) from exc
        else:
            self._blobs[content_hash] = bytes(blob)

        logger.info(
            "evidence_stored",
            extra={"content_hash": content_hash, "size_bytes": len(blob)},
        )
        return content_hash

    def get(self, content_hash: str) -> bytes:
        if self._root is not None:
            path = self._root / content_hash
            if not is_valid_content_hash(content_hash) or not path.exists():
                raise EvidenceStoreError(f"unknown content hash {content_hash}")
            return path.read_bytes()
        try:
            return self._blobs[content_hash]
        except KeyError:
            raise EvidenceStoreError(f"unknown content hash {content_hash}") from None

    def is_valid_hash(self, content_hash: str) -> bool:
        return is_valid_content_hash(content_hash)

    def url_for(self, content_hash: str) -> str:
        """File URI when stored on disk, otherwise the gateway address."""
        if self._root is not None:
            return (self._root / content_hash).resolve().as_uri()
        return f"{self._gateway_url}{content_hash}"
