"""
Ledger proof recorder -- optional external witness for transitions.

The ledger is never the source of truth.  A recorder either returns a
receipt or raises ``LedgerUnavailableError``; the bulk engine logs the
failure and keeps the item successful.  When the ledger is disabled in
configuration no recorder is constructed at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import requests

from itad_kernel.domain.lifecycle import TransitionKind
from itad_kernel.exceptions import LedgerUnavailableError
from itad_kernel.logging_config import get_logger
from itad_services.retry import RetryPolicy

logger = get_logger("services.ledger")


@dataclass(frozen=True)
class LedgerReceipt:
    """``asset_ref`` is only returned for register proofs."""

    tx_ref: str
    asset_ref: str | None = None
    recorded_at: datetime | None = None


class LedgerProofRecorder(Protocol):
    def submit_proof(
        self,
        asset_id: UUID,
        kind: TransitionKind,
        payload: dict[str, Any],
    ) -> LedgerReceipt: ...


class HttpLedgerRecorder:
    """
    Submits proofs to a ledger gateway over HTTP.

    POST ``{endpoint}/proofs`` with ``{"asset_id", "transition", "payload"}``;
    the gateway answers ``{"tx_ref": ..., "asset_ref": ...}``.  Transport
    errors and non-2xx answers become LedgerUnavailableError, which the
    retry policy retries.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 10.0,
        retry_policy: RetryPolicy | None = None,
        http: Any = None,
    ):
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._retry = retry_policy or RetryPolicy(
            retry_on=(LedgerUnavailableError,), name="ledger",
        )
        self._http = http or requests.Session()

    def submit_proof(
        self,
        asset_id: UUID,
        kind: TransitionKind,
        payload: dict[str, Any],
    ) -> LedgerReceipt:
        return self._retry.call(self._post_proof, asset_id, kind, payload)

    def _post_proof(
        self,
        asset_id: UUID,
        kind: TransitionKind,
        payload: dict[str, Any],
    ) -> LedgerReceipt:
        body = {"asset_id": str(asset_id), "transition": kind.value, "payload": payload}
        try:
            resp = self._http.post(
                f"{self._endpoint}/proofs", json=body, timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise LedgerUnavailableError(str(exc), str(asset_id)) from exc

        if resp.status_code >= 400:
            raise LedgerUnavailableError(
                f"ledger gateway returned HTTP {resp.status_code}", str(asset_id),
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise LedgerUnavailableError("ledger gateway returned invalid JSON", str(asset_id)) from exc

        tx_ref = data.get("tx_ref")
        if not tx_ref:
            raise LedgerUnavailableError("ledger gateway returned no tx_ref", str(asset_id))

        logger.info(
            "ledger_proof_recorded",
            extra={"asset_id": str(asset_id), "transition": kind.value, "tx_ref": tx_ref},
        )
        return LedgerReceipt(tx_ref=tx_ref, asset_ref=data.get("asset_ref"))
