"""
RetryPolicy -- bounded retry with exponential backoff.

Wraps tenacity so collaborator adapters (ledger, evidence store) share one
configurable, testable policy.  Only the configured exception types are
retried; anything else propagates on the first attempt.  The last
exception is re-raised once attempts are exhausted.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from itad_kernel.exceptions import CollaboratorError
from itad_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


class RetryPolicy:
    """
    Usage:
        policy = RetryPolicy(max_attempts=3, initial_wait=0.5, max_wait=8.0)
        receipt = policy.call(recorder.submit_proof, asset_id, kind, payload)
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_wait: float = 0.5,
        max_wait: float = 8.0,
        retry_on: tuple[type[BaseException], ...] = (CollaboratorError,),
        sleep: Callable[[float], None] = time.sleep,
        name: str = "collaborator",
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_wait = initial_wait
        self.max_wait = max_wait
        self.retry_on = retry_on
        self.name = name
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> RetryPolicy:
        """Build from an ``itad_config.schema.RetrySettings``-shaped object."""
        return cls(
            max_attempts=settings.max_attempts,
            initial_wait=settings.initial_wait_seconds,
            max_wait=settings.max_wait_seconds,
            **kwargs,
        )

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1)

    def _log_retry(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome is not None else None
        logger.warning(
            "collaborator_retry",
            extra={
                "policy": self.name,
                "attempt": state.attempt_number,
                "max_attempts": self.max_attempts,
                "error": str(exc) if exc is not None else None,
            },
        )

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.initial_wait,
                min=self.initial_wait,
                max=self.max_wait,
            ),
            retry=retry_if_exception_type(self.retry_on),
            sleep=self._sleep,
            before_sleep=self._log_retry,
        )
        return retrying(fn, *args, **kwargs)
