"""
Store call policy: bounded timeout plus a small retry budget.

Every store call made through ResilientStore runs under
``asyncio.wait_for`` and is retried with exponential backoff on
``TimeoutError`` and StoreUnavailableError.

A timed-out write has an unknown outcome.  It is retried only when the
caller marked it retry-safe (it carries an operation key, so a replay is a
no-op at the store).  Otherwise AmbiguousWriteError is raised and the write
is not resubmitted.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from pharmacy_kernel.exceptions import AmbiguousWriteError, StoreUnavailableError
from pharmacy_kernel.logging_config import get_logger

logger = get_logger("store.call_policy")

T = TypeVar("T")


@dataclass(frozen=True)
class StoreCallPolicy:
    """Timeout and retry budget applied to each store call."""

    timeout_seconds: float = 5.0
    max_attempts: int = 3
    backoff_seconds: float = 0.05
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds cannot be negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def delay_before(self, attempt: int) -> float:
        """Backoff delay before retry number ``attempt`` (2 = first retry)."""
        return self.backoff_seconds * (self.backoff_multiplier ** (attempt - 2))

    async def call(
        self,
        operation: str,
        fn: Callable[[], Awaitable[T]],
        *,
        retry_safe: bool,
    ) -> T:
        """
        Run ``fn()`` under the policy.

        Args:
            operation: Store operation name, for logs and errors.
            fn: Zero-argument callable returning a fresh awaitable per attempt.
            retry_safe: True for reads and keyed writes.

        Raises:
            AmbiguousWriteError: non-retry-safe call timed out.
            StoreUnavailableError: retry budget exhausted.
        """
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                delay = self.delay_before(attempt)
                logger.warning(
                    "store_call_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "delay_seconds": delay,
                        "error": _describe(last_error),
                    },
                )
                await asyncio.sleep(delay)
            try:
                return await asyncio.wait_for(fn(), timeout=self.timeout_seconds)
            except TimeoutError as exc:
                if not retry_safe:
                    logger.error(
                        "store_write_ambiguous",
                        extra={"operation": operation, "timeout_seconds": self.timeout_seconds},
                    )
                    raise AmbiguousWriteError(operation, self.timeout_seconds) from exc
                last_error = exc
            except StoreUnavailableError as exc:
                if not retry_safe:
                    raise
                last_error = exc

        logger.error(
            "store_call_exhausted",
            extra={"operation": operation, "max_attempts": self.max_attempts},
        )
        raise StoreUnavailableError(
            operation,
            f"gave up after {self.max_attempts} attempt(s): "
            f"{_describe(last_error)}",
        ) from last_error


def _describe(error: BaseException | None) -> str:
    if error is None:
        return "unknown error"
    return str(error) or type(error).__name__
