"""
SequenceAllocator -- user-scoped, monotonically increasing identifiers.

Responsibility:
    Mints identifiers such as return document numbers
    (``RET-3f2a9c1d-7``): prefix, a short tag of the scope key, and the next
    number in that identifier namespace.

Architecture position:
    Kernel > Services.  Depends on the ReturnsStore protocol only.

Invariants enforced:
    - The counter is kept per namespace ``<prefix>-<scope tag>``, not per raw
      scope key.  Scope keys that share a tag share one counter, so they
      never mint the same identifier.
    - Uniqueness is decided by the store's (namespace, value) reservation,
      never by the read of the current maximum.  Two allocators that read
      the same maximum both propose the same value; exactly one reservation
      succeeds and the other re-reads and retries.
    - Bounded: at most ``max_attempts`` reservations per call.

Failure modes:
    - Retry budget exhausted: returns a fallback identifier built from the
      scope tag, a microsecond UTC timestamp and a random suffix (unique
      without coordination), flagged ``is_fallback``.  With the fallback
      disabled, raises ConflictError instead.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.domain.dtos import ReservationStatus
from pharmacy_kernel.exceptions import ConflictError
from pharmacy_kernel.logging_config import get_logger
from pharmacy_kernel.store.base import ReturnsStore

logger = get_logger("services.sequence")


@dataclass(frozen=True)
class AllocatedSequence:
    """An allocated identifier.

    ``value`` is None for fallback identifiers, which are not part of the
    numeric sequence.
    """

    identifier: str
    value: int | None
    attempts: int
    is_fallback: bool = False


class SequenceAllocator:
    """
    Allocates the next identifier in a scope.

    Usage:
        allocator = SequenceAllocator(store, prefix="RET")
        allocated = await allocator.allocate(str(actor_id))
        allocated.identifier   # "RET-3f2a9c1d-5"
    """

    def __init__(
        self,
        store: ReturnsStore,
        clock: Clock | None = None,
        *,
        prefix: str = "RET",
        max_attempts: int = 3,
        scope_tag_length: int = 8,
        fallback_enabled: bool = True,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not prefix:
            raise ValueError("prefix must be non-empty")
        self._store = store
        self._clock = clock or SystemClock()
        self._prefix = prefix
        self._max_attempts = max_attempts
        self._scope_tag_length = scope_tag_length
        self._fallback_enabled = fallback_enabled

    def scope_tag(self, scope_key: str) -> str:
        return scope_key[: self._scope_tag_length]

    def namespace(self, scope_key: str) -> str:
        """Sequence key the counter for ``scope_key`` is kept under."""
        return f"{self._prefix}-{self.scope_tag(scope_key)}"

    def format_identifier(self, scope_key: str, value: int) -> str:
        return f"{self.namespace(scope_key)}-{value}"

    async def allocate(self, scope_key: str) -> AllocatedSequence:
        """
        Reserve the next value in ``scope_key``.

        Raises:
            ValueError: empty scope key.
            ConflictError: retries exhausted and fallback disabled.
        """
        if not scope_key:
            raise ValueError("scope_key must be non-empty")

        namespace = self.namespace(scope_key)
        for attempt in range(1, self._max_attempts + 1):
            current_max = await self._store.find_max_sequence_for_scope(namespace)
            candidate = (current_max or 0) + 1
            identifier = f"{namespace}-{candidate}"
            status = await self._store.reserve_sequence_value(namespace, candidate, identifier)
            if status is ReservationStatus.RESERVED:
                logger.debug(
                    "sequence_allocated",
                    extra={
                        "scope_key": scope_key,
                        "namespace": namespace,
                        "value": candidate,
                        "attempt": attempt,
                    },
                )
                return AllocatedSequence(identifier=identifier, value=candidate, attempts=attempt)

            logger.warning(
                "sequence_conflict_retry",
                extra={
                    "scope_key": scope_key,
                    "value": candidate,
                    "attempt": attempt,
                    "max_attempts": self._max_attempts,
                },
            )

        if not self._fallback_enabled:
            raise ConflictError(
                "scoped_sequence",
                scope_key,
                f"no free value after {self._max_attempts} attempt(s)",
            )

        identifier = self._fallback_identifier(scope_key)
        logger.warning(
            "sequence_fallback_identifier",
            extra={"scope_key": scope_key, "identifier": identifier},
        )
        return AllocatedSequence(
            identifier=identifier,
            value=None,
            attempts=self._max_attempts,
            is_fallback=True,
        )

    def _fallback_identifier(self, scope_key: str) -> str:
        stamp = self._clock.now_utc().strftime("%Y%m%d%H%M%S%f")
        return f"{self.namespace(scope_key)}-F{stamp}-{uuid.uuid4().hex[:6]}"
