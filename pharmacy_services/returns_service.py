"""
ReturnsService -- wires the returns flow from one EngineConfig.

Usage:
    config = get_active_config()
    service = ReturnsService.from_config(config)
    session = await service.start_session(sale_id, actor_id=operator_id)
    session.select(line_item_id)
    ...
"""

from __future__ import annotations

from uuid import UUID

from pharmacy_config import EngineConfig
from pharmacy_engines.return_metrics import ReturnMetrics
from pharmacy_engines.value_calculator import ValueCalculator
from pharmacy_kernel.db.engine import init_engine_from_url
from pharmacy_kernel.domain.clock import Clock, SystemClock
from pharmacy_kernel.logging_config import configure_logging, get_logger
from pharmacy_kernel.services.sequence_service import SequenceAllocator
from pharmacy_kernel.store.base import ReturnsStore
from pharmacy_kernel.store.call_policy import StoreCallPolicy
from pharmacy_kernel.store.resilient import ResilientStore
from pharmacy_kernel.store.sql_store import SqlReturnsStore
from pharmacy_services.preview_generator import PreviewGenerator
from pharmacy_services.reconciliation_committer import ReconciliationCommitter
from pharmacy_services.return_catalog import ReturnSelectionCatalog
from pharmacy_services.return_history import ReturnHistoryEntry, ReturnHistoryService
from pharmacy_services.return_session import ReturnSession, SessionListeners

logger = get_logger("services.returns")


class ReturnsService:
    """Entry point for operator return sessions and return history."""

    def __init__(self, store: ReturnsStore, config: EngineConfig, clock: Clock | None = None):
        calls = config.store_calls
        self._config = config
        self._clock = clock or SystemClock()
        self._store = ResilientStore(
            store,
            StoreCallPolicy(
                timeout_seconds=calls.timeout_seconds,
                max_attempts=calls.max_attempts,
                backoff_seconds=calls.backoff_seconds,
                backoff_multiplier=calls.backoff_multiplier,
            ),
        )
        calculator = ValueCalculator()
        unknown_name = config.returns.unknown_item_name
        self._catalog = ReturnSelectionCatalog(self._store, unknown_item_name=unknown_name)
        self._preview = PreviewGenerator(calculator)
        self._committer = ReconciliationCommitter(self._store, self._clock, calculator)
        self._allocator = SequenceAllocator(
            self._store,
            self._clock,
            prefix=config.sequence.prefix,
            max_attempts=config.sequence.max_attempts,
            scope_tag_length=config.sequence.scope_tag_length,
            fallback_enabled=config.sequence.fallback_enabled,
        )
        self._history = ReturnHistoryService(self._store, unknown_item_name=unknown_name)

    @classmethod
    def from_config(cls, config: EngineConfig, clock: Clock | None = None) -> ReturnsService:
        """Configure logging and the database engine, then build over SQL."""
        configure_logging(level=config.logging.level)
        db = config.database
        init_engine_from_url(
            db.url, echo=db.echo, pool_size=db.pool_size, max_overflow=db.max_overflow,
        )
        return cls(SqlReturnsStore(clock=clock), config, clock)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def store(self) -> ResilientStore:
        return self._store

    async def start_session(
        self,
        sale_id: UUID,
        *,
        actor_id: UUID,
        listeners: SessionListeners | None = None,
    ) -> ReturnSession:
        """Load the sale's returnable items and open a session in select."""
        catalog = await self._catalog.load(sale_id)
        logger.info(
            "return_session_started",
            extra={"sale_id": str(sale_id), "actor_id": str(actor_id), "items": len(catalog.items)},
        )
        return ReturnSession(
            catalog,
            actor_id=actor_id,
            catalog_service=self._catalog,
            preview_generator=self._preview,
            committer=self._committer,
            allocator=self._allocator,
            reason_min_length=self._config.returns.reason_min_length,
            listeners=listeners,
        )

    async def history(self, sale_id: UUID) -> list[ReturnHistoryEntry]:
        return await self._history.history(sale_id)

    async def metrics(self, sale_id: UUID) -> ReturnMetrics:
        return await self._history.metrics(sale_id)
