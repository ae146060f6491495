"""
pharmacy_services -- the returns flow over the kernel and engines.

Catalog, configuration, preview, commit, exchanges, the flow state machine
and return history.  ``ReturnsService`` wires them from an EngineConfig.
"""

from pharmacy_services.preview_generator import PreviewGenerator, PreviewLine, PreviewResult
from pharmacy_services.reconciliation_committer import CommitResult, ReconciliationCommitter
from pharmacy_services.replacement_matcher import (
    ExchangeOutcome,
    ExchangeRequest,
    ReplacementMatcher,
)
from pharmacy_services.return_catalog import CatalogItem, LoadedCatalog, ReturnSelectionCatalog
from pharmacy_services.return_configuration import (
    ConfigureResult,
    ItemConfiguration,
    QuantityClamp,
    ReturnConfigurationSet,
)
from pharmacy_services.return_history import ReturnHistoryEntry, ReturnHistoryService
from pharmacy_services.return_session import (
    RETURN_WORKFLOW,
    CommitFailed,
    CommitOutcome,
    CommitSucceeded,
    ReturnSession,
    ReturnState,
    SessionListeners,
)
from pharmacy_services.returns_service import ReturnsService

__all__ = [
    "RETURN_WORKFLOW",
    "CatalogItem",
    "CommitFailed",
    "CommitOutcome",
    "CommitResult",
    "CommitSucceeded",
    "ConfigureResult",
    "ExchangeOutcome",
    "ExchangeRequest",
    "ItemConfiguration",
    "LoadedCatalog",
    "PreviewGenerator",
    "PreviewLine",
    "PreviewResult",
    "QuantityClamp",
    "ReconciliationCommitter",
    "ReplacementMatcher",
    "ReturnConfigurationSet",
    "ReturnHistoryEntry",
    "ReturnHistoryService",
    "ReturnSelectionCatalog",
    "ReturnSession",
    "ReturnState",
    "ReturnsService",
    "SessionListeners",
]
