"""
Persistent store port and its implementations.

``ReturnsStore`` is the protocol every engine component depends on.
``SqlReturnsStore`` and ``InMemoryReturnsStore`` implement it;
``ResilientStore`` wraps either one with timeouts and bounded retries.
"""

from pharmacy_kernel.store.base import ReturnsStore
from pharmacy_kernel.store.call_policy import StoreCallPolicy
from pharmacy_kernel.store.memory_store import InMemoryReturnsStore
from pharmacy_kernel.store.resilient import ResilientStore
from pharmacy_kernel.store.sql_store import SqlReturnsStore

__all__ = [
    "InMemoryReturnsStore",
    "ResilientStore",
    "ReturnsStore",
    "SqlReturnsStore",
    "StoreCallPolicy",
]
