"""Store layer for namespace-reconciler.

Submodules:
    base        -- SpecStore, DerivedObjectStore and LedgerStore interfaces.
    mutate      -- create_or_patch read-modify-write helper.
    memory      -- In-memory stores with a tag index and optimistic concurrency.
    kubernetes  -- kubernetes-asyncio adapters (imported on demand).
    bigquery    -- google-cloud-bigquery ledger adapter (imported on demand).
"""

from nsreconciler.store.base import DerivedObjectStore, LedgerStore, SpecStore
from nsreconciler.store.memory import InMemoryLedgerStore, InMemoryObjectStore, InMemorySpecStore

__all__ = [
    "DerivedObjectStore",
    "InMemoryLedgerStore",
    "InMemoryObjectStore",
    "InMemorySpecStore",
    "LedgerStore",
    "SpecStore",
]
