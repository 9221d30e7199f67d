"""Shared fixtures for namespace-reconciler integration tests.

Wires a Reconciler to the in-memory stores so full reconcile runs, including
several DesiredStates sharing grants, can be exercised without a cluster or
a BigQuery project.
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from nsreconciler.app import build_reconciler
from nsreconciler.models.config import ReconcilerConfig
from nsreconciler.models.spec import DesiredState, Subject
from nsreconciler.reconciler import Reconciler
from nsreconciler.store.memory import InMemoryLedgerStore, InMemoryObjectStore, InMemorySpecStore


def make_state(
    name: str,
    sudoers: list[str] | None = None,
    developers: list[str] | None = None,
    managers: list[str] | None = None,
    billing: dict[str, str] | None = None,
) -> DesiredState:
    """Create a DesiredState with uid derived from *name*."""
    return DesiredState(
        uid=f"uid-{name}",
        name=name,
        billing=dict(billing or {}),
        istio_revision="stable",
        sudoers=[Subject(name=s) for s in sudoers or []],
        developers=[Subject(name=d) for d in developers or []],
        managers=[Subject(name=m) for m in managers or []],
    )


@dataclass
class Cluster:
    """The stores behind one reconciler, for assertions."""

    specs: InMemorySpecStore
    objects: InMemoryObjectStore
    ledger: InMemoryLedgerStore
    reconciler: Reconciler

    async def update(self, state: DesiredState) -> None:
        """Apply an external edit to a DesiredState, keeping its finalizers."""
        current = await self.specs.get(state.name)
        state.finalizers = current.finalizers
        self.specs.put(state)


@pytest.fixture
def cluster() -> Cluster:
    specs = InMemorySpecStore()
    objects = InMemoryObjectStore()
    ledger = InMemoryLedgerStore()
    config = ReconcilerConfig()
    config.ledger.dataset = "ds"
    config.ledger.table = "tbl"
    return Cluster(
        specs=specs,
        objects=objects,
        ledger=ledger,
        reconciler=build_reconciler(config, specs, objects, ledger),
    )
