"""Store interfaces consumed by the planners.

SpecStore          -- read access to DesiredState objects (plus finalizer updates).
DerivedObjectStore -- get/create/patch/list of derived RBAC and Namespace objects.
LedgerStore        -- query execution against the billing ledger.

Implementations raise the errors from ``nsreconciler.errors``; planners never
see backend-specific exceptions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from nsreconciler.models.rbac import DerivedObject, ObjectKind
from nsreconciler.models.spec import BillingRow, DesiredState


class SpecStore(ABC):
    """Source of DesiredState objects."""

    @abstractmethod
    async def get(self, key: str) -> DesiredState:
        """Return the DesiredState named *key*.

        Raises:
            NotFoundError: the object does not exist.
            StoreUnavailableError: the backend could not be reached.
        """

    @abstractmethod
    async def set_finalizers(self, state: DesiredState, finalizers: list[str]) -> DesiredState:
        """Replace the finalizer list of *state*, guarded by its resource version."""


class DerivedObjectStore(ABC):
    """Name-addressable table of derived objects with a classification-tag index."""

    @abstractmethod
    async def get(self, kind: ObjectKind, name: str, namespace: str = "") -> DerivedObject:
        """Return the object or raise NotFoundError."""

    @abstractmethod
    async def create(self, obj: DerivedObject) -> DerivedObject:
        """Create *obj*; raises ConflictError when it already exists."""

    @abstractmethod
    async def patch(self, obj: DerivedObject) -> DerivedObject:
        """Write *obj* back.

        The write is guarded by ``obj.resource_version``; a stale version
        raises ConflictError instead of overwriting a concurrent change.
        """

    @abstractmethod
    async def list(self, kind: ObjectKind, selector: tuple[str, str]) -> list[DerivedObject]:
        """List every object of *kind* whose label ``selector[0]`` equals ``selector[1]``.

        Cluster-wide, and only eventually consistent with concurrent writes.
        """


class LedgerStore(ABC):
    """Executes the billing ledger's fixed query templates."""

    @abstractmethod
    async def run_query(self, query: str, rows: list[BillingRow] | None = None) -> list[dict[str, str]]:
        """Run *query* with *rows* bound as its single array parameter.

        Returns result rows as plain ``column -> value`` dicts.
        """
