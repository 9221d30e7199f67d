"""Read-modify-write helper for derived objects."""

from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum

from nsreconciler.errors import NotFoundError
from nsreconciler.models.rbac import DerivedObject, ObjectKind
from nsreconciler.observability.metrics import object_writes_total
from nsreconciler.store.base import DerivedObjectStore


class OperationResult(StrEnum):
    """What create_or_patch did to the store."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


async def create_or_patch(
    store: DerivedObjectStore,
    kind: ObjectKind,
    name: str,
    mutate: Callable[[DerivedObject], None],
    namespace: str = "",
) -> tuple[DerivedObject, OperationResult]:
    """Create the object if absent, otherwise patch it when *mutate* changes it.

    *mutate* is applied in place to either a fresh object or a copy of the
    stored one, and must only touch the fields its caller owns. No write is
    issued when the mutated copy is identical to what is stored, which keeps
    repeated reconciles free of store mutations.
    """
    try:
        current = await store.get(kind, name, namespace)
    except NotFoundError:
        obj = DerivedObject(kind=kind, name=name, namespace=namespace)
        mutate(obj)
        created = await store.create(obj)
        object_writes_total.labels(kind=str(kind), operation="create").inc()
        return created, OperationResult.CREATED

    desired = current.copy()
    mutate(desired)
    if desired.same_content(current):
        return current, OperationResult.UNCHANGED
    patched = await store.patch(desired)
    object_writes_total.labels(kind=str(kind), operation="patch").inc()
    return patched, OperationResult.UPDATED
