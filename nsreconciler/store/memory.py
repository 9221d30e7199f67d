"""In-memory store implementations.

Used as the reference backend in tests and for local dry runs. The object
store keeps an explicit secondary index from classification tag to object
keys and enforces resourceVersion optimistic concurrency the same way the
Kubernetes API server does, so planners exercise identical code paths
against either backend.
"""

from __future__ import annotations

import copy
import re
from collections import defaultdict

from nsreconciler.errors import ConflictError, NotFoundError
from nsreconciler.models.rbac import DerivedObject, ObjectKind
from nsreconciler.models.spec import BillingRow, DesiredState
from nsreconciler.store.base import DerivedObjectStore, LedgerStore, SpecStore

_MUTATING_OPS = frozenset({"create", "patch"})


class _FailureInjection:
    """Raise a queued exception the next time a named operation runs."""

    def __init__(self) -> None:
        self._pending: dict[str, Exception] = {}

    def inject_failure(self, operation: str, exc: Exception) -> None:
        self._pending[operation] = exc

    def _maybe_fail(self, operation: str) -> None:
        exc = self._pending.pop(operation, None)
        if exc is not None:
            raise exc


class InMemorySpecStore(SpecStore, _FailureInjection):
    """DesiredState objects keyed by name."""

    def __init__(self, states: list[DesiredState] | None = None) -> None:
        super().__init__()
        self._states: dict[str, DesiredState] = {}
        self._version = 0
        self.calls: list[tuple[str, str]] = []
        for state in states or []:
            self.put(state)

    def put(self, state: DesiredState) -> DesiredState:
        """Insert or replace *state*, as the external API would."""
        self._version += 1
        stored = copy.deepcopy(state)
        stored.resource_version = str(self._version)
        self._states[state.name] = stored
        return copy.deepcopy(stored)

    def remove(self, key: str) -> None:
        self._states.pop(key, None)

    async def get(self, key: str) -> DesiredState:
        self.calls.append(("get", key))
        self._maybe_fail("get")
        state = self._states.get(key)
        if state is None:
            raise NotFoundError("LNamespace", key)
        return copy.deepcopy(state)

    async def set_finalizers(self, state: DesiredState, finalizers: list[str]) -> DesiredState:
        self.calls.append(("set_finalizers", state.name))
        self._maybe_fail("set_finalizers")
        stored = self._states.get(state.name)
        if stored is None:
            raise NotFoundError("LNamespace", state.name)
        if stored.resource_version != state.resource_version:
            raise ConflictError(f"LNamespace '{state.name}' was modified concurrently")
        updated = copy.deepcopy(stored)
        updated.finalizers = list(finalizers)
        if updated.deleting and not updated.finalizers:
            # last finalizer gone: the API server completes the deletion
            del self._states[state.name]
            return updated
        return self.put(updated)


class InMemoryObjectStore(DerivedObjectStore, _FailureInjection):
    """Flat name-addressable table of derived objects.

    Attributes:
        calls: every ``(operation, kind, name)`` issued, reads included.
    """

    def __init__(self) -> None:
        super().__init__()
        self._objects: dict[tuple[str, str, str], DerivedObject] = {}
        # (kind, label key, label value) -> {(namespace, name)}
        self._index: dict[tuple[str, str, str], set[tuple[str, str]]] = defaultdict(set)
        self._version = 0
        self.calls: list[tuple[str, str, str]] = []

    @property
    def mutations(self) -> list[tuple[str, str, str]]:
        """Only the create/patch calls recorded in ``calls``."""
        return [call for call in self.calls if call[0] in _MUTATING_OPS]

    def objects(self) -> list[DerivedObject]:
        return [obj.copy() for obj in self._objects.values()]

    def seed(self, obj: DerivedObject) -> DerivedObject:
        """Insert *obj* directly, bypassing call recording."""
        stored = self._store(obj)
        return stored.copy()

    async def get(self, kind: ObjectKind, name: str, namespace: str = "") -> DerivedObject:
        self.calls.append(("get", str(kind), name))
        self._maybe_fail("get")
        obj = self._objects.get((str(kind), namespace, name))
        if obj is None:
            raise NotFoundError(str(kind), name, namespace)
        return obj.copy()

    async def create(self, obj: DerivedObject) -> DerivedObject:
        self.calls.append(("create", str(obj.kind), obj.name))
        self._maybe_fail("create")
        if obj.key in self._objects:
            raise ConflictError(f"{obj.kind} '{obj.name}' already exists")
        return self._store(obj).copy()

    async def patch(self, obj: DerivedObject) -> DerivedObject:
        self.calls.append(("patch", str(obj.kind), obj.name))
        self._maybe_fail("patch")
        current = self._objects.get(obj.key)
        if current is None:
            raise NotFoundError(str(obj.kind), obj.name, obj.namespace)
        if current.resource_version != obj.resource_version:
            raise ConflictError(
                f"{obj.kind} '{obj.name}' resourceVersion {obj.resource_version} is stale "
                f"(current {current.resource_version})"
            )
        return self._store(obj).copy()

    async def list(self, kind: ObjectKind, selector: tuple[str, str]) -> list[DerivedObject]:
        self.calls.append(("list", str(kind), "=".join(selector)))
        self._maybe_fail("list")
        keys = self._index.get((str(kind), selector[0], selector[1]), set())
        found = [self._objects[(str(kind), ns, name)] for ns, name in keys]
        return [obj.copy() for obj in sorted(found, key=lambda o: (o.namespace, o.name))]

    def _store(self, obj: DerivedObject) -> DerivedObject:
        previous = self._objects.get(obj.key)
        if previous is not None:
            self._unindex(previous)
        self._version += 1
        stored = obj.copy()
        stored.resource_version = str(self._version)
        self._objects[obj.key] = stored
        for label_key, label_value in stored.labels.items():
            self._index[(str(stored.kind), label_key, label_value)].add((stored.namespace, stored.name))
        return stored

    def _unindex(self, obj: DerivedObject) -> None:
        for label_key, label_value in obj.labels.items():
            entry = self._index.get((str(obj.kind), label_key, label_value))
            if entry is not None:
                entry.discard((obj.namespace, obj.name))


_RE_NS_NAME = re.compile(r"ns_name='([^']*)'")


class InMemoryLedgerStore(LedgerStore, _FailureInjection):
    """Billing rows keyed by (ns_name, name), driven by the fixed query templates.

    Attributes:
        queries: every ``(query, rows)`` pair received, in order.
    """

    def __init__(self, rows: list[BillingRow] | None = None) -> None:
        super().__init__()
        self._rows: dict[tuple[str, str], str] = {}
        self.queries: list[tuple[str, list[BillingRow] | None]] = []
        for row in rows or []:
            self._rows[(row.ns_name, row.name)] = row.value

    def rows(self, ns_name: str) -> dict[str, str]:
        return {name: value for (ns, name), value in self._rows.items() if ns == ns_name}

    async def run_query(self, query: str, rows: list[BillingRow] | None = None) -> list[dict[str, str]]:
        self.queries.append((query, rows))
        verb = query.split(" ", 1)[0].upper()
        self._maybe_fail(verb.lower())
        if verb == "SELECT":
            match = _RE_NS_NAME.search(query)
            if match is None:
                raise ValueError(f"Unsupported lookup query: {query}")
            ns_name = match.group(1)
            return [
                {"ns_name": ns, "name": name, "value": value}
                for (ns, name), value in sorted(self._rows.items())
                if ns == ns_name
            ]
        if verb == "MERGE":
            for row in rows or []:
                self._rows[(row.ns_name, row.name)] = row.value
            return []
        if verb == "DELETE":
            for row in rows or []:
                self._rows.pop((row.ns_name, row.name), None)
            return []
        raise ValueError(f"Unsupported ledger query: {query}")
