"""Tenant Namespace planning.

Creates or patches the core Namespace named after a DesiredState: the Istio
revision label, billing entries as annotations, and label overrides. Labels
and annotations this planner does not set are preserved.
"""

from __future__ import annotations

from nsreconciler.models.rbac import DerivedObject, ObjectKind, OwnerReference
from nsreconciler.models.spec import DesiredState
from nsreconciler.observability.logging import get_logger
from nsreconciler.ownership import OwnershipTracker
from nsreconciler.store.base import DerivedObjectStore
from nsreconciler.store.mutate import OperationResult, create_or_patch

_logger = get_logger("namespace.planner")

# Revision tag istio uses to pick which istiod the namespace registers with.
ISTIO_REVISION_LABEL = "istio.io/rev"


class NamespacePlanner:
    """Keeps the tenant's Namespace in line with its DesiredState."""

    def __init__(self, store: DerivedObjectStore, api_version: str = "gial.lblw.dev/v1beta1") -> None:
        self._store = store
        self._api_version = api_version

    async def update_namespace(self, state: DesiredState) -> OperationResult:
        owner = OwnerReference(
            owner_id=state.uid,
            owner_name=state.name,
            api_version=self._api_version,
            controller=True,
        )

        def _mutate(obj: DerivedObject) -> None:
            obj.labels[ISTIO_REVISION_LABEL] = state.istio_revision
            obj.annotations.update(state.billing)
            # overrides are applied last so they win over the istio label
            obj.labels.update(state.namespace_label_overrides)
            tracker = OwnershipTracker(obj.owners)
            tracker.claim_controller(owner)
            obj.owners = tracker.refs

        _, result = await create_or_patch(self._store, ObjectKind.NAMESPACE, state.name, _mutate)
        if result is OperationResult.CREATED:
            _logger.info("namespace_created", namespace=state.name)
        elif result is OperationResult.UPDATED:
            _logger.info("namespace_updated", namespace=state.name)
        return result
