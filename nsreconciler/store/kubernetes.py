"""Kubernetes-backed stores built on kubernetes-asyncio.

KubernetesSpecStore reads LNamespace custom objects. KubernetesObjectStore
maps derived objects onto ClusterRoles, ClusterRoleBindings, RoleBindings and
Namespaces.

Owner validity has no native field in ``metadata.ownerReferences``, so the
UIDs of invalidated owners are kept in the ``gial.lblw.dev/invalid-owners``
annotation and the reference entries themselves are left in place. Patches
always carry ``metadata.resourceVersion``, which makes the API server reject
stale writes with 409.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import aiohttp
from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]
from kubernetes_asyncio.client.rest import ApiException  # type: ignore[import-untyped]

from nsreconciler.errors import ConflictError, NotFoundError, ReconcileError, StoreUnavailableError
from nsreconciler.models.rbac import (
    RBAC_API_GROUP,
    DerivedObject,
    ObjectKind,
    OwnerReference,
    PolicyRule,
    RoleRef,
)
from nsreconciler.models.spec import DesiredState, Subject
from nsreconciler.observability.logging import get_logger
from nsreconciler.store.base import DerivedObjectStore, SpecStore

_log = get_logger("store.kubernetes")

INVALID_OWNERS_ANNOTATION = "gial.lblw.dev/invalid-owners"

# OSError covers TimeoutError and socket-level failures
_TRANSPORT_ERRORS = (aiohttp.ClientError, OSError)

# Patch bodies are partial objects whose lists replace the stored ones.
_MERGE_PATCH = "application/merge-patch+json"


def _translate(exc: Exception, kind: str, name: str, namespace: str = "") -> ReconcileError:
    """Map a kubernetes-asyncio failure onto the reconcile error taxonomy."""
    if isinstance(exc, ApiException):
        if exc.status == 404:
            return NotFoundError(kind, name, namespace)
        if exc.status == 409:
            return ConflictError(f"{kind} '{name}': {exc.reason}")
        return StoreUnavailableError(f"{kind} '{name}': API returned {exc.status} {exc.reason}")
    return StoreUnavailableError(f"{kind} '{name}': {exc}")


def _as_dict(obj: Any) -> dict[str, Any]:
    """Return the snake_case dict form of a kubernetes-asyncio model (or a dict as-is)."""
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()  # type: ignore[no-any-return]


def _parse_time(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# ---------------------------------------------------------------------------
# Conversions
# ---------------------------------------------------------------------------


# Subject kinds the API server stamps with the RBAC group when apiGroup is omitted.
_RBAC_GROUP_SUBJECT_KINDS = ("User", "Group")


def _subject_from_dict(raw: dict[str, Any]) -> Subject:
    kind = str(raw.get("kind", "User"))
    api_group = str(raw.get("api_group", raw.get("apiGroup")) or "")
    if not api_group and kind in _RBAC_GROUP_SUBJECT_KINDS:
        api_group = RBAC_API_GROUP
    return Subject(
        name=str(raw.get("name", "")),
        kind=kind,
        api_group=api_group,
        namespace=str(raw.get("namespace") or ""),
    )


def _subject_to_body(subject: Subject) -> dict[str, Any]:
    body: dict[str, Any] = {"kind": subject.kind, "name": subject.name}
    if subject.api_group:
        body["apiGroup"] = subject.api_group
    if subject.namespace:
        body["namespace"] = subject.namespace
    return body


def desired_state_from_object(raw: dict[str, Any]) -> DesiredState:
    """Build a DesiredState from an LNamespace custom object (camelCase JSON)."""
    metadata = raw.get("metadata") or {}
    spec = raw.get("spec") or {}
    return DesiredState(
        uid=str(metadata.get("uid", "")),
        name=str(metadata.get("name", "")),
        finalizers=list(metadata.get("finalizers") or []),
        billing={str(k): str(v) for k, v in (spec.get("billing") or {}).items()},
        istio_revision=str(spec.get("istioRevision") or ""),
        sudoers=[_subject_from_dict(s) for s in spec.get("sudoers") or []],
        developers=[_subject_from_dict(s) for s in spec.get("developers") or []],
        managers=[_subject_from_dict(s) for s in spec.get("managers") or []],
        namespace_label_overrides={
            str(k): str(v) for k, v in (spec.get("namespaceLabelOverrides") or {}).items()
        },
        deletion_timestamp=_parse_time(metadata.get("deletionTimestamp")),
        resource_version=str(metadata.get("resourceVersion") or ""),
    )


def derived_object_from_model(kind: ObjectKind, model: Any) -> DerivedObject:
    """Build a DerivedObject from a kubernetes-asyncio model."""
    raw = _as_dict(model)
    metadata = raw.get("metadata") or {}
    annotations = dict(metadata.get("annotations") or {})
    invalid = {uid for uid in annotations.pop(INVALID_OWNERS_ANNOTATION, "").split(",") if uid}
    owners = [
        OwnerReference(
            owner_id=str(ref.get("uid", "")),
            owner_name=str(ref.get("name", "")),
            kind=str(ref.get("kind", "")),
            api_version=str(ref.get("api_version", "")),
            controller=bool(ref.get("controller")),
            valid=str(ref.get("uid", "")) not in invalid,
        )
        for ref in metadata.get("owner_references") or []
    ]
    rules = [
        PolicyRule(
            verbs=tuple(rule.get("verbs") or ()),
            resources=tuple(rule.get("resources") or ()),
            api_groups=tuple(rule.get("api_groups") or ()),
            resource_names=tuple(rule.get("resource_names") or ()),
        )
        for rule in raw.get("rules") or []
    ]
    role_ref_raw = raw.get("role_ref")
    role_ref = (
        RoleRef(
            name=str(role_ref_raw.get("name", "")),
            kind=str(role_ref_raw.get("kind", "ClusterRole")),
            api_group=str(role_ref_raw.get("api_group") or ""),
        )
        if role_ref_raw
        else None
    )
    return DerivedObject(
        kind=kind,
        name=str(metadata.get("name", "")),
        namespace=str(metadata.get("namespace") or ""),
        labels=dict(metadata.get("labels") or {}),
        annotations=annotations,
        rules=rules,
        role_ref=role_ref,
        subjects=[_subject_from_dict(s) for s in raw.get("subjects") or []],
        owners=owners,
        resource_version=str(metadata.get("resource_version") or ""),
    )


def derived_object_to_body(obj: DerivedObject, for_patch: bool = False) -> dict[str, Any]:
    """Render *obj* as a camelCase request body.

    Patch bodies carry ``resourceVersion`` and explicitly null out the
    invalid-owners annotation once every owner is valid again.
    """
    invalid = sorted(ref.owner_id for ref in obj.owners if not ref.valid)
    annotations: dict[str, Any] = dict(obj.annotations)
    if invalid:
        annotations[INVALID_OWNERS_ANNOTATION] = ",".join(invalid)
    elif for_patch:
        annotations[INVALID_OWNERS_ANNOTATION] = None

    metadata: dict[str, Any] = {
        "name": obj.name,
        "labels": dict(obj.labels),
        "annotations": annotations,
        "ownerReferences": [
            {
                "apiVersion": ref.api_version,
                "kind": ref.kind,
                "name": ref.owner_name,
                "uid": ref.owner_id,
                "controller": ref.controller,
                "blockOwnerDeletion": ref.controller,
            }
            for ref in obj.owners
        ],
    }
    if obj.namespace:
        metadata["namespace"] = obj.namespace
    if for_patch:
        metadata["resourceVersion"] = obj.resource_version

    body: dict[str, Any] = {"metadata": metadata}
    if obj.kind == ObjectKind.CLUSTER_ROLE:
        body["rules"] = [
            {
                "apiGroups": list(rule.api_groups),
                "verbs": list(rule.verbs),
                "resources": list(rule.resources),
                "resourceNames": list(rule.resource_names),
            }
            for rule in obj.rules
        ]
    elif obj.kind in (ObjectKind.CLUSTER_ROLE_BINDING, ObjectKind.ROLE_BINDING):
        if obj.role_ref is not None:
            body["roleRef"] = {
                "apiGroup": obj.role_ref.api_group,
                "kind": obj.role_ref.kind,
                "name": obj.role_ref.name,
            }
        body["subjects"] = [_subject_to_body(s) for s in obj.subjects]
    return body


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class KubernetesSpecStore(SpecStore):
    """Reads cluster-scoped LNamespace custom objects."""

    def __init__(
        self,
        custom_api: Any,
        group: str = "gial.lblw.dev",
        version: str = "v1beta1",
        plural: str = "lnamespaces",
    ) -> None:
        self._api = custom_api
        self._group = group
        self._version = version
        self._plural = plural

    @classmethod
    def from_api_client(cls, api_client: Any, **kwargs: str) -> KubernetesSpecStore:
        return cls(k8s_client.CustomObjectsApi(api_client), **kwargs)

    async def get(self, key: str) -> DesiredState:
        try:
            raw = await self._api.get_cluster_custom_object(self._group, self._version, self._plural, key)
        except (ApiException, *_TRANSPORT_ERRORS) as exc:
            raise _translate(exc, "LNamespace", key) from exc
        return desired_state_from_object(raw)

    async def set_finalizers(self, state: DesiredState, finalizers: list[str]) -> DesiredState:
        body = {"metadata": {"finalizers": list(finalizers), "resourceVersion": state.resource_version}}
        try:
            raw = await self._api.patch_cluster_custom_object(
                self._group, self._version, self._plural, state.name, body, _content_type=_MERGE_PATCH
            )
        except (ApiException, *_TRANSPORT_ERRORS) as exc:
            raise _translate(exc, "LNamespace", state.name) from exc
        _log.debug("finalizers_updated", namespace=state.name, finalizers=finalizers)
        return desired_state_from_object(raw)


class KubernetesObjectStore(DerivedObjectStore):
    """Derived objects stored as native RBAC and Namespace resources."""

    def __init__(self, rbac_api: Any, core_api: Any) -> None:
        self._rbac = rbac_api
        self._core = core_api

    @classmethod
    def from_api_client(cls, api_client: Any) -> KubernetesObjectStore:
        return cls(k8s_client.RbacAuthorizationV1Api(api_client), k8s_client.CoreV1Api(api_client))

    async def get(self, kind: ObjectKind, name: str, namespace: str = "") -> DerivedObject:
        try:
            if kind == ObjectKind.CLUSTER_ROLE:
                model = await self._rbac.read_cluster_role(name)
            elif kind == ObjectKind.CLUSTER_ROLE_BINDING:
                model = await self._rbac.read_cluster_role_binding(name)
            elif kind == ObjectKind.ROLE_BINDING:
                model = await self._rbac.read_namespaced_role_binding(name, namespace)
            else:
                model = await self._core.read_namespace(name)
        except (ApiException, *_TRANSPORT_ERRORS) as exc:
            raise _translate(exc, str(kind), name, namespace) from exc
        return derived_object_from_model(kind, model)

    async def create(self, obj: DerivedObject) -> DerivedObject:
        body = derived_object_to_body(obj)
        try:
            if obj.kind == ObjectKind.CLUSTER_ROLE:
                model = await self._rbac.create_cluster_role(body)
            elif obj.kind == ObjectKind.CLUSTER_ROLE_BINDING:
                model = await self._rbac.create_cluster_role_binding(body)
            elif obj.kind == ObjectKind.ROLE_BINDING:
                model = await self._rbac.create_namespaced_role_binding(obj.namespace, body)
            else:
                model = await self._core.create_namespace(body)
        except (ApiException, *_TRANSPORT_ERRORS) as exc:
            raise _translate(exc, str(obj.kind), obj.name, obj.namespace) from exc
        return derived_object_from_model(obj.kind, model)

    async def patch(self, obj: DerivedObject) -> DerivedObject:
        body = derived_object_to_body(obj, for_patch=True)
        try:
            if obj.kind == ObjectKind.CLUSTER_ROLE:
                model = await self._rbac.patch_cluster_role(obj.name, body, _content_type=_MERGE_PATCH)
            elif obj.kind == ObjectKind.CLUSTER_ROLE_BINDING:
                model = await self._rbac.patch_cluster_role_binding(obj.name, body, _content_type=_MERGE_PATCH)
            elif obj.kind == ObjectKind.ROLE_BINDING:
                model = await self._rbac.patch_namespaced_role_binding(
                    obj.name, obj.namespace, body, _content_type=_MERGE_PATCH
                )
            else:
                model = await self._core.patch_namespace(obj.name, body, _content_type=_MERGE_PATCH)
        except (ApiException, *_TRANSPORT_ERRORS) as exc:
            raise _translate(exc, str(obj.kind), obj.name, obj.namespace) from exc
        return derived_object_from_model(obj.kind, model)

    async def list(self, kind: ObjectKind, selector: tuple[str, str]) -> list[DerivedObject]:
        label_selector = f"{selector[0]}={selector[1]}"
        try:
            if kind == ObjectKind.CLUSTER_ROLE:
                result = await self._rbac.list_cluster_role(label_selector=label_selector)
            elif kind == ObjectKind.CLUSTER_ROLE_BINDING:
                result = await self._rbac.list_cluster_role_binding(label_selector=label_selector)
            elif kind == ObjectKind.ROLE_BINDING:
                result = await self._rbac.list_role_binding_for_all_namespaces(label_selector=label_selector)
            else:
                result = await self._core.list_namespace(label_selector=label_selector)
        except (ApiException, *_TRANSPORT_ERRORS) as exc:
            raise _translate(exc, str(kind), label_selector) from exc
        items = _as_dict(result).get("items") or []
        return [derived_object_from_model(kind, item) for item in items]
