"""Tests for the kubernetes-asyncio backed stores.

The generated API classes are replaced with AsyncMocks; payloads use the
snake_case dict shape ``to_dict()`` returns for typed models and the camelCase
shape the custom-objects API returns.
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from kubernetes_asyncio import client as k8s_client
from kubernetes_asyncio.client.rest import ApiException

from nsreconciler.errors import ConflictError, NotFoundError, StoreUnavailableError
from nsreconciler.models.rbac import RBAC_API_GROUP, DerivedObject, ObjectKind, OwnerReference, PolicyRule, RoleRef
from nsreconciler.models.spec import DesiredState, Subject
from nsreconciler.rbac.planner import RBACPlanner
from nsreconciler.store.kubernetes import (
    INVALID_OWNERS_ANNOTATION,
    KubernetesObjectStore,
    KubernetesSpecStore,
    derived_object_from_model,
    derived_object_to_body,
    desired_state_from_object,
)

_MERGE_PATCH = "application/merge-patch+json"

_LNAMESPACE = {
    "apiVersion": "gial.lblw.dev/v1beta1",
    "kind": "LNamespace",
    "metadata": {
        "name": "team-a",
        "uid": "uid-team-a",
        "resourceVersion": "881",
        "finalizers": ["gial.lblw.dev/rbac-cleanup"],
        "deletionTimestamp": "2026-02-18T12:00:00Z",
    },
    "spec": {
        "billing": {"budget": "1.0"},
        "istioRevision": "1-20",
        "sudoers": [{"kind": "User", "name": "john@loblaw.ca", "apiGroup": "rbac.authorization.k8s.io"}],
        "developers": [{"kind": "Group", "name": "devs", "apiGroup": "rbac.authorization.k8s.io"}],
        "managers": [],
        "namespaceLabelOverrides": {"tier": "gold"},
    },
}


def _role_model(invalid: str | None = None) -> dict:
    annotations = {"owner": "platform"}
    if invalid is not None:
        annotations[INVALID_OWNERS_ANNOTATION] = invalid
    return {
        "metadata": {
            "name": "john-loblaw-ca-impersonator",
            "labels": {"gial.lblw.dev/rbac-type": "self-impersonator"},
            "annotations": annotations,
            "resource_version": "12",
            "owner_references": [
                {"uid": "uid-a", "name": "team-a", "kind": "LNamespace", "api_version": "gial.lblw.dev/v1beta1"},
                {"uid": "uid-b", "name": "team-b", "kind": "LNamespace", "api_version": "gial.lblw.dev/v1beta1"},
            ],
        },
        "rules": [
            {
                "verbs": ["impersonate"],
                "resources": ["users"],
                "api_groups": [""],
                "resource_names": ["john@loblaw.ca"],
            }
        ],
    }


class TestConversions:
    def test_desired_state_from_object(self) -> None:
        state = desired_state_from_object(_LNAMESPACE)
        assert state.uid == "uid-team-a"
        assert state.resource_version == "881"
        assert state.istio_revision == "1-20"
        assert state.sudoers == [Subject(name="john@loblaw.ca")]
        assert state.developers == [Subject(name="devs", kind="Group")]
        assert state.namespace_label_overrides == {"tier": "gold"}
        assert state.deletion_timestamp == datetime(2026, 2, 18, 12, 0, 0, tzinfo=UTC)
        assert state.deleting

    def test_invalid_owners_annotation_is_lifted(self) -> None:
        obj = derived_object_from_model(ObjectKind.CLUSTER_ROLE, _role_model(invalid="uid-a"))
        assert [(r.owner_id, r.valid) for r in obj.owners] == [("uid-a", False), ("uid-b", True)]
        assert INVALID_OWNERS_ANNOTATION not in obj.annotations
        assert obj.annotations == {"owner": "platform"}
        assert obj.rules == [
            PolicyRule(verbs=("impersonate",), resources=("users",), resource_names=("john@loblaw.ca",))
        ]
        assert obj.resource_version == "12"

    def test_body_carries_invalid_owners(self) -> None:
        obj = derived_object_from_model(ObjectKind.CLUSTER_ROLE, _role_model(invalid="uid-b,uid-a"))
        body = derived_object_to_body(obj, for_patch=True)
        assert body["metadata"]["annotations"][INVALID_OWNERS_ANNOTATION] == "uid-a,uid-b"
        assert body["metadata"]["resourceVersion"] == "12"
        assert [ref["uid"] for ref in body["metadata"]["ownerReferences"]] == ["uid-a", "uid-b"]
        assert body["rules"][0]["resourceNames"] == ["john@loblaw.ca"]

    def test_patch_clears_annotation_when_all_valid(self) -> None:
        obj = derived_object_from_model(ObjectKind.CLUSTER_ROLE, _role_model())
        assert derived_object_to_body(obj, for_patch=True)["metadata"]["annotations"][
            INVALID_OWNERS_ANNOTATION
        ] is None
        assert INVALID_OWNERS_ANNOTATION not in derived_object_to_body(obj)["metadata"]["annotations"]

    def test_binding_body(self) -> None:
        obj = DerivedObject(
            kind=ObjectKind.ROLE_BINDING,
            name="developer",
            namespace="team-a",
            role_ref=RoleRef(name="admin"),
            subjects=[Subject(name="devs", kind="Group")],
            owners=[OwnerReference(owner_id="uid-a", owner_name="team-a", controller=True)],
        )
        body = derived_object_to_body(obj)
        assert body["metadata"]["namespace"] == "team-a"
        assert body["roleRef"] == {"apiGroup": "rbac.authorization.k8s.io", "kind": "ClusterRole", "name": "admin"}
        assert body["subjects"] == [{"kind": "Group", "name": "devs", "apiGroup": "rbac.authorization.k8s.io"}]
        assert body["metadata"]["ownerReferences"][0]["controller"] is True
        assert "rules" not in body


class TestKubernetesSpecStore:
    async def test_get(self) -> None:
        api = MagicMock()
        api.get_cluster_custom_object = AsyncMock(return_value=_LNAMESPACE)
        store = KubernetesSpecStore(api)

        state = await store.get("team-a")

        assert state.name == "team-a"
        api.get_cluster_custom_object.assert_awaited_once_with("gial.lblw.dev", "v1beta1", "lnamespaces", "team-a")

    async def test_set_finalizers_sends_resource_version(self) -> None:
        api = MagicMock()
        api.patch_cluster_custom_object = AsyncMock(return_value=_LNAMESPACE)
        store = KubernetesSpecStore(api)
        state = DesiredState(uid="uid-team-a", name="team-a", resource_version="880")

        await store.set_finalizers(state, ["gial.lblw.dev/rbac-cleanup"])

        body = api.patch_cluster_custom_object.await_args.args[4]
        assert body == {"metadata": {"finalizers": ["gial.lblw.dev/rbac-cleanup"], "resourceVersion": "880"}}
        assert api.patch_cluster_custom_object.await_args.kwargs["_content_type"] == _MERGE_PATCH

    async def test_set_finalizers_is_sent_as_merge_patch(self) -> None:
        api_client = k8s_client.ApiClient()
        api_client.call_api = AsyncMock(return_value=_LNAMESPACE)
        store = KubernetesSpecStore.from_api_client(api_client)
        state = DesiredState(uid="uid-team-a", name="team-a", resource_version="880")

        try:
            await store.set_finalizers(state, ["gial.lblw.dev/rbac-cleanup"])
        finally:
            await api_client.close()

        call = api_client.call_api.await_args
        method = call.args[1]
        headers = call.args[4] if len(call.args) > 4 else call.kwargs["header_params"]
        assert method == "PATCH"
        assert headers["Content-Type"] == _MERGE_PATCH

    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (ApiException(status=404, reason="Not Found"), NotFoundError),
            (ApiException(status=409, reason="Conflict"), ConflictError),
            (ApiException(status=503, reason="Service Unavailable"), StoreUnavailableError),
            (aiohttp.ClientConnectionError("reset"), StoreUnavailableError),
            (TimeoutError(), StoreUnavailableError),
        ],
    )
    async def test_error_translation(self, exc: Exception, expected: type[Exception]) -> None:
        api = MagicMock()
        api.get_cluster_custom_object = AsyncMock(side_effect=exc)
        store = KubernetesSpecStore(api)

        with pytest.raises(expected):
            await store.get("team-a")


class TestKubernetesObjectStore:
    def _store(self) -> tuple[KubernetesObjectStore, MagicMock, MagicMock]:
        rbac, core = MagicMock(), MagicMock()
        return KubernetesObjectStore(rbac, core), rbac, core

    async def test_get_cluster_role(self) -> None:
        store, rbac, _ = self._store()
        model = MagicMock()
        model.to_dict.return_value = _role_model()
        rbac.read_cluster_role = AsyncMock(return_value=model)

        obj = await store.get(ObjectKind.CLUSTER_ROLE, "john-loblaw-ca-impersonator")

        assert obj.kind == ObjectKind.CLUSTER_ROLE
        assert len(obj.owners) == 2

    async def test_get_missing_namespace(self) -> None:
        store, _, core = self._store()
        core.read_namespace = AsyncMock(side_effect=ApiException(status=404, reason="Not Found"))

        with pytest.raises(NotFoundError):
            await store.get(ObjectKind.NAMESPACE, "team-a")

    async def test_create_role_binding_is_namespaced(self) -> None:
        store, rbac, _ = self._store()
        rbac.create_namespaced_role_binding = AsyncMock(
            return_value={"metadata": {"name": "developer", "namespace": "team-a", "resource_version": "3"}}
        )
        obj = DerivedObject(kind=ObjectKind.ROLE_BINDING, name="developer", namespace="team-a")

        created = await store.create(obj)

        assert created.resource_version == "3"
        assert rbac.create_namespaced_role_binding.await_args.args[0] == "team-a"

    async def test_stale_patch_is_conflict(self) -> None:
        store, rbac, _ = self._store()
        rbac.patch_cluster_role = AsyncMock(side_effect=ApiException(status=409, reason="Conflict"))
        obj = derived_object_from_model(ObjectKind.CLUSTER_ROLE, _role_model())

        with pytest.raises(ConflictError) as exc_info:
            await store.patch(obj)

        assert exc_info.value.retryable

    async def test_list_uses_label_selector(self) -> None:
        store, rbac, _ = self._store()
        rbac.list_cluster_role_binding = AsyncMock(return_value={"items": []})

        result = await store.list(ObjectKind.CLUSTER_ROLE_BINDING, ("gial.lblw.dev/rbac-type", "self-impersonator"))

        assert result == []
        rbac.list_cluster_role_binding.assert_awaited_once_with(
            label_selector="gial.lblw.dev/rbac-type=self-impersonator"
        )

    @pytest.mark.parametrize(
        ("kind", "method", "namespace"),
        [
            (ObjectKind.CLUSTER_ROLE, "patch_cluster_role", ""),
            (ObjectKind.CLUSTER_ROLE_BINDING, "patch_cluster_role_binding", ""),
            (ObjectKind.ROLE_BINDING, "patch_namespaced_role_binding", "team-a"),
            (ObjectKind.NAMESPACE, "patch_namespace", ""),
        ],
    )
    async def test_patches_are_merge_patches(self, kind: ObjectKind, method: str, namespace: str) -> None:
        store, rbac, core = self._store()
        api = core if kind == ObjectKind.NAMESPACE else rbac
        setattr(api, method, AsyncMock(return_value={"metadata": {"name": "team-a", "resource_version": "9"}}))
        obj = DerivedObject(kind=kind, name="team-a", namespace=namespace, resource_version="8")

        await store.patch(obj)

        assert getattr(api, method).await_args.kwargs["_content_type"] == _MERGE_PATCH


class TestServerDefaults:
    """The API server fills in subject apiGroups; reading them back must not look like drift."""

    def test_missing_api_group_defaults_for_users_and_groups(self) -> None:
        state = desired_state_from_object(
            {
                "metadata": {"name": "team-a", "uid": "uid-team-a"},
                "spec": {
                    "sudoers": [{"kind": "User", "name": "john@loblaw.ca"}],
                    "developers": [{"kind": "Group", "name": "devs"}],
                    "managers": [{"kind": "ServiceAccount", "name": "deployer", "namespace": "ci"}],
                },
            }
        )

        assert state.sudoers[0].api_group == RBAC_API_GROUP
        assert state.developers[0].api_group == RBAC_API_GROUP
        assert state.managers[0].api_group == ""

    async def test_steady_state_reconcile_issues_no_patch(self) -> None:
        state = desired_state_from_object(
            {
                "metadata": {"name": "team-a", "uid": "uid-team-a"},
                "spec": {"sudoers": [{"kind": "User", "name": "john@loblaw.ca"}]},
            }
        )
        owner = {
            "uid": "uid-team-a",
            "name": "team-a",
            "kind": "LNamespace",
            "api_version": "gial.lblw.dev/v1beta1",
            "controller": True,
            "block_owner_deletion": True,
        }
        metadata = {
            "name": "team-a-sudoers",
            "labels": {"gial.lblw.dev/rbac-type": "sudoer-impersonator"},
            "annotations": None,
            "owner_references": [owner],
            "resource_version": "41",
        }
        rbac = MagicMock()
        rbac.read_cluster_role = AsyncMock(
            return_value={
                "metadata": metadata,
                "rules": [
                    {
                        "verbs": ["impersonate"],
                        "resources": ["groups"],
                        "api_groups": [""],
                        "resource_names": ["team-a-sudoers"],
                    }
                ],
            }
        )
        rbac.read_cluster_role_binding = AsyncMock(
            return_value={
                "metadata": metadata,
                "role_ref": {"api_group": RBAC_API_GROUP, "kind": "ClusterRole", "name": "team-a-sudoers"},
                "subjects": [
                    {"kind": "User", "name": "john@loblaw.ca", "api_group": RBAC_API_GROUP, "namespace": None}
                ],
            }
        )
        rbac.patch_cluster_role = AsyncMock()
        rbac.patch_cluster_role_binding = AsyncMock()
        planner = RBACPlanner(KubernetesObjectStore(rbac, MagicMock()))

        await planner.update_sudoer_group_impersonators(state)
        await planner.update_sudoer_group_impersonators(state)

        assert rbac.patch_cluster_role.await_count == 0
        assert rbac.patch_cluster_role_binding.await_count == 0
