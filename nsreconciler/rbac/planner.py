"""RBACPlanner: desired RBAC objects of one DesiredState.

Grants and their owners:

    self-impersonator    ClusterRole + ClusterRoleBinding per sudoer, shared by
                         every DesiredState listing that sudoer.
    sudoer-impersonator  ClusterRole + ClusterRoleBinding letting sudoers
                         impersonate the tenant's sudoer group.
    sudoer-permissions   Sudoer group may edit its own LNamespace and is
                         cluster-admin inside the tenant namespace.
    developer-permissions  Developers get ``admin`` inside the tenant namespace.
    manager-permissions  Managers may update/patch/delete their own LNamespace.

Everything except self-impersonator grants is controlled by exactly one
DesiredState and removed by the cluster's ownership cascade. Self-impersonator
grants carry one OwnerReference per DesiredState; this planner only ever
invalidates its own entry and leaves physical deletion to an external
collector once no valid entry remains.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from nsreconciler.models.rbac import (
    DerivedObject,
    ObjectKind,
    OwnerReference,
    PolicyRule,
    RBACType,
    RoleRef,
)
from nsreconciler.models.spec import DesiredState, Subject
from nsreconciler.observability.logging import get_logger
from nsreconciler.observability.metrics import object_writes_total, owner_references_invalidated_total
from nsreconciler.ownership import OwnershipTracker
from nsreconciler.rbac import naming
from nsreconciler.store.base import DerivedObjectStore
from nsreconciler.store.mutate import OperationResult, create_or_patch

_logger = get_logger("rbac.planner")

_IMPERSONATE = ("impersonate",)
_EDIT_VERBS = ("update", "patch", "delete")

Stage = tuple[str, Callable[[DesiredState], Awaitable[None]]]


def _owned_fields(
    obj: DerivedObject,
    rbac_type: RBACType,
    owner: OwnerReference,
    *,
    rules: list[PolicyRule] | None = None,
    role_ref: RoleRef | None = None,
    subjects: list[Subject] | None = None,
) -> None:
    """Overwrite only the fields this planner owns on *obj*."""
    obj.labels[naming.LABEL_KEY] = str(rbac_type)
    if rules is not None:
        obj.rules = list(rules)
    if role_ref is not None:
        obj.role_ref = role_ref
    if subjects is not None:
        obj.subjects = list(subjects)
    tracker = OwnershipTracker(obj.owners)
    if owner.controller:
        tracker.claim_controller(owner)
    else:
        tracker.claim(owner)
    obj.owners = tracker.refs


def _subject_identity(obj: DerivedObject) -> str | None:
    """Identity a self-impersonator object was created for."""
    if obj.kind == ObjectKind.CLUSTER_ROLE:
        if obj.rules and obj.rules[0].resource_names:
            return obj.rules[0].resource_names[0]
        return None
    if obj.subjects:
        return obj.subjects[0].name
    return None


class RBACPlanner:
    """Computes and applies every RBAC object for a DesiredState.

    Args:
        store:       Store holding the derived objects.
        api_group:   API group of the LNamespace resource (used in owner
                     references and the manager role's rule).
        api_version: Version of the LNamespace resource.
        plural:      Resource name of LNamespaces in RBAC rules.
    """

    def __init__(
        self,
        store: DerivedObjectStore,
        api_group: str = "gial.lblw.dev",
        api_version: str = "v1beta1",
        plural: str = "lnamespaces",
    ) -> None:
        self._store = store
        self._api_group = api_group
        self._api_version = api_version
        self._plural = plural

    def owner_reference(self, state: DesiredState, controller: bool = False) -> OwnerReference:
        return OwnerReference(
            owner_id=state.uid,
            owner_name=state.name,
            api_version=f"{self._api_group}/{self._api_version}",
            controller=controller,
        )

    def stages(self) -> list[Stage]:
        """Planning stages in the order the reconciler runs them."""
        return [
            ("self_impersonators", self.update_self_impersonators),
            ("sudoer_group", self.update_sudoer_group_impersonators),
            ("sudoer_permissions", self.update_sudoer_permissions),
            ("developer_permissions", self.update_developer_permissions),
            ("manager_permissions", self.update_manager_permissions),
        ]

    async def _upsert(
        self,
        state: DesiredState,
        kind: ObjectKind,
        name: str,
        mutate: Callable[[DerivedObject], None],
        namespace: str = "",
    ) -> OperationResult:
        _, result = await create_or_patch(self._store, kind, name, mutate, namespace=namespace)
        if result is not OperationResult.UNCHANGED:
            _logger.info(
                "rbac_object_written",
                namespace=state.name,
                kind=str(kind),
                name=name,
                object_namespace=namespace or None,
                result=str(result),
            )
        return result

    # ------------------------------------------------------------------
    # Self-impersonator grants (shared)
    # ------------------------------------------------------------------

    async def update_self_impersonators(self, state: DesiredState) -> None:
        """Upsert a self-impersonation grant per sudoer, then release stale ones."""
        owner = self.owner_reference(state)
        for subject in state.sudoers:
            name = naming.self_impersonator_name(subject.name)
            rule = PolicyRule(verbs=_IMPERSONATE, resources=("users",), resource_names=(subject.name,))

            def _role(obj: DerivedObject, rule: PolicyRule = rule) -> None:
                _owned_fields(obj, RBACType.SELF_IMPERSONATOR, owner, rules=[rule])

            def _binding(obj: DerivedObject, subject: Subject = subject, role_name: str = name) -> None:
                _owned_fields(
                    obj,
                    RBACType.SELF_IMPERSONATOR,
                    owner,
                    role_ref=RoleRef(name=role_name),
                    subjects=[subject],
                )

            await self._upsert(state, ObjectKind.CLUSTER_ROLE, name, _role)
            await self._upsert(state, ObjectKind.CLUSTER_ROLE_BINDING, name, _binding)

        await self.release_self_impersonators(state, {subject.name for subject in state.sudoers})

    async def release_self_impersonators(self, state: DesiredState, keep: set[str]) -> int:
        """Invalidate this DesiredState's entry on grants for identities outside *keep*.

        Scans every self-impersonator role and binding cluster-wide. Only the
        entry whose owner is *state* can change; an object is written back
        only when that entry flipped. Returns the number of objects written.
        """
        selector = (naming.LABEL_KEY, str(RBACType.SELF_IMPERSONATOR))
        written = 0
        for kind in (ObjectKind.CLUSTER_ROLE, ObjectKind.CLUSTER_ROLE_BINDING):
            for obj in await self._store.list(kind, selector):
                tracker = OwnershipTracker(obj.owners)
                if tracker.entry_for(state.uid) is None:
                    continue
                identity = _subject_identity(obj)
                if identity is not None and identity in keep:
                    continue
                if not tracker.release(state.uid):
                    continue
                obj.owners = tracker.refs
                await self._store.patch(obj)
                written += 1
                object_writes_total.labels(kind=str(kind), operation="patch").inc()
                owner_references_invalidated_total.inc()
                _logger.info(
                    "owner_reference_invalidated",
                    namespace=state.name,
                    kind=str(kind),
                    name=obj.name,
                    identity=identity,
                    orphaned=tracker.is_orphaned(),
                )
        return written

    # ------------------------------------------------------------------
    # Singly-owned grants
    # ------------------------------------------------------------------

    async def update_sudoer_group_impersonators(self, state: DesiredState) -> None:
        owner = self.owner_reference(state, controller=True)
        group = state.sudoers_group_name
        rule = PolicyRule(verbs=_IMPERSONATE, resources=("groups",), resource_names=(group,))

        def _role(obj: DerivedObject) -> None:
            _owned_fields(obj, RBACType.SUDOER_IMPERSONATOR, owner, rules=[rule])

        def _binding(obj: DerivedObject) -> None:
            _owned_fields(
                obj,
                RBACType.SUDOER_IMPERSONATOR,
                owner,
                role_ref=RoleRef(name=group),
                subjects=state.sudoers,
            )

        await self._upsert(state, ObjectKind.CLUSTER_ROLE, group, _role)
        await self._upsert(state, ObjectKind.CLUSTER_ROLE_BINDING, group, _binding)

    async def update_sudoer_permissions(self, state: DesiredState) -> None:
        """Sudoer group may edit its own LNamespace and is cluster-admin in its namespace."""
        owner = self.owner_reference(state, controller=True)
        group_subject = Subject(name=state.sudoers_group_name, kind="Group")

        def _editor(obj: DerivedObject) -> None:
            _owned_fields(
                obj,
                RBACType.SUDOER_PERMISSIONS,
                owner,
                role_ref=RoleRef(name=naming.editor_role_name(state)),
                subjects=[group_subject],
            )

        def _admin(obj: DerivedObject) -> None:
            _owned_fields(
                obj,
                RBACType.SUDOER_PERMISSIONS,
                owner,
                role_ref=RoleRef(name=naming.CLUSTER_ADMIN_ROLE),
                subjects=[group_subject],
            )

        await self._upsert(
            state, ObjectKind.CLUSTER_ROLE_BINDING, naming.sudoer_editor_binding_name(state), _editor
        )
        await self._upsert(
            state, ObjectKind.ROLE_BINDING, state.sudoers_group_name, _admin, namespace=state.name
        )

    async def update_developer_permissions(self, state: DesiredState) -> None:
        owner = self.owner_reference(state, controller=True)

        def _binding(obj: DerivedObject) -> None:
            _owned_fields(
                obj,
                RBACType.DEVELOPER_PERMISSIONS,
                owner,
                role_ref=RoleRef(name=naming.DEVELOPER_ROLE),
                subjects=state.developers,
            )

        await self._upsert(
            state, ObjectKind.ROLE_BINDING, naming.DEVELOPER_BINDING, _binding, namespace=state.name
        )

    async def update_manager_permissions(self, state: DesiredState) -> None:
        owner = self.owner_reference(state, controller=True)
        role_name = naming.editor_role_name(state)
        rule = PolicyRule(
            verbs=_EDIT_VERBS,
            resources=(self._plural,),
            api_groups=(self._api_group,),
            resource_names=(state.name,),
        )

        def _role(obj: DerivedObject) -> None:
            _owned_fields(obj, RBACType.MANAGER_PERMISSIONS, owner, rules=[rule])

        def _binding(obj: DerivedObject) -> None:
            _owned_fields(
                obj,
                RBACType.MANAGER_PERMISSIONS,
                owner,
                role_ref=RoleRef(name=role_name),
                subjects=state.managers,
            )

        await self._upsert(state, ObjectKind.CLUSTER_ROLE, role_name, _role)
        await self._upsert(state, ObjectKind.CLUSTER_ROLE_BINDING, naming.manager_binding_name(state), _binding)
