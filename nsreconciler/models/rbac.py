"""Derived RBAC object data structures."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import StrEnum

from nsreconciler.models.spec import Subject

RBAC_API_GROUP = "rbac.authorization.k8s.io"


class ObjectKind(StrEnum):
    """Kinds of derived objects written by the reconciler."""

    CLUSTER_ROLE = "ClusterRole"
    CLUSTER_ROLE_BINDING = "ClusterRoleBinding"
    ROLE_BINDING = "RoleBinding"
    NAMESPACE = "Namespace"


class RBACType(StrEnum):
    """Classification tag values used for garbage-collection discovery."""

    SELF_IMPERSONATOR = "self-impersonator"
    SUDOER_IMPERSONATOR = "sudoer-impersonator"
    SUDOER_PERMISSIONS = "sudoer-permissions"
    MANAGER_PERMISSIONS = "manager-permissions"
    DEVELOPER_PERMISSIONS = "developer-permissions"


@dataclass(frozen=True)
class PolicyRule:
    """A single RBAC policy rule."""

    verbs: tuple[str, ...]
    resources: tuple[str, ...]
    api_groups: tuple[str, ...] = ("",)
    resource_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class RoleRef:
    """Reference from a binding to the role it grants."""

    name: str
    kind: str = "ClusterRole"
    api_group: str = RBAC_API_GROUP


@dataclass(frozen=True)
class OwnerReference:
    """Records that a DesiredState currently requires a derived object.

    ``valid`` is flipped to False when the owner no longer needs a shared
    object; the entry itself is kept so other owners' entries are untouched
    and an external collector can see the object lost this owner.
    """

    owner_id: str
    owner_name: str
    kind: str = "LNamespace"
    api_version: str = "gial.lblw.dev/v1beta1"
    controller: bool = False
    valid: bool = True


@dataclass
class DerivedObject:
    """An object created and maintained on behalf of one or more DesiredStates.

    Roles use ``rules``; bindings use ``role_ref`` and ``subjects``;
    namespaces use only metadata.
    """

    kind: ObjectKind
    name: str
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    rules: list[PolicyRule] = field(default_factory=list)
    role_ref: RoleRef | None = None
    subjects: list[Subject] = field(default_factory=list)
    owners: list[OwnerReference] = field(default_factory=list)
    resource_version: str = ""

    @property
    def key(self) -> tuple[str, str, str]:
        """Return the unique store key for this object."""
        return (str(self.kind), self.namespace, self.name)

    def copy(self) -> DerivedObject:
        return copy.deepcopy(self)

    def same_content(self, other: DerivedObject) -> bool:
        """True when every field except ``resource_version`` matches."""
        return (
            self.kind == other.kind
            and self.name == other.name
            and self.namespace == other.namespace
            and self.labels == other.labels
            and self.annotations == other.annotations
            and self.rules == other.rules
            and self.role_ref == other.role_ref
            and self.subjects == other.subjects
            and self.owners == other.owners
        )
