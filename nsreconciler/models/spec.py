"""Desired-state and billing ledger data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

# Kubernetes' well-known finalizer asking the garbage collector to orphan dependents.
ORPHAN_FINALIZER = "orphan"


@dataclass(frozen=True)
class Subject:
    """An RBAC subject: a user, group or service account.

    ``name`` is the subject's identity; impersonation grants and
    self-impersonator keys are derived from it.
    """

    name: str
    kind: str = "User"
    api_group: str = "rbac.authorization.k8s.io"
    namespace: str = ""


@dataclass
class DesiredState:
    """A tenant's wanted RBAC and billing configuration (an ``LNamespace``).

    Created and updated by an external API. The reconciler only reads it,
    apart from managing its own cleanup finalizer.
    """

    uid: str
    name: str
    finalizers: list[str] = field(default_factory=list)
    billing: dict[str, str] = field(default_factory=dict)
    istio_revision: str = ""
    sudoers: list[Subject] = field(default_factory=list)
    developers: list[Subject] = field(default_factory=list)
    managers: list[Subject] = field(default_factory=list)
    namespace_label_overrides: dict[str, str] = field(default_factory=dict)
    deletion_timestamp: datetime | None = None
    resource_version: str = ""

    @property
    def sudoers_group_name(self) -> str:
        """Name of the group every sudoer of this tenant may impersonate."""
        return f"{self.name}-sudoers"

    @property
    def orphaned(self) -> bool:
        return ORPHAN_FINALIZER in self.finalizers

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None


@dataclass(frozen=True)
class BillingRow:
    """A (tenant, entry, value) row in the billing ledger."""

    ns_name: str
    name: str
    value: str = ""
