"""Deterministic names for derived RBAC objects.

Every name is a pure function of a subject identity or of the owning
DesiredState's name, so any reconcile of any DesiredState computes the same
key for the same grant.
"""

from __future__ import annotations

from nsreconciler.models.spec import DesiredState

# Label carrying the RBACType classification of every derived object.
LABEL_KEY = "gial.lblw.dev/rbac-type"

CLUSTER_ADMIN_ROLE = "cluster-admin"
DEVELOPER_ROLE = "admin"
DEVELOPER_BINDING = "developer"


def slug(identity: str) -> str:
    """Return a resource-name-safe slug of a subject identity.

    >>> slug("john_doe@loblaw.ca")
    'john-doe-loblaw-ca'
    """
    return identity.replace("_", "-").replace("@", "-").replace(".", "-")


def self_impersonator_name(identity: str) -> str:
    return slug(identity) + "-impersonator"


def sudoer_editor_binding_name(state: DesiredState) -> str:
    return f"{state.name}-sudoeditor"


def editor_role_name(state: DesiredState) -> str:
    return f"{state.name}-editor"


def manager_binding_name(state: DesiredState) -> str:
    return f"{state.name}-manager"
