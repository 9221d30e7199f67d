"""Core data structures for namespace-reconciler."""

from nsreconciler.models.config import ReconcilerConfig
from nsreconciler.models.rbac import (
    DerivedObject,
    ObjectKind,
    OwnerReference,
    PolicyRule,
    RBACType,
    RoleRef,
)
from nsreconciler.models.spec import ORPHAN_FINALIZER, BillingRow, DesiredState, Subject

__all__ = [
    "ORPHAN_FINALIZER",
    "BillingRow",
    "DerivedObject",
    "DesiredState",
    "ObjectKind",
    "OwnerReference",
    "PolicyRule",
    "RBACType",
    "ReconcilerConfig",
    "RoleRef",
    "Subject",
]
