"""RBAC planning for tenant namespaces.

Submodules:
    naming   -- Deterministic names and classification labels of derived objects.
    planner  -- RBACPlanner: upserts every grant of a DesiredState and releases
                shared self-impersonator grants it no longer needs.
"""

from nsreconciler.rbac.naming import LABEL_KEY, slug
from nsreconciler.rbac.planner import RBACPlanner

__all__ = ["LABEL_KEY", "RBACPlanner", "slug"]
