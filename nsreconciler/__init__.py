"""namespace-reconciler: declarative RBAC and billing reconciliation for tenant namespaces."""

__version__ = "0.1.0"
