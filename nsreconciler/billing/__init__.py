"""Billing ledger reconciliation.

Submodules:
    queries  -- The fixed MERGE / DELETE / SELECT templates run against the ledger.
    planner  -- Pure desired-vs-current diff and the async reconciler applying it.
"""

from nsreconciler.billing.planner import BillingPlan, BillingReconciler, plan

__all__ = ["BillingPlan", "BillingReconciler", "plan"]
