"""Prometheus metrics for the reconcile pipeline.

Every metric lives on the default registry so an embedding process can
expose them with ``prometheus_client.start_http_server``.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

reconciles_total = Counter(
    "nsreconciler_reconciles_total",
    "Reconcile invocations by outcome.",
    ["outcome"],
)

reconcile_stage_failures_total = Counter(
    "nsreconciler_reconcile_stage_failures_total",
    "Reconcile aborts by the stage that failed.",
    ["stage", "retryable"],
)

reconcile_duration_seconds = Histogram(
    "nsreconciler_reconcile_duration_seconds",
    "Wall time of a single reconcile invocation.",
)

object_writes_total = Counter(
    "nsreconciler_object_writes_total",
    "Derived object writes by kind and operation.",
    ["kind", "operation"],
)

ledger_rows_total = Counter(
    "nsreconciler_ledger_rows_total",
    "Billing ledger rows written by operation.",
    ["operation"],
)

owner_references_invalidated_total = Counter(
    "nsreconciler_owner_references_invalidated_total",
    "Shared-object owner references flipped to invalid.",
)
