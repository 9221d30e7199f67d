"""Billing ledger diff and application.

``plan`` is a pure function of the desired billing map and the rows currently
in the ledger. ``BillingReconciler`` reads the current rows, plans, and
applies at most one batched upsert and one batched delete. Each call
recomputes the diff from the ledger, so a failed run can simply be retried.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from nsreconciler.billing.queries import delete_query, lookup_query, upsert_query
from nsreconciler.models.spec import BillingRow, DesiredState
from nsreconciler.observability.logging import get_logger
from nsreconciler.observability.metrics import ledger_rows_total
from nsreconciler.store.base import LedgerStore

_logger = get_logger("billing.planner")


@dataclass
class BillingPlan:
    """Rows to upsert and rows to delete for one tenant."""

    upserts: list[BillingRow] = field(default_factory=list)
    deletes: list[BillingRow] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.upserts and not self.deletes


def plan(ns_name: str, desired: dict[str, str], current_rows: list[BillingRow]) -> BillingPlan:
    """Diff *desired* against *current_rows*.

    An entry is upserted when it is missing or its value differs; current
    entries absent from *desired* are deleted. A name is never both upserted
    and deleted. Results are sorted by entry name.
    """
    current = {row.name: row.value for row in current_rows}
    to_delete = set(current)

    upserts: list[BillingRow] = []
    for name, value in desired.items():
        if name not in current or current[name] != value:
            upserts.append(BillingRow(ns_name=ns_name, name=name, value=value))
        to_delete.discard(name)

    deletes = [BillingRow(ns_name=ns_name, name=name) for name in sorted(to_delete)]
    upserts.sort(key=lambda row: row.name)
    return BillingPlan(upserts=upserts, deletes=deletes)


def _rows_from_result(result: list[dict[str, str]]) -> list[BillingRow]:
    return [
        BillingRow(
            ns_name=str(row.get("ns_name", "")),
            name=str(row.get("name", "")),
            value=str(row.get("value", "")),
        )
        for row in result
    ]


class BillingReconciler:
    """Converges a tenant's ledger rows onto its billing map.

    Args:
        ledger:  Store executing the ledger queries.
        dataset: Ledger dataset name.
        table:   Ledger table name.
    """

    def __init__(self, ledger: LedgerStore, dataset: str, table: str) -> None:
        self._ledger = ledger
        self._dataset = dataset
        self._table = table

    async def current_rows(self, ns_name: str) -> list[BillingRow]:
        result = await self._ledger.run_query(lookup_query(self._dataset, self._table, ns_name))
        return _rows_from_result(result)

    async def reconcile(self, state: DesiredState) -> BillingPlan:
        """Apply the diff between ``state.billing`` and the ledger."""
        current = await self.current_rows(state.name)
        billing_plan = plan(state.name, state.billing, current)
        await self._apply(state.name, billing_plan)
        return billing_plan

    async def purge(self, ns_name: str) -> BillingPlan:
        """Delete every ledger row of *ns_name*."""
        current = await self.current_rows(ns_name)
        billing_plan = plan(ns_name, {}, current)
        await self._apply(ns_name, billing_plan)
        return billing_plan

    async def _apply(self, ns_name: str, billing_plan: BillingPlan) -> None:
        if billing_plan.upserts:
            await self._ledger.run_query(upsert_query(self._dataset, self._table), billing_plan.upserts)
            ledger_rows_total.labels(operation="upsert").inc(len(billing_plan.upserts))
        if billing_plan.deletes:
            await self._ledger.run_query(delete_query(self._dataset, self._table), billing_plan.deletes)
            ledger_rows_total.labels(operation="delete").inc(len(billing_plan.deletes))
        if billing_plan.empty:
            _logger.debug("billing_unchanged", namespace=ns_name)
        else:
            _logger.info(
                "billing_updated",
                namespace=ns_name,
                upserts=[row.name for row in billing_plan.upserts],
                deletes=[row.name for row in billing_plan.deletes],
            )
