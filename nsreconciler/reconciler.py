"""Reconciler driver: one reconcile of one DesiredState key.

Order of operations:

    1. fetch      -- SpecStore.get(key); a missing object is a successful no-op.
    2. orphan gate -- an ``orphan`` finalizer suppresses every derived mutation.
    3. deletion   -- a DesiredState being deleted releases its shared grants and
                     ledger rows, then drops the cleanup finalizer.
    4. finalizer  -- the cleanup finalizer is added when missing.
    5. stages     -- namespace, billing, then each RBAC stage in order.

The first failing stage aborts the rest. Mutations already applied are left in
place: each stage is idempotent, so the scheduler's next attempt picks up
where this one stopped. The driver never retries by itself.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from nsreconciler.billing.planner import BillingReconciler
from nsreconciler.errors import NotFoundError, ReconcileStageError
from nsreconciler.models.spec import DesiredState
from nsreconciler.namespace import NamespacePlanner
from nsreconciler.observability.logging import get_logger, reconcile_context
from nsreconciler.observability.metrics import (
    reconcile_duration_seconds,
    reconcile_stage_failures_total,
    reconciles_total,
)
from nsreconciler.rbac.planner import RBACPlanner
from nsreconciler.store.base import SpecStore

_logger = get_logger("reconciler")

CLEANUP_FINALIZER = "gial.lblw.dev/rbac-cleanup"


class Outcome(StrEnum):
    """How a successful reconcile ended."""

    RECONCILED = "reconciled"
    NOT_FOUND = "not_found"
    ORPHANED = "orphaned"
    DELETING = "deleting"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class ReconcileResult:
    key: str
    outcome: Outcome


class Reconciler:
    """Runs every planner for a DesiredState, short-circuiting on failure.

    Args:
        spec_store:        Source of DesiredState objects.
        namespace_planner: Keeps the tenant Namespace in shape.
        rbac_planner:      Computes and applies RBAC grants.
        billing:           Ledger reconciler; None disables the billing stage.
        cleanup_finalizer: Add and honour the deletion cleanup finalizer.
    """

    def __init__(
        self,
        spec_store: SpecStore,
        namespace_planner: NamespacePlanner,
        rbac_planner: RBACPlanner,
        billing: BillingReconciler | None = None,
        cleanup_finalizer: bool = True,
    ) -> None:
        self._spec_store = spec_store
        self._namespace = namespace_planner
        self._rbac = rbac_planner
        self._billing = billing
        self._cleanup_finalizer = cleanup_finalizer

    async def reconcile(self, key: str) -> ReconcileResult:
        """Converge the derived state of DesiredState *key*.

        Raises:
            ReconcileStageError: a stage failed; ``retryable`` tells the
                scheduler whether a later attempt can succeed.
        """
        t_start = time.monotonic()
        try:
            with reconcile_context(key):
                result = await self._reconcile(key)
        except ReconcileStageError:
            reconciles_total.labels(outcome="error").inc()
            raise
        finally:
            reconcile_duration_seconds.observe(time.monotonic() - t_start)
        reconciles_total.labels(outcome=str(result.outcome)).inc()
        return result

    async def _reconcile(self, key: str) -> ReconcileResult:
        try:
            state = await self._spec_store.get(key)
        except NotFoundError:
            _logger.info("namespace not found; continuing as if deleted")
            return ReconcileResult(key, Outcome.NOT_FOUND)
        except Exception as exc:
            raise self._stage_failed("fetch", exc) from exc

        if state.orphaned:
            _logger.info("namespace is to be orphaned; leaving dependents untouched")
            return ReconcileResult(key, Outcome.ORPHANED)

        if state.deleting:
            return await self._finalize(state)

        if self._cleanup_finalizer and CLEANUP_FINALIZER not in state.finalizers:
            state = await self._run_stage("finalizer", self._add_finalizer, state)

        await self._run_stage("namespace", self._namespace.update_namespace, state)
        if self._billing is not None:
            await self._run_stage("billing", self._billing.reconcile, state)
        for stage, fn in self._rbac.stages():
            await self._run_stage(stage, fn, state)

        _logger.debug("reconcile complete")
        return ReconcileResult(key, Outcome.RECONCILED)

    async def _finalize(self, state: DesiredState) -> ReconcileResult:
        """Release everything the DesiredState holds before it disappears."""
        if CLEANUP_FINALIZER not in state.finalizers:
            _logger.info("namespace is being deleted without cleanup finalizer")
            return ReconcileResult(state.name, Outcome.DELETING)

        await self._run_stage("release_self_impersonators", self._release_all, state)
        billing = self._billing
        if billing is not None:
            await self._run_stage("billing_purge", lambda s: billing.purge(s.name), state)
        await self._run_stage("finalizer", self._remove_finalizer, state)
        _logger.info("namespace finalized")
        return ReconcileResult(state.name, Outcome.FINALIZED)

    async def _run_stage(
        self,
        stage: str,
        fn: Callable[[DesiredState], Awaitable[Any]],
        state: DesiredState,
    ) -> Any:
        try:
            return await fn(state)
        except Exception as exc:
            raise self._stage_failed(stage, exc) from exc

    @staticmethod
    def _stage_failed(stage: str, exc: Exception) -> ReconcileStageError:
        error = ReconcileStageError(stage, exc)
        reconcile_stage_failures_total.labels(stage=stage, retryable=str(error.retryable).lower()).inc()
        _logger.error("reconcile_stage_failed", stage=stage, error=str(exc), retryable=error.retryable)
        return error

    async def _add_finalizer(self, state: DesiredState) -> DesiredState:
        return await self._spec_store.set_finalizers(state, [*state.finalizers, CLEANUP_FINALIZER])

    async def _remove_finalizer(self, state: DesiredState) -> DesiredState:
        remaining = [f for f in state.finalizers if f != CLEANUP_FINALIZER]
        return await self._spec_store.set_finalizers(state, remaining)

    async def _release_all(self, state: DesiredState) -> int:
        return await self._rbac.release_self_impersonators(state, keep=set())
