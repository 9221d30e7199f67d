"""Application bootstrap for namespace-reconciler.

Wires components in dependency order:
    config → logging → K8s client → stores → planners → reconciler

The process embedding this app owns scheduling: it calls
``ReconcilerApp.reconcile(key)`` whenever an LNamespace changes and retries
on retryable errors. ``stop()`` is safe to call on an app that never started.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from nsreconciler.billing.planner import BillingReconciler
from nsreconciler.config import load_config
from nsreconciler.models.config import ReconcilerConfig
from nsreconciler.namespace import NamespacePlanner
from nsreconciler.observability.logging import get_logger, setup_logging
from nsreconciler.rbac.planner import RBACPlanner
from nsreconciler.reconciler import Reconciler, ReconcileResult
from nsreconciler.store.base import DerivedObjectStore, LedgerStore, SpecStore

if TYPE_CHECKING:
    import structlog


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


def build_reconciler(
    config: ReconcilerConfig,
    spec_store: SpecStore,
    object_store: DerivedObjectStore,
    ledger: LedgerStore | None = None,
) -> Reconciler:
    """Assemble a Reconciler from already-built stores.

    The billing stage is disabled when *ledger* is None or the ledger is
    turned off in *config*.
    """
    k8s = config.kubernetes
    billing = None
    if ledger is not None and config.ledger.enabled:
        billing = BillingReconciler(ledger, dataset=config.ledger.dataset, table=config.ledger.table)
    return Reconciler(
        spec_store=spec_store,
        namespace_planner=NamespacePlanner(object_store, api_version=f"{k8s.api_group}/{k8s.api_version}"),
        rbac_planner=RBACPlanner(
            object_store,
            api_group=k8s.api_group,
            api_version=k8s.api_version,
            plural=k8s.plural,
        ),
        billing=billing,
        cleanup_finalizer=config.reconcile.cleanup_finalizer_enabled,
    )


class ReconcilerApp:
    """Owns the Kubernetes client, the stores and the Reconciler."""

    def __init__(self, config: ReconcilerConfig | None = None) -> None:
        self.config = config
        self.reconciler: Reconciler | None = None
        self._api_client: Any = None
        self._log: structlog.stdlib.BoundLogger | None = None

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a component cannot start.
        """
        if self.config is None:
            self.config = load_config()

        setup_logging(self.config.log.level)
        self._log = get_logger("app")
        self._log.info("nsreconciler starting", version=_version())

        await self._start_k8s_client()
        spec_store, object_store = self._start_stores()
        ledger = self._start_ledger()

        try:
            self.reconciler = build_reconciler(self.config, spec_store, object_store, ledger)
        except Exception as exc:
            raise _ComponentError("reconciler", exc) from exc
        self._log.info("nsreconciler started", billing=ledger is not None)

    async def reconcile(self, key: str) -> ReconcileResult:
        if self.reconciler is None:
            raise RuntimeError("ReconcilerApp.start() must be awaited before reconcile()")
        return await self.reconciler.reconcile(key)

    async def _start_k8s_client(self) -> None:
        """Configure kubernetes-asyncio from the service account or a kubeconfig."""
        assert self._log is not None
        assert self.config is not None
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            if self.config.kubernetes.in_cluster:
                # load_incluster_config() is synchronous in kubernetes-asyncio
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            else:
                await k8s_config.load_kube_config(context=self.config.kubernetes.kubeconfig_context or None)
                self._log.info("k8s client configured from kubeconfig")
            self._api_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    def _start_stores(self) -> tuple[SpecStore, DerivedObjectStore]:
        assert self.config is not None
        try:
            from nsreconciler.store.kubernetes import KubernetesObjectStore, KubernetesSpecStore

            k8s = self.config.kubernetes
            spec_store = KubernetesSpecStore.from_api_client(
                self._api_client, group=k8s.api_group, version=k8s.api_version, plural=k8s.plural
            )
            object_store = KubernetesObjectStore.from_api_client(self._api_client)
        except Exception as exc:
            raise _ComponentError("stores", exc) from exc
        return spec_store, object_store

    def _start_ledger(self) -> LedgerStore | None:
        assert self._log is not None
        assert self.config is not None
        if not self.config.ledger.enabled:
            self._log.info("billing ledger disabled (ledger.enabled=false)")
            return None
        try:
            from nsreconciler.store.bigquery import BigQueryLedgerStore

            ledger = BigQueryLedgerStore(project_id=self.config.ledger.project_id)
        except Exception as exc:
            raise _ComponentError("ledger", exc) from exc
        self._log.info(
            "billing ledger configured",
            dataset=self.config.ledger.dataset,
            table=self.config.ledger.table,
        )
        return ledger

    async def stop(self) -> None:
        """Close the kubernetes-asyncio connection pool."""
        if self._api_client is None:
            return
        log = self._log or get_logger("app")
        try:
            await self._api_client.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))
        self._api_client = None
        self.reconciler = None
        log.info("nsreconciler stopped")


def _version() -> str:
    from nsreconciler import __version__

    return __version__
