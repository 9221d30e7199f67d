"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class KubernetesConfig:
    """Kubernetes API access configuration."""

    in_cluster: bool = True
    kubeconfig_context: str = ""
    api_group: str = "gial.lblw.dev"
    api_version: str = "v1beta1"
    plural: str = "lnamespaces"


@dataclass
class LedgerConfig:
    """Billing ledger (BigQuery) configuration."""

    enabled: bool = True
    project_id: str = ""
    dataset: str = "namespaces"
    table: str = "ns_labels"


@dataclass
class ReconcileConfig:
    """Reconcile behaviour toggles."""

    cleanup_finalizer_enabled: bool = True


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"


@dataclass
class ReconcilerConfig:
    """Top-level namespace-reconciler configuration."""

    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    log: LogConfig = field(default_factory=LogConfig)
