"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from nsreconciler.models.config import (
    KubernetesConfig,
    LedgerConfig,
    LogConfig,
    ReconcileConfig,
    ReconcilerConfig,
)

_BQ_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"NSRECONCILER_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _validate_identifier(value: str) -> str:
    # dataset and table names are interpolated into query text
    if not _BQ_IDENTIFIER.match(value):
        raise ValueError(f"Invalid BigQuery identifier: {value}")
    return value


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> ReconcilerConfig:
    """Load configuration from NSRECONCILER_* environment variables."""
    return ReconcilerConfig(
        kubernetes=KubernetesConfig(
            in_cluster=_env_bool("KUBE_IN_CLUSTER", True),
            kubeconfig_context=_env("KUBE_CONTEXT", ""),
            api_group=_env("API_GROUP", "gial.lblw.dev"),
            api_version=_env("API_VERSION", "v1beta1"),
            plural=_env("API_PLURAL", "lnamespaces"),
        ),
        ledger=LedgerConfig(
            enabled=_env_bool("LEDGER_ENABLED", True),
            project_id=_env("LEDGER_PROJECT_ID", ""),
            dataset=_validate_identifier(_env("LEDGER_DATASET", "namespaces")),
            table=_validate_identifier(_env("LEDGER_TABLE", "ns_labels")),
        ),
        reconcile=ReconcileConfig(
            cleanup_finalizer_enabled=_env_bool("CLEANUP_FINALIZER_ENABLED", True),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
        ),
    )
