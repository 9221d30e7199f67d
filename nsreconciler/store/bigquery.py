"""BigQuery-backed billing ledger.

Upsert and delete statements take a single positional parameter: an array of
``STRUCT<NSName STRING, Name STRING, Value STRING>``. The google-cloud-bigquery
client is blocking, so every query runs in the default thread-pool executor.
"""

from __future__ import annotations

import asyncio
from typing import Any

from google.api_core import exceptions as gapi_exceptions
from google.cloud import bigquery

from nsreconciler.errors import ConflictError, StoreUnavailableError
from nsreconciler.models.spec import BillingRow
from nsreconciler.observability.logging import get_logger
from nsreconciler.store.base import LedgerStore

_log = get_logger("store.bigquery")


def rows_parameter(rows: list[BillingRow]) -> bigquery.ArrayQueryParameter:
    """Encode *rows* as the positional ``UNNEST(?)`` array parameter."""
    return bigquery.ArrayQueryParameter(
        None,
        "STRUCT",
        [
            bigquery.StructQueryParameter(
                None,
                bigquery.ScalarQueryParameter("NSName", "STRING", row.ns_name),
                bigquery.ScalarQueryParameter("Name", "STRING", row.name),
                bigquery.ScalarQueryParameter("Value", "STRING", row.value),
            )
            for row in rows
        ],
    )


class BigQueryLedgerStore(LedgerStore):
    """Runs ledger queries against BigQuery.

    Args:
        project_id: GCP project that owns the dataset. An empty string lets
                    the client infer it from the environment.
        client:     Pre-built client; created lazily when omitted.
    """

    def __init__(self, project_id: str = "", client: Any = None) -> None:
        self._project_id = project_id
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = bigquery.Client(project=self._project_id or None)
        return self._client

    def _run(self, query: str, rows: list[BillingRow] | None) -> list[dict[str, str]]:
        job_config = bigquery.QueryJobConfig()
        if rows is not None:
            job_config.query_parameters = [rows_parameter(rows)]
        result = self._get_client().query(query, job_config=job_config).result()
        return [{str(k): "" if v is None else str(v) for k, v in row.items()} for row in result]

    async def run_query(self, query: str, rows: list[BillingRow] | None = None) -> list[dict[str, str]]:
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, self._run, query, rows)
        except gapi_exceptions.Conflict as exc:
            raise ConflictError(f"ledger write conflict: {exc.message}") from exc
        except gapi_exceptions.GoogleAPIError as exc:
            _log.warning("ledger_query_failed", error=str(exc), rows=len(rows or []))
            raise StoreUnavailableError(f"ledger query failed: {exc}") from exc
