"""Ledger query templates.

The upsert and delete statements take exactly one positional parameter: an
array of ``STRUCT<NSName, Name, Value>`` rows.
"""

from __future__ import annotations

UPSERT_TEMPLATE = (
    "MERGE {dataset}.{table} T USING (SELECT * FROM UNNEST(?)) S "
    "ON T.ns_name=S.NSName AND T.name=S.Name "
    "WHEN MATCHED THEN UPDATE SET value=S.value "
    "WHEN NOT MATCHED THEN INSERT (name,value,ns_name) VALUES (S.Name,S.Value,S.NSName)"
)

DELETE_TEMPLATE = (
    "DELETE {dataset}.{table} T "
    "WHERE EXISTS (SELECT * FROM UNNEST(?) AS S WHERE T.ns_name=S.NSName AND T.name=S.Name)"
)

# TODO: bind ns_name as a query parameter once LedgerStore.run_query accepts scalar params.
LOOKUP_TEMPLATE = "SELECT * FROM {dataset}.{table} WHERE ns_name='{key}'"


def upsert_query(dataset: str, table: str) -> str:
    return UPSERT_TEMPLATE.format(dataset=dataset, table=table)


def delete_query(dataset: str, table: str) -> str:
    return DELETE_TEMPLATE.format(dataset=dataset, table=table)


def lookup_query(dataset: str, table: str, key: str) -> str:
    """Point lookup of every row for tenant *key*.

    Tenant names follow Kubernetes DNS-label rules, which never contain a
    quote, so *key* is interpolated directly.
    """
    if "'" in key:
        raise ValueError(f"Invalid tenant name for ledger lookup: {key!r}")
    return LOOKUP_TEMPLATE.format(dataset=dataset, table=table, key=key)
