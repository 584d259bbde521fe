"""Public API for snowquery.

:func:`query_db` is the one function most users need.  It resolves a named
connection from the credential file (explicit arguments win), runs the query
on Snowflake, Postgres, Redshift, SQLite or DuckDB and returns a pandas
DataFrame, or, when ``cache_table_name`` is given, streams the result
into the local DuckDB cache and returns a confirmation message.
"""

from __future__ import annotations

from typing import Optional, Union

import pandas as pd

from .cache import cache_query, confirmation_message
from .config import (
    SnowquerySettings,
    load_credentials,
    resolve_connection,
    resolve_settings,
)
from .connection import execute, open_connection
from .logging_utils import get_logger, timed_operation

__all__ = ["query_db"]

log = get_logger(__name__)


def query_db(
    query: str,
    conn_name: str = "default",
    db_type: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[Union[int, str]] = None,
    database: Optional[str] = None,
    warehouse: Optional[str] = None,
    account: Optional[str] = None,
    role: Optional[str] = None,
    sslmode: Optional[str] = None,
    timeout: int = 15,
    cache_table_name: Optional[str] = None,
    overwrite: bool = True,
    *,
    settings: Optional[SnowquerySettings] = None,
) -> Union[pd.DataFrame, str]:
    """Run a SQL query against a named connection.

    Parameters
    ----------
    query:
        SQL text to execute.
    conn_name:
        Connection name in the credential file (``~/snowquery_creds.yaml``
        unless ``settings.creds_path`` says otherwise).
    db_type:
        ``snowflake``, ``redshift``, ``postgres``, ``sqlite`` or ``duckdb``.
        Overrides the ``db_type`` stored for the connection.
    username, password, host, port, database, warehouse, account, role, sslmode:
        Connection parameters.  Any value given here overrides the stored one.
    timeout:
        Seconds to wait for the connection (login timeout on Snowflake).
    cache_table_name:
        If given, stream the result into this table of the local DuckDB
        cache instead of returning it.  Supported for Snowflake, Postgres
        and Redshift sources.
    overwrite:
        Replace the cache table (``True``) or append to it (``False``).
    settings:
        Optional :class:`~snowquery.config.SnowquerySettings`; taken from
        ``SNOWQUERY_*`` environment variables when omitted.

    Returns
    -------
    pandas.DataFrame or str
        The query result, or the cache confirmation message.

    Example::

        df = query_db("SELECT * FROM my_table", conn_name="my_snowflake_dwh")

        query_db(
            "SELECT * FROM very_large_table",
            conn_name="my_snowflake_dwh",
            cache_table_name="large_table_local",
        )
    """
    settings = resolve_settings(settings)
    store = load_credentials(settings.creds_path)
    explicit = {
        "username": username,
        "password": password,
        "host": host,
        "port": port,
        "database": database,
        "warehouse": warehouse,
        "account": account,
        "role": role,
        "sslmode": sslmode,
    }

    if cache_table_name is not None:
        row_count = cache_query(
            conn_name,
            query,
            cache_table_name,
            overwrite,
            db_type=db_type,
            explicit=explicit,
            timeout=timeout,
            settings=settings,
            store=store,
        )
        return confirmation_message(row_count, cache_table_name, settings.cache_path)

    kind, params = resolve_connection(conn_name, db_type, explicit, store)
    with timed_operation(f"Query {conn_name} ({kind.value})", logger=log):
        with open_connection(kind, params, timeout=timeout, settings=settings) as handle:
            return execute(handle, query)
