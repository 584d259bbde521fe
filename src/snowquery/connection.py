"""Connection handles for the supported backends.

:func:`connect` turns a resolved :class:`~snowquery.config.BackendKind` and
its parameter record into a live handle:

* Snowflake – ``snowflake.connector`` (see :mod:`snowquery.bootstrap`)
* Postgres / Redshift / SQLite – a SQLAlchemy engine and connection
* DuckDB – a read-only connection to the local cache file

Every handle exposes ``fetch_frame(sql)`` and ``close()``.  Use
:func:`open_connection` rather than :func:`connect` wherever possible; it
closes the handle on every exit path, including errors.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional

import duckdb
import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.pool import NullPool

from .bootstrap import ensure_snowflake_connector
from .config import (
    BackendKind,
    ConnectionParams,
    RelationalParams,
    SnowflakeParams,
    SnowquerySettings,
    SqliteParams,
    resolve_settings,
)
from .exceptions import ConnectError, QueryError, SnowqueryError
from .logging_utils import get_logger

log = get_logger(__name__)

_DRIVERNAMES = {
    BackendKind.POSTGRES: "postgresql+psycopg2",
    BackendKind.REDSHIFT: "redshift+psycopg2",
}

_CREDENTIAL_HINTS = {
    BackendKind.SNOWFLAKE: "Check user, password, account, database, warehouse and role.",
    BackendKind.POSTGRES: "Check database, username, password, port, host and sslmode.",
    BackendKind.REDSHIFT: "Check database, username, password, port, host and sslmode.",
    BackendKind.SQLITE: "Check the database file path.",
    BackendKind.DUCKDB: "Check that the local DuckDB cache file exists and is not locked by a writer.",
}


def flatten_list_columns(frame: pd.DataFrame) -> pd.DataFrame:
    """Collapse list-valued cells into comma-joined strings, column by column."""
    for column in frame.columns:
        series = frame[column]
        if series.dtype != object:
            continue
        if not series.map(lambda v: isinstance(v, (list, tuple))).any():
            continue
        frame[column] = series.map(
            lambda v: ",".join(str(x) for x in v) if isinstance(v, (list, tuple)) else v
        )
    return frame


def frame_from_cursor(cursor: Any) -> pd.DataFrame:
    """Fetch the remaining rows of a Snowflake cursor as a DataFrame."""
    try:
        return cursor.fetch_pandas_all()
    except AttributeError:
        rows = cursor.fetchall()
        columns = [c[0] for c in (cursor.description or [])] or None
        return pd.DataFrame.from_records(rows, columns=columns)


class SnowflakeHandle:
    kind = BackendKind.SNOWFLAKE

    def __init__(self, connection: Any):
        self.connection = connection

    @contextmanager
    def cursor(self) -> Iterator[Any]:
        cur = self.connection.cursor()
        try:
            yield cur
        finally:
            cur.close()

    @staticmethod
    def supports_batches(cursor: Any) -> bool:
        """Whether the cursor can yield the result as a sequence of DataFrames."""
        return callable(getattr(cursor, "fetch_pandas_batches", None))

    def fetch_frame(self, sql: str) -> pd.DataFrame:
        try:
            with self.cursor() as cur:
                cur.execute(sql)
                frame = frame_from_cursor(cur)
        except SnowqueryError:
            raise
        except Exception as exc:
            raise QueryError(f"Snowflake query failed: {exc}") from exc
        return flatten_list_columns(frame)

    def close(self) -> None:
        self.connection.close()


class SQLAlchemyHandle:
    """Postgres, Redshift and SQLite connections through SQLAlchemy."""

    def __init__(self, kind: BackendKind, engine: Engine, connection: Any):
        self.kind = kind
        self.engine = engine
        self.connection = connection

    def fetch_frame(self, sql: str) -> pd.DataFrame:
        """Execute, fetch, close the result and commit, so DDL/DML takes effect."""
        columns, rows = None, []
        try:
            result = self.connection.execute(text(sql))
            try:
                if result.returns_rows:
                    columns = list(result.keys())
                    rows = result.fetchall()
            finally:
                result.close()
            self.connection.commit()
        except Exception as exc:
            raise QueryError(f"{self.kind.value} query failed: {exc}") from exc
        if columns is None:
            return pd.DataFrame()
        return pd.DataFrame.from_records(rows, columns=columns)

    def stream_frames(self, sql: str, chunk_size: int) -> Iterator[pd.DataFrame]:
        """Yield the result in chunks using a server-side cursor where the driver has one.

        The read runs inside the transaction the connection begins on first
        use; psycopg2 only opens named cursors inside a transaction.
        """
        streaming = self.connection.execution_options(stream_results=True)
        return pd.read_sql_query(text(sql), streaming, chunksize=chunk_size)

    def close(self) -> None:
        try:
            self.connection.close()
        finally:
            self.engine.dispose()


class DuckDBHandle:
    kind = BackendKind.DUCKDB

    def __init__(self, connection: "duckdb.DuckDBPyConnection"):
        self.connection = connection

    def fetch_frame(self, sql: str) -> pd.DataFrame:
        try:
            return self.connection.execute(sql).fetchdf()
        except duckdb.Error as exc:
            raise QueryError(f"duckdb query failed: {exc}") from exc

    def close(self) -> None:
        self.connection.close()


def _create_engine(kind: BackendKind, params: ConnectionParams, timeout: int) -> Engine:
    if isinstance(params, RelationalParams):
        query = {"sslmode": params.sslmode} if params.sslmode else {}
        url = URL.create(
            _DRIVERNAMES[kind],
            username=params.username,
            password=params.password,
            host=params.host,
            port=params.port,
            database=params.database,
            query=query,
        )
        connect_args = {"connect_timeout": timeout}
    elif isinstance(params, SqliteParams):
        url = URL.create("sqlite", database=params.database)
        connect_args = {"timeout": timeout}
    else:
        raise TypeError(f"{type(params).__name__} is not a SQLAlchemy backend")
    return create_engine(
        url,
        poolclass=NullPool,
        connect_args=connect_args,
    )


def _connect_error(kind: BackendKind, exc: BaseException) -> ConnectError:
    return ConnectError(
        f"Failed to connect to {kind.value}. {_CREDENTIAL_HINTS[kind]} Driver error: {exc}"
    )


def connect(
    kind: BackendKind,
    params: ConnectionParams,
    *,
    timeout: int = 15,
    settings: Optional[SnowquerySettings] = None,
):
    """Open a connection handle for ``kind``.

    The caller owns the returned handle and must ``close()`` it.
    """
    settings = resolve_settings(settings)
    log.debug(f"Connecting to {kind.value}")

    if kind is BackendKind.SNOWFLAKE:
        if not isinstance(params, SnowflakeParams):
            raise TypeError(f"{type(params).__name__} is not a Snowflake parameter record")
        connector = ensure_snowflake_connector(auto_install=settings.auto_install)
        try:
            conn = connector.connect(
                user=params.username,
                password=params.password,
                account=params.account,
                database=params.database,
                warehouse=params.warehouse,
                role=params.role,
                login_timeout=timeout,
            )
        except Exception as exc:
            raise _connect_error(kind, exc) from exc
        return SnowflakeHandle(conn)

    if kind is BackendKind.DUCKDB:
        try:
            conn = duckdb.connect(settings.cache_path, read_only=True)
        except duckdb.Error as exc:
            raise _connect_error(kind, exc) from exc
        return DuckDBHandle(conn)

    try:
        engine = _create_engine(kind, params, timeout)
    except Exception as exc:
        raise _connect_error(kind, exc) from exc
    try:
        conn = engine.connect()
    except Exception as exc:
        engine.dispose()
        raise _connect_error(kind, exc) from exc
    return SQLAlchemyHandle(kind, engine, conn)


@contextmanager
def open_connection(
    kind: BackendKind,
    params: ConnectionParams,
    *,
    timeout: int = 15,
    settings: Optional[SnowquerySettings] = None,
) -> Iterator[Any]:
    """Scoped :func:`connect`: the handle is closed when the block exits."""
    handle = connect(kind, params, timeout=timeout, settings=settings)
    try:
        yield handle
    finally:
        handle.close()


def execute(handle: Any, sql: str) -> pd.DataFrame:
    """Run ``sql`` on ``handle`` and return the full result as a DataFrame."""
    return handle.fetch_frame(sql)
