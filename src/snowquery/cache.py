"""Stream remote query results into the local DuckDB cache.

Large results never need to fit in memory.  Two strategies are used,
depending on the source:

* Snowflake – the cursor yields the result as a sequence of DataFrames
  (``fetch_pandas_batches``).  The first non-empty batch creates or
  replaces the destination table and every later batch is appended.  If
  the process dies half way, the rows written so far stay in the table.
* Postgres / Redshift – the query is read in chunks through a server-side
  cursor, wrapped in an Arrow ``RecordBatchReader`` and registered in DuckDB
  as a view.  A single ``CREATE OR REPLACE TABLE ... AS SELECT`` (or
  ``INSERT INTO ... SELECT``) lets DuckDB pull the rows itself.

DuckDB and SQLite sources cannot be cached.
"""

from __future__ import annotations

from contextlib import closing, contextmanager
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Set, Tuple
import itertools
import re

import duckdb
import pandas as pd
import pyarrow as pa

from .config import (
    BackendKind,
    SnowquerySettings,
    load_credentials,
    resolve_backend_kind,
    resolve_connection,
    resolve_settings,
)
from .connection import SnowflakeHandle, SQLAlchemyHandle, frame_from_cursor, open_connection
from .exceptions import CacheError, SnowqueryError
from .logging_utils import get_logger, timed_operation

VIEW_NAME = "temp_view"
BATCH_VIEW_NAME = "snowquery_batch"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

log = get_logger(__name__)


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_table_name(name: str) -> str:
    """Validate ``table`` or ``schema.table`` and return it quoted for DuckDB."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise CacheError(
            f"Invalid cache table name {name!r}; use letters, digits and underscores, "
            f"optionally qualified as schema.table."
        )
    return ".".join(quote_ident(part) for part in name.split("."))


def check_cacheable(kind: BackendKind) -> None:
    if kind is BackendKind.DUCKDB:
        raise CacheError("Cannot cache a query from a duckdb source to itself.")
    if kind is BackendKind.SQLITE:
        raise CacheError(
            "Caching is not supported for sqlite sources; "
            "only snowflake, postgres and redshift can be cached."
        )


def confirmation_message(row_count: int, table_name: str, cache_path: str) -> str:
    return f"Successfully cached {row_count} rows to DuckDB table '{table_name}' ({cache_path})."


@contextmanager
def _open_cache(path: str) -> Iterator["duckdb.DuckDBPyConnection"]:
    try:
        conn = duckdb.connect(path)
    except duckdb.Error as exc:
        raise CacheError(f"Could not open the DuckDB cache at {path}: {exc}") from exc
    with closing(conn):
        yield conn


def count_rows(duck: "duckdb.DuckDBPyConnection", table: str) -> int:
    row = duck.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
    return int(row[0]) if row else 0


# ---------------------------------------------------------------------------
# Batch path (Snowflake)
# ---------------------------------------------------------------------------

def _write_frame(duck: "duckdb.DuckDBPyConnection", table: str, frame: pd.DataFrame, replace: bool) -> None:
    duck.register(BATCH_VIEW_NAME, frame)
    try:
        if replace:
            duck.execute(f"CREATE OR REPLACE TABLE {table} AS SELECT * FROM {BATCH_VIEW_NAME}")
        else:
            duck.execute(
                f"CREATE TABLE IF NOT EXISTS {table} AS SELECT * FROM {BATCH_VIEW_NAME} LIMIT 0"
            )
            duck.execute(f"INSERT INTO {table} SELECT * FROM {BATCH_VIEW_NAME}")
    finally:
        duck.unregister(BATCH_VIEW_NAME)


def _create_placeholder(duck: "duckdb.DuckDBPyConnection", table: str, columns: List[str]) -> None:
    column_defs = ", ".join(f"{quote_ident(c)} VARCHAR" for c in columns) or "result VARCHAR"
    duck.execute(f"CREATE OR REPLACE TABLE {table} ({column_defs})")


def stream_batches(
    handle: SnowflakeHandle,
    duck: "duckdb.DuckDBPyConnection",
    sql: str,
    table: str,
    overwrite: bool,
) -> int:
    """Copy the Snowflake result into ``table`` batch by batch; return rows written."""
    written = 0
    with handle.cursor() as cur:
        cur.execute(sql)
        if handle.supports_batches(cur):
            frames: Iterable[pd.DataFrame] = cur.fetch_pandas_batches()
        else:
            log.debug("Cursor has no batch support; fetching the full result")
            frames = [frame_from_cursor(cur)]
        for frame in frames:
            if frame is None or frame.empty:
                continue
            _write_frame(duck, table, frame, replace=overwrite and written == 0)
            written += len(frame)
        if written == 0 and overwrite:
            _create_placeholder(duck, table, [c[0] for c in (cur.description or [])])
    return written


# ---------------------------------------------------------------------------
# Lazy-view path (Postgres / Redshift)
# ---------------------------------------------------------------------------

def _as_text(value: Any) -> Optional[str]:
    if value is None or value is pd.NA:
        return None
    if isinstance(value, float) and value != value:
        return None
    return str(value)


def _schema_for(frame: pd.DataFrame) -> Tuple[pa.Schema, Set[str]]:
    # columns with no inferable type (all null, or an empty result) become text
    inferred = pa.Schema.from_pandas(frame, preserve_index=False)
    text_columns: Set[str] = set()
    schema_fields = []
    for field in inferred:
        if pa.types.is_null(field.type):
            text_columns.add(field.name)
            field = field.with_type(pa.string())
        schema_fields.append(field)
    return pa.schema(schema_fields), text_columns


def _to_record_batches(frame: pd.DataFrame, schema: pa.Schema, text_columns: Set[str]) -> List[pa.RecordBatch]:
    if text_columns:
        frame = frame.copy()
        for column in text_columns:
            frame[column] = frame[column].map(_as_text)
    table = pa.Table.from_pandas(frame, schema=schema, preserve_index=False, safe=False)
    return table.replace_schema_metadata(None).to_batches()


def frames_to_reader(frames: Iterable[pd.DataFrame]) -> pa.RecordBatchReader:
    """Wrap an iterator of DataFrames in a lazily consumed Arrow reader.

    The schema comes from the first chunk; later chunks are coerced to it.
    """
    frames = iter(frames)
    first = next(frames, None)
    if first is None:
        first = pd.DataFrame()
    schema, text_columns = _schema_for(first)

    def batches() -> Iterator[pa.RecordBatch]:
        for frame in itertools.chain([first], frames):
            yield from _to_record_batches(frame, schema, text_columns)

    return pa.RecordBatchReader.from_batches(schema, batches())


def materialize_view(
    handle: SQLAlchemyHandle,
    duck: "duckdb.DuckDBPyConnection",
    sql: str,
    table: str,
    overwrite: bool,
    chunk_size: int,
) -> None:
    """Register the remote query as ``temp_view`` and let DuckDB copy it into ``table``."""
    reader = frames_to_reader(handle.stream_frames(sql, chunk_size))
    duck.register(VIEW_NAME, reader)
    try:
        if overwrite:
            duck.execute(f"CREATE OR REPLACE TABLE {table} AS SELECT * FROM {VIEW_NAME}")
        else:
            duck.execute(f"INSERT INTO {table} SELECT * FROM {VIEW_NAME}")
    finally:
        duck.unregister(VIEW_NAME)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def cache_query(
    source_conn_name: str,
    source_sql: str,
    dest_table_name: str,
    overwrite: bool = True,
    *,
    db_type: Optional[str] = None,
    explicit: Optional[Mapping[str, Any]] = None,
    timeout: int = 15,
    settings: Optional[SnowquerySettings] = None,
    store: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> int:
    """Run ``source_sql`` on ``source_conn_name`` and store the result in the DuckDB cache.

    Parameters
    ----------
    source_conn_name:
        Connection name in the credential file.
    source_sql:
        Query to run on the source.
    dest_table_name:
        Destination table in the cache (``table`` or ``schema.table``).
    overwrite:
        Replace the table if ``True``; append to it otherwise.
    db_type, explicit:
        Backend kind and connection parameters that override the stored ones.
    store:
        Already loaded credential store; read from ``settings.creds_path``
        when omitted.

    Returns
    -------
    int
        ``SELECT COUNT(*)`` of the destination table after the write.
    """
    settings = resolve_settings(settings)
    if store is None:
        store = load_credentials(settings.creds_path)
    kind = resolve_backend_kind(source_conn_name, db_type, store.get(source_conn_name))
    check_cacheable(kind)
    table = quote_table_name(dest_table_name)
    kind, params = resolve_connection(source_conn_name, db_type, explicit, store)

    log.info(f"Caching {kind.value} query to DuckDB table: {dest_table_name}")
    with timed_operation(f"Cache {source_conn_name} -> {dest_table_name}", logger=log):
        with open_connection(kind, params, timeout=timeout, settings=settings) as handle, \
                _open_cache(settings.cache_path) as duck:
            try:
                if kind is BackendKind.SNOWFLAKE:
                    stream_batches(handle, duck, source_sql, table, overwrite)
                else:
                    materialize_view(
                        handle, duck, source_sql, table, overwrite, settings.stream_chunk_size
                    )
                row_count = count_rows(duck, table)
            except SnowqueryError:
                raise
            except Exception as exc:
                raise CacheError(
                    f"Failed to cache the {kind.value} query into '{dest_table_name}': {exc}"
                ) from exc

    log.info(confirmation_message(row_count, dest_table_name, settings.cache_path))
    return row_count
