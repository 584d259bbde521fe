"""snowquery

Query Snowflake, Postgres, Redshift, SQLite and DuckDB with a single
function, using named connections from a YAML credential file, and
optionally stream large results into a local DuckDB cache.

The top-level namespace re-exports the most commonly used names:

* :func:`query_db` – run a query, or cache its result in DuckDB
* :func:`cache_query` – stream a remote query into the DuckDB cache
* :func:`ensure_snowflake_connector` – install/upgrade the Snowflake driver up front
* :class:`SnowquerySettings` – credential file / cache file locations
* :func:`load_credentials` – read the credential file
* :func:`resolve_connection` – merge explicit and stored connection parameters
"""

from .helpers import query_db
from .cache import cache_query
from .bootstrap import ensure_snowflake_connector
from .config import BackendKind, SnowquerySettings, load_credentials, resolve_connection, resolve_settings
from .exceptions import (
    CacheError,
    ConfigError,
    ConnectError,
    DriverImportError,
    InstallError,
    QueryError,
    SnowqueryError,
    UpgradeError,
)

__all__ = [
    "query_db",
    "cache_query",
    "ensure_snowflake_connector",
    "BackendKind",
    "SnowquerySettings",
    "load_credentials",
    "resolve_connection",
    "resolve_settings",
    "SnowqueryError",
    "ConfigError",
    "ConnectError",
    "InstallError",
    "UpgradeError",
    "DriverImportError",
    "QueryError",
    "CacheError",
]
