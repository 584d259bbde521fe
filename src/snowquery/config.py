"""Configuration and credential resolution for snowquery.

Two kinds of configuration live here:

* :class:`SnowquerySettings` – where the credential file and the local
  DuckDB cache live, and how the Snowflake driver bootstrap and the cache
  writer behave.  Values can be supplied explicitly or through environment
  variables prefixed with ``SNOWQUERY_`` (e.g. ``SNOWQUERY_CACHE_PATH``).
* Named connections – read from a YAML credential file, by default
  ``~/snowquery_creds.yaml``, laid out as::

      my_snowflake_dwh:
        db_type: snowflake
        account: orgname-account
        warehouse: WH_DEV
        database: MY_DB
        username: APP_USER
        password: "*****"
        role: ROLE_READONLY
      my_pg:
        db_type: postgres
        host: db.internal
        port: 5432
        database: analytics
        username: reader
        password: "*****"
        sslmode: require

The credential file is read again on every call; nothing is cached in
process.  Arguments passed explicitly always take precedence over the values
stored in the file.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union
import os

import yaml

from .exceptions import ConfigError
from .logging_utils import get_logger

DEFAULT_CREDS_PATH = "~/snowquery_creds.yaml"
DEFAULT_CACHE_PATH = "analytics.duckdb"

PARAM_NAMES = (
    "username",
    "password",
    "host",
    "port",
    "database",
    "warehouse",
    "account",
    "role",
    "sslmode",
)

log = get_logger(__name__)


@dataclass
class SnowquerySettings:
    """Process-level settings.

    Attributes
    ----------
    creds_path:
        Path of the YAML credential file.  ``~`` is expanded.
    cache_path:
        Path of the local DuckDB file used as the query cache and as the
        ``duckdb`` backend.
    auto_install:
        Whether the Snowflake bootstrap may ``pip install`` or upgrade
        ``snowflake-connector-python`` when it is missing or outdated.
    stream_chunk_size:
        Rows per chunk pulled from Postgres/Redshift when streaming into the
        cache.
    """

    creds_path: str = DEFAULT_CREDS_PATH
    cache_path: str = DEFAULT_CACHE_PATH
    auto_install: bool = True
    stream_chunk_size: int = 50000


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "y", "on")


def load_settings_from_env(prefix: str = "SNOWQUERY_") -> SnowquerySettings:
    """Load settings from environment variables.

    Variable names are the uppercase field names with ``prefix`` in front,
    e.g. ``SNOWQUERY_CREDS_PATH``.  Unknown variables are ignored.
    """
    known = {f.name: f for f in fields(SnowquerySettings)}
    kwargs: Dict[str, Any] = {}
    for env_name, env_value in os.environ.items():
        if not env_name.startswith(prefix):
            continue
        key = env_name[len(prefix):].lower()
        if key not in known:
            continue
        if key == "auto_install":
            kwargs[key] = _env_bool(env_value)
        elif key == "stream_chunk_size":
            try:
                kwargs[key] = int(env_value)
            except ValueError as exc:
                raise ConfigError(f"{env_name} must be an integer, got {env_value!r}") from exc
        else:
            kwargs[key] = env_value
    return SnowquerySettings(**kwargs)


def resolve_settings(settings: Optional[SnowquerySettings] = None) -> SnowquerySettings:
    """Return ``settings`` if given, otherwise settings built from the environment."""
    if settings is not None:
        return settings
    return load_settings_from_env()


def load_credentials(path: Union[str, Path] = DEFAULT_CREDS_PATH) -> Dict[str, Dict[str, Any]]:
    """Read the credential file into ``{conn_name: {key: value}}``.

    Missing or malformed files raise the underlying ``OSError`` /
    ``yaml.YAMLError`` unchanged.  An empty file yields an empty mapping.
    """
    resolved = Path(path).expanduser()
    with open(resolved, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data or {}


class BackendKind(str, Enum):
    SNOWFLAKE = "snowflake"
    REDSHIFT = "redshift"
    POSTGRES = "postgres"
    SQLITE = "sqlite"
    DUCKDB = "duckdb"

    @property
    def required_fields(self) -> Tuple[str, ...]:
        return REQUIRED_FIELDS[self]

    @property
    def is_relational(self) -> bool:
        return self in (BackendKind.POSTGRES, BackendKind.REDSHIFT)

    @classmethod
    def parse(cls, value: str) -> "BackendKind":
        key = str(value).strip().lower()
        try:
            return cls(key)
        except ValueError:
            supported = ", ".join(f"'{k.value}'" for k in list(cls)[:-1])
            raise ConfigError(
                f"Invalid db_type '{key}'. snowquery currently supports: "
                f"{supported}, and '{list(cls)[-1].value}'"
            ) from None


REQUIRED_FIELDS: Dict[BackendKind, Tuple[str, ...]] = {
    BackendKind.SNOWFLAKE: ("username", "password", "account", "database", "warehouse", "role"),
    BackendKind.POSTGRES: ("username", "password", "host", "database", "port"),
    BackendKind.REDSHIFT: ("username", "password", "host", "database", "port"),
    BackendKind.SQLITE: ("database",),
    BackendKind.DUCKDB: (),
}


@dataclass(frozen=True)
class SnowflakeParams:
    username: str
    password: str
    account: str
    database: str
    warehouse: str
    role: str


@dataclass(frozen=True)
class RelationalParams:
    """Parameters shared by the Postgres and Redshift backends."""

    username: str
    password: str
    host: str
    port: int
    database: str
    sslmode: Optional[str] = None


@dataclass(frozen=True)
class SqliteParams:
    database: str


@dataclass(frozen=True)
class DuckDBParams:
    """The DuckDB backend always reads the local cache file; nothing to resolve."""


ConnectionParams = Union[SnowflakeParams, RelationalParams, SqliteParams, DuckDBParams]


def resolve_backend_kind(
    conn_name: str,
    db_type: Optional[str],
    stored: Optional[Mapping[str, Any]],
) -> BackendKind:
    """Determine the backend kind: explicit ``db_type`` first, then the stored one."""
    if db_type:
        return BackendKind.parse(db_type)
    stored_type = (stored or {}).get("db_type")
    if stored_type:
        return BackendKind.parse(stored_type)
    raise ConfigError(f"db_type is missing for the '{conn_name}' connection.")


def _merge_params(explicit: Mapping[str, Any], stored: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for name in PARAM_NAMES:
        value = explicit.get(name)
        if value is None:
            value = stored.get(name)
        # older credential files use ``user`` for the Snowflake login
        if value is None and name == "username":
            value = stored.get("user")
        merged[name] = value
    return merged


def _coerce_port(conn_name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid port {value!r} for the '{conn_name}' connection.") from None


def resolve_connection(
    conn_name: str,
    db_type: Optional[str] = None,
    explicit: Optional[Mapping[str, Any]] = None,
    store: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> Tuple[BackendKind, ConnectionParams]:
    """Resolve the backend kind and connection parameters for ``conn_name``.

    ``explicit`` holds call-time values keyed by :data:`PARAM_NAMES`; any
    value that is not ``None`` wins over the credential store.  Raises
    :class:`ConfigError` listing every required field that is still absent.
    """
    stored = dict((store or {}).get(conn_name) or {})
    kind = resolve_backend_kind(conn_name, db_type, stored)
    merged = _merge_params(explicit or {}, stored)

    missing = [name for name in kind.required_fields if merged[name] is None]
    if missing:
        raise ConfigError(
            f"Missing credentials for {kind.value} connection '{conn_name}': "
            f"{', '.join(missing)}. Provide them in the credential file or as arguments.",
            missing=missing,
        )
    log.debug(f"Resolved '{conn_name}' as {kind.value}")

    if kind is BackendKind.SNOWFLAKE:
        return kind, SnowflakeParams(
            username=merged["username"],
            password=merged["password"],
            account=merged["account"],
            database=merged["database"],
            warehouse=merged["warehouse"],
            role=merged["role"],
        )
    if kind.is_relational:
        return kind, RelationalParams(
            username=merged["username"],
            password=merged["password"],
            host=merged["host"],
            port=_coerce_port(conn_name, merged["port"]),
            database=merged["database"],
            sslmode=merged["sslmode"],
        )
    if kind is BackendKind.SQLITE:
        return kind, SqliteParams(database=str(merged["database"]))
    return kind, DuckDBParams()
