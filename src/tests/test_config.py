import pytest

from snowquery.config import (
    BackendKind,
    DuckDBParams,
    RelationalParams,
    SnowflakeParams,
    SnowquerySettings,
    SqliteParams,
    load_credentials,
    load_settings_from_env,
    resolve_connection,
    resolve_settings,
)
from snowquery.exceptions import ConfigError

PG = {
    "db_type": "postgres",
    "host": "h",
    "port": 5432,
    "database": "d",
    "username": "u",
    "password": "p",
}


def test_load_credentials_reads_yaml(write_creds):
    settings = write_creds({"conn1": {"db_type": "sqlite", "database": "/tmp/t.db"}})
    creds = load_credentials(settings.creds_path)
    assert creds == {"conn1": {"db_type": "sqlite", "database": "/tmp/t.db"}}


def test_load_credentials_empty_file(settings):
    open(settings.creds_path, "w").close()
    assert load_credentials(settings.creds_path) == {}


def test_load_credentials_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_credentials(tmp_path / "nope.yaml")


def test_explicit_values_override_stored():
    kind, params = resolve_connection(
        "pg", explicit={"database": "y", "port": "6543"}, store={"pg": dict(PG, database="x")}
    )
    assert kind is BackendKind.POSTGRES
    assert isinstance(params, RelationalParams)
    assert params.database == "y"
    assert params.port == 6543
    assert params.host == "h"


def test_none_explicit_values_fall_back_to_store():
    _, params = resolve_connection("pg", explicit={"database": None}, store={"pg": PG})
    assert params.database == "d"


def test_missing_fields_are_listed_exactly():
    with pytest.raises(ConfigError) as excinfo:
        resolve_connection("sf", store={"sf": {"db_type": "snowflake", "account": "acct"}})
    assert excinfo.value.missing == ["username", "password", "database", "warehouse", "role"]
    assert "warehouse" in str(excinfo.value)


def test_explicit_values_satisfy_required_fields():
    store = {"pg": {k: v for k, v in PG.items() if k != "password"}}
    _, params = resolve_connection("pg", explicit={"password": "secret"}, store=store)
    assert params.password == "secret"


def test_db_type_from_argument_wins_and_is_case_insensitive():
    kind, params = resolve_connection("pg", db_type="Redshift", store={"pg": PG})
    assert kind is BackendKind.REDSHIFT
    assert isinstance(params, RelationalParams)


def test_db_type_missing():
    with pytest.raises(ConfigError, match="db_type is missing for the 'nope' connection"):
        resolve_connection("nope", store={})


def test_unsupported_backend_names_supported_set():
    with pytest.raises(ConfigError) as excinfo:
        resolve_connection("x", db_type="oracle", store={})
    message = str(excinfo.value)
    assert "'oracle'" in message
    for name in ("snowflake", "redshift", "postgres", "sqlite", "duckdb"):
        assert f"'{name}'" in message


def test_user_key_is_accepted_for_username():
    stored = {
        "db_type": "snowflake",
        "user": "legacy_user",
        "password": "p",
        "account": "a",
        "database": "d",
        "warehouse": "w",
        "role": "r",
    }
    kind, params = resolve_connection("sf", store={"sf": stored})
    assert isinstance(params, SnowflakeParams)
    assert params.username == "legacy_user"


def test_sqlite_and_duckdb_records():
    _, sqlite_params = resolve_connection("lite", store={"lite": {"db_type": "sqlite", "database": "/tmp/t.db"}})
    assert sqlite_params == SqliteParams(database="/tmp/t.db")
    kind, duck_params = resolve_connection("local", db_type="duckdb", store={})
    assert kind is BackendKind.DUCKDB
    assert duck_params == DuckDBParams()


def test_invalid_port():
    with pytest.raises(ConfigError, match="Invalid port"):
        resolve_connection("pg", store={"pg": dict(PG, port="abc")})


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("SNOWQUERY_CREDS_PATH", "/etc/creds.yaml")
    monkeypatch.setenv("SNOWQUERY_CACHE_PATH", "/data/cache.duckdb")
    monkeypatch.setenv("SNOWQUERY_AUTO_INSTALL", "no")
    monkeypatch.setenv("SNOWQUERY_STREAM_CHUNK_SIZE", "1000")
    monkeypatch.setenv("SNOWQUERY_SOMETHING_ELSE", "ignored")
    settings = load_settings_from_env()
    assert settings.creds_path == "/etc/creds.yaml"
    assert settings.cache_path == "/data/cache.duckdb"
    assert settings.auto_install is False
    assert settings.stream_chunk_size == 1000


def test_explicit_settings_win_over_env(monkeypatch):
    monkeypatch.setenv("SNOWQUERY_CACHE_PATH", "/data/cache.duckdb")
    explicit = SnowquerySettings(cache_path="mine.duckdb")
    assert resolve_settings(explicit) is explicit
    assert resolve_settings().cache_path == "/data/cache.duckdb"
