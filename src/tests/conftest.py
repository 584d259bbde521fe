import sys
import types

import pandas as pd
import pytest
import yaml

from snowquery.config import SnowquerySettings


@pytest.fixture
def settings(tmp_path):
    return SnowquerySettings(
        creds_path=str(tmp_path / "snowquery_creds.yaml"),
        cache_path=str(tmp_path / "analytics.duckdb"),
        auto_install=False,
        stream_chunk_size=2,
    )


@pytest.fixture
def write_creds(settings):
    def _write(creds):
        with open(settings.creds_path, "w", encoding="utf-8") as fh:
            yaml.safe_dump(creds, fh)
        return settings
    return _write


class FakeCursor:
    """Snowflake cursor without batch support."""

    def __init__(self, frames=None, description=None, fail_on_execute=None):
        self.frames = list(frames or [])
        self.description = description
        self.fail_on_execute = fail_on_execute
        self.executed = []
        self.closed = False

    def execute(self, sql, params=None):
        if self.fail_on_execute is not None:
            raise self.fail_on_execute
        self.executed.append(sql)

    def fetch_pandas_all(self):
        if not self.frames:
            return pd.DataFrame()
        return pd.concat(self.frames, ignore_index=True)

    def close(self):
        self.closed = True


class FakeBatchCursor(FakeCursor):
    def fetch_pandas_batches(self):
        for frame in self.frames:
            yield frame


class FakeSnowflakeConnection:
    def __init__(self, cursor):
        self._cursor = cursor
        self.closed = False

    def cursor(self):
        return self._cursor

    def close(self):
        self.closed = True


class FakeSnowflake:
    def __init__(self, monkeypatch):
        self.monkeypatch = monkeypatch
        self.connect_kwargs = {}
        self.connection = None

    def install(self, cursor, version="3.12.0"):
        self.connection = FakeSnowflakeConnection(cursor)

        def mock_connect(**kwargs):
            self.connect_kwargs = kwargs
            return self.connection

        module = types.SimpleNamespace(connect=mock_connect, __version__=version)
        self.monkeypatch.setitem(sys.modules, "snowflake.connector", module)
        return self.connection

    def batch_cursor(self, frames, description=None):
        return FakeBatchCursor(frames=frames, description=description)

    def plain_cursor(self, frames, description=None):
        return FakeCursor(frames=frames, description=description)


@pytest.fixture
def fake_snowflake(monkeypatch):
    return FakeSnowflake(monkeypatch)


SNOWFLAKE_CREDS = {
    "db_type": "snowflake",
    "account": "acct",
    "username": "user",
    "password": "pass",
    "database": "DB",
    "warehouse": "WH",
    "role": "ROLE",
}


@pytest.fixture
def snowflake_creds():
    return dict(SNOWFLAKE_CREDS)
