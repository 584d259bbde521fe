import logging
import subprocess
import sys
import types

import pytest

from snowquery import bootstrap
from snowquery.exceptions import ConnectError, DriverImportError, InstallError, UpgradeError

MODULE = "snowflake.connector"


def _fail_pip(args):
    raise AssertionError(f"pip should not run: {args}")


def test_current_connector_is_returned(monkeypatch):
    module = types.SimpleNamespace(__version__="3.12.0")
    monkeypatch.setitem(sys.modules, MODULE, module)
    monkeypatch.setattr(bootstrap, "_pip", _fail_pip)
    assert bootstrap.ensure_snowflake_connector() is module


def test_missing_connector_without_auto_install(monkeypatch):
    monkeypatch.setitem(sys.modules, MODULE, None)
    monkeypatch.setattr(bootstrap, "_pip", _fail_pip)
    with pytest.raises(DriverImportError, match="pip install"):
        bootstrap.ensure_snowflake_connector(auto_install=False)


def test_missing_connector_is_installed(monkeypatch):
    monkeypatch.setitem(sys.modules, MODULE, None)
    installed = types.SimpleNamespace(__version__="3.0.0")
    calls = []

    def fake_pip(args):
        calls.append(args)
        sys.modules[MODULE] = installed

    monkeypatch.setattr(bootstrap, "_pip", fake_pip)
    assert bootstrap.ensure_snowflake_connector() is installed
    assert calls == [["install", "snowflake-connector-python[pandas]"]]


def test_install_failure(monkeypatch):
    monkeypatch.setitem(sys.modules, MODULE, None)

    def fake_pip(args):
        raise subprocess.CalledProcessError(1, ["pip"] + args, stderr="no network")

    monkeypatch.setattr(bootstrap, "_pip", fake_pip)
    with pytest.raises(InstallError, match="no network"):
        bootstrap.ensure_snowflake_connector()


def test_import_failure_after_install(monkeypatch):
    monkeypatch.setitem(sys.modules, MODULE, None)
    monkeypatch.setattr(bootstrap, "_pip", lambda args: None)
    with pytest.raises(DriverImportError):
        bootstrap.ensure_snowflake_connector()


def test_outdated_connector_is_upgraded(monkeypatch):
    old = types.SimpleNamespace(__version__="2.6.0")
    new = types.SimpleNamespace(__version__="3.1.0")
    imports = iter([old, new])
    calls = []
    monkeypatch.setattr(bootstrap, "_import_connector", lambda: next(imports))
    monkeypatch.setattr(bootstrap, "_evict_connector_modules", lambda: None)
    monkeypatch.setattr(bootstrap, "_pip", lambda args: calls.append(args))
    assert bootstrap.ensure_snowflake_connector() is new
    assert calls == [["install", "--upgrade", "snowflake-connector-python[pandas]>=2.7.4"]]


def test_upgrade_failure(monkeypatch):
    monkeypatch.setattr(bootstrap, "_import_connector", lambda: types.SimpleNamespace(__version__="2.1.0"))

    def fake_pip(args):
        raise subprocess.CalledProcessError(1, ["pip"] + args, stderr="permission denied")

    monkeypatch.setattr(bootstrap, "_pip", fake_pip)
    with pytest.raises(UpgradeError, match="permission denied"):
        bootstrap.ensure_snowflake_connector()


def test_outdated_connector_kept_when_auto_install_disabled(monkeypatch, caplog):
    old = types.SimpleNamespace(__version__="2.1.0")
    monkeypatch.setattr(bootstrap, "_import_connector", lambda: old)
    monkeypatch.setattr(bootstrap, "_pip", _fail_pip)
    with caplog.at_level(logging.WARNING, logger="snowquery"):
        assert bootstrap.ensure_snowflake_connector(auto_install=False) is old
    assert "automatic upgrades are disabled" in caplog.text


def test_unreadable_version_skips_check(monkeypatch, caplog):
    module = types.SimpleNamespace()
    monkeypatch.setitem(sys.modules, MODULE, module)
    monkeypatch.setattr(bootstrap, "_pip", _fail_pip)

    def missing(dist):
        raise bootstrap.metadata.PackageNotFoundError(dist)

    monkeypatch.setattr(bootstrap.metadata, "version", missing)
    with caplog.at_level(logging.WARNING, logger="snowquery"):
        assert bootstrap.ensure_snowflake_connector() is module
    assert "skipping the version check" in caplog.text


def test_version_comparison_ignores_build_metadata():
    assert not bootstrap.is_outdated("2.7.4+build.7")
    assert not bootstrap.is_outdated("3.0.0")
    assert bootstrap.is_outdated("2.7.3")
    assert bootstrap.is_outdated("2.7.3+local", "2.7.4")


def test_missing_connector_is_a_connect_error(monkeypatch):
    monkeypatch.setitem(sys.modules, MODULE, None)
    monkeypatch.setattr(bootstrap, "_pip", _fail_pip)
    with pytest.raises(ConnectError) as excinfo:
        bootstrap.ensure_snowflake_connector(auto_install=False)
    assert isinstance(excinfo.value, ImportError)
