"""Make sure the Snowflake connector is importable and recent enough.

``snowflake-connector-python`` is a heavy optional dependency, so snowquery
does not force it on users who only query Postgres or SQLite.  The first
Snowflake query (or an explicit call to :func:`ensure_snowflake_connector`
at application start-up) installs it with pip when it is missing, and
upgrades it when the installed version is older than
:data:`MIN_CONNECTOR_VERSION`.

Installing packages mutates the running environment; pass
``auto_install=False`` (or set ``SNOWQUERY_AUTO_INSTALL=0``) to turn that
off and get an error instead.
"""

from __future__ import annotations

from importlib import import_module, invalidate_caches
from importlib import metadata
from types import ModuleType
from typing import List, Optional
import subprocess
import sys

from packaging.version import InvalidVersion, Version

from .exceptions import DriverImportError, InstallError, UpgradeError
from .logging_utils import get_logger

MIN_CONNECTOR_VERSION = "2.7.4"
CONNECTOR_MODULE = "snowflake.connector"
CONNECTOR_DIST = "snowflake-connector-python"
CONNECTOR_REQUIREMENT = f"{CONNECTOR_DIST}[pandas]"

log = get_logger(__name__)


def _pip(args: List[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "pip", *args],
        check=True,
        capture_output=True,
        text=True,
    )


def _pip_output(exc: BaseException) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        return (exc.stderr or exc.stdout or str(exc)).strip()
    return str(exc)


def _import_connector() -> ModuleType:
    return import_module(CONNECTOR_MODULE)


def _evict_connector_modules() -> None:
    for name in list(sys.modules):
        if name == CONNECTOR_MODULE or name.startswith(CONNECTOR_MODULE + "."):
            del sys.modules[name]


def connector_version(module: ModuleType) -> Optional[str]:
    """Return the installed connector version, or ``None`` when unreadable."""
    version = getattr(module, "__version__", None)
    if version:
        return str(version)
    try:
        return metadata.version(CONNECTOR_DIST)
    except metadata.PackageNotFoundError:
        return None


def is_outdated(version: str, minimum: str = MIN_CONNECTOR_VERSION) -> bool:
    """Compare versions semantically, ignoring ``+build`` metadata.

    Raises :class:`packaging.version.InvalidVersion` for unparseable input.
    """
    public = version.split("+", 1)[0].strip()
    return Version(public) < Version(minimum)


def _install() -> None:
    log.info(f"{CONNECTOR_MODULE} not found; installing {CONNECTOR_REQUIREMENT}...")
    try:
        _pip(["install", CONNECTOR_REQUIREMENT])
    except (subprocess.CalledProcessError, OSError) as exc:
        raise InstallError(
            f"Failed to install the '{CONNECTOR_DIST}' package. "
            f"Please try installing it manually by running "
            f"'pip install \"{CONNECTOR_REQUIREMENT}\"' in your terminal. "
            f"Installation error: {_pip_output(exc)}"
        ) from exc
    invalidate_caches()


def _upgrade(current: str, minimum: str) -> ModuleType:
    requirement = f"{CONNECTOR_REQUIREMENT}>={minimum}"
    log.info(f"{CONNECTOR_DIST} {current} is older than {minimum}; upgrading...")
    try:
        _pip(["install", "--upgrade", requirement])
    except (subprocess.CalledProcessError, OSError) as exc:
        raise UpgradeError(
            f"'{CONNECTOR_DIST}' {current} is older than the required {minimum} and the upgrade "
            f"failed. Run 'pip install --upgrade \"{requirement}\"' manually. "
            f"Upgrade error: {_pip_output(exc)}"
        ) from exc
    invalidate_caches()
    _evict_connector_modules()
    try:
        return _import_connector()
    except ImportError as exc:
        raise DriverImportError(
            f"Upgraded '{CONNECTOR_DIST}' but could not re-import {CONNECTOR_MODULE}: {exc}"
        ) from exc


def ensure_snowflake_connector(
    *,
    auto_install: bool = True,
    min_version: str = MIN_CONNECTOR_VERSION,
) -> ModuleType:
    """Return the ``snowflake.connector`` module, installing or upgrading it if needed.

    Raises :class:`InstallError` or :class:`UpgradeError` when pip fails and
    :class:`DriverImportError` when the module still cannot be imported.  An
    unreadable version string only produces a warning.
    """
    try:
        module = _import_connector()
    except ImportError as first_exc:
        if not auto_install:
            raise DriverImportError(
                f"{CONNECTOR_MODULE} is required for Snowflake connections but is not installed. "
                f"Install it with 'pip install \"{CONNECTOR_REQUIREMENT}\"'."
            ) from first_exc
        _install()
        try:
            module = _import_connector()
        except ImportError as exc:
            raise DriverImportError(
                f"Installed '{CONNECTOR_DIST}' but could not import {CONNECTOR_MODULE}: {exc}"
            ) from exc
        log.info(f"Successfully installed and imported {CONNECTOR_MODULE}.")

    version = connector_version(module)
    if version is None:
        log.warning(f"Could not read the {CONNECTOR_DIST} version; skipping the version check.")
        return module
    try:
        outdated = is_outdated(version, min_version)
    except InvalidVersion:
        log.warning(f"Unrecognised {CONNECTOR_DIST} version {version!r}; skipping the version check.")
        return module
    if not outdated:
        return module
    if not auto_install:
        log.warning(
            f"{CONNECTOR_DIST} {version} is older than {min_version}; "
            f"automatic upgrades are disabled."
        )
        return module
    return _upgrade(version, min_version)
