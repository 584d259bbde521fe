"""Exception hierarchy for snowquery.

Every error raised by the package derives from :class:`SnowqueryError`, so
callers can catch a single type.  Errors coming from the underlying drivers
are chained (``raise ... from exc``) and their text is repeated in the
message, so nothing the driver reported is lost.
"""


class SnowqueryError(Exception):
    """Base exception for snowquery."""


class ConfigError(SnowqueryError):
    """Missing or invalid ``db_type``, missing credentials, unsupported backend."""

    def __init__(self, message: str, missing=None):
        super().__init__(message)
        self.missing = list(missing or [])


class ConnectError(SnowqueryError):
    pass


class InstallError(SnowqueryError):
    pass


class UpgradeError(SnowqueryError):
    pass


class DriverImportError(ConnectError, ImportError):
    """The Snowflake connector is missing and could not be installed or imported."""


class QueryError(SnowqueryError):
    pass


class CacheError(SnowqueryError):
    pass
