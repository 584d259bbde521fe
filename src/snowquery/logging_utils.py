"""Logging helpers for snowquery.

All components log through loggers under the ``snowquery`` namespace.  The
first call to :func:`get_logger` attaches a ``StreamHandler`` to the package
logger; applications that configure logging themselves can remove it or
change the level as needed.  :func:`timed_operation` measures how long a
query or cache write takes.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Iterator, Optional

_ROOT = "snowquery"


def get_logger(name: str = _ROOT) -> logging.Logger:
    """Return a logger under the ``snowquery`` namespace.

    The package root logger gets a single ``StreamHandler`` the first time
    any logger is requested; child loggers propagate to it.
    """
    root = logging.getLogger(_ROOT)
    if not root.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        handler.setFormatter(formatter)
        root.addHandler(handler)
        root.setLevel(logging.INFO)
    return logging.getLogger(name)


@contextmanager
def timed_operation(operation: str, logger: Optional[logging.Logger] = None) -> Iterator[None]:
    """Context manager that logs the duration of an operation.

    Example::

        with timed_operation("query my_dwh"):
            df = query_db("SELECT 1", conn_name="my_dwh")
    """
    log = logger or get_logger()
    start_time = time.perf_counter()
    log.debug(f"Starting {operation}...")
    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        log.info(f"{operation} completed in {duration:.3f}s")
