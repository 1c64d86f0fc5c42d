"""
Shared Decorators

Connection guards and timing helpers used by the gateway and job monitor.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Callable

from .exceptions import WmiConnectionError

logger = logging.getLogger(__name__)


def ensure_connected(connection_attr: str = "_connection"):
    """
    Decorator to ensure a connection is established before calling method.

    The wrapped object should expose a ``namespace`` attribute, which is
    reported in the raised error.

    Args:
        connection_attr: Name of the connection attribute on self

    Example:
        @ensure_connected("_services")
        def query(self, wql):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            conn = getattr(self, connection_attr, None)
            if conn is None:
                namespace = getattr(self, "namespace", "<unknown>")
                raise WmiConnectionError(
                    namespace,
                    cause=RuntimeError(
                        f"Connection not established. Call connect() before {func.__name__}()"
                    ),
                )
            return func(self, *args, **kwargs)
        return wrapper
    return decorator


def timed(func: Callable) -> Callable:
    """
    Decorator to log function execution time.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            elapsed = time.perf_counter() - start
            logger.debug(f"{func.__name__} completed in {elapsed:.3f}s")
    return wrapper
