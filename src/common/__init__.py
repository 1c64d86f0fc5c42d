"""
Hyper-V Manager Common Utilities

Shared exceptions, decorators and logging setup.
"""

from .exceptions import (
    HyperVError, WmiError, WmiConnectionError, WmiQueryError, WmiMethodError,
    NotFoundError, VMNotFoundError, SwitchNotFoundError, VhdNotFoundError,
    CheckpointNotFoundError, InvalidStateError, ValidationError,
    MissingRequiredFieldError, TypeConversionError, OperationFailedError,
    JobError, JobFailedError, JobTimeoutError, JobCancelledError,
)
from .decorators import ensure_connected, timed
from .logging_config import setup_logging, LogContext, current_context

__all__ = [
    # Exceptions
    "HyperVError", "WmiError", "WmiConnectionError", "WmiQueryError", "WmiMethodError",
    "NotFoundError", "VMNotFoundError", "SwitchNotFoundError", "VhdNotFoundError",
    "CheckpointNotFoundError", "InvalidStateError", "ValidationError",
    "MissingRequiredFieldError", "TypeConversionError", "OperationFailedError",
    "JobError", "JobFailedError", "JobTimeoutError", "JobCancelledError",
    # Decorators
    "ensure_connected", "timed",
    # Logging
    "setup_logging", "LogContext", "current_context",
]
