"""
Hyper-V Manager Exception Hierarchy

Provides clear, actionable error messages with structured information
for logging, user feedback, and programmatic retry decisions.
"""

from typing import Optional, Dict, Any


class HyperVError(Exception):
    """
    Base exception for all Hyper-V manager errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context as key-value pairs
        cause: Original exception that caused this error
        recoverable: Whether retrying the operation could succeed
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable

    def __str__(self):
        s = f"[{self.code}] {self.message}"
        if self.details:
            s += f" (details: {self.details})"
        if self.cause:
            s += f" caused by: {self.cause}"
        return s

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# WMI transport errors
# =============================================================================

class WmiError(HyperVError):
    """Base for errors raised by the WMI gateway."""
    pass


class WmiConnectionError(WmiError):
    """Failed to connect to the WMI namespace."""
    def __init__(self, namespace: str, cause: Optional[Exception] = None):
        super().__init__(
            f"Cannot connect to WMI namespace {namespace}",
            code="WMI_CONNECTION_FAILED",
            details={"namespace": namespace},
            cause=cause,
        )


class WmiQueryError(WmiError):
    """A WQL query or object fetch failed."""
    def __init__(self, query: str, cause: Optional[Exception] = None):
        super().__init__(
            f"WMI query failed: {query}",
            code="WMI_QUERY_FAILED",
            details={"query": query},
            cause=cause,
        )


class WmiMethodError(WmiError):
    """Invoking a WMI method raised instead of returning a status code."""
    def __init__(self, class_name: str, method: str, cause: Optional[Exception] = None):
        super().__init__(
            f"WMI method {class_name}.{method} failed",
            code="WMI_METHOD_FAILED",
            details={"class": class_name, "method": method},
            cause=cause,
        )


# =============================================================================
# Lookup errors
# =============================================================================

class NotFoundError(HyperVError):
    """Base for entities that could not be located."""
    pass


class VMNotFoundError(NotFoundError):
    """VM does not exist."""
    def __init__(self, vm_name: str):
        super().__init__(
            f"Virtual machine '{vm_name}' not found",
            code="VM_NOT_FOUND",
            details={"vm_name": vm_name},
            recoverable=False,
        )


class SwitchNotFoundError(NotFoundError):
    """Virtual switch does not exist."""
    def __init__(self, switch_name: str):
        super().__init__(
            f"Virtual switch '{switch_name}' not found",
            code="SWITCH_NOT_FOUND",
            details={"switch_name": switch_name},
            recoverable=False,
        )


class VhdNotFoundError(NotFoundError):
    """Virtual hard disk does not exist."""
    def __init__(self, path: str):
        super().__init__(
            f"Virtual hard disk not found: {path}",
            code="VHD_NOT_FOUND",
            details={"path": path},
            recoverable=False,
        )


class CheckpointNotFoundError(NotFoundError):
    """Checkpoint does not exist."""
    def __init__(self, checkpoint_name: str):
        super().__init__(
            f"Checkpoint '{checkpoint_name}' not found",
            code="CHECKPOINT_NOT_FOUND",
            details={"checkpoint_name": checkpoint_name},
            recoverable=False,
        )


# =============================================================================
# VM state errors
# =============================================================================

class InvalidStateError(HyperVError):
    """Operation attempted from a power state that does not allow it."""
    def __init__(self, vm_name: str, current_state: str, operation: str):
        super().__init__(
            f"Cannot {operation} VM '{vm_name}' in state {current_state}",
            code="VM_INVALID_STATE",
            details={
                "vm_name": vm_name,
                "current_state": current_state,
                "operation": operation,
            },
        )
        self.vm_name = vm_name
        self.current_state = current_state
        self.operation = operation


# =============================================================================
# Settings errors
# =============================================================================

class ValidationError(HyperVError):
    """Settings rejected before anything was sent to the service."""
    def __init__(self, field: str, message: str):
        super().__init__(
            f"Validation failed for '{field}': {message}",
            code="VALIDATION_FAILED",
            details={"field": field, "reason": message},
            recoverable=False,
        )
        self.field = field
        self.reason = message


class MissingRequiredFieldError(HyperVError):
    """A required property or settings key is absent."""
    def __init__(self, field: str):
        super().__init__(
            f"Missing required field: {field}",
            code="MISSING_REQUIRED_FIELD",
            details={"field": field},
            recoverable=False,
        )
        self.field = field


class TypeConversionError(HyperVError):
    """A property came back in an unexpected representation."""
    def __init__(self, property_name: str, expected: str):
        super().__init__(
            f"Property '{property_name}' is not a valid {expected}",
            code="TYPE_CONVERSION_FAILED",
            details={"property": property_name, "expected": expected},
            recoverable=False,
        )


# =============================================================================
# Operation and job errors
# =============================================================================

class OperationFailedError(HyperVError):
    """A management method returned a hard failure status."""
    def __init__(self, operation: str, return_value: int, message: str):
        super().__init__(
            f"Operation '{operation}' failed with code {return_value}: {message}",
            code="OPERATION_FAILED",
            details={"operation": operation, "return_value": return_value},
        )
        self.operation = operation
        self.return_value = return_value


class JobError(HyperVError):
    """Base for asynchronous job errors."""
    pass


class JobFailedError(JobError):
    """A job reached a failing terminal state."""
    def __init__(self, operation: str, error_code: int, error_description: str):
        super().__init__(
            f"Job for '{operation}' failed with code {error_code}: {error_description}",
            code="JOB_FAILED",
            details={
                "operation": operation,
                "error_code": error_code,
                "error_description": error_description,
            },
        )
        self.operation = operation
        self.error_code = error_code
        self.error_description = error_description


class JobTimeoutError(JobError):
    """A job did not reach a terminal state before the deadline."""
    def __init__(self, operation: str, job_path: str, timeout: float):
        super().__init__(
            f"Job for '{operation}' did not finish within {timeout:g}s",
            code="JOB_TIMEOUT",
            details={"operation": operation, "job_path": job_path, "timeout": timeout},
        )
        self.operation = operation
        self.job_path = job_path


class JobCancelledError(JobError):
    """Waiting on a job was cancelled by the caller."""
    def __init__(self, operation: str, job_path: str):
        super().__init__(
            f"Waiting for '{operation}' was cancelled",
            code="JOB_CANCELLED",
            details={"operation": operation, "job_path": job_path},
        )
        self.operation = operation
        self.job_path = job_path
