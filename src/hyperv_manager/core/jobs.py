"""
Job Monitor - waits for asynchronous Hyper-V operations.

Management methods either finish immediately (return value 0) or hand back
a ``Msvm_ConcreteJob`` path (return value 4096) that has to be polled until
it reaches a terminal state. Every mutating call in the package funnels its
out parameters through ``JobMonitor.handle_result``.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Optional

from common.decorators import timed
from common.exceptions import (
    JobCancelledError,
    JobFailedError,
    JobTimeoutError,
    OperationFailedError,
)
from .gateway import Document, Gateway

logger = logging.getLogger(__name__)

_UNSET = object()


class ReturnCode(Enum):
    """Method return values with special meaning."""
    COMPLETED = 0
    JOB_STARTED = 4096


class JobState(Enum):
    """Msvm_ConcreteJob.JobState values."""
    UNKNOWN = 0
    NEW = 2
    STARTING = 3
    RUNNING = 4
    SUSPENDED = 5
    SHUTTING_DOWN = 6
    COMPLETED = 7
    TERMINATED = 8
    KILLED = 9
    EXCEPTION = 10
    SERVICE = 11
    QUERY_PENDING = 12

    @classmethod
    def from_code(cls, code: Optional[int]) -> "JobState":
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN

    @property
    def code(self) -> int:
        return self.value

    @property
    def is_failure(self) -> bool:
        return self in _FAILED_JOB_STATES

    @property
    def is_terminal(self) -> bool:
        return self is JobState.COMPLETED or self.is_failure


_FAILED_JOB_STATES = frozenset({
    JobState.TERMINATED,
    JobState.KILLED,
    JobState.EXCEPTION,
    JobState.SERVICE,
})


class JobMonitor:
    """
    Polls job documents to completion.

    Args:
        gateway: Gateway used to re-fetch the job document
        poll_interval: Seconds between polls
        timeout: Default maximum wait in seconds, None for unbounded
        cancel_event: Default event that aborts waiting when set
    """

    def __init__(
        self,
        gateway: Gateway,
        poll_interval: float = 0.1,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self._gateway = gateway
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.cancel_event = cancel_event

    def handle_result(
        self,
        out_params: Document,
        operation: str,
        timeout=_UNSET,
        cancel_event: Optional[threading.Event] = None,
    ) -> Document:
        """
        Interpret a method's out parameters.

        Returns the out parameters once the operation has completed, so
        callers can read result references such as ``ResultingSystem``.

        Raises:
            OperationFailedError: Non-zero, non-job return value
            JobFailedError: The job ended in a failure state
            JobTimeoutError: The job outlived the timeout
            JobCancelledError: The cancel event was set
        """
        return_value = out_params.get_int("ReturnValue")
        if return_value is None:
            return_value = ReturnCode.COMPLETED.value

        if return_value == ReturnCode.COMPLETED.value:
            return out_params

        if return_value == ReturnCode.JOB_STARTED.value:
            job_path = out_params.require_str("Job")
            self.wait(job_path, operation, timeout=timeout, cancel_event=cancel_event)
            return out_params

        raise OperationFailedError(operation, return_value, f"{operation} failed")

    @timed
    def wait(
        self,
        job_path: str,
        operation: str,
        timeout=_UNSET,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Block until the job at ``job_path`` completes."""
        if timeout is _UNSET:
            timeout = self.timeout
        if cancel_event is None:
            cancel_event = self.cancel_event

        deadline = time.monotonic() + timeout if timeout is not None else None
        logger.debug(f"Waiting for {operation} job {job_path}")

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise JobCancelledError(operation, job_path)

            job = self._gateway.get_object(job_path)
            state = JobState.from_code(job.get_int("JobState"))

            if state is JobState.COMPLETED:
                logger.debug(f"{operation} job completed")
                return

            if state.is_failure:
                error_code = job.get_int("ErrorCode") or 0
                description = job.get_str("ErrorDescription") or "Unknown error"
                logger.error(f"{operation} job ended in {state.name}: {description}")
                raise JobFailedError(operation, error_code, description)

            percent = job.get_int("PercentComplete")
            if percent is not None:
                logger.debug(f"{operation} job {state.name.lower()} ({percent}%)")

            if deadline is not None and time.monotonic() >= deadline:
                raise JobTimeoutError(operation, job_path, timeout)

            if cancel_event is not None:
                if cancel_event.wait(self.poll_interval):
                    raise JobCancelledError(operation, job_path)
            else:
                time.sleep(self.poll_interval)
