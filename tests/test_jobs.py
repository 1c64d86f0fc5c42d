"""
Tests for method result handling and job polling.
"""

import threading

import pytest


def _out(**props):
    from fake_hyperv import FakeDocument

    return FakeDocument("__PARAMETERS", props)


class TestHandleResult:
    """Tests for JobMonitor.handle_result."""

    def test_completed_returns_out_params(self, job_monitor):
        """Return value 0 means the method already finished."""
        out = _out(ReturnValue=0, ResultingSystem="path")
        assert job_monitor.handle_result(out, "DefineSystem") is out

    def test_missing_return_value_treated_as_completed(self, job_monitor):
        out = _out()
        assert job_monitor.handle_result(out, "Noop") is out

    def test_other_code_raises(self, job_monitor):
        from common.exceptions import OperationFailedError

        with pytest.raises(OperationFailedError) as exc_info:
            job_monitor.handle_result(_out(ReturnValue=32775), "RequestStateChange")

        assert exc_info.value.operation == "RequestStateChange"
        assert exc_info.value.return_value == 32775

    def test_job_started_without_job_path(self, job_monitor):
        from common.exceptions import MissingRequiredFieldError

        with pytest.raises(MissingRequiredFieldError):
            job_monitor.handle_result(_out(ReturnValue=4096), "DefineSystem")


class TestWait:
    """Tests for polling asynchronous jobs."""

    def test_job_completes_after_polls(self, async_hyperv):
        from hyperv_manager.core.jobs import JobMonitor

        monitor = JobMonitor(async_hyperv, poll_interval=0.001)
        job = async_hyperv._new_job(7)
        out = _out(ReturnValue=4096, Job=job)

        assert monitor.handle_result(out, "DefineSystem") is out
        assert async_hyperv.stored(job).properties["JobState"] == 7

    def test_failed_job_raises_with_description(self, fake_hyperv, job_monitor):
        """A job ending in Exception surfaces its error code and description."""
        from common.exceptions import JobFailedError

        job = fake_hyperv._new_job(10, error_code=32773, description="Invalid parameter")

        with pytest.raises(JobFailedError) as exc_info:
            job_monitor.wait(job, "AddResourceSettings")

        assert exc_info.value.error_code == 32773
        assert exc_info.value.error_description == "Invalid parameter"

    @pytest.mark.parametrize("state", [8, 9, 10, 11])
    def test_every_failure_state_raises(self, fake_hyperv, job_monitor, state):
        from common.exceptions import JobFailedError

        job = fake_hyperv._new_job(state, description=None)
        with pytest.raises(JobFailedError) as exc_info:
            job_monitor.wait(job, "Op")
        assert exc_info.value.error_description == "Unknown error"

    def test_timeout(self):
        from common.exceptions import JobTimeoutError
        from fake_hyperv import FakeGateway
        from hyperv_manager.core.jobs import JobMonitor

        gateway = FakeGateway(hang_jobs=True)
        monitor = JobMonitor(gateway, poll_interval=0.001, timeout=0.02)
        job = gateway._new_job(7)

        with pytest.raises(JobTimeoutError) as exc_info:
            monitor.wait(job, "ApplySnapshot")
        assert exc_info.value.job_path == job

    def test_per_call_timeout_overrides_default(self):
        from common.exceptions import JobTimeoutError
        from fake_hyperv import FakeGateway
        from hyperv_manager.core.jobs import JobMonitor

        gateway = FakeGateway(hang_jobs=True)
        monitor = JobMonitor(gateway, poll_interval=0.001, timeout=None)

        with pytest.raises(JobTimeoutError):
            monitor.wait(gateway._new_job(7), "Op", timeout=0.01)

    def test_cancel_event_set_before_wait(self):
        from common.exceptions import JobCancelledError
        from fake_hyperv import FakeGateway
        from hyperv_manager.core.jobs import JobMonitor

        gateway = FakeGateway(hang_jobs=True)
        cancel = threading.Event()
        cancel.set()
        monitor = JobMonitor(gateway, poll_interval=0.001, cancel_event=cancel)

        with pytest.raises(JobCancelledError):
            monitor.wait(gateway._new_job(7), "CreateSnapshot")

    def test_cancel_event_set_while_waiting(self):
        """Setting the event from another thread stops a hung wait."""
        from common.exceptions import JobCancelledError
        from fake_hyperv import FakeGateway
        from hyperv_manager.core.jobs import JobMonitor

        gateway = FakeGateway(hang_jobs=True)
        cancel = threading.Event()
        monitor = JobMonitor(gateway, poll_interval=0.01)
        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        try:
            with pytest.raises(JobCancelledError):
                monitor.wait(gateway._new_job(7), "Op", cancel_event=cancel)
        finally:
            timer.cancel()


class TestJobState:
    """Tests for JobState codes."""

    def test_from_code_fallback(self):
        from hyperv_manager.core.jobs import JobState

        assert JobState.from_code(7) is JobState.COMPLETED
        assert JobState.from_code(99) is JobState.UNKNOWN
        assert JobState.from_code(None) is JobState.UNKNOWN

    def test_terminal_states(self):
        from hyperv_manager.core.jobs import JobState

        assert JobState.COMPLETED.is_terminal
        assert not JobState.COMPLETED.is_failure
        assert JobState.KILLED.is_failure
        assert not JobState.RUNNING.is_terminal
