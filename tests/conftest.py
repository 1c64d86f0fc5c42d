"""
Pytest configuration and shared fixtures for hyperv-manager tests.

Most tests run against the in-memory host in fake_hyperv.py; tests that
need a real Hyper-V host are marked requires_hyperv.
"""

import os
import sys
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))


# ============ Environment Fixtures ============

@pytest.fixture
def temp_home(tmp_path: Path, monkeypatch) -> Generator[Path, None, None]:
    """Provide a temporary home directory for tests."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    (tmp_path / ".config/hyperv-manager").mkdir(parents=True)
    yield tmp_path


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Provide temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


# ============ Gateway Fixtures ============

@pytest.fixture
def fake_hyperv():
    """Simulated Hyper-V host with jobs completing inline."""
    from fake_hyperv import FakeGateway

    return FakeGateway()


@pytest.fixture
def async_hyperv():
    """Simulated Hyper-V host whose methods return running jobs."""
    from fake_hyperv import FakeGateway

    return FakeGateway(async_jobs=True, job_polls=2)


@pytest.fixture
def mock_gateway():
    """MagicMock standing in for a Gateway."""
    from hyperv_manager.core.gateway import Gateway

    return MagicMock(spec=Gateway)


@pytest.fixture
def job_monitor(fake_hyperv):
    from hyperv_manager.core.jobs import JobMonitor

    return JobMonitor(fake_hyperv, poll_interval=0.001)


@pytest.fixture
def client(fake_hyperv, job_monitor):
    """Service client for the virtual system management service."""
    from hyperv_manager.core.service import ServiceClient

    return ServiceClient(fake_hyperv, job_monitor)


@pytest.fixture
def manager(fake_hyperv):
    """HyperVManager over the simulated host."""
    from hyperv_manager import HyperVManager, ManagerConfig

    return HyperVManager(gateway=fake_hyperv, config=ManagerConfig(poll_interval_ms=1))


@pytest.fixture
def async_manager(async_hyperv):
    from hyperv_manager import HyperVManager, ManagerConfig

    return HyperVManager(
        gateway=async_hyperv,
        config=ManagerConfig(poll_interval_ms=1, job_timeout_seconds=5),
    )


# ============ VM Fixtures ============

@pytest.fixture
def gen2_vm(fake_hyperv, manager):
    """An existing, powered-off Generation 2 VM."""
    fake_hyperv.add_vm("test-vm", generation=2)
    return manager.get_vm("test-vm")


@pytest.fixture
def gen1_vm(fake_hyperv, manager):
    """An existing, powered-off Generation 1 VM with its two IDE controllers."""
    fake_hyperv.add_vm("legacy-vm", generation=1)
    return manager.get_vm("legacy-vm")


@pytest.fixture
def running_vm(fake_hyperv, manager):
    from fake_hyperv import STATE_RUNNING

    fake_hyperv.add_vm("running-vm", generation=2, state=STATE_RUNNING)
    return manager.get_vm("running-vm")


@pytest.fixture
def sample_vm_settings():
    """Provide sample VM settings."""
    from hyperv_manager.core.vm_config import (
        Generation, MemorySettings, ProcessorSettings, VmSettings,
    )

    return VmSettings(
        name="test-vm",
        generation=Generation.GEN2,
        memory=MemorySettings(startup_mb=4096),
        processor=ProcessorSettings(count=2),
    )


# ============ Marker Configuration ============

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "unit: fast unit tests with no external deps"
    )
    config.addinivalue_line(
        "markers", "integration: tests exercising several components together"
    )
    config.addinivalue_line(
        "markers", "requires_hyperv: marks tests that need a Windows Hyper-V host"
    )


def pytest_collection_modifyitems(config, items):
    """Skip tests based on environment."""
    skip_hyperv = pytest.mark.skip(reason="Requires Windows with Hyper-V and pywin32")

    from hyperv_manager.core.connection import PYWIN32_AVAILABLE
    hyperv_available = (
        sys.platform == "win32"
        and PYWIN32_AVAILABLE
        and os.environ.get("HYPERV_TESTS") == "1"
    )

    for item in items:
        if "requires_hyperv" in item.keywords and not hyperv_available:
            item.add_marker(skip_hyperv)
