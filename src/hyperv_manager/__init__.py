"""
Hyper-V Manager

VM lifecycle, storage, networking and checkpoint management for Hyper-V
over WMI.
"""

__version__ = "0.1.0"

from .core import (
    Generation,
    ManagerConfig,
    MemorySettings,
    ProcessorSettings,
    SecuritySettings,
    ShutdownMethod,
    VirtualMachine,
    VmSettings,
    VmState,
    WmiGateway,
)
from .storage import DiskAttachment, IsoAttachment, VhdManager, VhdSettings
from .network import NetworkAdapterSettings, VirtualSwitchSettings
from .checkpoint import CheckpointSettings
from .core.hyperv_manager import HyperVManager

__all__ = [
    "HyperVManager",
    "ManagerConfig",
    "Generation",
    "MemorySettings",
    "ProcessorSettings",
    "SecuritySettings",
    "ShutdownMethod",
    "VirtualMachine",
    "VmSettings",
    "VmState",
    "WmiGateway",
    "DiskAttachment",
    "IsoAttachment",
    "VhdManager",
    "VhdSettings",
    "NetworkAdapterSettings",
    "VirtualSwitchSettings",
    "CheckpointSettings",
]
