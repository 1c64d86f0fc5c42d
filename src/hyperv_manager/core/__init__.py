"""
Hyper-V Manager Core - gateway, jobs, VM state and settings.

VM creation and the HyperVManager facade depend on the storage package
and are imported from the top-level package instead.
"""

from .config import ManagerConfig
from .connection import WmiDocument, WmiGateway, ensure_initialized, release_thread
from .gateway import HYPERV_NAMESPACE, Document, Gateway, associators, parse_instance_text, select
from .jobs import JobMonitor, JobState, ReturnCode
from .service import ServiceClient
from .state_machine import RequestedState, VMStateMachine, VMTransition, VmState
from .validation import ValidationIssue
from .vm_config import (
    AutomaticStartAction,
    AutomaticStopAction,
    CheckpointType,
    ConsistencyLevel,
    Generation,
    MemorySettings,
    ProcessorSettings,
    SecuritySettings,
    VmSettings,
)
from .vm_lifecycle import ShutdownMethod, VirtualMachine

__all__ = [
    "ManagerConfig",
    "WmiDocument",
    "WmiGateway",
    "ensure_initialized",
    "release_thread",
    "HYPERV_NAMESPACE",
    "Document",
    "Gateway",
    "associators",
    "parse_instance_text",
    "select",
    "JobMonitor",
    "JobState",
    "ReturnCode",
    "ServiceClient",
    "RequestedState",
    "VMStateMachine",
    "VMTransition",
    "VmState",
    "ValidationIssue",
    "AutomaticStartAction",
    "AutomaticStopAction",
    "CheckpointType",
    "ConsistencyLevel",
    "Generation",
    "MemorySettings",
    "ProcessorSettings",
    "SecuritySettings",
    "VmSettings",
    "ShutdownMethod",
    "VirtualMachine",
]
