"""
HyperVManager - High-level facade for Hyper-V management.

Owns the shared gateway and job monitor and delegates to:
- VirtualMachine handles for power operations
- VMCreator / VMDestroyer for definition and deletion
- StorageManager and VhdManager for disks, ISOs and virtual disk files
- SwitchManager and NetworkAdapterManager for networking
- CheckpointManager for checkpoints
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from common.exceptions import VMNotFoundError, ValidationError
from common.logging_config import LogContext, setup_logging
from ..checkpoint.checkpoint import Checkpoint, CheckpointManager, CheckpointSettings
from ..network.adapter import NetworkAdapter, NetworkAdapterManager, NetworkAdapterSettings
from ..network.physical_adapter import PhysicalAdapter, list_physical_adapters
from ..network.switch import SwitchManager, VirtualSwitch, VirtualSwitchSettings
from ..storage.controller import (
    AttachedMedia,
    ControllerType,
    DiskAttachment,
    IsoAttachment,
    StorageController,
    StorageManager,
)
from ..storage.vhd import Vhd, VhdFormat, VhdManager, VhdSettings, VhdType
from .config import ManagerConfig
from .connection import WmiGateway
from .gateway import Gateway, select
from .jobs import JobMonitor
from .service import ServiceClient
from .state_machine import VmState
from .vm_config import VmSettings
from .vm_creator import VMCreator
from .vm_destroyer import VMDestroyer
from .vm_lifecycle import VM_CLASS, VirtualMachine

logger = logging.getLogger(__name__)

VM_CAPTION = "Virtual Machine"


class HyperVManager:
    """
    Entry point for managing VMs on one Hyper-V host.

    Every handle returned shares this manager's gateway. Operations block
    until their jobs finish; the job timeout and poll interval come from
    the ManagerConfig.

    Example:
        with HyperVManager() as hv:
            vm = hv.create_vm(settings)
            vm.start()
    """

    def __init__(
        self,
        gateway: Optional[Gateway] = None,
        config: Optional[ManagerConfig] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            gateway: Gateway to use; defaults to a WmiGateway built from config
            config: Manager configuration
            cancel_event: Event that aborts any job wait when set

        Raises:
            ValidationError: If the configuration is invalid
        """
        self.config = config or ManagerConfig()
        errors = self.config.validate()
        if errors:
            raise ValidationError("config", "; ".join(errors))

        self._gateway = gateway or WmiGateway(self.config.namespace, self.config.host)
        self._jobs = JobMonitor(
            self._gateway,
            poll_interval=self.config.poll_interval,
            timeout=self.config.job_timeout_seconds,
            cancel_event=cancel_event,
        )

        self._client = ServiceClient(self._gateway, self._jobs)
        self._creator = VMCreator(self._client)
        self._destroyer = VMDestroyer(self._client)
        self._storage = StorageManager(self._client)
        self._vhds = VhdManager(self._gateway, self._jobs)
        self._switches = SwitchManager(self._gateway, self._jobs)
        self._adapters = NetworkAdapterManager(self._gateway, self._jobs)
        self._checkpoints = CheckpointManager(self._gateway, self._jobs)

    @classmethod
    def from_config_file(
        cls,
        path: Optional[Union[str, Path]] = None,
        configure_logging: bool = True,
    ) -> "HyperVManager":
        """Build a manager from a JSON config file, optionally setting up logging from it."""
        config = ManagerConfig.load(path)
        if configure_logging:
            setup_logging(
                level=config.log_level,
                log_file=Path(config.log_file) if config.log_file else None,
                json_logs=config.json_logs,
            )
        return cls(config=config)

    # --- connection -------------------------------------------------------

    @property
    def gateway(self) -> Gateway:
        return self._gateway

    @property
    def jobs(self) -> JobMonitor:
        return self._jobs

    def connect(self) -> None:
        """
        Connect the gateway, if it needs connecting.

        Raises:
            WmiConnectionError: If the namespace cannot be reached
        """
        connect = getattr(self._gateway, "connect", None)
        if connect is not None:
            connect()

    def disconnect(self) -> None:
        disconnect = getattr(self._gateway, "disconnect", None)
        if disconnect is not None:
            disconnect()

    def __enter__(self) -> "HyperVManager":
        self.connect()
        return self

    def __exit__(self, *args):
        self.disconnect()

    # --- virtual machines -------------------------------------------------

    def list_vms(self) -> List[VirtualMachine]:
        documents = self._gateway.query(select(VM_CLASS, Caption=VM_CAPTION))
        return [VirtualMachine.from_document(self._client, d) for d in documents]

    def get_vm(self, name: str) -> VirtualMachine:
        """
        Raises:
            VMNotFoundError: No VM has this name
        """
        document = self._gateway.query_first(
            select(VM_CLASS, Caption=VM_CAPTION, ElementName=name)
        )
        if document is None:
            raise VMNotFoundError(name)
        return VirtualMachine.from_document(self._client, document)

    def get_vm_by_id(self, vm_id: str) -> VirtualMachine:
        document = self._gateway.query_first(
            select(VM_CLASS, Caption=VM_CAPTION, Name=vm_id)
        )
        if document is None:
            raise VMNotFoundError(vm_id)
        return VirtualMachine.from_document(self._client, document)

    def create_vm(self, settings: VmSettings) -> VirtualMachine:
        with LogContext(vm_name=settings.name, operation="create_vm"):
            return self._creator.create(settings)

    def delete_vm(self, vm: VirtualMachine, force_stop: bool = False) -> None:
        with LogContext(vm_name=vm.name, operation="delete_vm"):
            self._destroyer.delete(vm, force_stop=force_stop)

    def vm_summary(self) -> Dict[str, int]:
        """Count VMs per state label."""
        counts: Dict[str, int] = {}
        for vm in self.list_vms():
            counts[vm.state.label] = counts.get(vm.state.label, 0) + 1
        return counts

    def running_vms(self) -> List[VirtualMachine]:
        return [vm for vm in self.list_vms() if vm.state is VmState.RUNNING]

    # --- storage ----------------------------------------------------------

    def find_or_create_controller(
        self, vm: VirtualMachine, controller_type: ControllerType, number: int = 0
    ) -> StorageController:
        return self._storage.find_or_create_controller(vm, controller_type, number)

    def attach_disk(self, vm: VirtualMachine, attachment: DiskAttachment) -> AttachedMedia:
        with LogContext(vm_name=vm.name, operation="attach_disk"):
            return self._storage.attach_disk(vm, attachment)

    def mount_iso(self, vm: VirtualMachine, attachment: IsoAttachment) -> AttachedMedia:
        with LogContext(vm_name=vm.name, operation="mount_iso"):
            return self._storage.mount_iso(vm, attachment)

    def list_disks(self, vm: VirtualMachine) -> List[AttachedMedia]:
        return self._storage.list_disks(vm)

    def list_isos(self, vm: VirtualMachine) -> List[AttachedMedia]:
        return self._storage.list_isos(vm)

    # --- virtual hard disks -----------------------------------------------

    def create_vhd(self, settings: VhdSettings) -> Vhd:
        self._vhds.create(settings)
        return self._vhds.get_info(settings.path)

    def get_vhd(self, path: str) -> Vhd:
        return self._vhds.get_info(path)

    def resize_vhd(self, path: str, size_bytes: int) -> None:
        self._vhds.resize(path, size_bytes)

    def convert_vhd(
        self,
        source_path: str,
        destination_path: str,
        disk_type: VhdType = VhdType.DYNAMIC,
        format: Optional[VhdFormat] = None,
    ) -> None:
        self._vhds.convert(source_path, destination_path, disk_type, format)

    def compact_vhd(self, path: str) -> None:
        self._vhds.compact(path)

    def merge_vhd(self, source_path: str, destination_path: Optional[str] = None) -> None:
        self._vhds.merge(source_path, destination_path)

    # --- networking -------------------------------------------------------

    def list_switches(self) -> List[VirtualSwitch]:
        return self._switches.list_switches()

    def get_switch(self, name: str) -> VirtualSwitch:
        return self._switches.get_switch(name)

    def create_switch(self, settings: VirtualSwitchSettings) -> VirtualSwitch:
        return self._switches.create_switch(settings)

    def delete_switch(self, switch: VirtualSwitch) -> None:
        self._switches.delete_switch(switch)

    def list_physical_adapters(self) -> List[PhysicalAdapter]:
        return list_physical_adapters(self._gateway)

    def add_network_adapter(
        self, vm: VirtualMachine, settings: NetworkAdapterSettings
    ) -> NetworkAdapter:
        """
        Add a network adapter, connecting it when ``settings.switch_name`` is set.

        The switch is looked up before the adapter is added, so an unknown
        switch leaves the VM unchanged.

        Raises:
            SwitchNotFoundError: The named switch does not exist
        """
        with LogContext(vm_name=vm.name, operation="add_network_adapter"):
            switch = self._switches.get_switch(settings.switch_name) if settings.switch_name else None
            adapter = self._adapters.add_adapter(vm, settings)
            if switch is not None:
                adapter = self._adapters.connect(vm, adapter, switch, settings)
            return adapter

    def connect_network_adapter(
        self,
        vm: VirtualMachine,
        adapter: NetworkAdapter,
        switch_name: str,
        settings: Optional[NetworkAdapterSettings] = None,
    ) -> NetworkAdapter:
        switch = self._switches.get_switch(switch_name)
        return self._adapters.connect(vm, adapter, switch, settings)

    def list_network_adapters(self, vm: VirtualMachine) -> List[NetworkAdapter]:
        return self._adapters.list_adapters(vm)

    # --- checkpoints ------------------------------------------------------

    def list_checkpoints(self, vm: VirtualMachine) -> List[Checkpoint]:
        return self._checkpoints.list(vm)

    def get_checkpoint(self, vm: VirtualMachine, name: str) -> Checkpoint:
        return self._checkpoints.get(vm, name)

    def create_checkpoint(self, vm: VirtualMachine, settings: CheckpointSettings) -> Checkpoint:
        with LogContext(vm_name=vm.name, operation="create_checkpoint"):
            return self._checkpoints.create(vm, settings)

    def apply_checkpoint(self, vm: VirtualMachine, checkpoint: Checkpoint) -> VmState:
        with LogContext(vm_name=vm.name, operation="apply_checkpoint"):
            return self._checkpoints.apply(vm, checkpoint)

    def delete_checkpoint(self, checkpoint: Checkpoint) -> None:
        self._checkpoints.delete(checkpoint)

    def checkpoint_tree(self, vm: VirtualMachine) -> Dict[Optional[str], List[str]]:
        return CheckpointManager.tree(self._checkpoints.list(vm))
