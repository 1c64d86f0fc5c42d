"""
VM Creator - Defines new Hyper-V VMs from VmSettings.
"""

from __future__ import annotations

import logging

from common.exceptions import OperationFailedError
from ..storage.controller import ControllerType, add_controller
from .gateway import Document
from .service import ServiceClient
from .vm_config import Generation, MemorySettings, ProcessorSettings, VmSettings
from .vm_lifecycle import (
    MEMORY_SETTINGS_CLASS,
    PROCESSOR_SETTINGS_CLASS,
    SECURITY_SETTINGS_CLASS,
    VM_SETTINGS_CLASS,
    VirtualMachine,
)

logger = logging.getLogger(__name__)


class VMCreator:
    """
    Creates VMs.

    Definition happens in steps: DefineSystem with the system settings,
    then memory, processor and security are modified on the new VM and
    Generation 2 VMs get a SCSI controller. A failure part way through
    leaves the VM defined with whatever was applied so far.
    """

    def __init__(self, client: ServiceClient):
        self._client = client
        self._gateway = client.gateway

    def create(self, settings: VmSettings) -> VirtualMachine:
        """
        Create a VM.

        Args:
            settings: VM settings

        Returns:
            Handle to the new VM, refreshed

        Raises:
            ValidationError: If settings are invalid (nothing is sent to Hyper-V)
            OperationFailedError, JobFailedError: If a step fails
        """
        settings.ensure_valid()
        logger.info(f"Creating VM: {settings.name}")

        system = self._system_settings(settings)
        out_params = self._client.invoke(
            "DefineSystem",
            SystemSettings=system,
            ResourceSettings=[],
        )
        vm = VirtualMachine.from_document(
            self._client, self._client.resolve(out_params, "ResultingSystem")
        )
        logger.debug(f"Defined VM {vm.name} ({vm.id})")

        try:
            self._configure_memory(vm, settings.memory)
            self._configure_processor(vm, settings.processor)
            if settings.security.tpm_enabled:
                self._enable_tpm(vm)
            if settings.generation is Generation.GEN2:
                add_controller(self._client, vm, ControllerType.SCSI)
        except Exception:
            logger.error(f"VM {vm.name} was defined but not fully configured")
            raise

        vm.refresh()
        logger.info(f"Created VM: {vm.name} ({vm.generation.name}, {vm.state.label})")
        return vm

    def _system_settings(self, settings: VmSettings) -> Document:
        system = self._gateway.spawn_instance(VM_SETTINGS_CLASS)
        system.put("ElementName", settings.name)
        system.put("VirtualSystemSubType", settings.generation.subtype)

        if settings.notes:
            system.put("Notes", [settings.notes])
        if settings.config_path:
            system.put("ConfigurationDataRoot", settings.config_path)
        if settings.snapshot_path:
            system.put("SnapshotDataRoot", settings.snapshot_path)
        if settings.smart_paging_path:
            system.put("SwapFileDataRoot", settings.smart_paging_path)

        system.put("AutomaticStartupAction", settings.automatic_start_action.code)
        system.put("AutomaticStartupActionDelay", settings.automatic_start_delay)
        system.put("AutomaticShutdownAction", settings.automatic_stop_action.code)
        system.put("UserSnapshotType", settings.checkpoint_type.code)

        if settings.generation is Generation.GEN2:
            system.put("SecureBootEnabled", settings.security.secure_boot)
            if settings.security.secure_boot_template:
                system.put("SecureBootTemplateId", settings.security.secure_boot_template)

        return system

    def _required_sub_settings(self, vm: VirtualMachine, class_name: str) -> Document:
        document = vm.sub_settings(class_name)
        if document is None:
            raise OperationFailedError(
                f"Configure{class_name}", 0, f"{class_name} not found for VM '{vm.name}'"
            )
        return document

    def _configure_memory(self, vm: VirtualMachine, memory: MemorySettings) -> None:
        document = self._required_sub_settings(vm, MEMORY_SETTINGS_CLASS)
        document.put("VirtualQuantity", memory.startup_mb)
        document.put("Reservation", memory.startup_mb)
        document.put("Limit", memory.startup_mb)

        if memory.dynamic:
            document.put("DynamicMemoryEnabled", True)
            document.put("Reservation", memory.effective_minimum_mb)
            document.put("Limit", memory.effective_maximum_mb)
            document.put("TargetMemoryBuffer", memory.buffer_percent)

        self._client.invoke(
            "ModifyResourceSettings",
            operation="ConfigureMemory",
            ResourceSettings=[document],
        )

    def _configure_processor(self, vm: VirtualMachine, processor: ProcessorSettings) -> None:
        document = self._required_sub_settings(vm, PROCESSOR_SETTINGS_CLASS)
        document.put("VirtualQuantity", processor.count)
        if processor.nested_virtualization:
            document.put("ExposeVirtualizationExtensions", True)

        self._client.invoke(
            "ModifyResourceSettings",
            operation="ConfigureProcessor",
            ResourceSettings=[document],
        )

    def _enable_tpm(self, vm: VirtualMachine) -> None:
        document = self._required_sub_settings(vm, SECURITY_SETTINGS_CLASS)
        document.put("TpmEnabled", True)
        self._client.invoke(
            "ModifySecuritySettings",
            operation="ConfigureSecurity",
            SecuritySettingData=document,
        )
