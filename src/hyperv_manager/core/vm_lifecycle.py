"""
VM Lifecycle Controller

Handles VM power transitions: start, stop, pause, resume, save, reset.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from common.exceptions import (
    HyperVError,
    OperationFailedError,
    WmiQueryError,
)
from .gateway import Document, Gateway, associators, select
from .service import ServiceClient
from .state_machine import (
    RequestedState,
    TransitionCallback,
    VMStateMachine,
    VMTransition,
    VmState,
)
from .vm_config import Generation

logger = logging.getLogger(__name__)

VM_CLASS = "Msvm_ComputerSystem"
VM_SETTINGS_CLASS = "Msvm_VirtualSystemSettingData"
SETTINGS_ASSOCIATION = "Msvm_SettingsDefineState"
MEMORY_SETTINGS_CLASS = "Msvm_MemorySettingData"
PROCESSOR_SETTINGS_CLASS = "Msvm_ProcessorSettingData"
SECURITY_SETTINGS_CLASS = "Msvm_SecuritySettingData"
SHUTDOWN_COMPONENT_CLASS = "Msvm_ShutdownComponent"

SHUTDOWN_REASON = "User requested shutdown"


class ShutdownMethod(Enum):
    """Methods for stopping a VM."""
    FORCE = "force"                              # Immediate power off
    GRACEFUL = "graceful"                        # Guest shutdown integration service
    GRACEFUL_WITH_FORCE = "graceful_with_force"  # Guest shutdown, power off if it fails


def settings_query(vm_path: str) -> str:
    return associators(vm_path, VM_SETTINGS_CLASS, assoc_class=SETTINGS_ASSOCIATION)


def _read_state(document: Document) -> VmState:
    return VmState.from_code(document.get_int("EnabledState") or 0)


class VirtualMachine:
    """
    Handle to a Hyper-V VM.

    The cached ``state`` is only as fresh as the last refresh(); every
    power operation checks it, issues the request and then re-reads it.
    """

    def __init__(
        self,
        client: ServiceClient,
        name: str,
        vm_id: str,
        state: VmState,
        generation: Generation,
        path: str,
    ):
        self._client = client
        self._name = name
        self._id = vm_id
        self._generation = generation
        self._path = path
        self._machine = VMStateMachine(name, state)

    @classmethod
    def from_document(cls, client: ServiceClient, document: Document) -> "VirtualMachine":
        """
        Build a handle from an ``Msvm_ComputerSystem`` document.

        Raises:
            MissingRequiredFieldError: ElementName, Name or the object path is absent
        """
        name = document.require_str("ElementName")
        vm_id = document.require_str("Name")
        path = document.path

        settings = client.gateway.query_first(settings_query(path))
        subtype = settings.get_str("VirtualSystemSubType") if settings is not None else None

        return cls(
            client,
            name=name,
            vm_id=vm_id,
            state=_read_state(document),
            generation=Generation.from_subtype(subtype),
            path=path,
        )

    # --- identity -------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def id(self) -> str:
        return self._id

    @property
    def path(self) -> str:
        return self._path

    @property
    def generation(self) -> Generation:
        return self._generation

    @property
    def state(self) -> VmState:
        return self._machine.state

    @property
    def gateway(self) -> Gateway:
        return self._client.gateway

    @property
    def client(self) -> ServiceClient:
        return self._client

    # --- guards ---------------------------------------------------------

    def can_start(self) -> bool:
        return self._machine.can_transition(VMTransition.START)

    def can_stop(self) -> bool:
        return self._machine.can_transition(VMTransition.STOP)

    def can_pause(self) -> bool:
        return self._machine.can_transition(VMTransition.PAUSE)

    def can_resume(self) -> bool:
        return self._machine.can_transition(VMTransition.RESUME)

    def can_save(self) -> bool:
        return self._machine.can_transition(VMTransition.SAVE)

    def can_reset(self) -> bool:
        return self._machine.can_transition(VMTransition.RESET)

    def on_transition(self, callback: TransitionCallback) -> None:
        self._machine.on_transition(callback)

    # --- settings documents ----------------------------------------------

    def refresh(self) -> VmState:
        """Re-read the power state from Hyper-V."""
        state = _read_state(self.gateway.get_object(self._path))
        self._machine.set_state(state)
        return state

    def settings_document(self) -> Document:
        """The VM's Msvm_VirtualSystemSettingData."""
        wql = settings_query(self._path)
        settings = self.gateway.query_first(wql)
        if settings is None:
            raise WmiQueryError(wql)
        return settings

    def sub_settings(self, class_name: str) -> Optional[Document]:
        """First settings document of ``class_name`` attached to the VM settings."""
        return self.gateway.query_first(
            associators(self.settings_document().path, class_name)
        )

    def memory_mb(self) -> Optional[int]:
        memory = self.sub_settings(MEMORY_SETTINGS_CLASS)
        return memory.get_int("VirtualQuantity") if memory is not None else None

    def processor_count(self) -> Optional[int]:
        processor = self.sub_settings(PROCESSOR_SETTINGS_CLASS)
        return processor.get_int("VirtualQuantity") if processor is not None else None

    # --- power operations -------------------------------------------------

    def start(self) -> None:
        self._transition(VMTransition.START)

    def pause(self) -> None:
        self._transition(VMTransition.PAUSE)

    def resume(self) -> None:
        self._transition(VMTransition.RESUME)

    def save(self) -> None:
        self._transition(VMTransition.SAVE)

    def reset(self) -> None:
        self._transition(VMTransition.RESET)

    def stop(self, method: ShutdownMethod = ShutdownMethod.GRACEFUL) -> None:
        """
        Stop the VM.

        Args:
            method: Shutdown method

        Raises:
            InvalidStateError: If the VM is not running, paused or saved
            OperationFailedError: Graceful shutdown without the shutdown
                integration service, or a failed request
        """
        requested = self._machine.require(VMTransition.STOP)

        if method is ShutdownMethod.FORCE:
            self._request_state(requested)
        elif method is ShutdownMethod.GRACEFUL:
            self._shutdown_guest()
        else:
            try:
                self._shutdown_guest()
            except HyperVError as e:
                logger.warning(f"Graceful shutdown of {self._name} failed, forcing off: {e}")
                self._request_state(requested)

        self._machine.complete(VMTransition.STOP, self.refresh())

    def _transition(self, transition: VMTransition) -> None:
        requested = self._machine.require(transition)
        self._request_state(requested)
        self._machine.complete(transition, self.refresh())

    def _request_state(self, requested: RequestedState) -> None:
        logger.info(f"Requesting {requested.name} for VM {self._name}")
        self._client.invoke(
            "RequestStateChange",
            target_path=self._path,
            class_name=VM_CLASS,
            RequestedState=requested.code,
        )

    def _shutdown_guest(self) -> None:
        component = self.gateway.query_first(
            select(SHUTDOWN_COMPONENT_CLASS, SystemName=self._id)
        )
        if component is None:
            raise OperationFailedError(
                "InitiateShutdown", 0, "Shutdown integration service not available"
            )

        logger.info(f"Initiating guest shutdown of VM {self._name}")
        self._client.invoke(
            "InitiateShutdown",
            target_path=component.path,
            class_name=SHUTDOWN_COMPONENT_CLASS,
            Force=False,
            Reason=SHUTDOWN_REASON,
        )

    def to_dict(self) -> dict:
        return {
            "name": self._name,
            "id": self._id,
            "state": self.state.label,
            "generation": self._generation.number,
        }

    def __repr__(self) -> str:
        return f"<VirtualMachine {self._name} ({self._id}) {self.state.label}>"
