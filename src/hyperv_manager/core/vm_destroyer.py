"""
VM Destroyer

Deletion of virtual machines. Virtual disk files are left on disk.
"""

from __future__ import annotations

import logging

from common.exceptions import InvalidStateError
from .service import ServiceClient
from .state_machine import VmState
from .vm_lifecycle import ShutdownMethod, VirtualMachine

logger = logging.getLogger(__name__)


class VMDestroyer:
    """
    Deletes virtual machines.

    A VM must be off before it can be destroyed; ``force_stop`` powers it
    off first.
    """

    def __init__(self, client: ServiceClient):
        self._client = client

    def delete(self, vm: VirtualMachine, force_stop: bool = False) -> None:
        """
        Delete a virtual machine.

        Args:
            vm: VM to delete
            force_stop: Power the VM off first if it is not off

        Raises:
            InvalidStateError: If the VM is not off and force_stop is False
        """
        logger.info(f"Deleting VM: {vm.name}")

        state = vm.refresh()
        if state is not VmState.OFF:
            if force_stop and vm.can_stop():
                logger.info(f"Forcing off VM {vm.name} before deletion")
                vm.stop(ShutdownMethod.FORCE)
                state = vm.state
            if state is not VmState.OFF:
                raise InvalidStateError(vm.name, state.label, "delete")

        self._client.invoke("DestroySystem", AffectedSystem=vm.path)
        logger.info(f"Deleted VM: {vm.name}")
