"""
Checkpoint Manager

Creates, applies and deletes VM checkpoints. Checkpoints are realized
snapshot settings documents linked into a tree through their Parent
property.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from common.exceptions import CheckpointNotFoundError, InvalidStateError
from ..core.gateway import Document, select
from ..core.service import ServiceClient
from ..core.state_machine import VmState
from ..core.validation import MAX_NAME_LENGTH, ValidationIssue, ensure_valid
from ..core.vm_config import CheckpointType, ConsistencyLevel
from ..core.vm_lifecycle import VM_SETTINGS_CLASS, VirtualMachine

logger = logging.getLogger(__name__)

SNAPSHOT_SETTINGS_CLASS = "Msvm_VirtualSystemSnapshotSettingData"
SNAPSHOT_TYPE = "Microsoft:Hyper-V:Snapshot:Realized"

_INSTANCE_ID_RE = re.compile(r'InstanceID="([^"]*)"')


def _parent_id(parent: Optional[str]) -> Optional[str]:
    """Parent is an object path; its InstanceID key is the parent checkpoint's id."""
    if not parent:
        return None
    match = _INSTANCE_ID_RE.search(parent)
    return match.group(1).replace("\\\\", "\\") if match else parent


def parse_cim_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse the ``yyyymmddHHMMSS`` prefix of a CIM datetime string."""
    if not value or len(value) < 14:
        return None
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S")
    except ValueError:
        return None


@dataclass(frozen=True)
class Checkpoint:
    name: str
    id: str
    vm_id: str
    path: str
    parent_id: Optional[str] = None
    creation_time: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_document(cls, document: Document) -> "Checkpoint":
        """
        Raises:
            MissingRequiredFieldError: ElementName, InstanceID or the path is absent
        """
        notes = document.get("Notes")
        if isinstance(notes, list):
            notes = "\n".join(notes) or None

        return cls(
            name=document.require_str("ElementName"),
            id=document.require_str("InstanceID"),
            vm_id=document.get_str("VirtualSystemIdentifier") or "",
            path=document.path,
            parent_id=_parent_id(document.get_str("Parent")),
            creation_time=document.get_str("CreationTime"),
            notes=notes or None,
        )

    @property
    def created_at(self) -> Optional[datetime]:
        return parse_cim_datetime(self.creation_time)

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "id": self.id,
            "vm_id": self.vm_id,
            "parent_id": self.parent_id,
            "creation_time": self.creation_time,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class CheckpointSettings:
    name: str
    notes: Optional[str] = None
    checkpoint_type: CheckpointType = CheckpointType.PRODUCTION
    consistency_level: ConsistencyLevel = ConsistencyLevel.APPLICATION_CONSISTENT

    def validate(self) -> List[ValidationIssue]:
        return validate_checkpoint_settings(self)

    def ensure_valid(self) -> None:
        ensure_valid(self.validate())


def validate_checkpoint_settings(settings: CheckpointSettings) -> List[ValidationIssue]:
    if not settings.name:
        return [ValidationIssue("name", "Checkpoint name cannot be empty")]
    if len(settings.name) > MAX_NAME_LENGTH:
        return [ValidationIssue(
            "name", f"Checkpoint name cannot exceed {MAX_NAME_LENGTH} characters")]
    return []


class CheckpointManager(ServiceClient):
    """Checkpoint operations on a VM."""

    def list(self, vm: VirtualMachine) -> List[Checkpoint]:
        documents = self._gateway.query(select(
            VM_SETTINGS_CLASS,
            VirtualSystemType=SNAPSHOT_TYPE,
            VirtualSystemIdentifier=vm.id,
        ))
        return [Checkpoint.from_document(d) for d in documents]

    def get(self, vm: VirtualMachine, name: str) -> Checkpoint:
        for checkpoint in self.list(vm):
            if checkpoint.name == name:
                return checkpoint
        raise CheckpointNotFoundError(name)

    def create(self, vm: VirtualMachine, settings: CheckpointSettings) -> Checkpoint:
        """
        Create a checkpoint. Allowed in any power state.

        Raises:
            ValidationError: If settings are invalid
        """
        settings.ensure_valid()

        snapshot = self._gateway.spawn_instance(SNAPSHOT_SETTINGS_CLASS)
        snapshot.put("ElementName", settings.name)
        if settings.notes:
            snapshot.put("Notes", settings.notes)
        snapshot.put("ConsistencyLevel", settings.consistency_level.code)

        logger.info(f"Creating checkpoint '{settings.name}' of VM {vm.name}")
        out_params = self.invoke(
            "CreateSnapshot",
            AffectedSystem=vm.path,
            SnapshotSettings=snapshot,
            SnapshotType=settings.checkpoint_type.code,
        )
        return Checkpoint.from_document(self.resolve(out_params, "ResultingSnapshot"))

    def apply(self, vm: VirtualMachine, checkpoint: Checkpoint) -> VmState:
        """
        Restore a checkpoint. The VM must be off.

        Returns:
            The VM's state after the restore, which is the state the
            checkpoint captured

        Raises:
            InvalidStateError: If the VM is not Off
        """
        if vm.state is not VmState.OFF:
            raise InvalidStateError(vm.name, vm.state.label, "apply checkpoint")

        logger.info(f"Applying checkpoint '{checkpoint.name}' to VM {vm.name}")
        self.invoke("ApplySnapshot", Snapshot=checkpoint.path)
        return vm.refresh()

    def delete(self, checkpoint: Checkpoint) -> None:
        logger.info(f"Deleting checkpoint '{checkpoint.name}'")
        self.invoke("DestroySnapshot", AffectedSnapshot=checkpoint.path)

    @staticmethod
    def tree(checkpoints: List[Checkpoint]) -> Dict[Optional[str], List[str]]:
        """Map each parent id (None for roots) to the ids of its children."""
        children: Dict[Optional[str], List[str]] = defaultdict(list)
        for checkpoint in checkpoints:
            children[checkpoint.parent_id].append(checkpoint.id)
        return dict(children)
