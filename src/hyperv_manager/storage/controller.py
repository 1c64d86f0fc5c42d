"""
Storage controllers and disk/ISO attachment.

Attaching media is a two-phase exchange: a drive resource is added under
a controller, then a storage allocation binding the media file is added
under the drive. Hyper-V has no transactions, so a failure in the second
phase leaves an empty drive attached; nothing is rolled back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from common.exceptions import OperationFailedError
from ..core.gateway import Document, associators, same_path
from ..core.service import ServiceClient
from ..core.validation import ValidationIssue, ensure_valid
from ..core.vm_lifecycle import VirtualMachine

logger = logging.getLogger(__name__)

RESOURCE_SETTINGS_CLASS = "Msvm_ResourceAllocationSettingData"
STORAGE_SETTINGS_CLASS = "Msvm_StorageAllocationSettingData"


class ControllerType(Enum):
    """Controller kinds, identified by ResourceSubType."""
    IDE = "Microsoft:Hyper-V:Emulated IDE Controller"
    SCSI = "Microsoft:Hyper-V:Synthetic SCSI Controller"

    @property
    def subtype(self) -> str:
        return self.value

    @property
    def resource_type(self) -> int:
        return 5 if self is ControllerType.IDE else 6

    @property
    def max_controllers(self) -> int:
        return 2 if self is ControllerType.IDE else 4

    @property
    def max_locations(self) -> int:
        return 2 if self is ControllerType.IDE else 64

    @property
    def can_create(self) -> bool:
        # IDE controllers are fixed on Generation 1 VMs
        return self is ControllerType.SCSI


class DriveKind(Enum):
    """Drive resources and the storage allocations that back them."""
    DISK = "disk"
    DVD = "dvd"

    @property
    def resource_type(self) -> int:
        return 17 if self is DriveKind.DISK else 16

    @property
    def drive_subtype(self) -> str:
        if self is DriveKind.DISK:
            return "Microsoft:Hyper-V:Synthetic Disk Drive"
        return "Microsoft:Hyper-V:Synthetic DVD Drive"

    @property
    def drive_marker(self) -> str:
        return "Disk Drive" if self is DriveKind.DISK else "DVD Drive"

    @property
    def media_subtype(self) -> str:
        if self is DriveKind.DISK:
            return "Microsoft:Hyper-V:Virtual Hard Disk"
        return "Microsoft:Hyper-V:Virtual CD/DVD Disk"

    @property
    def find_operation(self) -> str:
        return "FindDiskDrive" if self is DriveKind.DISK else "FindDvdDrive"


MEDIA_RESOURCE_TYPE = 31


@dataclass(frozen=True)
class StorageController:
    controller_type: ControllerType
    number: int
    instance_id: str
    path: str


@dataclass(frozen=True)
class AttachedMedia:
    """A disk or ISO currently attached to a VM."""
    kind: DriveKind
    media_path: str
    controller_type: ControllerType
    controller_number: int
    location: int
    drive_path: str


def _validate_placement(
    controller_type: ControllerType,
    controller_number: int,
    location: int,
) -> List[ValidationIssue]:
    issues = []
    if not 0 <= controller_number < controller_type.max_controllers:
        issues.append(ValidationIssue(
            "controller_number",
            f"{controller_type.name} controller number must be 0-{controller_type.max_controllers - 1}",
        ))
    if not 0 <= location < controller_type.max_locations:
        issues.append(ValidationIssue(
            "controller_location",
            f"{controller_type.name} location must be 0-{controller_type.max_locations - 1}",
        ))
    return issues


@dataclass(frozen=True)
class DiskAttachment:
    """A virtual hard disk to attach. Defaults to SCSI 0, location 0."""
    path: str
    controller_type: ControllerType = ControllerType.SCSI
    controller_number: int = 0
    location: int = 0

    def validate(self) -> List[ValidationIssue]:
        return validate_disk_attachment(self)

    def ensure_valid(self) -> None:
        ensure_valid(self.validate())


@dataclass(frozen=True)
class IsoAttachment:
    """An ISO image to mount. Defaults to IDE 1, location 0."""
    path: str
    controller_type: ControllerType = ControllerType.IDE
    controller_number: int = 1
    location: int = 0

    def validate(self) -> List[ValidationIssue]:
        return validate_iso_attachment(self)

    def ensure_valid(self) -> None:
        ensure_valid(self.validate())


def validate_disk_attachment(attachment: DiskAttachment) -> List[ValidationIssue]:
    issues = []
    if not attachment.path:
        issues.append(ValidationIssue("path", "must not be empty"))
    issues.extend(_validate_placement(
        attachment.controller_type, attachment.controller_number, attachment.location))
    return issues


def validate_iso_attachment(attachment: IsoAttachment) -> List[ValidationIssue]:
    issues = []
    if not attachment.path:
        issues.append(ValidationIssue("iso_path", "must not be empty"))
    elif not attachment.path.lower().endswith(".iso"):
        issues.append(ValidationIssue("iso_path", "must be an .iso file"))
    issues.extend(_validate_placement(
        attachment.controller_type, attachment.controller_number, attachment.location))
    return issues


# =============================================================================
# Resource scanning
# =============================================================================

def _resources(vm: VirtualMachine, class_name: str = RESOURCE_SETTINGS_CLASS) -> List[Document]:
    return vm.gateway.query(associators(vm.settings_document().path, class_name))


def _controllers_in(resources: List[Document], controller_type: ControllerType) -> List[StorageController]:
    controllers = []
    ordinal = 0
    for resource in resources:
        if resource.get_str("ResourceSubType") != controller_type.subtype:
            continue
        address = resource.get("Address")
        try:
            number = int(address) if address not in (None, "") else ordinal
        except (TypeError, ValueError):
            number = ordinal
        controllers.append(StorageController(
            controller_type=controller_type,
            number=number,
            instance_id=resource.require_str("InstanceID"),
            path=resource.path,
        ))
        ordinal += 1
    return controllers


def list_controllers(vm: VirtualMachine, controller_type: ControllerType) -> List[StorageController]:
    """
    Controllers of one type on a VM.

    A controller's number is its Address when Hyper-V reports one, and its
    position among controllers of the same type otherwise.
    """
    return _controllers_in(_resources(vm), controller_type)


def find_controller(
    vm: VirtualMachine,
    controller_type: ControllerType,
    number: int,
) -> Optional[StorageController]:
    for controller in list_controllers(vm, controller_type):
        if controller.number == number:
            return controller
    return None


def add_controller(client: ServiceClient, vm: VirtualMachine, controller_type: ControllerType) -> None:
    """Add a new controller of ``controller_type`` to the VM."""
    if not controller_type.can_create:
        raise OperationFailedError(
            "AddController", 0, f"{controller_type.name} controllers cannot be added"
        )

    settings_path = vm.settings_document().path
    controller = vm.gateway.spawn_instance(RESOURCE_SETTINGS_CLASS)
    controller.put("ResourceType", controller_type.resource_type)
    controller.put("ResourceSubType", controller_type.subtype)

    logger.info(f"Adding {controller_type.name} controller to VM {vm.name}")
    client.invoke(
        "AddResourceSettings",
        operation="AddController",
        AffectedConfiguration=settings_path,
        ResourceSettings=[controller],
    )


# =============================================================================
# Provisioning
# =============================================================================

class StorageManager:
    """
    Finds or creates controllers and attaches disks and ISOs.

    The scan-then-create sequences here are not atomic. Callers running
    several attach operations against one VM concurrently must serialize
    them.
    """

    def __init__(self, client: ServiceClient):
        self._client = client
        self._gateway = client.gateway

    def find_or_create_controller(
        self,
        vm: VirtualMachine,
        controller_type: ControllerType,
        number: int,
    ) -> StorageController:
        """
        Return the controller at ``number``, adding one if it is missing.

        Only the next controller in sequence is added, so asking for SCSI 2
        on a VM with one SCSI controller fails without changing the VM.

        Raises:
            OperationFailedError: The controller does not exist and cannot be created
        """
        controllers = list_controllers(vm, controller_type)
        for controller in controllers:
            if controller.number == number:
                return controller

        if controller_type.can_create and number == len(controllers):
            add_controller(self._client, vm, controller_type)
            controller = find_controller(vm, controller_type, number)
            if controller is not None:
                return controller

        raise OperationFailedError(
            "FindController", 0,
            f"{controller_type.name} controller {number} not found on VM '{vm.name}'",
        )

    def attach_disk(self, vm: VirtualMachine, attachment: DiskAttachment) -> AttachedMedia:
        """Attach a virtual hard disk."""
        attachment.ensure_valid()
        return self._attach(
            vm, DriveKind.DISK, attachment.path,
            attachment.controller_type, attachment.controller_number, attachment.location,
        )

    def mount_iso(self, vm: VirtualMachine, attachment: IsoAttachment) -> AttachedMedia:
        """Mount an ISO image in a new DVD drive."""
        attachment.ensure_valid()
        return self._attach(
            vm, DriveKind.DVD, attachment.path,
            attachment.controller_type, attachment.controller_number, attachment.location,
        )

    def list_disks(self, vm: VirtualMachine) -> List[AttachedMedia]:
        return self._list_media(vm, DriveKind.DISK)

    def list_isos(self, vm: VirtualMachine) -> List[AttachedMedia]:
        return self._list_media(vm, DriveKind.DVD)

    def _find_drive(
        self,
        vm: VirtualMachine,
        kind: DriveKind,
        controller: StorageController,
        location: int,
    ) -> Optional[Document]:
        for resource in _resources(vm):
            subtype = resource.get_str("ResourceSubType") or ""
            if kind.drive_marker not in subtype:
                continue
            if not same_path(resource.get_str("Parent"), controller.path):
                continue
            if resource.get_int("AddressOnParent") == location:
                return resource
        return None

    def _occupant(
        self,
        vm: VirtualMachine,
        controller: StorageController,
        location: int,
    ) -> Optional[Document]:
        """Any drive at ``location`` on ``controller``, whatever its kind."""
        for resource in _resources(vm):
            if not same_path(resource.get_str("Parent"), controller.path):
                continue
            if resource.get_int("AddressOnParent") == location:
                return resource
        return None

    def _attach(
        self,
        vm: VirtualMachine,
        kind: DriveKind,
        media_path: str,
        controller_type: ControllerType,
        controller_number: int,
        location: int,
    ) -> AttachedMedia:
        controller = self.find_or_create_controller(vm, controller_type, controller_number)

        occupant = self._occupant(vm, controller, location)
        if occupant is not None:
            raise OperationFailedError(
                f"Attach{kind.name.title()}", 0,
                f"location {location} on {controller_type.name} controller "
                f"{controller_number} is already in use by {occupant.get_str('ResourceSubType')}",
            )

        settings_path = vm.settings_document().path

        # Phase 1: drive under the controller
        drive = self._gateway.spawn_instance(RESOURCE_SETTINGS_CLASS)
        drive.put("ResourceType", kind.resource_type)
        drive.put("ResourceSubType", kind.drive_subtype)
        drive.put("Parent", controller.path)
        drive.put("AddressOnParent", str(location))

        logger.info(
            f"Adding {kind.value} drive to VM {vm.name} at "
            f"{controller_type.name} {controller_number}:{location}"
        )
        self._client.invoke(
            "AddResourceSettings",
            operation=f"Add{kind.name.title()}Drive",
            AffectedConfiguration=settings_path,
            ResourceSettings=[drive],
        )

        drive_document = self._find_drive(vm, kind, controller, location)
        if drive_document is None:
            raise OperationFailedError(
                kind.find_operation, 0,
                f"new {kind.value} drive not found at location {location}",
            )
        drive_path = drive_document.path

        # Phase 2: media bound to the drive
        media = self._gateway.spawn_instance(STORAGE_SETTINGS_CLASS)
        media.put("ResourceType", MEDIA_RESOURCE_TYPE)
        media.put("ResourceSubType", kind.media_subtype)
        media.put("Parent", drive_path)
        media.put("HostResource", [media_path])

        try:
            self._client.invoke(
                "AddResourceSettings",
                operation=f"Attach{kind.name.title()}Media",
                AffectedConfiguration=settings_path,
                ResourceSettings=[media],
            )
        except Exception:
            logger.error(
                f"Attaching {media_path} to VM {vm.name} failed after the drive was added; "
                f"drive {drive_path} is left attached without media"
            )
            raise

        logger.info(f"Attached {media_path} to VM {vm.name}")
        return AttachedMedia(
            kind=kind,
            media_path=media_path,
            controller_type=controller_type,
            controller_number=controller_number,
            location=location,
            drive_path=drive_path,
        )

    def _list_media(self, vm: VirtualMachine, kind: DriveKind) -> List[AttachedMedia]:
        resources = _resources(vm)
        controllers = (
            _controllers_in(resources, ControllerType.IDE)
            + _controllers_in(resources, ControllerType.SCSI)
        )

        attached = []
        for media in _resources(vm, STORAGE_SETTINGS_CLASS):
            if media.get_str("ResourceSubType") != kind.media_subtype:
                continue
            host_resources = media.get_str_list("HostResource")
            if not host_resources:
                continue

            drive = next(
                (r for r in resources if same_path(r.path, media.get_str("Parent"))),
                None,
            )
            if drive is None:
                continue
            controller = next(
                (c for c in controllers if same_path(c.path, drive.get_str("Parent"))),
                None,
            )
            if controller is None:
                continue

            attached.append(AttachedMedia(
                kind=kind,
                media_path=host_resources[0],
                controller_type=controller.controller_type,
                controller_number=controller.number,
                location=drive.get_int("AddressOnParent") or 0,
                drive_path=drive.path,
            ))
        return attached
