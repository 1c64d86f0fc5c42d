"""Storage controllers, disk/ISO attachment and virtual hard disks."""

from .controller import (
    AttachedMedia,
    ControllerType,
    DiskAttachment,
    DriveKind,
    IsoAttachment,
    StorageController,
    StorageManager,
    add_controller,
    find_controller,
    list_controllers,
    validate_disk_attachment,
    validate_iso_attachment,
)
from .vhd import (
    Vhd,
    VhdFormat,
    VhdManager,
    VhdSettings,
    VhdType,
    validate_vhd_settings,
)

__all__ = [
    "AttachedMedia",
    "ControllerType",
    "DiskAttachment",
    "DriveKind",
    "IsoAttachment",
    "StorageController",
    "StorageManager",
    "add_controller",
    "find_controller",
    "list_controllers",
    "validate_disk_attachment",
    "validate_iso_attachment",
    "Vhd",
    "VhdFormat",
    "VhdManager",
    "VhdSettings",
    "VhdType",
    "validate_vhd_settings",
]
