"""
Virtual hard disk management through Msvm_ImageManagementService.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from common.exceptions import ValidationError, VhdNotFoundError
from ..core.gateway import Document, parse_instance_text
from ..core.service import IMAGE_MANAGEMENT_SERVICE, ServiceClient
from ..core.validation import ValidationIssue, ensure_valid

logger = logging.getLogger(__name__)

VHD_SETTINGS_CLASS = "Msvm_VirtualHardDiskSettingData"

GB = 1024 ** 3
TB = 1024 ** 4
VALID_SECTOR_SIZES = (512, 4096)


class VhdFormat(Enum):
    VHD = 2
    VHDX = 3

    @classmethod
    def from_code(cls, code: Optional[int]) -> "VhdFormat":
        try:
            return cls(code)
        except ValueError:
            return cls.VHDX

    @classmethod
    def from_path(cls, path: str) -> "VhdFormat":
        return cls.VHD if path.lower().endswith(".vhd") else cls.VHDX

    @property
    def code(self) -> int:
        return self.value

    @property
    def extension(self) -> str:
        return ".vhd" if self is VhdFormat.VHD else ".vhdx"

    @property
    def max_size_bytes(self) -> int:
        return 2 * TB if self is VhdFormat.VHD else 64 * TB


class VhdType(Enum):
    FIXED = 2
    DYNAMIC = 3
    DIFFERENCING = 4

    @classmethod
    def from_code(cls, code: Optional[int]) -> "VhdType":
        try:
            return cls(code)
        except ValueError:
            return cls.DYNAMIC

    @property
    def code(self) -> int:
        return self.value


@dataclass(frozen=True)
class VhdSettings:
    """
    Settings for a new virtual hard disk.

    The format is inferred from the path extension when not given.
    """
    path: str
    size_bytes: int = 0
    format: Optional[VhdFormat] = None
    disk_type: VhdType = VhdType.DYNAMIC
    parent_path: Optional[str] = None
    block_size_bytes: Optional[int] = None
    logical_sector_size: Optional[int] = None
    physical_sector_size: Optional[int] = None

    def __post_init__(self):
        if self.format is None:
            object.__setattr__(self, "format", VhdFormat.from_path(self.path or ""))

    @classmethod
    def dynamic(cls, path: str, size_gb: int, **kwargs) -> "VhdSettings":
        return cls(path=path, size_bytes=size_gb * GB, disk_type=VhdType.DYNAMIC, **kwargs)

    @classmethod
    def fixed(cls, path: str, size_gb: int, **kwargs) -> "VhdSettings":
        return cls(path=path, size_bytes=size_gb * GB, disk_type=VhdType.FIXED, **kwargs)

    @classmethod
    def differencing(cls, path: str, parent_path: str, **kwargs) -> "VhdSettings":
        return cls(path=path, parent_path=parent_path, disk_type=VhdType.DIFFERENCING, **kwargs)

    @property
    def size_gb(self) -> float:
        return self.size_bytes / GB

    def validate(self) -> List[ValidationIssue]:
        return validate_vhd_settings(self)

    def ensure_valid(self) -> None:
        ensure_valid(self.validate())


def validate_vhd_settings(settings: VhdSettings) -> List[ValidationIssue]:
    issues = []
    if not settings.path:
        return [ValidationIssue("path", "must not be empty")]

    if not settings.path.lower().endswith(settings.format.extension):
        issues.append(ValidationIssue(
            "path", f"extension must be {settings.format.extension} for {settings.format.name}"))

    if settings.disk_type is VhdType.DIFFERENCING:
        if not settings.parent_path:
            issues.append(ValidationIssue("parent_path", "required for differencing disks"))
    elif settings.size_bytes <= 0:
        issues.append(ValidationIssue("size_bytes", "must be greater than zero"))

    if settings.size_bytes > settings.format.max_size_bytes:
        issues.append(ValidationIssue(
            "size_bytes",
            f"exceeds the {settings.format.max_size_bytes // TB} TB limit of {settings.format.name}",
        ))

    for field_name in ("logical_sector_size", "physical_sector_size"):
        value = getattr(settings, field_name)
        if value is not None and value not in VALID_SECTOR_SIZES:
            issues.append(ValidationIssue(field_name, "must be 512 or 4096"))

    return issues


@dataclass(frozen=True)
class Vhd:
    """Properties of an existing virtual hard disk."""
    path: str
    format: VhdFormat
    disk_type: VhdType
    max_size_bytes: int
    block_size_bytes: Optional[int] = None
    logical_sector_size: Optional[int] = None
    physical_sector_size: Optional[int] = None
    parent_path: Optional[str] = None

    @classmethod
    def from_properties(cls, path: str, properties: Dict[str, Any]) -> "Vhd":
        return cls(
            path=properties.get("Path") or path,
            format=VhdFormat.from_code(properties.get("Format")),
            disk_type=VhdType.from_code(properties.get("Type")),
            max_size_bytes=properties.get("MaxInternalSize") or 0,
            block_size_bytes=properties.get("BlockSize"),
            logical_sector_size=properties.get("LogicalSectorSize"),
            physical_sector_size=properties.get("PhysicalSectorSize"),
            parent_path=properties.get("ParentPath") or None,
        )

    @property
    def size_gb(self) -> float:
        return self.max_size_bytes / GB


class VhdManager(ServiceClient):
    """Create, inspect, resize, convert, compact and merge virtual disks."""

    service_class = IMAGE_MANAGEMENT_SERVICE

    def _disk_settings(self, settings: VhdSettings) -> Document:
        document = self._gateway.spawn_instance(VHD_SETTINGS_CLASS)
        document.put("Path", settings.path)
        document.put("Type", settings.disk_type.code)
        document.put("Format", settings.format.code)
        document.put("MaxInternalSize", settings.size_bytes)
        if settings.block_size_bytes:
            document.put("BlockSize", settings.block_size_bytes)
        if settings.logical_sector_size:
            document.put("LogicalSectorSize", settings.logical_sector_size)
        if settings.physical_sector_size:
            document.put("PhysicalSectorSize", settings.physical_sector_size)
        if settings.parent_path:
            document.put("ParentPath", settings.parent_path)
        return document

    def create(self, settings: VhdSettings) -> None:
        """
        Create a virtual hard disk.

        Raises:
            ValidationError: If settings are invalid
        """
        settings.ensure_valid()
        logger.info(
            f"Creating {settings.disk_type.name.lower()} {settings.format.name} disk "
            f"{settings.path} ({settings.size_gb:.1f} GB)"
        )
        self.invoke(
            "CreateVirtualHardDisk",
            VirtualDiskSettingData=self._disk_settings(settings),
        )

    def get_info(self, path: str) -> Vhd:
        """
        Read a disk's settings.

        Raises:
            VhdNotFoundError: Hyper-V returned no settings for the path
        """
        out_params = self.invoke(
            "GetVirtualHardDiskSettingData",
            Path=path,
        )
        info = out_params.get_str("SettingData")
        if not info:
            raise VhdNotFoundError(path)
        _, properties = parse_instance_text(info)
        return Vhd.from_properties(path, properties)

    def resize(self, path: str, size_bytes: int) -> None:
        if size_bytes <= 0:
            raise ValidationError("size_bytes", "must be greater than zero")
        logger.info(f"Resizing {path} to {size_bytes / GB:.1f} GB")
        self.invoke(
            "ResizeVirtualHardDisk",
            Path=path,
            MaxInternalSize=size_bytes,
        )

    def convert(
        self,
        source_path: str,
        destination_path: str,
        disk_type: VhdType = VhdType.DYNAMIC,
        format: Optional[VhdFormat] = None,
    ) -> None:
        """Convert a disk to another type or format, writing a new file."""
        target = VhdSettings(
            path=destination_path,
            format=format,
            disk_type=disk_type,
        )
        issues = [i for i in target.validate() if i.field != "size_bytes"]
        ensure_valid(issues)

        logger.info(f"Converting {source_path} to {destination_path}")
        self.invoke(
            "ConvertVirtualHardDisk",
            SourcePath=source_path,
            VirtualDiskSettingData=self._disk_settings(target),
        )

    def compact(self, path: str) -> None:
        logger.info(f"Compacting {path}")
        self.invoke("CompactVirtualHardDisk", Path=path, Mode=0)

    def merge(self, source_path: str, destination_path: Optional[str] = None) -> None:
        """
        Merge a differencing disk into its parent.

        Args:
            source_path: The differencing disk
            destination_path: Disk to merge into; defaults to the source's parent
        """
        if destination_path is None:
            destination_path = self.get_info(source_path).parent_path
            if not destination_path:
                raise ValidationError("destination_path", f"{source_path} has no parent disk")

        logger.info(f"Merging {source_path} into {destination_path}")
        self.invoke(
            "MergeVirtualHardDisk",
            SourcePath=source_path,
            DestinationPath=destination_path,
        )
