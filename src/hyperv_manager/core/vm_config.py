"""
VM Configuration - Settings dataclasses and their validation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .validation import (
    ValidationIssue,
    check_name,
    ensure_valid,
    require_keys,
)

MIN_MEMORY_MB = 32
MAX_MEMORY_MB = 12 * 1024 * 1024  # 12 TB
MIN_PROCESSORS = 1
MAX_PROCESSORS = 240
MAX_MEMORY_BUFFER_PERCENT = 100


class Generation(Enum):
    """VM generation, stored as VirtualSystemSubType."""
    GEN1 = "Microsoft:Hyper-V:SubType:1"
    GEN2 = "Microsoft:Hyper-V:SubType:2"

    @classmethod
    def from_subtype(cls, subtype: Optional[str]) -> "Generation":
        if subtype and ":2" in subtype:
            return cls.GEN2
        return cls.GEN1

    @classmethod
    def from_number(cls, number: int) -> "Generation":
        return cls.GEN2 if number == 2 else cls.GEN1

    @property
    def subtype(self) -> str:
        return self.value

    @property
    def number(self) -> int:
        return 2 if self is Generation.GEN2 else 1

    @property
    def supports_secure_boot(self) -> bool:
        return self is Generation.GEN2


class _CodedEnum(Enum):
    """Enum over numeric WMI codes; subclasses name their fallback in ``_missing_``."""

    @classmethod
    def from_code(cls, code: Optional[int]):
        return cls(code)

    @property
    def code(self) -> int:
        return self.value


class AutomaticStartAction(_CodedEnum):
    NOTHING = 0
    START_IF_RUNNING = 1
    ALWAYS_START = 2

    @classmethod
    def _missing_(cls, value):
        return cls.NOTHING


class AutomaticStopAction(_CodedEnum):
    TURN_OFF = 0
    SAVE = 1
    SHUTDOWN = 2

    @classmethod
    def _missing_(cls, value):
        return cls.SAVE


class CheckpointType(_CodedEnum):
    DISABLED = 0
    PRODUCTION = 1
    PRODUCTION_ONLY = 2
    STANDARD = 3

    @classmethod
    def _missing_(cls, value):
        return cls.PRODUCTION


class ConsistencyLevel(_CodedEnum):
    APPLICATION_CONSISTENT = 1
    CRASH_CONSISTENT = 2

    @classmethod
    def _missing_(cls, value):
        return cls.APPLICATION_CONSISTENT


@dataclass(frozen=True)
class MemorySettings:
    """Startup memory plus optional dynamic memory range."""
    startup_mb: int
    dynamic: bool = False
    minimum_mb: Optional[int] = None
    maximum_mb: Optional[int] = None
    buffer_percent: int = 20

    @property
    def effective_minimum_mb(self) -> int:
        return self.minimum_mb if self.minimum_mb is not None else self.startup_mb

    @property
    def effective_maximum_mb(self) -> int:
        return self.maximum_mb if self.maximum_mb is not None else self.startup_mb


@dataclass(frozen=True)
class ProcessorSettings:
    count: int
    nested_virtualization: bool = False


@dataclass(frozen=True)
class SecuritySettings:
    """UEFI security options, Generation 2 only."""
    secure_boot: bool = False
    secure_boot_template: Optional[str] = None
    tpm_enabled: bool = False


@dataclass(frozen=True)
class VmSettings:
    """Complete definition of a new VM."""
    name: str
    generation: Generation
    memory: MemorySettings
    processor: ProcessorSettings
    security: SecuritySettings = field(default_factory=SecuritySettings)

    config_path: Optional[str] = None
    snapshot_path: Optional[str] = None
    smart_paging_path: Optional[str] = None
    notes: Optional[str] = None

    automatic_start_action: AutomaticStartAction = AutomaticStartAction.NOTHING
    automatic_start_delay: int = 0
    automatic_stop_action: AutomaticStopAction = AutomaticStopAction.SAVE
    checkpoint_type: CheckpointType = CheckpointType.PRODUCTION

    @property
    def memory_mb(self) -> int:
        return self.memory.startup_mb

    @property
    def processor_count(self) -> int:
        return self.processor.count

    def validate(self) -> List[ValidationIssue]:
        return validate_vm_settings(self)

    def ensure_valid(self) -> None:
        ensure_valid(self.validate())

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "generation": self.generation.number,
            "memory": {
                "startup_mb": self.memory.startup_mb,
                "dynamic": self.memory.dynamic,
                "minimum_mb": self.memory.minimum_mb,
                "maximum_mb": self.memory.maximum_mb,
                "buffer_percent": self.memory.buffer_percent,
            },
            "processor": {
                "count": self.processor.count,
                "nested_virtualization": self.processor.nested_virtualization,
            },
            "security": {
                "secure_boot": self.security.secure_boot,
                "secure_boot_template": self.security.secure_boot_template,
                "tpm_enabled": self.security.tpm_enabled,
            },
            "config_path": self.config_path,
            "snapshot_path": self.snapshot_path,
            "smart_paging_path": self.smart_paging_path,
            "notes": self.notes,
            "automatic_start_action": self.automatic_start_action.code,
            "automatic_start_delay": self.automatic_start_delay,
            "automatic_stop_action": self.automatic_stop_action.code,
            "checkpoint_type": self.checkpoint_type.code,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VmSettings":
        """
        Create VmSettings from dictionary.

        Raises:
            MissingRequiredFieldError: name, generation, memory or processor is absent
        """
        require_keys(data, "name", "generation", "memory", "processor")
        require_keys(data["memory"], "startup_mb")
        require_keys(data["processor"], "count")

        return cls(
            name=data["name"],
            generation=Generation.from_number(data["generation"]),
            memory=MemorySettings(**data["memory"]),
            processor=ProcessorSettings(**data["processor"]),
            security=SecuritySettings(**data.get("security", {})),
            config_path=data.get("config_path"),
            snapshot_path=data.get("snapshot_path"),
            smart_paging_path=data.get("smart_paging_path"),
            notes=data.get("notes"),
            automatic_start_action=AutomaticStartAction.from_code(
                data.get("automatic_start_action", 0)),
            automatic_start_delay=data.get("automatic_start_delay", 0),
            automatic_stop_action=AutomaticStopAction.from_code(
                data.get("automatic_stop_action", 1)),
            checkpoint_type=CheckpointType.from_code(data.get("checkpoint_type", 1)),
        )


def validate_vm_settings(settings: VmSettings) -> List[ValidationIssue]:
    """
    Validate VM settings.

    Returns:
        List of issues. Empty if valid.
    """
    issues = check_name(settings.name)
    memory = settings.memory

    if not MIN_MEMORY_MB <= memory.startup_mb <= MAX_MEMORY_MB:
        issues.append(ValidationIssue(
            "memory_mb", f"must be between {MIN_MEMORY_MB} and {MAX_MEMORY_MB} MB"))

    if not MIN_PROCESSORS <= settings.processor.count <= MAX_PROCESSORS:
        issues.append(ValidationIssue(
            "processor_count", f"must be between {MIN_PROCESSORS} and {MAX_PROCESSORS}"))

    if memory.dynamic:
        minimum = memory.effective_minimum_mb
        maximum = memory.effective_maximum_mb
        if minimum < MIN_MEMORY_MB:
            issues.append(ValidationIssue(
                "dynamic_memory_min", f"must be at least {MIN_MEMORY_MB} MB"))
        if minimum > memory.startup_mb:
            issues.append(ValidationIssue(
                "dynamic_memory_min", "must not exceed startup memory"))
        if maximum < memory.startup_mb:
            issues.append(ValidationIssue(
                "dynamic_memory_max", "must not be below startup memory"))
        if minimum > maximum:
            issues.append(ValidationIssue(
                "dynamic_memory_min", "must not exceed dynamic memory maximum"))
        if not 0 <= memory.buffer_percent <= MAX_MEMORY_BUFFER_PERCENT:
            issues.append(ValidationIssue(
                "memory_buffer", f"must be between 0 and {MAX_MEMORY_BUFFER_PERCENT} percent"))

    if settings.security.secure_boot and not settings.generation.supports_secure_boot:
        issues.append(ValidationIssue(
            "secure_boot", "Secure Boot requires a Generation 2 VM"))

    if settings.security.tpm_enabled and not settings.generation.supports_secure_boot:
        issues.append(ValidationIssue(
            "tpm_enabled", "a virtual TPM requires a Generation 2 VM"))

    if settings.automatic_start_delay < 0:
        issues.append(ValidationIssue(
            "automatic_start_delay", "must not be negative"))

    return issues
