"""VM checkpoints."""

from ..core.vm_config import CheckpointType, ConsistencyLevel
from .checkpoint import (
    Checkpoint,
    CheckpointManager,
    CheckpointSettings,
    parse_cim_datetime,
    validate_checkpoint_settings,
)

__all__ = [
    "Checkpoint",
    "CheckpointManager",
    "CheckpointSettings",
    "CheckpointType",
    "ConsistencyLevel",
    "parse_cim_datetime",
    "validate_checkpoint_settings",
]
