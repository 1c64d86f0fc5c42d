"""
Manager configuration, stored as JSON.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import List, Optional, Union

from common.exceptions import ValidationError
from utils import atomic_write_json
from .gateway import HYPERV_NAMESPACE

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "hyperv-manager" / "config.json"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ManagerConfig:
    """Connection, job polling and logging settings for HyperVManager."""
    host: str = "."
    namespace: str = HYPERV_NAMESPACE
    poll_interval_ms: int = 100
    job_timeout_seconds: Optional[float] = None  # None waits forever
    log_level: str = "INFO"
    json_logs: bool = False
    log_file: Optional[str] = None

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000

    def validate(self) -> List[str]:
        errors = []
        if not self.host:
            errors.append("host must not be empty")
        if not self.namespace:
            errors.append("namespace must not be empty")
        if self.poll_interval_ms <= 0:
            errors.append("poll_interval_ms must be positive")
        if self.job_timeout_seconds is not None and self.job_timeout_seconds <= 0:
            errors.append("job_timeout_seconds must be positive or null")
        if self.log_level.upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return errors

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ManagerConfig":
        """Build from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "ManagerConfig":
        """
        Read the config file; a missing file yields the defaults.

        Raises:
            ValidationError: The file is not a JSON object
        """
        path = Path(path) if path else DEFAULT_CONFIG_PATH
        if not path.exists():
            logger.debug(f"No config at {path}, using defaults")
            return cls()

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(str(path), f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ValidationError(str(path), "expected a JSON object")
        return cls.from_dict(data)

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        path = Path(path) if path else DEFAULT_CONFIG_PATH
        atomic_write_json(path, self.to_dict())
        logger.info(f"Saved config to {path}")
        return path
