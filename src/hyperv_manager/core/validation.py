"""
Validation primitives shared by every settings type.

Settings validators are pure functions returning a list of issues; an
empty list means the settings may be sent to Hyper-V.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from common.exceptions import MissingRequiredFieldError, ValidationError

MAX_NAME_LENGTH = 100
RESERVED_NAME_CHARS = '\\/:*?"<>|'


@dataclass(frozen=True)
class ValidationIssue:
    """A single rejected field."""
    field: str
    message: str

    def to_error(self) -> ValidationError:
        return ValidationError(self.field, self.message)


def check_name(name: str, field: str = "name") -> List[ValidationIssue]:
    """Names must be non-empty, at most 100 characters and free of path characters."""
    if not name:
        return [ValidationIssue(field, "must not be empty")]
    issues = []
    if len(name) > MAX_NAME_LENGTH:
        issues.append(ValidationIssue(field, f"must be at most {MAX_NAME_LENGTH} characters"))
    bad = sorted({c for c in name if c in RESERVED_NAME_CHARS})
    if bad:
        issues.append(ValidationIssue(field, f"contains reserved characters: {''.join(bad)}"))
    return issues


def ensure_valid(issues: Iterable[ValidationIssue]) -> None:
    """Raise the first issue as a ValidationError."""
    for issue in issues:
        raise issue.to_error()


def require_keys(data: Dict[str, Any], *keys: str) -> None:
    for key in keys:
        if data.get(key) is None:
            raise MissingRequiredFieldError(key)
