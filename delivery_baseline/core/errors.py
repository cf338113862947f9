from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class BaselineError(Exception):
    """Base error envelope. Business-rule errors carry a stable code and a human message."""

    code: str
    message: str
    entity: Optional[str] = None
    entity_id: Optional[str] = None

    def __str__(self) -> str:
        loc = f"{self.entity}:{self.entity_id}" if self.entity and self.entity_id else "<baseline>"
        return f"{loc}: {self.code}: {self.message}"


class NotFoundError(BaselineError):
    pass


class BaselineLockedError(BaselineError):
    pass


class InvalidRoleError(BaselineError):
    pass


class CascadePartialFailure(BaselineError):
    """Primary soft-delete succeeded; propagation to the linked side did not. Safe to retry."""


class AuditDuplicateGuarded(BaselineError):
    """An original baseline (v1) already exists. Logged, never raised to callers."""


class DuplicateBaselineVersion(Exception):
    """Raised by stores when (milestone_id, version) is already taken."""

    def __init__(self, milestone_id: str, version: int) -> None:
        super().__init__(f"baseline version {version} already exists for milestone {milestone_id}")
        self.milestone_id = milestone_id
        self.version = version


@dataclass(frozen=True)
class ProjectError(Exception):
    """Snapshot load/validation error, located by file and path like plan errors."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<project>"
        return f"{loc}: {self.code}: {self.message}"


class ProjectLoadError(ProjectError):
    pass


class ProjectValidationError(ProjectError):
    pass


def not_found(entity: str, entity_id: str) -> NotFoundError:
    return NotFoundError(
        code="E_NOT_FOUND",
        message=f"{entity} not found: {entity_id}",
        entity=entity,
        entity_id=entity_id,
    )
