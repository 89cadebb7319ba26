"""Engine result types."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

Clock = Callable[[], datetime]


class Transition(str, Enum):
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"
    NONE = "none"


class VariableFailure(BaseModel):
    name: str
    message: str
    permission_denied: bool = False


class OperationReport(BaseModel):
    """Outcome of applying one group's variables to the OS.

    A report with failures still means the operation succeeded at the group
    level; the failed names are surfaced, not rolled back.
    """

    group_id: str
    transition: Transition = Transition.NONE
    applied: list[str] = Field(default_factory=list)
    failed: list[VariableFailure] = Field(default_factory=list)
    refreshed: bool = False
    degraded: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.failed)

    @property
    def changed_os(self) -> bool:
        return bool(self.applied)

    def summary(self) -> dict[str, int]:
        return {"applied": len(self.applied), "failed": len(self.failed)}


class GroupFailure(BaseModel):
    group_id: str
    message: str


class BatchDeleteReport(BaseModel):
    deleted: list[str] = Field(default_factory=list)
    failed: list[GroupFailure] = Field(default_factory=list)
    reports: list[OperationReport] = Field(default_factory=list)
    refreshed: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.failed) or any(r.partial for r in self.reports)

    def summary(self) -> dict[str, int]:
        return {
            "deleted": len(self.deleted),
            "failed": len(self.failed),
            "variables_removed": sum(len(r.applied) for r in self.reports),
            "variables_failed": sum(len(r.failed) for r in self.reports),
        }
