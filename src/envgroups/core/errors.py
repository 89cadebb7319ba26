"""Error types shared by the store, the environment backends and the engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from envgroups.core.models import Scope


class EnvGroupsError(Exception):
    """Base exception for envgroups errors."""


class ValidationError(EnvGroupsError):
    """Input was rejected before anything was written."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class BackendError(EnvGroupsError):
    """Raised when the environment backend fails to read or write a variable."""


class PermissionDeniedError(BackendError):
    """Raised when a write needs elevated privileges the process does not have."""

    def __init__(self, name: str, scope: Scope, hint: str = "") -> None:
        self.name = name
        self.scope = scope
        self.hint = hint
        msg = f"Permission denied writing {scope.value} variable '{name}'"
        if hint:
            msg += f". {hint}"
        super().__init__(msg)


class BackendUnavailableError(EnvGroupsError):
    """Raised when an operation needs the OS environment but no backend is configured."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"No environment backend available for: {operation}")
        self.operation = operation


class ConflictError(EnvGroupsError):
    """Raised when a store write carries a stale or missing revision."""

    def __init__(self, doc_id: str, expected: str | None = None, got: str | None = None) -> None:
        msg = f"Revision conflict on '{doc_id}'"
        if expected is not None or got is not None:
            msg += f": expected {expected}, got {got}"
        super().__init__(msg + "; reload and retry")
        self.doc_id = doc_id
        self.expected = expected
        self.got = got


class NotFoundError(EnvGroupsError):
    """Raised when a group, variable or trash record does not exist."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class StoreLockError(EnvGroupsError):
    """Raised when the store lock cannot be acquired or released."""


class RestoreError(EnvGroupsError):
    """Raised when a trash record could not be applied back.

    The record stays in the log. The original exception is chained via
    ``__cause__``.
    """

    def __init__(self, record_id: str, message: str) -> None:
        super().__init__(f"Restore of {record_id} failed: {message}")
        self.record_id = record_id
