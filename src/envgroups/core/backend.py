"""Environment backend protocol and implementations.

A backend reads and writes OS environment variables at user or system scope.
The engine only talks to the :class:`EnvironmentBackend` protocol; callers
pick an implementation with :func:`backend_from_name`.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from dotenv import dotenv_values, set_key, unset_key

from envgroups.core.errors import BackendError, PermissionDeniedError
from envgroups.core.models import EnvEntry, Scope

if TYPE_CHECKING:
    from collections.abc import MutableMapping

logger = logging.getLogger(__name__)

BACKEND_NAMES = ("auto", "process", "dotenv", "registry", "memory", "none")


class EnvironmentBackend(Protocol):
    """Capability interface over the host's environment variables."""

    #: False where the OS treats ``Path`` and ``PATH`` as the same variable.
    case_sensitive: bool

    def read_all(self, scope: Scope) -> list[EnvEntry]:
        """Enumerate variables at *scope*. Must not mutate anything."""
        ...

    def read_one(self, name: str) -> str | None:
        """Return the live value of *name*, or None if it is not set."""
        ...

    def write(self, name: str, value: str, scope: Scope = Scope.USER) -> None:
        """Create or overwrite a variable.

        Raises PermissionDeniedError for writes that need elevation and
        BackendError for anything else.
        """
        ...

    def remove(self, name: str, scope: Scope = Scope.USER) -> None:
        """Remove a variable. Removing an absent variable is not an error."""
        ...

    def notify_changed(self) -> None:
        """Tell the OS the environment changed. Safe to call redundantly."""
        ...


def _require_name(name: str) -> str:
    if not name or not name.strip():
        raise BackendError("Variable name must not be empty")
    return name


class ProcessBackend:
    """Backend over the current process environment.

    Changes are visible to this process and its children only. System scope
    is read-only.
    """

    case_sensitive = sys.platform != "win32"

    def __init__(self, environ: MutableMapping[str, str] | None = None) -> None:
        self._environ = environ if environ is not None else os.environ

    def read_all(self, scope: Scope) -> list[EnvEntry]:
        _ = scope
        return [EnvEntry(name=k, value=v or "") for k, v in self._environ.items()]

    def read_one(self, name: str) -> str | None:
        return self._environ.get(name)

    def write(self, name: str, value: str, scope: Scope = Scope.USER) -> None:
        _require_name(name)
        if scope is Scope.SYSTEM:
            raise PermissionDeniedError(
                name, scope, "System variables are read-only for the process backend"
            )
        self._environ[name] = value

    def remove(self, name: str, scope: Scope = Scope.USER) -> None:
        _require_name(name)
        if scope is Scope.SYSTEM:
            raise PermissionDeniedError(
                name, scope, "System variables are read-only for the process backend"
            )
        self._environ.pop(name, None)

    def notify_changed(self) -> None:
        logger.debug("Process environment changed; nothing to broadcast")


class DotenvBackend:
    """User scope persisted in a dotenv file; system scope is the process environment.

    ``read_one`` looks at the dotenv file first, so a variable written here is
    considered present even though the calling shell has not sourced the file.
    """

    case_sensitive = True

    def __init__(self, path: Path, environ: MutableMapping[str, str] | None = None) -> None:
        self._path = Path(path).expanduser()
        self._environ = environ if environ is not None else os.environ

    @property
    def path(self) -> Path:
        return self._path

    def _user_values(self) -> dict[str, str]:
        if not self._path.is_file():
            return {}
        values = dotenv_values(self._path, encoding="utf-8")
        return {k: v for k, v in values.items() if v is not None}

    def read_all(self, scope: Scope) -> list[EnvEntry]:
        if scope is Scope.SYSTEM:
            return [EnvEntry(name=k, value=v or "") for k, v in self._environ.items()]
        return [EnvEntry(name=k, value=v) for k, v in self._user_values().items()]

    def read_one(self, name: str) -> str | None:
        value = self._user_values().get(name)
        if value is not None:
            return value
        return self._environ.get(name)

    def _deny_system(self, name: str, scope: Scope) -> None:
        if scope is Scope.SYSTEM:
            raise PermissionDeniedError(
                name,
                scope,
                "System variables are read-only here; set them in your shell profile instead",
            )

    def write(self, name: str, value: str, scope: Scope = Scope.USER) -> None:
        _require_name(name)
        self._deny_system(name, scope)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.touch(exist_ok=True)
            ok, _, _ = set_key(self._path, name, value, quote_mode="always")
        except OSError as exc:
            raise BackendError(f"Failed to write {name} to {self._path}: {exc}") from exc
        if ok is False:
            raise BackendError(f"Failed to write {name} to {self._path}")

    def remove(self, name: str, scope: Scope = Scope.USER) -> None:
        _require_name(name)
        self._deny_system(name, scope)
        if name not in self._user_values():
            return
        try:
            unset_key(self._path, name)
        except OSError as exc:
            raise BackendError(f"Failed to remove {name} from {self._path}: {exc}") from exc

    def notify_changed(self) -> None:
        logger.debug("Dotenv file %s updated; source it to pick up changes", self._path)


class MemoryBackend:
    """In-memory backend with failure injection, for tests and dry runs."""

    def __init__(
        self,
        user: dict[str, str] | None = None,
        system: dict[str, str] | None = None,
        *,
        elevated: bool = False,
        case_sensitive: bool = True,
    ) -> None:
        self.user: dict[str, str] = dict(user or {})
        self.system: dict[str, str] = dict(system or {})
        self.elevated = elevated
        self.case_sensitive = case_sensitive
        self.fail_writes: set[str] = set()
        self.fail_removes: set[str] = set()
        self.fail_reads: set[str] = set()
        self.fail_notify = False
        self.notify_count = 0

    def _scope(self, scope: Scope) -> dict[str, str]:
        return self.system if scope is Scope.SYSTEM else self.user

    def _key(self, values: dict[str, str], name: str) -> str:
        """Existing spelling of *name* in *values* when names ignore case."""
        if not self.case_sensitive:
            for key in values:
                if key.lower() == name.lower():
                    return key
        return name

    def read_all(self, scope: Scope) -> list[EnvEntry]:
        return [EnvEntry(name=k, value=v) for k, v in self._scope(scope).items()]

    def read_one(self, name: str) -> str | None:
        if name in self.fail_reads:
            raise BackendError(f"Injected read failure for {name}")
        user_key = self._key(self.user, name)
        if user_key in self.user:
            return self.user[user_key]
        return self.system.get(self._key(self.system, name))

    def _check(self, name: str, scope: Scope, failures: set[str]) -> None:
        _require_name(name)
        if scope is Scope.SYSTEM and not self.elevated:
            raise PermissionDeniedError(name, scope, "Run with elevated privileges")
        if name in failures:
            raise BackendError(f"Injected failure for {name}")

    def write(self, name: str, value: str, scope: Scope = Scope.USER) -> None:
        self._check(name, scope, self.fail_writes)
        values = self._scope(scope)
        values[self._key(values, name)] = value

    def remove(self, name: str, scope: Scope = Scope.USER) -> None:
        self._check(name, scope, self.fail_removes)
        values = self._scope(scope)
        values.pop(self._key(values, name), None)

    def notify_changed(self) -> None:
        if self.fail_notify:
            raise BackendError("Injected notify failure")
        self.notify_count += 1


def backend_from_name(
    name: str,
    *,
    dotenv_path: Path | None = None,
    platform: str | None = None,
) -> EnvironmentBackend | None:
    """Build a backend by configuration name. ``"none"`` returns None (store-only mode)."""
    platform = platform or sys.platform
    if name == "auto":
        name = "registry" if platform == "win32" else "dotenv"

    match name:
        case "none":
            return None
        case "process":
            return ProcessBackend()
        case "memory":
            return MemoryBackend()
        case "dotenv":
            if dotenv_path is None:
                raise ValueError("dotenv backend requires a dotenv_path")
            return DotenvBackend(dotenv_path)
        case "registry":
            from envgroups.core.registry import WindowsRegistryBackend

            return WindowsRegistryBackend()
        case _:
            raise ValueError(
                f"Unknown backend '{name}', expected one of {', '.join(BACKEND_NAMES)}"
            )
