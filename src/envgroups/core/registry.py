"""Windows registry environment backend.

Shells out to ``reg.exe`` so no pywin32 dependency is required. User scope is
``HKCU\\Environment``; system scope is the machine-wide Session Manager key,
which needs an elevated (Administrator) process to write.
"""

from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Callable

from envgroups.core.errors import BackendError, PermissionDeniedError
from envgroups.core.models import EnvEntry, Scope

logger = logging.getLogger(__name__)

USER_KEY = r"HKEY_CURRENT_USER\Environment"
SYSTEM_KEY = r"HKEY_LOCAL_MACHINE\SYSTEM\CurrentControlSet\Control\Session Manager\Environment"

_VALUE_LINE = re.compile(r"^(\S+)\s+(REG_\w+)\s*(.*)$")
_DENIED_MARKERS = ("access is denied", "访问被拒绝")
_MISSING_MARKERS = ("unable to find", "找不到")
_ELEVATION_HINT = "Run envgroups from an elevated (Administrator) prompt"

Runner = Callable[[list[str]], subprocess.CompletedProcess[str]]


def _default_runner(cmd: list[str]) -> subprocess.CompletedProcess[str]:
    return subprocess.run(cmd, capture_output=True, text=True)


def parse_reg_query(output: str) -> list[EnvEntry]:
    """Parse ``reg query`` output into entries, skipping key header lines."""
    entries: list[EnvEntry] = []
    for line in output.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("HKEY_") or "REG_" not in stripped:
            continue
        match = _VALUE_LINE.match(stripped)
        if match:
            name, _, value = match.groups()
            entries.append(EnvEntry(name=name, value=value))
    return entries


class WindowsRegistryBackend:
    """Environment backend over the Windows registry."""

    case_sensitive = False

    def __init__(self, runner: Runner | None = None) -> None:
        self._run_cmd = runner or _default_runner

    @staticmethod
    def _key(scope: Scope) -> str:
        return SYSTEM_KEY if scope is Scope.SYSTEM else USER_KEY

    def _run(self, cmd: list[str], *, name: str = "", scope: Scope = Scope.USER) -> str:
        result = self._run_cmd(cmd)
        if result.returncode == 0:
            return result.stdout
        stderr = (result.stderr or "").strip()
        lowered = stderr.lower()
        if any(m in lowered for m in _DENIED_MARKERS):
            raise PermissionDeniedError(name, scope, _ELEVATION_HINT)
        raise BackendError(
            f"Command failed (exit {result.returncode}):\n"
            f"  {' '.join(cmd)}\n"
            f"  stderr: {stderr}"
        )

    def read_all(self, scope: Scope) -> list[EnvEntry]:
        return parse_reg_query(self._run(["reg", "query", self._key(scope)], scope=scope))

    def read_one(self, name: str) -> str | None:
        for scope in (Scope.USER, Scope.SYSTEM):
            for entry in self.read_all(scope):
                if entry.name.lower() == name.lower():
                    return entry.value
        return None

    def write(self, name: str, value: str, scope: Scope = Scope.USER) -> None:
        if not name or not name.strip():
            raise BackendError("Variable name must not be empty")
        cmd = ["reg", "add", self._key(scope), "/v", name, "/t", "REG_SZ", "/d", value, "/f"]
        self._run(cmd, name=name, scope=scope)

    def remove(self, name: str, scope: Scope = Scope.USER) -> None:
        if not name or not name.strip():
            raise BackendError("Variable name must not be empty")
        try:
            self._run(["reg", "delete", self._key(scope), "/v", name, "/f"], name=name, scope=scope)
        except PermissionDeniedError:
            raise
        except BackendError as exc:
            if any(m in str(exc).lower() for m in _MISSING_MARKERS):
                logger.debug("%s was not set at %s scope", name, scope.value)
                return
            raise

    def notify_changed(self) -> None:
        self._run(["rundll32.exe", "user32.dll,UpdatePerUserSystemParameters"])
