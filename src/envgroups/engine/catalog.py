"""Catalog of individual user-scope variables, mirrored from the live OS."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pydantic

from envgroups.core.errors import (
    BackendError,
    BackendUnavailableError,
    EnvGroupsError,
    NotFoundError,
    ValidationError,
)
from envgroups.core.models import (
    EnvEntry,
    IndividualVariable,
    ItemType,
    Scope,
    TabType,
    TrashAction,
    TrashRecord,
    utcnow,
)
from envgroups.core.store import VARIABLE_PREFIX
from envgroups.engine.pathlist import (
    DEFAULT_PATH_VARIABLE,
    is_path_variable,
    join_path_segments,
    path_separator,
    split_path_value,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from envgroups.core.backend import EnvironmentBackend
    from envgroups.core.store import Document, DocumentStore
    from envgroups.engine.trash import UndoLog
    from envgroups.engine.types import Clock

logger = logging.getLogger(__name__)


def _sort_key(name: str) -> tuple[str, str]:
    return (name.lower(), name)


def filter_variables(
    variables: Iterable[IndividualVariable], term: str
) -> list[IndividualVariable]:
    if not term:
        return list(variables)
    return [v for v in variables if v.matches(term)]


class VariableCatalog:
    """Tracks user-scope OS variables and edits them one at a time.

    Every :meth:`reconcile` prunes tracked records whose variable is gone from
    the OS and adopts live variables that have no record yet.
    """

    def __init__(
        self,
        store: DocumentStore,
        backend: EnvironmentBackend | None,
        trash: UndoLog | None = None,
        *,
        clock: Clock = utcnow,
        path_variable: str = DEFAULT_PATH_VARIABLE,
        path_sep: str | None = None,
    ) -> None:
        if trash is not None and trash.tab_type is not TabType.USER_VARS:
            raise ValueError(f"Variable trash must be the '{TabType.USER_VARS.value}' log")
        self._store = store
        self._backend = backend
        self._trash = trash
        self._clock = clock
        self._path_variable = path_variable
        self._path_sep = path_sep or path_separator()

    @staticmethod
    def _doc_id(name: str) -> str:
        return VARIABLE_PREFIX + name

    def _parse(self, doc: Document) -> IndividualVariable | None:
        data = {"name": doc.id.removeprefix(VARIABLE_PREFIX), **doc.data}
        try:
            return IndividualVariable.model_validate(data)
        except pydantic.ValidationError as exc:
            logger.warning("Skipping unreadable variable record %s: %s", doc.id, exc)
            return None

    def _tracked(self) -> dict[str, tuple[Document, IndividualVariable]]:
        tracked: dict[str, tuple[Document, IndividualVariable]] = {}
        for doc in self._store.scan_prefix(VARIABLE_PREFIX):
            var = self._parse(doc)
            if var is not None:
                tracked[self._key(var.name)] = (doc, var)
        return tracked

    def _require_backend(self, operation: str) -> EnvironmentBackend:
        if self._backend is None:
            raise BackendUnavailableError(operation)
        return self._backend

    def _key(self, name: str) -> str:
        if self._backend is not None and not self._backend.case_sensitive:
            return name.lower()
        return name

    def _live_value(self, name: str) -> str | None:
        if self._backend is None:
            return None
        key = self._key(name)
        for entry in self._backend.read_all(Scope.USER):
            if self._key(entry.name) == key:
                return entry.value
        return None

    def _resolve(self, name: str) -> str:
        """Spell *name* the way the catalog or the OS already does.

        Where the backend ignores case, ``PATH`` resolves to a tracked or
        live ``Path`` so edits land on the existing variable.
        """
        name = name.strip()
        backend = self._backend
        if backend is None or backend.case_sensitive or not name:
            return name
        folded = name.lower()
        for doc in self._store.scan_prefix(VARIABLE_PREFIX):
            tracked = doc.id.removeprefix(VARIABLE_PREFIX)
            if tracked.lower() == folded:
                return tracked
        for entry in backend.read_all(Scope.USER):
            if entry.name.lower() == folded:
                return entry.name
        return name

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def reconcile(self) -> list[IndividualVariable]:
        """Merge tracked records with live user variables, sorted by name."""
        backend = self._require_backend("user variable catalog")
        live = {self._key(e.name): e for e in backend.read_all(Scope.USER) if e.name}
        tracked = self._tracked()

        merged: list[IndividualVariable] = []
        for key, (doc, var) in tracked.items():
            if key in live:
                merged.append(var.model_copy(update={"value": live[key].value}))
                continue
            name = var.name
            try:
                self._store.remove(doc.id)
            except EnvGroupsError as exc:
                logger.warning("Failed to prune tracked variable %s: %s", name, exc)
            else:
                logger.info("Variable %s no longer exists; record pruned", name)

        for key, entry in live.items():
            if key in tracked:
                continue
            name = entry.name
            now = self._clock()
            var = IndividualVariable(
                name=name,
                value=entry.value,
                is_system_original=True,
                created_at=now,
                updated_at=now,
            )
            try:
                self._store.put(self._doc_id(name), var.to_payload())
            except EnvGroupsError as exc:
                logger.warning("Failed to track variable %s: %s", name, exc)
            merged.append(var)

        merged.sort(key=lambda v: _sort_key(v.name))
        return merged

    def get(self, name: str) -> IndividualVariable:
        name = self._resolve(name)
        doc = self._store.get(self._doc_id(name))
        var = self._parse(doc) if doc is not None else None
        if var is None:
            raise NotFoundError("Variable", name)
        return var

    def list_system(self) -> list[EnvEntry]:
        """Read-only listing of system-scope variables."""
        backend = self._require_backend("system variable listing")
        return sorted(backend.read_all(Scope.SYSTEM), key=lambda e: _sort_key(e.name))

    # ------------------------------------------------------------------
    # PATH-like variables
    # ------------------------------------------------------------------

    def is_path(self, name: str) -> bool:
        return is_path_variable(name, self._path_variable)

    def path_segments(self, variable: IndividualVariable) -> list[str]:
        if not self.is_path(variable.name):
            raise ValidationError([f"{variable.name} is not a path list variable"])
        return split_path_value(variable.value, self._path_sep)

    def save_path_segments(
        self,
        name: str,
        segments: Iterable[str],
        prior: IndividualVariable | None = None,
    ) -> IndividualVariable:
        if not self.is_path(name):
            raise ValidationError([f"{name} is not a path list variable"])
        value = join_path_segments(segments, self._path_sep)
        name = self._resolve(name)
        is_new = prior is None and self._store.get(self._doc_id(name)) is None
        return self.save(name, value, is_new=is_new, prior=prior)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write_os(self, name: str, value: str) -> None:
        if self._backend is None:
            logger.warning("No environment backend; %s saved in the store only", name)
            return
        self._backend.write(name, value, Scope.USER)
        self._notify(self._backend)

    def _remove_os(self, name: str) -> None:
        if self._backend is None:
            logger.warning("No environment backend; %s removed from the store only", name)
            return
        self._backend.remove(name, Scope.USER)
        self._notify(self._backend)

    @staticmethod
    def _notify(backend: EnvironmentBackend) -> None:
        try:
            backend.notify_changed()
        except BackendError as exc:
            logger.warning("Failed to refresh environment: %s", exc)

    def _put(self, var: IndividualVariable, existing: Document | None) -> None:
        self._store.put(
            self._doc_id(var.name),
            var.to_payload(),
            existing.revision if existing is not None else None,
        )

    def save(
        self,
        name: str,
        value: str,
        is_new: bool = False,
        prior: IndividualVariable | None = None,
    ) -> IndividualVariable:
        """Create or overwrite a user variable in the OS and in the catalog.

        Overwrites are recorded in the undo log with the previous value. That
        includes a live variable the catalog has not adopted yet.
        """
        name = self._resolve(name)
        if not name:
            raise ValidationError(["Variable name must not be empty"])

        existing = self._store.get(self._doc_id(name))
        if is_new and existing is not None:
            raise ValidationError([f"Variable {name} already exists"])
        current = self._parse(existing) if existing is not None else None

        before: dict[str, str] | None = None
        untracked_live = False
        src = prior or current
        if src is not None:
            if not is_new:
                before = {"name": src.name, "value": src.value}
        else:
            live = self._live_value(name)
            if live is not None:
                before = {"name": name, "value": live}
                untracked_live = True

        if before is not None and self._trash is not None:
            self._trash.add(
                TrashAction.EDIT,
                ItemType.VARIABLE,
                name,
                data={"name": name, "value": value},
                original_data=before,
            )

        self._write_os(name, value)

        now = self._clock()
        if current is not None:
            is_system_original = current.is_system_original
        else:
            is_system_original = untracked_live or not is_new
        var = IndividualVariable(
            name=name,
            value=value,
            is_system_original=is_system_original,
            created_at=current.created_at if current is not None else now,
            updated_at=now,
        )
        self._put(var, existing)
        logger.info("%s variable %s", "Updated" if before is not None else "Created", name)
        return var

    def delete(self, variable: IndividualVariable) -> None:
        """Remove a user variable from the OS and stop tracking it."""
        if self._trash is not None:
            self._trash.add(
                TrashAction.DELETE,
                ItemType.VARIABLE,
                variable.name,
                data={"name": variable.name, "value": variable.value},
            )
        self._remove_os(variable.name)

        doc = self._store.get(self._doc_id(variable.name))
        if doc is not None:
            self._store.remove(doc.id)
        logger.info("Deleted variable %s", variable.name)

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    def restore(self, record: TrashRecord) -> IndividualVariable:
        """Apply a ``user-vars`` trash record back to the OS and the catalog."""
        if record.tab_type is not TabType.USER_VARS:
            raise ValidationError([f"Record {record.id} is not a variable record"])

        if record.action is TrashAction.DELETE:
            value = str(record.data.get("value", ""))
        else:
            if record.original_data is None:
                raise ValidationError([f"Edit record {record.id} has no original data"])
            value = str(record.original_data.get("value", ""))

        name = self._resolve(record.name)
        self._write_os(name, value)

        existing = self._store.get(self._doc_id(name))
        current = self._parse(existing) if existing is not None else None
        now = self._clock()
        var = IndividualVariable(
            name=name,
            value=value,
            is_system_original=current.is_system_original if current is not None else False,
            created_at=current.created_at if current is not None else now,
            updated_at=now,
        )
        self._put(var, existing)
        logger.info("Restored variable %s", name)
        return var
