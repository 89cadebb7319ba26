"""Settings loading and the convenience workspace API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from envgroups.config.loader import ConfigError, load_settings
from envgroups.config.schema import Settings
from envgroups.core.backend import backend_from_name
from envgroups.core.models import TabType, utcnow
from envgroups.core.store import JsonFileStore
from envgroups.engine.catalog import VariableCatalog
from envgroups.engine.groups import GroupReconciler
from envgroups.engine.trash import UndoLog

if TYPE_CHECKING:
    from envgroups.core.backend import EnvironmentBackend
    from envgroups.core.models import IndividualVariable, VariableGroup
    from envgroups.core.store import DocumentStore
    from envgroups.engine.types import Clock

__all__ = [
    "ConfigError",
    "Settings",
    "Workspace",
    "load_settings",
    "open_workspace",
]


@dataclass
class Workspace:
    """All components wired to one store and one backend."""

    store: DocumentStore
    backend: EnvironmentBackend | None
    groups: GroupReconciler
    variables: VariableCatalog
    group_trash: UndoLog
    variable_trash: UndoLog

    @classmethod
    def build(
        cls,
        store: DocumentStore,
        backend: EnvironmentBackend | None,
        *,
        clock: Clock = utcnow,
        default_cleanup_days: int = 30,
        path_variable: str = "PATH",
        path_separator: str | None = None,
    ) -> Workspace:
        group_trash = UndoLog(
            store, TabType.GROUPS, clock=clock, default_cleanup_days=default_cleanup_days
        )
        variable_trash = UndoLog(
            store, TabType.USER_VARS, clock=clock, default_cleanup_days=default_cleanup_days
        )
        return cls(
            store=store,
            backend=backend,
            groups=GroupReconciler(store, backend, group_trash, clock=clock),
            variables=VariableCatalog(
                store,
                backend,
                variable_trash,
                clock=clock,
                path_variable=path_variable,
                path_sep=path_separator,
            ),
            group_trash=group_trash,
            variable_trash=variable_trash,
        )

    @classmethod
    def from_settings(cls, settings: Settings, *, clock: Clock = utcnow) -> Workspace:
        store = JsonFileStore(settings.resolved_store_file)
        try:
            backend = backend_from_name(
                settings.backend, dotenv_path=settings.resolved_dotenv_path
            )
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        return cls.build(
            store,
            backend,
            clock=clock,
            default_cleanup_days=settings.default_cleanup_days,
            path_variable=settings.path_variable,
            path_separator=settings.path_separator,
        )

    def trash(self, tab_type: TabType | str) -> UndoLog:
        if TabType(tab_type) is TabType.GROUPS:
            return self.group_trash
        return self.variable_trash

    def restore(
        self, tab_type: TabType | str, record_id: str
    ) -> VariableGroup | IndividualVariable:
        """Hand a trash record to the component that owns it, then drop it from the log."""
        log = self.trash(tab_type)
        record = log.get(record_id)
        if log.tab_type is TabType.GROUPS:
            return log.restore(record, self.groups.restore)
        return log.restore(record, self.variables.restore)


def open_workspace(settings: Settings | None = None) -> Workspace:
    """Build a workspace from *settings* (or from the default settings file)."""
    return Workspace.from_settings(settings if settings is not None else load_settings())
