"""Group reconciler: variable group lifecycle and activation against the live OS."""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import TYPE_CHECKING

import pydantic
from pydantic import BaseModel, Field

from envgroups.core.errors import (
    BackendError,
    BackendUnavailableError,
    ConflictError,
    EnvGroupsError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from envgroups.core.models import (
    GroupVariable,
    ItemType,
    Scope,
    TabType,
    TrashAction,
    TrashRecord,
    VariableGroup,
    utcnow,
)
from envgroups.core.store import GROUP_PREFIX
from envgroups.engine.types import (
    BatchDeleteReport,
    GroupFailure,
    OperationReport,
    Transition,
    VariableFailure,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from envgroups.core.backend import EnvironmentBackend
    from envgroups.core.store import Document, DocumentStore
    from envgroups.engine.trash import UndoLog
    from envgroups.engine.types import Clock

logger = logging.getLogger(__name__)

SYSTEM_GROUP_PREFIX = "system-"


class GroupMode(str, Enum):
    CREATE = "create"
    EDIT = "edit"


class GroupInput(BaseModel):
    """Unvalidated group form input."""

    name: str = ""
    description: str = ""
    variables: list[GroupVariable] = Field(default_factory=list)


def valid_variables(variables: Iterable[GroupVariable]) -> list[GroupVariable]:
    """Keep variables whose name and value are both non-blank. Names are stripped."""
    return [
        GroupVariable(name=v.name.strip(), value=v.value)
        for v in variables
        if v.name.strip() and v.value.strip()
    ]


def filter_groups(groups: Iterable[VariableGroup], term: str) -> list[VariableGroup]:
    if not term:
        return list(groups)
    return [g for g in groups if g.matches(term)]


class GroupReconciler:
    """Owns the lifecycle of user-defined variable groups.

    The ``is_active`` flag stored with each group is only a cache: the
    environment backend is probed on every :meth:`load_groups` and the cache
    is corrected when it diverges. Those corrections bypass the undo log;
    only user edits and deletes are recorded there.

    With ``backend=None`` every operation still updates the store, but the OS
    is left untouched and reports are flagged ``degraded``.
    """

    def __init__(
        self,
        store: DocumentStore,
        backend: EnvironmentBackend | None,
        trash: UndoLog | None = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        if trash is not None and trash.tab_type is not TabType.GROUPS:
            raise ValueError(f"Group trash must be the '{TabType.GROUPS.value}' log")
        self._store = store
        self._backend = backend
        self._trash = trash
        self._clock = clock

    @property
    def backend_available(self) -> bool:
        return self._backend is not None

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _doc_id(group_id: str) -> str:
        return GROUP_PREFIX + group_id

    @staticmethod
    def _payload(group: VariableGroup) -> dict:
        return group.to_payload(exclude={"id"})

    def _parse(self, doc: Document) -> VariableGroup | None:
        if not doc.data or not doc.data.get("name"):
            return None
        try:
            return VariableGroup.model_validate(
                {**doc.data, "id": doc.id.removeprefix(GROUP_PREFIX), "isSystemVariable": False}
            )
        except pydantic.ValidationError as exc:
            logger.warning("Skipping unreadable group %s: %s", doc.id, exc)
            return None

    def _load(self, group_id: str) -> tuple[Document, VariableGroup]:
        if group_id.startswith(SYSTEM_GROUP_PREFIX):
            raise ValidationError([f"'{group_id}' is a read-only system variable group"])
        doc = self._store.get(self._doc_id(group_id))
        group = self._parse(doc) if doc is not None else None
        if doc is None or group is None:
            raise NotFoundError("Group", group_id)
        return doc, group

    def _new_id(self) -> str:
        group_id = f"group-{int(self._clock().timestamp() * 1000)}"
        if self._store.get(self._doc_id(group_id)) is not None:
            group_id = f"{group_id}-{uuid.uuid4().hex[:6]}"
        return group_id

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def is_group_active(self, group: VariableGroup) -> bool:
        """Return True iff every named variable of *group* exists in the OS.

        Only presence is checked; a different live value still counts.
        """
        if self._backend is None:
            raise BackendUnavailableError("activation probe")
        names = group.variable_names()
        if not names:
            return False
        return all(self._backend.read_one(name) is not None for name in names)

    def load_groups(self) -> list[VariableGroup]:
        """Load all groups, correcting stale ``is_active`` flags. Newest first."""
        groups: list[VariableGroup] = []
        for doc in self._store.scan_prefix(GROUP_PREFIX):
            group = self._parse(doc)
            if group is None:
                continue
            if self._backend is not None:
                group = self._reconcile(doc, group)
            groups.append(group)

        groups.sort(key=lambda g: g.updated_at, reverse=True)
        logger.debug("Loaded %d groups", len(groups))
        return groups

    def _reconcile(self, doc: Document, group: VariableGroup) -> VariableGroup:
        try:
            actual = self.is_group_active(group)
        except (EnvGroupsError, OSError) as exc:
            logger.warning("Could not probe group '%s'; keeping stored state: %s", group.name, exc)
            return group

        if actual == group.is_active:
            return group

        corrected = group.model_copy(update={"is_active": actual, "updated_at": self._clock()})
        try:
            self._store.put(doc.id, self._payload(corrected), doc.revision)
        except EnvGroupsError as exc:
            logger.warning("Failed to store corrected state for '%s': %s", group.name, exc)
        else:
            logger.info(
                "Group '%s' is %s in the OS; stored flag corrected",
                group.name,
                "active" if actual else "inactive",
            )
        return corrected

    def get_group(self, group_id: str) -> VariableGroup:
        _, group = self._load(group_id)
        return group

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def _apply_variables(self, group: VariableGroup, transition: Transition) -> OperationReport:
        """Write or remove each variable in order, collecting per-variable failures."""
        report = OperationReport(group_id=group.id, transition=transition)
        if self._backend is None:
            report.degraded = True
            logger.warning(
                "No environment backend; '%s' %s recorded in the store only",
                group.name,
                transition.value,
            )
            return report

        for var in group.variables:
            if not var.name:
                continue
            if transition is Transition.ACTIVATE and not var.value:
                continue
            try:
                if transition is Transition.ACTIVATE:
                    self._backend.write(var.name, var.value, Scope.USER)
                else:
                    self._backend.remove(var.name, Scope.USER)
            except PermissionDeniedError as exc:
                logger.warning("Failed to %s %s: %s", transition.value, var.name, exc)
                report.failed.append(
                    VariableFailure(name=var.name, message=str(exc), permission_denied=True)
                )
            except BackendError as exc:
                logger.warning("Failed to %s %s: %s", transition.value, var.name, exc)
                report.failed.append(VariableFailure(name=var.name, message=str(exc)))
            else:
                report.applied.append(var.name)
        return report

    def _notify(self) -> bool:
        if self._backend is None:
            return False
        try:
            self._backend.notify_changed()
        except BackendError as exc:
            logger.warning("Failed to refresh environment: %s", exc)
            return False
        return True

    def _toggle(self, doc: Document, group: VariableGroup) -> OperationReport:
        transition = Transition.DEACTIVATE if group.is_active else Transition.ACTIVATE
        report = self._apply_variables(group, transition)
        if report.changed_os:
            report.refreshed = self._notify()

        # The stored flag follows the user's intent even after partial failures;
        # the next load_groups() reconciles it against the OS.
        updated = group.model_copy(
            update={"is_active": not group.is_active, "updated_at": self._clock()}
        )
        self._store.put(doc.id, self._payload(updated), doc.revision)
        logger.info(
            "Group '%s' %sd (%d applied, %d failed)",
            group.name,
            transition.value,
            len(report.applied),
            len(report.failed),
        )
        return report

    def toggle_group_active(self, group_id: str) -> OperationReport:
        """Activate an inactive group or deactivate an active one."""
        doc, group = self._load(group_id)
        return self._toggle(doc, group)

    def set_group_active(self, group_id: str, active: bool) -> OperationReport:
        """Move a group to *active*; no-op if it is already there."""
        doc, group = self._load(group_id)
        if group.is_active == active:
            return OperationReport(group_id=group_id)
        return self._toggle(doc, group)

    # ------------------------------------------------------------------
    # Create / edit
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(data: GroupInput) -> tuple[str, list[GroupVariable]]:
        errors: list[str] = []
        name = data.name.strip()
        if not name:
            errors.append("Group name must not be empty")
        variables = valid_variables(data.variables)
        if not variables:
            errors.append("At least one variable needs both a name and a value")
        if errors:
            raise ValidationError(errors)
        return name, variables

    def create_group(self, data: GroupInput) -> VariableGroup:
        name, variables = self._validate(data)
        now = self._clock()
        group = VariableGroup(
            id=self._new_id(),
            name=name,
            description=data.description.strip(),
            variables=variables,
            is_active=False,
            created_at=now,
            updated_at=now,
        )
        self._store.put(self._doc_id(group.id), self._payload(group))
        logger.info("Created group '%s' (%s)", group.name, group.id)
        return group

    def update_group(
        self,
        group_id: str,
        data: GroupInput,
        *,
        expected_revision: str | None = None,
    ) -> VariableGroup:
        """Replace a group's name, description and variables.

        ``is_active`` and ``created_at`` are kept. The previous version is
        recorded in the undo log before the write. Raises ConflictError if
        *expected_revision* is given and no longer current.
        """
        name, variables = self._validate(data)
        doc, existing = self._load(group_id)
        if expected_revision is not None and expected_revision != doc.revision:
            raise ConflictError(doc.id, expected_revision, doc.revision)

        updated = VariableGroup(
            id=existing.id,
            name=name,
            description=data.description.strip(),
            variables=variables,
            is_active=existing.is_active,
            created_at=existing.created_at,
            updated_at=self._clock(),
        )
        if self._trash is not None:
            self._trash.add(
                TrashAction.EDIT,
                ItemType.GROUP,
                existing.name,
                data=updated.to_payload(),
                original_data=existing.to_payload(),
            )
        self._store.put(doc.id, self._payload(updated), doc.revision)
        logger.info("Updated group '%s' (%s)", updated.name, updated.id)
        return updated

    def create_or_update_group(
        self,
        data: GroupInput,
        mode: GroupMode,
        group_id: str | None = None,
        *,
        expected_revision: str | None = None,
    ) -> VariableGroup:
        if GroupMode(mode) is GroupMode.CREATE:
            return self.create_group(data)
        if not group_id:
            raise ValidationError(["A group id is required to edit a group"])
        return self.update_group(group_id, data, expected_revision=expected_revision)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def _delete_one(
        self, doc: Document, group: VariableGroup, reports: list[OperationReport]
    ) -> None:
        """Record, deactivate and remove one group.

        The deactivation report lands in *reports* before the store removal,
        so a caller still sees OS changes when that removal fails.
        """
        record = None
        if self._trash is not None:
            record = self._trash.add(
                TrashAction.DELETE, ItemType.GROUP, group.name, data=group.to_payload()
            )

        if group.is_active:
            report = self._apply_variables(group, Transition.DEACTIVATE)
        else:
            report = OperationReport(group_id=group.id)
        reports.append(report)

        try:
            self._store.remove(doc.id)
        except EnvGroupsError:
            self._rollback_delete(doc, group, record, report)
            raise
        logger.info("Deleted group '%s' (%s)", group.name, group.id)

    def _rollback_delete(
        self,
        doc: Document,
        group: VariableGroup,
        record: TrashRecord | None,
        report: OperationReport,
    ) -> None:
        """Undo the bookkeeping of a delete whose store removal failed."""
        if record is not None and self._trash is not None:
            try:
                self._trash.delete(record.id)
            except EnvGroupsError as exc:
                logger.warning("Failed to drop trash record %s: %s", record.id, exc)
        if report.changed_os:
            updated = group.model_copy(update={"is_active": False, "updated_at": self._clock()})
            try:
                self._store.put(doc.id, self._payload(updated), doc.revision)
            except EnvGroupsError as exc:
                logger.warning("Failed to mark group '%s' inactive: %s", group.name, exc)

    def delete_group(self, group_id: str) -> OperationReport:
        """Record, deactivate if active, then remove a group."""
        doc, group = self._load(group_id)
        reports: list[OperationReport] = []
        try:
            self._delete_one(doc, group, reports)
        finally:
            if reports and reports[0].changed_os:
                reports[0].refreshed = self._notify()
        return reports[0]

    def delete_groups(self, group_ids: Iterable[str]) -> BatchDeleteReport:
        """Delete several groups, continuing past failures, with a single refresh."""
        batch = BatchDeleteReport()
        for group_id in dict.fromkeys(group_ids):
            try:
                doc, group = self._load(group_id)
                self._delete_one(doc, group, batch.reports)
            except EnvGroupsError as exc:
                logger.warning("Failed to delete group %s: %s", group_id, exc)
                batch.failed.append(GroupFailure(group_id=group_id, message=str(exc)))
                continue
            batch.deleted.append(group_id)

        if any(r.changed_os for r in batch.reports):
            batch.refreshed = self._notify()
        return batch

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    def restore(self, record: TrashRecord) -> VariableGroup:
        """Apply a ``groups`` trash record back to the store.

        A deleted group comes back inactive under its old id (or a fresh one
        if that id was reused). An edit puts the pre-edit name, description
        and variables back on the existing group.
        """
        if record.tab_type is not TabType.GROUPS:
            raise ValidationError([f"Record {record.id} is not a group record"])
        now = self._clock()

        if record.action is TrashAction.DELETE:
            group_id = record.data.get("id")
            if not group_id or self._store.get(self._doc_id(group_id)) is not None:
                group_id = self._new_id()
            group = VariableGroup.model_validate(
                {
                    **record.data,
                    "id": group_id,
                    "isActive": False,
                    "isSystemVariable": False,
                    "updatedAt": now,
                }
            )
            self._store.put(self._doc_id(group.id), self._payload(group))
            logger.info("Restored deleted group '%s' as %s", group.name, group.id)
            return group

        if record.original_data is None:
            raise ValidationError([f"Edit record {record.id} has no original data"])
        group_id = record.data.get("id") or record.original_data.get("id")
        if not group_id:
            raise ValidationError([f"Edit record {record.id} has no group id"])
        doc, current = self._load(group_id)
        group = VariableGroup.model_validate(
            {
                **record.original_data,
                "id": group_id,
                "isActive": current.is_active,
                "isSystemVariable": False,
                "updatedAt": now,
            }
        )
        self._store.put(doc.id, self._payload(group), doc.revision)
        logger.info("Reverted edit of group '%s'", group.name)
        return group

    # ------------------------------------------------------------------
    # Read-only system view
    # ------------------------------------------------------------------

    def system_variable_groups(self) -> list[VariableGroup]:
        """One synthetic read-only group per live variable (user values win on clashes)."""
        if self._backend is None:
            raise BackendUnavailableError("system variable view")
        user = {e.name: e.value for e in self._backend.read_all(Scope.USER)}
        system = {e.name: e.value for e in self._backend.read_all(Scope.SYSTEM)}
        now = self._clock()

        groups: list[VariableGroup] = []
        for name, value in {**system, **user}.items():
            if not name:
                continue
            is_system = name in system
            groups.append(
                VariableGroup(
                    id=f"{SYSTEM_GROUP_PREFIX}{'sys' if is_system else 'user'}-{name.lower()}",
                    name=name,
                    description=(
                        "System-level variable (read-only)"
                        if is_system
                        else "User-level variable (read-only)"
                    ),
                    variables=[GroupVariable(name=name, value=value)],
                    is_active=True,
                    is_system_variable=True,
                    created_at=now,
                    updated_at=now,
                )
            )
        return groups
