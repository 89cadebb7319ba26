"""Undo log ("trash") of user deletes and edits, one log per collection."""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any, TypeVar

import pydantic

from envgroups.core.errors import EnvGroupsError, NotFoundError, RestoreError, ValidationError
from envgroups.core.models import (
    ItemType,
    TabType,
    TrashAction,
    TrashRecord,
    TrashSettings,
    utcnow,
)
from envgroups.core.store import trash_prefix, trash_settings_key

if TYPE_CHECKING:
    from collections.abc import Callable

    from envgroups.core.store import Document, DocumentStore
    from envgroups.engine.types import Clock

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UndoLog:
    """Durable history of recoverable actions for one :class:`TabType`.

    The log does not know how to undo anything itself: :meth:`restore` hands
    the record to a caller-supplied function and only drops the record once
    that function returns.
    """

    def __init__(
        self,
        store: DocumentStore,
        tab_type: TabType,
        *,
        clock: Clock = utcnow,
        default_cleanup_days: int = 30,
    ) -> None:
        self._store = store
        self._tab_type = TabType(tab_type)
        self._clock = clock
        self._prefix = trash_prefix(self._tab_type.value)
        self._settings_key = trash_settings_key(self._tab_type.value)
        self._settings = TrashSettings(auto_cleanup_days=default_cleanup_days)
        self._records: list[TrashRecord] = []

    @property
    def tab_type(self) -> TabType:
        return self._tab_type

    @property
    def records(self) -> list[TrashRecord]:
        """Records loaded or added in this session, newest first."""
        return list(self._records)

    @property
    def settings(self) -> TrashSettings:
        return self._settings

    def _parse(self, doc: Document) -> TrashRecord | None:
        if not doc.data:
            return None
        try:
            return TrashRecord.model_validate(doc.data)
        except pydantic.ValidationError as exc:
            logger.warning("Skipping unreadable trash record %s: %s", doc.id, exc)
            return None

    def _scan(self) -> list[tuple[Document, TrashRecord]]:
        pairs = []
        for doc in self._store.scan_prefix(self._prefix):
            record = self._parse(doc)
            if record is not None:
                pairs.append((doc, record))
        return pairs

    def load(self) -> list[TrashRecord]:
        """Read all records and settings from the store."""
        records = [record for _, record in self._scan()]
        records.sort(key=lambda r: (r.timestamp, r.id), reverse=True)
        self._records = records

        doc = self._store.get(self._settings_key)
        if doc is not None and doc.data:
            try:
                self._settings = TrashSettings.model_validate(doc.data)
            except pydantic.ValidationError as exc:
                logger.warning("Ignoring invalid trash settings for %s: %s", self._tab_type, exc)
        logger.debug("Loaded %d %s trash records", len(records), self._tab_type.value)
        return self.records

    def open(self) -> int:
        """Load the log and prune expired records, as done every time the history is viewed."""
        self.load()
        return self.clear_old_records()

    def _new_id(self) -> str:
        millis = int(self._clock().timestamp() * 1000)
        return f"{millis}-{uuid.uuid4().hex[:9]}"

    def add(
        self,
        action: TrashAction,
        item_type: ItemType,
        name: str,
        data: dict[str, Any],
        original_data: dict[str, Any] | None = None,
    ) -> TrashRecord:
        """Record an action. Assigns the id and timestamp."""
        record = TrashRecord(
            id=self._new_id(),
            tab_type=self._tab_type,
            action=action,
            item_type=item_type,
            name=name,
            data=data,
            original_data=original_data if action is TrashAction.EDIT else None,
            timestamp=self._clock(),
        )
        self._store.put(self._prefix + record.id, record.to_payload())
        self._records.insert(0, record)
        logger.debug("Trash %s: %s %s '%s'", record.id, action.value, item_type.value, name)
        return record

    def get(self, record_id: str) -> TrashRecord:
        doc = self._store.get(self._prefix + record_id)
        record = self._parse(doc) if doc is not None else None
        if record is None:
            raise NotFoundError("Trash record", record_id)
        return record

    def delete(self, record_id: str) -> None:
        """Permanently remove a record."""
        self._store.remove(self._prefix + record_id)
        self._records = [r for r in self._records if r.id != record_id]
        logger.debug("Trash %s deleted", record_id)

    def restore(self, record: TrashRecord, apply: Callable[[TrashRecord], T]) -> T:
        """Apply *record* back via *apply*, then drop it from the log.

        Returns whatever *apply* returns. Raises RestoreError if *apply* fails;
        the record is kept.
        """
        if record.tab_type is not self._tab_type:
            msg = f"Record {record.id} belongs to '{record.tab_type.value}'"
            raise ValidationError([f"{msg}, not '{self._tab_type.value}'"])
        try:
            result = apply(record)
        except Exception as exc:
            raise RestoreError(record.id, str(exc)) from exc
        self.delete(record.id)
        logger.info("Restored %s '%s' from trash", record.item_type.value, record.name)
        return result

    def clear_old_records(self) -> int:
        """Remove records older than the retention window. Returns how many were removed."""
        cutoff = self._clock() - timedelta(days=self._settings.auto_cleanup_days)
        removed: set[str] = set()
        for doc, record in self._scan():
            if record.timestamp >= cutoff:
                continue
            try:
                self._store.remove(doc.id)
            except EnvGroupsError as exc:
                logger.warning("Failed to prune trash record %s: %s", record.id, exc)
                continue
            removed.add(record.id)

        if removed:
            self._records = [r for r in self._records if r.id not in removed]
            logger.info(
                "Pruned %d %s trash record(s) older than %d days",
                len(removed),
                self._tab_type.value,
                self._settings.auto_cleanup_days,
            )
        return len(removed)

    def update_settings(self, **patch: Any) -> TrashSettings:
        """Merge *patch* into the stored settings. Takes effect immediately."""
        try:
            merged = TrashSettings.model_validate({**self._settings.model_dump(), **patch})
        except pydantic.ValidationError as exc:
            raise ValidationError([str(e["msg"]) for e in exc.errors()]) from exc

        existing = self._store.get(self._settings_key)
        self._store.put(
            self._settings_key,
            merged.to_payload(),
            existing.revision if existing is not None else None,
        )
        self._settings = merged
        return merged

    def count(self) -> int:
        return len(self._store.scan_prefix(self._prefix))
