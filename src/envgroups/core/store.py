"""Document store with prefix scans and revision-checked writes.

Every entity lives under a namespaced id; listing is always a prefix scan:

- ``user-group-<groupId>``: variable groups
- ``system-user-var-<NAME>``: tracked user-scope variables
- ``trash-history-<tabType>-<recordId>``: undo log records
- ``trash-settings-<tabType>``: undo log settings singleton
"""

from __future__ import annotations

import contextlib
import copy
import json
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field

from envgroups.core.errors import ConflictError, NotFoundError
from envgroups.core.lock import DEFAULT_TIMEOUT, StoreLock

logger = logging.getLogger(__name__)

GROUP_PREFIX = "user-group-"
VARIABLE_PREFIX = "system-user-var-"


def trash_prefix(tab_type: str) -> str:
    return f"trash-history-{tab_type}-"


def trash_settings_key(tab_type: str) -> str:
    return f"trash-settings-{tab_type}"


def _next_revision(current: str | None) -> str:
    n = 0
    if current:
        head, _, _ = current.partition("-")
        n = int(head) if head.isdigit() else 0
    return f"{n + 1}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Document:
    id: str
    data: dict[str, Any] = field(default_factory=dict)
    revision: str = ""


class DocumentStore(Protocol):
    """Key-value store keyed by string id with optimistic concurrency."""

    def get(self, doc_id: str) -> Document | None:
        """Return the document, or None if absent."""
        ...

    def put(self, doc_id: str, data: dict[str, Any], expected_revision: str | None = None) -> str:
        """Create (no revision) or update (current revision) a document.

        Returns the new revision. Raises ConflictError when the revision does
        not match the stored one.
        """
        ...

    def remove(self, doc_id: str, expected_revision: str | None = None) -> None:
        """Remove a document. Raises NotFoundError if absent."""
        ...

    def scan_prefix(self, prefix: str) -> list[Document]:
        """Return all documents whose id starts with *prefix*, sorted by id."""
        ...


class _Entry(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    revision: str


def _check_put(entries: dict[str, _Entry], doc_id: str, expected_revision: str | None) -> None:
    current = entries.get(doc_id)
    if current is None:
        if expected_revision is not None:
            raise ConflictError(doc_id, expected_revision, None)
        return
    if expected_revision != current.revision:
        raise ConflictError(doc_id, expected_revision, current.revision)


def _check_remove(entries: dict[str, _Entry], doc_id: str, expected_revision: str | None) -> None:
    current = entries.get(doc_id)
    if current is None:
        raise NotFoundError("Document", doc_id)
    if expected_revision is not None and expected_revision != current.revision:
        raise ConflictError(doc_id, expected_revision, current.revision)


def _to_document(doc_id: str, entry: _Entry) -> Document:
    return Document(id=doc_id, data=copy.deepcopy(entry.data), revision=entry.revision)


class MemoryStore:
    """In-process store. Payloads are deep-copied in and out."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}

    def get(self, doc_id: str) -> Document | None:
        entry = self._entries.get(doc_id)
        return _to_document(doc_id, entry) if entry is not None else None

    def put(self, doc_id: str, data: dict[str, Any], expected_revision: str | None = None) -> str:
        _check_put(self._entries, doc_id, expected_revision)
        revision = _next_revision(expected_revision)
        self._entries[doc_id] = _Entry(data=copy.deepcopy(data), revision=revision)
        return revision

    def remove(self, doc_id: str, expected_revision: str | None = None) -> None:
        _check_remove(self._entries, doc_id, expected_revision)
        del self._entries[doc_id]

    def scan_prefix(self, prefix: str) -> list[Document]:
        return [
            _to_document(doc_id, entry)
            for doc_id, entry in sorted(self._entries.items())
            if doc_id.startswith(prefix)
        ]


class StoreFile(BaseModel):
    """On-disk layout of a :class:`JsonFileStore`."""

    version: int = 1
    documents: dict[str, _Entry] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Save atomically (temp file + rename), keeping a `.backup` of the previous file."""
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        content = json.dumps(data, indent=2, sort_keys=True) + "\n"

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()

    @classmethod
    def load_or_create(cls, path: Path) -> StoreFile:
        if path.exists():
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        return cls()


class JsonFileStore:
    """Store persisted as a single JSON file.

    Every call re-reads the file under an exclusive lock, so revision checks
    run against what is on disk, not against a cached copy.
    """

    def __init__(self, path: Path, *, lock_timeout: float = DEFAULT_TIMEOUT) -> None:
        self._path = Path(path)
        self._lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        return self._path

    def _locked(self) -> StoreLock:
        return StoreLock(self._path, timeout=self._lock_timeout)

    def get(self, doc_id: str) -> Document | None:
        with self._locked():
            entry = StoreFile.load_or_create(self._path).documents.get(doc_id)
        return _to_document(doc_id, entry) if entry is not None else None

    def put(self, doc_id: str, data: dict[str, Any], expected_revision: str | None = None) -> str:
        with self._locked():
            sf = StoreFile.load_or_create(self._path)
            _check_put(sf.documents, doc_id, expected_revision)
            revision = _next_revision(expected_revision)
            sf.documents[doc_id] = _Entry(data=data, revision=revision)
            sf.save(self._path)
        logger.debug("Stored %s rev=%s", doc_id, revision)
        return revision

    def remove(self, doc_id: str, expected_revision: str | None = None) -> None:
        with self._locked():
            sf = StoreFile.load_or_create(self._path)
            _check_remove(sf.documents, doc_id, expected_revision)
            del sf.documents[doc_id]
            sf.save(self._path)
        logger.debug("Removed %s", doc_id)

    def scan_prefix(self, prefix: str) -> list[Document]:
        with self._locked():
            sf = StoreFile.load_or_create(self._path)
        return [
            _to_document(doc_id, entry)
            for doc_id, entry in sorted(sf.documents.items())
            if doc_id.startswith(prefix)
        ]
