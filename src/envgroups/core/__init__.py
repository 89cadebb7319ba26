"""Core building blocks: entity models, the document store and environment backends."""

from envgroups.core.backend import (
    DotenvBackend,
    EnvironmentBackend,
    MemoryBackend,
    ProcessBackend,
    backend_from_name,
)
from envgroups.core.models import (
    EnvEntry,
    GroupVariable,
    IndividualVariable,
    ItemType,
    Scope,
    TabType,
    TrashAction,
    TrashRecord,
    TrashSettings,
    VariableGroup,
)
from envgroups.core.store import Document, DocumentStore, JsonFileStore, MemoryStore

__all__ = [
    "Document",
    "DocumentStore",
    "DotenvBackend",
    "EnvEntry",
    "EnvironmentBackend",
    "GroupVariable",
    "IndividualVariable",
    "ItemType",
    "JsonFileStore",
    "MemoryBackend",
    "MemoryStore",
    "ProcessBackend",
    "Scope",
    "TabType",
    "TrashAction",
    "TrashRecord",
    "TrashSettings",
    "VariableGroup",
    "backend_from_name",
]
