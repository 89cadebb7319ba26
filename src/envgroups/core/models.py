"""Entity models persisted in the document store.

Payloads are stored with camelCase keys (``isActive``, ``createdAt`` ...);
Python code uses the snake_case field names.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PositiveInt
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(UTC)


class Scope(str, Enum):
    USER = "user"
    SYSTEM = "system"


class TabType(str, Enum):
    """Collection a trash record belongs to."""

    GROUPS = "groups"
    USER_VARS = "user-vars"


class TrashAction(str, Enum):
    DELETE = "delete"
    EDIT = "edit"


class ItemType(str, Enum):
    GROUP = "group"
    VARIABLE = "variable"


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self, **kwargs: Any) -> dict[str, Any]:
        """Dump to the JSON-compatible dict stored in a document."""
        return self.model_dump(mode="json", by_alias=True, **kwargs)


class GroupVariable(_Payload):
    name: str
    value: str = ""


class EnvEntry(_Payload):
    """A live variable as reported by an environment backend."""

    name: str
    value: str = ""


class VariableGroup(_Payload):
    """A named, user-owned bundle of variables activated as a unit.

    Attributes:
        id: Group id, unique within the group namespace (store id minus prefix)
        name: Display name
        description: Optional free text
        variables: Ordered name/value pairs (duplicates are kept as given)
        is_active: Cached result of the last activation probe; the OS is the
            source of truth
        is_system_variable: True only for synthetic read-only view groups
        created_at: When the group was created
        updated_at: Refreshed on every mutation
    """

    id: str
    name: str
    description: str = ""
    variables: list[GroupVariable] = Field(default_factory=list)
    is_active: bool = False
    is_system_variable: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def variable_names(self) -> list[str]:
        return [v.name for v in self.variables if v.name]

    def matches(self, term: str) -> bool:
        """Return True if name, description or any variable contains *term*."""
        q = term.lower()
        if q in self.name.lower() or q in self.description.lower():
            return True
        return any(q in v.name.lower() or q in v.value.lower() for v in self.variables)


class IndividualVariable(_Payload):
    """A user-scope OS variable tracked by the catalog."""

    name: str
    value: str = ""
    is_system_original: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def matches(self, term: str) -> bool:
        q = term.lower()
        return q in self.name.lower() or q in self.value.lower()


class TrashRecord(_Payload):
    """One recoverable user action. Immutable once written."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    tab_type: TabType
    action: TrashAction
    item_type: ItemType
    name: str
    data: dict[str, Any] = Field(default_factory=dict)
    original_data: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class TrashSettings(_Payload):
    auto_cleanup_days: PositiveInt = 30
