"""List view over PATH-like variables.

The stored value is always a single string; these helpers only convert
between that string and an editable list of segments.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

DEFAULT_PATH_VARIABLE = "PATH"


def path_separator() -> str:
    return os.pathsep


def is_path_variable(name: str, path_name: str = DEFAULT_PATH_VARIABLE) -> bool:
    return name.upper() == path_name.upper()


def split_path_value(value: str, sep: str | None = None) -> list[str]:
    """Split *value* into segments, dropping empty and whitespace-only ones."""
    sep = sep or path_separator()
    if not value:
        return []
    return [p for p in value.split(sep) if p and p.strip()]


def join_path_segments(segments: Iterable[str], sep: str | None = None) -> str:
    sep = sep or path_separator()
    return sep.join(p for p in segments if p and p.strip())


def edit_path_segments(
    segments: list[str],
    *,
    add: Iterable[str] = (),
    remove: Iterable[str] = (),
) -> list[str]:
    """Return *segments* with *remove* entries dropped and *add* entries appended.

    Segments already present are not appended twice.
    """
    drop = set(remove)
    result = [s for s in segments if s not in drop]
    for s in add:
        if s and s.strip() and s not in result:
            result.append(s)
    return result
