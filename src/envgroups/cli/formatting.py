"""Table and report rendering for the CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich.table import Table

from envgroups.engine.types import Transition

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from envgroups.core.models import EnvEntry, IndividualVariable, TrashRecord, VariableGroup
    from envgroups.engine.types import BatchDeleteReport, OperationReport

_MAX_VALUE = 60

_TRANSITION_DONE: dict[Transition, tuple[str, str]] = {
    Transition.ACTIVATE: ("green", "activated"),
    Transition.DEACTIVATE: ("yellow", "deactivated"),
    Transition.NONE: ("bright_black", "unchanged"),
}


def styler(color: bool) -> Callable[..., str]:
    """Return ``typer.style`` when *color* is True, otherwise a passthrough."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def _truncate(value: str, limit: int = _MAX_VALUE) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'' if n == 1 else 's'}"


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def groups_table(groups: Iterable[VariableGroup]) -> Table:
    table = Table(title="Variable groups", show_lines=False)
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Active", justify="center")
    table.add_column("Variables", justify="right")
    table.add_column("Description")
    for g in groups:
        table.add_row(
            g.id,
            g.name,
            "yes" if g.is_active else "no",
            str(len(g.variables)),
            _truncate(g.description),
        )
    return table


def group_detail(group: VariableGroup) -> Table:
    """Variables of one group as a table titled with the group header."""
    state = "active" if group.is_active else "inactive"
    table = Table(title=f"{group.name} ({group.id}, {state})", caption=group.description or None)
    table.add_column("Name", no_wrap=True)
    table.add_column("Value")
    for v in group.variables:
        table.add_row(v.name, _truncate(v.value))
    return table


def variables_table(
    variables: Iterable[IndividualVariable], *, title: str = "User variables"
) -> Table:
    table = Table(title=title)
    table.add_column("Name", no_wrap=True)
    table.add_column("Value")
    table.add_column("Origin")
    for v in variables:
        table.add_row(v.name, _truncate(v.value), "system" if v.is_system_original else "envgroups")
    return table


def entries_table(entries: Iterable[EnvEntry], *, title: str = "System variables") -> Table:
    table = Table(title=title)
    table.add_column("Name", no_wrap=True)
    table.add_column("Value")
    for e in entries:
        table.add_row(e.name, _truncate(e.value))
    return table


def path_table(name: str, segments: list[str]) -> Table:
    table = Table(title=name)
    table.add_column("#", justify="right")
    table.add_column("Segment")
    for i, seg in enumerate(segments, start=1):
        table.add_row(str(i), seg)
    return table


def trash_table(records: Iterable[TrashRecord], *, title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", no_wrap=True)
    table.add_column("When", no_wrap=True)
    table.add_column("Action")
    table.add_column("Item")
    table.add_column("Name")
    for r in records:
        table.add_row(
            r.id,
            r.timestamp.strftime("%Y-%m-%d %H:%M"),
            r.action.value,
            r.item_type.value,
            r.name,
        )
    return table


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def _failure_lines(report: OperationReport, *, color: bool) -> list[str]:
    style = styler(color)
    lines = []
    for f in report.failed:
        lines.append(style(f"  ! {f.name}: {f.message}", fg="red"))
    if any(f.permission_denied for f in report.failed):
        lines.append(style("  Some variables need elevated privileges.", fg="yellow"))
    return lines


def format_operation_report(report: OperationReport, name: str, *, color: bool = True) -> str:
    """Render the outcome of an activate/deactivate for group *name*."""
    style = styler(color)
    fg, verb = _TRANSITION_DONE[report.transition]
    if report.transition is Transition.NONE:
        return f"Group '{name}' is already in the requested state."

    header = style(f"Group '{name}' {verb}.", fg=fg, bold=True)
    lines = [f"{header} {_plural(len(report.applied), 'variable')} applied."]
    if report.degraded:
        lines.append(style("  No environment backend: only the stored state changed.", fg="yellow"))
    if report.partial:
        lines.append(style(f"  {_plural(len(report.failed), 'variable')} failed:", fg="red"))
        lines.extend(_failure_lines(report, color=color))
    return "\n".join(lines)


def format_batch_report(batch: BatchDeleteReport, *, color: bool = True) -> str:
    """Render the outcome of deleting one or more groups."""
    style = styler(color)
    s = batch.summary()
    lines = [style(f"Deleted {_plural(s['deleted'], 'group')}.", fg="green", bold=True)]
    if s["variables_removed"]:
        removed = _plural(s["variables_removed"], "variable")
        lines.append(f"  {removed} removed from the environment.")
    for failure in batch.failed:
        lines.append(style(f"  ! {failure.group_id}: {failure.message}", fg="red"))
    for report in batch.reports:
        lines.extend(_failure_lines(report, color=color))
    return "\n".join(lines)
