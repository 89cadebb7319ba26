"""Group reconciliation, the variable catalog and the undo log."""

from envgroups.engine.catalog import VariableCatalog, filter_variables
from envgroups.engine.groups import (
    GroupInput,
    GroupMode,
    GroupReconciler,
    filter_groups,
    valid_variables,
)
from envgroups.engine.trash import UndoLog
from envgroups.engine.types import (
    BatchDeleteReport,
    GroupFailure,
    OperationReport,
    Transition,
    VariableFailure,
)

__all__ = [
    "BatchDeleteReport",
    "GroupFailure",
    "GroupInput",
    "GroupMode",
    "GroupReconciler",
    "OperationReport",
    "Transition",
    "UndoLog",
    "VariableCatalog",
    "VariableFailure",
    "filter_groups",
    "filter_variables",
    "valid_variables",
]
