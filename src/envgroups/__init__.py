"""Named environment-variable groups with live OS reconciliation and undo history."""

__version__ = "0.1.0"
