"""Lead change history, single-step undo, and system event log."""
