"""taskgraph — event projection engine for task-escrow and dispute contracts."""

__version__ = "0.1.0"
