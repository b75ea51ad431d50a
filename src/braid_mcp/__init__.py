"""Braid MCP: merge-queue integration of agent worktrees into a shared project space."""

__version__ = "0.1.0"

__all__ = ["__version__"]
