"""API routes for the dashboard."""

from . import auto_mode, features, running_agents

__all__ = ["auto_mode", "features", "running_agents"]
