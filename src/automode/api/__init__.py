"""Dashboard API for auto mode.

Provides REST endpoints and a WebSocket event stream.
"""

from .main import create_app, run_dashboard

__all__ = ["create_app", "run_dashboard"]
