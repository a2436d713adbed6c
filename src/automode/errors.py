"""Exceptions raised by the auto-mode core."""

from typing import Optional


class AutoModeError(Exception):
    """Base class for auto-mode errors."""
    pass


class AutoModeAlreadyRunningError(AutoModeError):
    """Raised when an auto-loop is started twice for the same project."""

    def __init__(self, project_path: str):
        self.project_path = project_path
        super().__init__(
            f"Auto mode is already running for project: {project_path}. Stop it first."
        )


class FeatureAlreadyRunningError(AutoModeError):
    """Raised when a feature is dispatched while it is still executing."""

    def __init__(self, feature_id: str):
        self.feature_id = feature_id
        super().__init__(f"Feature {feature_id} is already running")


class FeatureNotFoundError(AutoModeError):
    """Raised when a feature record does not exist."""

    def __init__(self, feature_id: str, project_path: Optional[str] = None):
        self.feature_id = feature_id
        self.project_path = project_path
        location = f" in {project_path}" if project_path else ""
        super().__init__(f"Feature {feature_id} not found{location}")


class FeatureStoreError(AutoModeError):
    """Raised when feature records cannot be read or written."""
    pass
