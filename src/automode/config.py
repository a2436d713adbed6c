"""Loading and saving auto-mode configuration."""

import json
from pathlib import Path

from pydantic import ValidationError

from .errors import AutoModeError
from .models import AutoModeConfig


CONFIG_FILE = ".automaker/auto-mode.json"


def config_path(project_path: Path | str) -> Path:
    return Path(project_path) / CONFIG_FILE


def load_config(project_path: Path | str) -> AutoModeConfig:
    """Load the project's auto-mode configuration.

    A missing file yields the defaults.

    Raises:
        AutoModeError: If the file exists but is not valid configuration
    """
    path = config_path(project_path)
    if not path.exists():
        return AutoModeConfig()

    try:
        return AutoModeConfig.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except json.JSONDecodeError as e:
        raise AutoModeError(f"Invalid JSON in {path}: {e}") from e
    except ValidationError as e:
        raise AutoModeError(f"Invalid auto-mode configuration in {path}: {e}") from e


def save_config(project_path: Path | str, config: AutoModeConfig) -> Path:
    """Write configuration to the project; returns the file path."""
    path = config_path(project_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
    return path
