"""Tests for auto-mode configuration loading."""

import pytest

from automode.config import CONFIG_FILE, config_path, load_config, save_config
from automode.errors import AutoModeError
from automode.models import AutoModeConfig


class TestConfig:
    """Tests for load_config and save_config."""

    def test_missing_file_yields_defaults(self, tmp_path):
        assert load_config(tmp_path) == AutoModeConfig()

    def test_round_trip(self, tmp_path):
        config = AutoModeConfig(max_concurrency=5, skip_verification=True)

        path = save_config(tmp_path, config)

        assert path == tmp_path / CONFIG_FILE
        assert load_config(tmp_path) == config

    def test_partial_file_uses_defaults_for_the_rest(self, tmp_path):
        path = config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text('{"max_concurrency": 7}')

        config = load_config(tmp_path)

        assert config.max_concurrency == 7
        assert config.poll_interval_seconds == 2.0

    def test_invalid_json_raises(self, tmp_path):
        path = config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text("{oops")

        with pytest.raises(AutoModeError, match="Invalid JSON"):
            load_config(tmp_path)

    def test_invalid_values_raise(self, tmp_path):
        path = config_path(tmp_path)
        path.parent.mkdir(parents=True)
        path.write_text('{"max_concurrency": 50}')

        with pytest.raises(AutoModeError, match="Invalid auto-mode configuration"):
            load_config(tmp_path)
