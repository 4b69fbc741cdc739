"""
Unit tests for logging configuration and configuration loading.

Tests setup_logging, file handlers, invalid levels and config file errors.
"""

import logging
import os
from unittest.mock import patch

import pytest
import yaml

from main import setup_logging, load_config
from config_manager import get_monitoring_settings, get_receipt_settings, save_config
from exceptions import ConfigError


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Put the root logger back the way the test found it."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Test setup_logging function."""

    def test_basic_logging_config(self):
        """Test basic logging configuration with defaults."""
        config = {
            "logging": {
                "level": "DEBUG",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        }

        setup_logging(config)

        assert logging.getLogger().level == logging.DEBUG
        stream_handlers = [h for h in logging.getLogger().handlers if isinstance(h, logging.StreamHandler)]
        assert len(stream_handlers) >= 1

    def test_file_logging_enabled(self, tmp_path):
        """Test file logging is enabled when a file is configured."""
        log_file = tmp_path / "logs" / "spendwise.log"
        config = {"logging": {"level": "INFO", "file": str(log_file)}}

        setup_logging(config)

        file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        assert os.path.exists(log_file)

    def test_messages_reach_log_file(self, tmp_path):
        log_file = tmp_path / "spendwise.log"
        setup_logging({"logging": {"level": "INFO", "file": str(log_file), "format": "%(levelname)s %(message)s"}})

        logging.getLogger("budget_monitoring").info("Budget check completed")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "INFO Budget check completed" in log_file.read_text()

    def test_invalid_log_level_defaults_to_info(self):
        """Test that invalid log level defaults to INFO."""
        config = {"logging": {"level": "INVALID_LEVEL"}}

        with patch('main.logger') as mock_logger:
            setup_logging(config)
            mock_logger.warning.assert_called()

        assert logging.getLogger().level == logging.INFO

    def test_missing_logging_config_uses_defaults(self):
        """Test that missing logging config uses defaults."""
        setup_logging({})

        assert logging.getLogger().level == logging.INFO


class TestLoadConfig:
    """Test load_config function error handling."""

    def test_load_config_success(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.dump({"monitoring": {"dedup_window_hours": 12}, "test": "value"}))

        config = load_config(config_path)

        assert config["test"] == "value"
        assert config["monitoring"]["dedup_window_hours"] == 12
        assert config["monitoring"]["default_budget_threshold"] == 80
        assert config["logging"]["level"] == "INFO"

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config["monitoring"]["dedup_window_hours"] == 24
        assert config["currency_symbol"] == "₹"

    def test_load_config_invalid_yaml(self, tmp_path):
        """Test ConfigError raised for invalid YAML."""
        config_path = tmp_path / "config.yaml"
        config_path.write_text("invalid: yaml: [")

        with pytest.raises(ConfigError) as exc_info:
            load_config(config_path)

        assert "config_path" in exc_info.value.details
        assert exc_info.value.original_error is not None

    def test_non_mapping_config_rejected(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigError):
            load_config(config_path)

    def test_empty_file_uses_defaults(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("")

        assert load_config(config_path)["receipts"]["max_upload_bytes"] == 5 * 1024 * 1024

    def test_save_config_preserves_existing_keys(self, tmp_path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text(yaml.dump({"database": {"path": "mine.db"}}))

        assert save_config({"currency_symbol": "$"}, config_path) is True

        saved = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        assert saved == {"database": {"path": "mine.db"}, "currency_symbol": "$"}


class TestSettingsSections:
    """Monitoring and receipt settings helpers."""

    def test_monitoring_defaults(self):
        assert get_monitoring_settings() == {
            "dedup_window_hours": 24,
            "default_budget_threshold": 80,
            "reminder_inactivity_days": 3,
            "weekly_summary_weekday": 6,
        }

    @pytest.mark.parametrize(
        "overrides",
        [
            {"dedup_window_hours": 0},
            {"default_budget_threshold": 0},
            {"default_budget_threshold": 120},
            {"weekly_summary_weekday": 7},
            {"dedup_window_hours": "soon"},
            {"default_budget_threshold": "eighty"},
            {"weekly_summary_weekday": None},
        ],
    )
    def test_invalid_monitoring_values(self, overrides):
        with pytest.raises(ConfigError):
            get_monitoring_settings({"monitoring": overrides})

    def test_non_numeric_monitoring_value_is_config_error(self):
        with pytest.raises(ConfigError) as exc_info:
            get_monitoring_settings({"monitoring": {"dedup_window_hours": "soon"}})

        assert exc_info.value.details == {"dedup_window_hours": "soon"}
        assert isinstance(exc_info.value.original_error, ValueError)

    def test_receipt_overrides(self):
        settings = get_receipt_settings({"receipts": {"max_upload_bytes": 1024}})

        assert settings["max_upload_bytes"] == 1024
        assert "image/png" in settings["allowed_mime_types"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
