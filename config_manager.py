"""
Configuration management module for spendwise.

This module handles loading and saving configuration values, merging the
user's config.yaml over built-in defaults for monitoring policy, receipt
uploads, logging and database settings.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union
import yaml

from exceptions import ConfigError

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    'database': {
        'data_dir': 'data',
        'path': 'spendwise.db',
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    },
    'monitoring': {
        'dedup_window_hours': 24,
        'default_budget_threshold': 80,
        'reminder_inactivity_days': 3,
        'weekly_summary_weekday': 6,
    },
    'receipts': {
        'max_upload_bytes': 5 * 1024 * 1024,
        'allowed_mime_types': [
            'image/jpeg',
            'image/jpg',
            'image/png',
            'image/heic',
            'image/heif',
        ],
        'storage_dir': 'data/receipts',
    },
    'currency_symbol': '₹',
}

CONFIG_FILE = 'config.yaml'


def _merge_defaults(config: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill missing keys of config from defaults, recursing into nested sections.

    Args:
        config: Loaded configuration (modified in place)
        defaults: Default values

    Returns:
        The merged configuration dictionary
    """
    for key, value in defaults.items():
        if key not in config or config[key] is None:
            config[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(config[key], dict):
            _merge_defaults(config[key], value)
    return config


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    A missing file yields the defaults; an unreadable or malformed file is an
    error.

    Args:
        config_path: Path to the config file (defaults to config.yaml)

    Returns:
        Configuration dictionary with defaults for missing values

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    path = Path(config_path or CONFIG_FILE)
    config: Dict[str, Any] = {}

    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading configuration from {path}: {e}")
            raise ConfigError(
                f"Unable to load configuration file: {path}",
                details={"config_path": str(path)},
                original_error=e
            ) from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(
                "Configuration file must contain a mapping at the top level",
                details={"config_path": str(path)}
            )
        config = loaded or {}
    else:
        logger.debug(f"Config file {path} not found; using defaults")

    _merge_defaults(config, DEFAULT_CONFIG)
    logger.info("Configuration loaded successfully")
    return config


def save_config(config: Dict[str, Any], config_path: Optional[Union[str, Path]] = None) -> bool:
    """
    Save configuration to a YAML file, preserving keys not present in config.

    Args:
        config: Configuration dictionary to save
        config_path: Destination path (defaults to config.yaml)

    Returns:
        True if successful, False otherwise
    """
    try:
        path = Path(config_path or CONFIG_FILE)

        existing_config = {}
        if path.exists():
            with open(path, 'r', encoding='utf-8') as f:
                existing_config = yaml.safe_load(f) or {}

        existing_config.update(config)

        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(existing_config, f, default_flow_style=False, allow_unicode=True)

        logger.info("Configuration saved successfully")
        return True

    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error saving configuration: {e}", exc_info=True)
        return False


def _numeric_setting(settings: Dict[str, Any], key: str, convert):
    """Convert a monitoring setting, raising ConfigError for non-numeric values."""
    value = settings[key]
    try:
        return convert(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number", details={key: value}, original_error=e) from e


def get_monitoring_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Return the budget monitoring section with defaults applied.

    Args:
        config: Optional loaded configuration

    Returns:
        Monitoring settings dictionary

    Raises:
        ConfigError: If a policy value is non-numeric or out of range
    """
    settings = copy.deepcopy(DEFAULT_CONFIG['monitoring'])
    settings.update((config or {}).get('monitoring') or {})

    dedup_hours = _numeric_setting(settings, 'dedup_window_hours', float)
    if dedup_hours <= 0:
        raise ConfigError(
            "dedup_window_hours must be positive",
            details={"dedup_window_hours": settings['dedup_window_hours']}
        )
    threshold = _numeric_setting(settings, 'default_budget_threshold', int)
    if not 1 <= threshold <= 100:
        raise ConfigError(
            "default_budget_threshold must be between 1 and 100",
            details={"default_budget_threshold": settings['default_budget_threshold']}
        )
    if not 0 <= _numeric_setting(settings, 'weekly_summary_weekday', int) <= 6:
        raise ConfigError(
            "weekly_summary_weekday must be between 0 (Monday) and 6 (Sunday)",
            details={"weekly_summary_weekday": settings['weekly_summary_weekday']}
        )
    return settings


def get_receipt_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return the receipt upload section with defaults applied."""
    settings = copy.deepcopy(DEFAULT_CONFIG['receipts'])
    settings.update((config or {}).get('receipts') or {})
    return settings
