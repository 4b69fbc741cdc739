"""
Filesystem and database location helpers for spendwise.

Every relative path in config.yaml (data directory, database file, log file,
receipt storage) is anchored at the project root, so the CLI behaves the same
no matter which directory a scheduler launches it from.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent
DB_ENV_VAR = "DB_CONNECTION_STRING"


def _anchor(path_value: str | Path) -> Path:
    """Return path_value unchanged if absolute, otherwise relative to PROJECT_ROOT."""
    path = Path(path_value)
    return path if path.is_absolute() else PROJECT_ROOT / path


def _make_dir(directory: Path, purpose: str) -> Path:
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error(f"Cannot create {purpose} directory {directory}: {exc}")
        raise
    return directory


def _database_section(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return (config or {}).get("database") or {}


def get_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Resolve the data directory without creating it.

    Args:
        config: Optional configuration dictionary.

    Returns:
        Absolute path of database.data_dir (default: <project>/data).
    """
    return _anchor(_database_section(config).get("data_dir", "data"))


def ensure_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """Create the data directory if needed and return it."""
    return _make_dir(get_data_dir(config), "data")


def _prepare_sqlite_file(connection_string: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    try:
        url = make_url(connection_string)
    except ArgumentError as exc:
        logger.debug(f"Not a parseable database URL, skipping directory setup: {exc}")
        return

    if not url.drivername.startswith("sqlite") or url.database in (None, "", ":memory:"):
        return
    _make_dir(_anchor(url.database).parent, "database")


def resolve_connection_string(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Pick the SQLAlchemy connection string for this run.

    The DB_CONNECTION_STRING environment variable wins, then
    database.connection_string, then a SQLite file named database.path inside
    the data directory.

    Args:
        config: Optional configuration dictionary.

    Returns:
        SQLAlchemy connection string.
    """
    db_config = _database_section(config)
    explicit = (os.environ.get(DB_ENV_VAR) or "").strip() or db_config.get("connection_string")
    if explicit:
        _prepare_sqlite_file(explicit)
        return explicit

    db_file = Path(db_config.get("path", "spendwise.db"))
    if db_file.is_absolute():
        _make_dir(db_file.parent, "database")
    else:
        db_file = ensure_data_dir(config) / db_file
    return f"sqlite:///{db_file.as_posix()}"


def resolve_log_path(log_path: str) -> Path:
    """Anchor a configured log file path and create its directory."""
    resolved = _anchor(log_path)
    _make_dir(resolved.parent, "log")
    return resolved


def resolve_storage_dir(storage_dir: str | Path) -> Path:
    """
    Resolve and create the directory used for stored receipt images.

    Args:
        storage_dir: Configured receipts.storage_dir (relative or absolute).

    Returns:
        Absolute path to the existing directory.
    """
    return _make_dir(_anchor(storage_dir), "receipt storage")
