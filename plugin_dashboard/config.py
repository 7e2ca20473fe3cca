#!/usr/bin/env python3
"""
Configuration loaded from environment variables.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_ORG = "DP-Plugins"
DEFAULT_EXCLUDED_REPO = "DPP-Releases"
DEFAULT_DATABASE_PATH = "dashboard_cache.db"
DEFAULT_REFRESH_INTERVAL = 3 * 60 * 60

# Global variable to store the resolved database path
_resolved_db_path = None


@dataclass
class DashboardConfig:
    """Process-wide settings that do not change while the dashboard runs."""
    org: str = DEFAULT_ORG
    excluded_repo: str = DEFAULT_EXCLUDED_REPO
    database_path: str = DEFAULT_DATABASE_PATH
    refresh_interval: int = DEFAULT_REFRESH_INTERVAL
    secret_key: Optional[str] = None
    github_token: Optional[str] = None


def _is_writable_dir(directory: str) -> bool:
    os.makedirs(directory, mode=0o755, exist_ok=True)
    test_file = os.path.join(directory, ".write_test")
    with open(test_file, 'w') as f:
        f.write("test")
    os.remove(test_file)
    return True


def get_resolved_database_path() -> str:
    """
    Get the resolved database path, testing the preferred path first and falling back if needed.
    This ensures all store connections use the same working path.
    """
    global _resolved_db_path

    if _resolved_db_path is not None:
        return _resolved_db_path

    logger = logging.getLogger(__name__)
    primary_path = os.environ.get('DATABASE_PATH', DEFAULT_DATABASE_PATH)
    if primary_path == ":memory:":
        _resolved_db_path = primary_path
        return _resolved_db_path

    abs_primary_path = os.path.abspath(primary_path)
    try:
        _is_writable_dir(os.path.dirname(abs_primary_path) or ".")
        _resolved_db_path = abs_primary_path
        logger.info(f"Using primary database path: {_resolved_db_path}")
        return _resolved_db_path
    except OSError as e:
        logger.warning(f"Primary database directory for {abs_primary_path} is not writable: {e}")

    allow_fallback = os.environ.get("ALLOW_DB_FALLBACK", "").lower() == "true"
    if allow_fallback:
        fallback_abs = os.path.abspath(os.environ.get("DATABASE_FALLBACK_PATH", "/tmp/dashboard_cache.db"))
        try:
            _is_writable_dir(os.path.dirname(fallback_abs) or ".")
            _resolved_db_path = fallback_abs
            logger.warning(f"Using fallback database path: {_resolved_db_path}. Cached data may be ephemeral.")
            return _resolved_db_path
        except OSError as e:
            logger.error(f"Fallback database path {fallback_abs} also failed: {e}")

    # Let LocalStore surface the error when it opens the file
    _resolved_db_path = abs_primary_path
    logger.error(f"All database paths failed, using primary path anyway: {_resolved_db_path}")
    return _resolved_db_path


def load_configuration() -> DashboardConfig:
    """Load configuration from environment variables."""
    interval = os.environ.get('REFRESH_INTERVAL')
    try:
        refresh_interval = int(interval) if interval else DEFAULT_REFRESH_INTERVAL
    except ValueError:
        raise ValueError(f"REFRESH_INTERVAL must be an integer number of seconds, got {interval!r}")

    return DashboardConfig(
        org=os.environ.get('DASHBOARD_ORG', DEFAULT_ORG),
        excluded_repo=os.environ.get('DASHBOARD_EXCLUDED_REPO', DEFAULT_EXCLUDED_REPO),
        database_path=get_resolved_database_path(),
        refresh_interval=refresh_interval,
        secret_key=os.environ.get('DASHBOARD_SECRET'),
        github_token=os.environ.get('GITHUB_TOKEN'),
    )
