#!/usr/bin/env python3
"""
Plugin Dashboard

Displays GitHub repository metadata and bStats usage charts for an
organization's plugin projects. This module wires the configuration, local
store, context and controller together.
"""

import logging
from typing import Optional, Tuple

from .cache import LocalStore
from .config import DashboardConfig, load_configuration
from .context import DashboardContext
from .controller import DashboardController

logger = logging.getLogger(__name__)


def create_controller(config: Optional[DashboardConfig] = None) -> DashboardController:
    """Open the local store, load the persisted context and build the controller."""
    config = config or load_configuration()
    store = LocalStore(config.database_path)
    store.open()
    context = DashboardContext(store, config).load()
    return DashboardController(context)


def run_sync(controller: DashboardController) -> Tuple[bool, str]:
    """Clear the caches and refetch repositories and plugin stats."""
    if not controller.context.is_authenticated:
        return False, "No GitHub token configured. Log in or set GITHUB_TOKEN."

    if not controller.refresh():
        return False, controller.error or "Refresh failed"

    controller.bstats.clear_cache()
    if not controller.run_stats_lookup():
        return False, controller.stats_error or "bStats lookup failed"

    matched = sum(1 for row in controller.stats_rows.values() if row.plugin_id is not None)
    message = f"Loaded {len(controller.repos)} repositories, {matched} matched to bStats plugins"
    logger.info(message)
    return True, message


def main() -> int:
    """Run one synchronization and return a process exit code."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    controller = create_controller()
    try:
        success, message = run_sync(controller)
        print(message)
        return 0 if success else 1
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 1
    finally:
        controller.context.store.close()


if __name__ == "__main__":
    raise SystemExit(main())
