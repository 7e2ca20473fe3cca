"""
Plugin Dashboard

A Python application showing GitHub repository metadata and bStats usage charts
for an organization's plugin projects, with a local cache of every API response.
"""

__version__ = "1.0.0"

from .app import create_controller, run_sync
from .cache import LocalStore
from .context import DashboardContext
from .controller import DashboardController

__all__ = [
    "create_controller",
    "run_sync",
    "LocalStore",
    "DashboardContext",
    "DashboardController",
]
