#!/usr/bin/env python3
"""
Main entry point for running the plugin dashboard server.
"""

import logging
import os

from plugin_dashboard.server import run_server

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    port = int(os.environ.get('PORT', 8080))
    run_server(port=port)
