#!/usr/bin/env python3
"""
Plugin Dashboard Web Server

A local web server exposing the dashboard controller via a JSON API, with a
background thread that refreshes all data on a fixed interval.
"""

import dataclasses
import http.server
import json
import logging
import re
import threading
import time
import urllib.parse
from enum import Enum
from http import HTTPStatus
from typing import Optional

from .app import create_controller, run_sync
from .config import DEFAULT_REFRESH_INTERVAL
from .controller import DashboardController
from .errors import DashboardError, ValidationFailure

logger = logging.getLogger(__name__)

MAX_BODY_SIZE = 1024 * 1024


def _json_default(value):
    if isinstance(value, Enum):
        return value.value
    if dataclasses.is_dataclass(value):
        return dataclasses.asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _repo_json(repo) -> dict:
    return dataclasses.asdict(repo)


class DashboardRequestHandler(http.server.BaseHTTPRequestHandler):
    """A request handler serving the dashboard state as JSON."""

    controller: Optional[DashboardController] = None

    def _send_json_response(self, data: dict, status: HTTPStatus = HTTPStatus.OK):
        """Send a JSON response with consistent headers."""
        body = json.dumps(data, indent=2, default=_json_default).encode('utf-8')
        self.send_response(status)
        self.send_header("Content-type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_json_error(self, message: str, status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR, **extra):
        """Send a JSON error response."""
        self._send_json_response({"success": False, "message": message, **extra}, status)

    def _read_json_body(self):
        content_length = int(self.headers.get('Content-Length') or 0)
        if content_length > MAX_BODY_SIZE:
            raise ValidationFailure("Request body too large")
        post_data = self.rfile.read(content_length) if content_length else b"{}"
        return json.loads(post_data.decode('utf-8'))

    def _require_login(self) -> bool:
        if self.controller.context.is_authenticated:
            return True
        self._send_json_error(self.controller.error or "Login required", HTTPStatus.UNAUTHORIZED)
        return False

    def do_GET(self):
        """Handle GET requests."""
        parsed_path = urllib.parse.urlparse(self.path)
        path = parsed_path.path
        query_params = urllib.parse.parse_qs(parsed_path.query)

        try:
            if path == "/api/repos":
                self.send_repos(query_params)
            elif match := re.match(r"^/api/repos/([^/]+)$", path):
                self.send_project_detail(urllib.parse.unquote(match.group(1)), query_params)
            elif path == "/api/refresh":
                self.send_refresh_response()
            elif path == "/api/stats":
                self.send_stats(query_params)
            elif match := re.match(r"^/api/stats/(\d+)$", path):
                self.send_plugin_stats(int(match.group(1)))
            elif match := re.match(r"^/api/stats/(\d+)/charts/([^/]+)/full$", path):
                self.send_full_history(int(match.group(1)), urllib.parse.unquote(match.group(2)))
            elif path == "/api/bstats/test":
                self.send_bstats_test(query_params)
            elif path == "/api/mapping":
                self._send_json_response({"success": True, "mapping": self.controller.context.mapping})
            elif path == "/api/settings":
                self.send_settings()
            else:
                self.send_error(HTTPStatus.NOT_FOUND, "Endpoint not found")
        except (ValueError, KeyError) as e:
            self._send_json_error(f"Invalid request: {e}", HTTPStatus.BAD_REQUEST)
        except DashboardError as e:
            logger.error(f"Request {path} failed: {e}")
            self._send_json_error(str(e), HTTPStatus.BAD_GATEWAY)

    def do_POST(self):
        """Handle POST requests."""
        path = urllib.parse.urlparse(self.path).path

        try:
            data = self._read_json_body()
            if path == "/api/login":
                self.login(data)
            elif path == "/api/logout":
                self.controller.logout()
                self._send_json_response({"success": True, "message": "Logged out"})
            elif path == "/api/mapping":
                mapping = self.controller.save_mapping(data)
                self._send_json_response({"success": True, "mapping": mapping})
            elif path == "/api/settings":
                self.update_settings(data)
            else:
                self.send_error(HTTPStatus.NOT_FOUND, "Endpoint not found")
        except json.JSONDecodeError:
            self._send_json_error("Invalid JSON in request body", HTTPStatus.BAD_REQUEST)
        except ValidationFailure as e:
            self._send_json_error(str(e), HTTPStatus.BAD_REQUEST, field=e.field)
        except DashboardError as e:
            logger.error(f"Request {path} failed: {e}")
            self._send_json_error(str(e), HTTPStatus.BAD_GATEWAY)

    def login(self, data: dict):
        token = data.get('token') if isinstance(data, dict) else None
        if not token:
            self._send_json_error("Missing 'token' in request body", HTTPStatus.BAD_REQUEST)
            return
        success = self.controller.login(token)
        if success:
            self._send_json_response({"success": True, "repositories": len(self.controller.repos)})
        else:
            status = HTTPStatus.UNAUTHORIZED if not self.controller.context.is_authenticated else HTTPStatus.BAD_GATEWAY
            self._send_json_error(self.controller.error or "Login failed", status)

    def send_refresh_response(self):
        """Run a full refresh and send a response."""
        logger.info("Refresh requested from web UI.")
        success, message = run_sync(self.controller)
        status = HTTPStatus.OK if success else HTTPStatus.INTERNAL_SERVER_ERROR
        self._send_json_response({"success": success, "message": message}, status)

    def send_repos(self, query_params: dict):
        """Send the current page of repository cards."""
        if not self._require_login():
            return
        controller = self.controller
        if not controller.repos and not controller.error:
            controller.fetch_data()
        if 'q' in query_params:
            controller.set_search(query_params['q'][0])
        if 'page' in query_params:
            controller.set_page(int(query_params['page'][0]))

        cards = []
        for repo, details in controller.page_cards():
            cards.append({
                "repo": _repo_json(repo),
                "commit": details.commit if details else None,
                "latest_release": details.latest_release if details else None,
                "failed": details.failed if details else False,
            })

        self._send_json_response({
            "success": controller.error is None,
            "error": controller.error,
            "org": controller.config.org,
            "search": controller.search_query,
            "page": controller.current_page,
            "total_pages": controller.total_pages,
            "view_mode": controller.view_mode,
            "cards": cards,
            "timestamp": time.strftime('%Y-%m-%d %H:%M:%S')
        })

    def send_project_detail(self, repo_name: str, query_params: dict):
        if not self._require_login():
            return
        repo = self.controller.select_repo(repo_name)
        if repo is None:
            self._send_json_error(f"Unknown repository '{repo_name}'", HTTPStatus.NOT_FOUND)
            return
        page = int(query_params.get('page', [1])[0])
        detail = self.controller.load_project_detail(repo, page)
        self._send_json_response({
            "success": detail.error is None,
            "error": detail.error,
            "repo": _repo_json(repo),
            "readme_html": detail.readme_html,
            "releases": detail.page_releases,
            "page": detail.page,
            "total_pages": detail.total_pages,
        })

    def send_stats(self, query_params: dict):
        """Send the stats tab rows, matching plugins first if needed."""
        if not self._require_login():
            return
        controller = self.controller
        if query_params.get('refresh', ['0'])[0] == '1':
            controller.refresh_stats()
        elif not controller.stats_loaded:
            controller.run_stats_lookup()

        rows = [{
            "repo": _repo_json(row.repo),
            "plugin_id": row.plugin_id,
            "plugin_name": row.plugin_name,
            "mapped": row.mapped,
            "latest": row.latest,
            "points": row.points,
        } for row in controller.sorted_stats_rows()]
        self._send_json_response({
            "success": controller.stats_error is None,
            "error": controller.stats_error,
            "rows": rows,
        })

    def send_plugin_stats(self, plugin_id: int):
        stats = self.controller.load_plugin_stats(plugin_id)
        status = HTTPStatus.OK if stats.error is None else HTTPStatus.BAD_GATEWAY
        self._send_json_response({"success": stats.error is None, **dataclasses.asdict(stats)}, status)

    def send_full_history(self, plugin_id: int, chart_id: str):
        points = self.controller.load_full_history(plugin_id, chart_id)
        self._send_json_response({"success": True, "chart_id": chart_id, "points": points})

    def send_bstats_test(self, query_params: dict):
        endpoint = query_params.get('endpoint', ['/api/v1/plugins'])[0]
        timeout_ms = int(query_params.get('timeout_ms', [10000])[0])
        result = self.controller.test_bstats_api(endpoint, timeout_ms)
        self._send_json_response({"success": result.ok, "result": result})

    def send_settings(self):
        context = self.controller.context
        self._send_json_response({
            "success": True,
            "authenticated": context.is_authenticated,
            "preferences": context.preferences,
        })

    def update_settings(self, data: dict):
        if not isinstance(data, dict):
            raise ValidationFailure("Settings must be a JSON object")
        for key, value in data.items():
            self.controller.context.set_preference(key, value)
        self.send_settings()


class BackgroundRefreshThread(threading.Thread):
    """A background thread to periodically refresh all dashboard data."""

    def __init__(self, controller: DashboardController, interval: int = DEFAULT_REFRESH_INTERVAL):
        """
        Initialize the background refresh thread.

        Args:
            controller: Controller whose data is refreshed
            interval: Refresh interval in seconds (default: 3 hours)
        """
        super().__init__(daemon=True)
        self.controller = controller
        self.interval = interval
        self.stopped = threading.Event()

    def run(self):
        """Run the background refresh loop."""
        logger.info(f"Starting background refresh thread (interval: {self.interval}s)")

        while not self.stopped.wait(self.interval):
            try:
                logger.info("Running scheduled refresh...")
                success, message = run_sync(self.controller)
                if success:
                    logger.info("Scheduled refresh completed successfully")
                else:
                    logger.error(f"Scheduled refresh failed: {message}")
            except Exception as e:
                logger.error(f"Error in background refresh: {e}")

    def stop(self):
        """Stop the background refresh thread."""
        self.stopped.set()


def run_server(port: int = 8080, enable_background_refresh: bool = True,
               controller: Optional[DashboardController] = None):
    """
    Run the dashboard web server.

    Args:
        port: Port to listen on (default: 8080)
        enable_background_refresh: Whether to refresh periodically (default: True)
        controller: Controller to serve (built from the environment when None)
    """
    controller = controller or create_controller()
    DashboardRequestHandler.controller = controller

    # Refresh once on startup, like every scheduled run
    if controller.context.is_authenticated:
        success, message = run_sync(controller)
        if success:
            logger.info(f"Initial refresh: {message}")
        else:
            logger.error(f"Initial refresh failed: {message}")

    refresh_thread = None
    if enable_background_refresh:
        refresh_thread = BackgroundRefreshThread(controller, controller.config.refresh_interval)
        refresh_thread.start()

    with http.server.HTTPServer(("", port), DashboardRequestHandler) as httpd:
        logger.info(f"Starting server on port {port}")
        logger.info(f"Visit http://localhost:{port}/api/repos to view the dashboard")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            logger.info("Server stopped by user")
        finally:
            if refresh_thread:
                refresh_thread.stop()
            controller.context.store.close()
