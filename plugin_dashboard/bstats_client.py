#!/usr/bin/env python3
"""
bStats API client.

Fetches the plugin directory, per-plugin chart metadata and chart data, and
associates GitHub repositories with bStats plugins, either through the manual
mapping or by fuzzy name matching.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

import requests

from .cache import MISSING, CacheNamespace, LocalStore
from .errors import NetworkFailure, ParseFailure, RemoteFailure, ValidationFailure
from .models import ChartMetadata, DiagnosticResult, Plugin

BSTATS_API_BASE = "https://bstats.org"
CACHE_PREFIX = "bstats-cache-"
REQUEST_TIMEOUT = 30

# repo name (case-insensitive) -> plugin id
DEFAULT_BSTATS_MAPPING = {
    "DPP-Core": 24432,
    "DP-AFKShop": 26098,
    "DP-Ban": 27745,
    "DP-Cash": 26291,
    "DP-ConsumeBox": 25979,
    "DP-Evaluation": 28442,
    "DP-GUIShop": 26579,
    "DP-ItemCategory": 26503,
    "DP-ItemCollection": 27465,
    "DP-ItemEditor": 26325,
    "DP-ItemSkin": 27273,
    "DP-MailBox": 27647,
    "DP-Menu": 26570,
    "DP-RewardChest": 26191,
    "DP-SimpleAnnouncement": 27284,
    "DP-SimplePrefix": 24491,
    "DP-StreamNotify": 27577,
    "DP-VirtualStorage": 27498,
    "DP-CustomCraft": 28201,
    "DP-Banknote": 28390,
}

_SEPARATORS = re.compile(r"[_\-\s]")

logger = logging.getLogger(__name__)


def normalize_name(name: str) -> str:
    """Lowercase and drop underscores, dashes and whitespace."""
    return _SEPARATORS.sub("", (name or "").lower())


def validate_mapping(raw) -> Dict[str, int]:
    """
    Validate a manual repo -> plugin id mapping.

    Args:
        raw: JSON text or an already decoded object

    Returns:
        The mapping with every plugin id as an int

    Raises:
        ValidationFailure: If the mapping is not an object of numeric ids
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ValidationFailure(f"Mapping is not valid JSON: {e}")

    if not isinstance(raw, dict):
        kind = "an array" if isinstance(raw, list) else type(raw).__name__
        raise ValidationFailure(
            f"Mapping must be a JSON object of repository name to plugin id, got {kind}."
        )

    mapping = {}
    for name, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationFailure(
                f"Plugin id for '{name}' must be a number, got {json.dumps(value)}.",
                field=name
            )
        if not math.isfinite(value) or value != int(value):
            raise ValidationFailure(f"Plugin id for '{name}' must be a whole number.", field=name)
        mapping[str(name)] = int(value)
    return mapping


class BStatsClient:
    """Cache-backed client for the public bStats API."""

    def __init__(self, store: LocalStore, context=None, session: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            store: LocalStore holding the cached responses
            context: DashboardContext providing the manual mapping
            session: Optional requests session (a new one is created when None)
        """
        self.cache = CacheNamespace(store, CACHE_PREFIX)
        self.context = context
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json", "User-Agent": "plugin-dashboard/1.0"})

    def fetch_json(self, endpoint: str) -> Any:
        url = f"{BSTATS_API_BASE}{endpoint}"
        try:
            response = self.session.get(url, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            logger.error(f"Network error while contacting bStats: {e}")
            raise NetworkFailure(url, e)

        text = response.text
        if not response.ok:
            try:
                body = json.loads(text)
            except ValueError:
                body = text
            raise RemoteFailure(url, response.status_code, response.reason or "", body)

        if not text:
            # some endpoints return an empty body
            return {}
        try:
            return json.loads(text)
        except ValueError as e:
            raise ParseFailure(url, str(e))

    def fetch_with_cache(self, key: str, endpoint: str) -> Any:
        cached = self.cache.get(key, MISSING)
        if cached is not MISSING:
            return cached
        data = self.fetch_json(endpoint)
        self.cache.set(key, data)
        return data

    def fetch_all_plugins(self) -> List[Plugin]:
        """Return the complete plugin directory."""
        data = self.fetch_with_cache("plugins-all", "/api/v1/plugins")
        plugins = []
        for entry in data if isinstance(data, list) else []:
            try:
                plugins.append(Plugin.from_bstats_entry(entry))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed plugin entry {entry!r}: {e}")
        return plugins

    def fetch_plugin_details(self, plugin_id: int) -> Plugin:
        return Plugin.from_bstats_entry(self.fetch_json(f"/api/v1/plugins/{plugin_id}"))

    def fetch_plugin_charts(self, plugin_id: int) -> Dict[str, ChartMetadata]:
        """Return chart id -> metadata for a plugin, in the order bStats lists them."""
        data = self.fetch_with_cache(f"plugin-charts-{plugin_id}", f"/api/v1/plugins/{plugin_id}/charts")
        if not isinstance(data, dict):
            return {}
        return {
            chart_id: ChartMetadata.from_bstats_entry(chart_id, meta if isinstance(meta, dict) else {})
            for chart_id, meta in data.items()
        }

    def fetch_chart_data(self, plugin_id: int, chart_id: str, max_elements: Optional[int] = None) -> Any:
        """Return the raw chart payload, optionally capped to the newest max_elements points."""
        key = f"chart-data-{plugin_id}-{chart_id}-{max_elements or 'all'}"
        endpoint = f"/api/v1/plugins/{plugin_id}/charts/{chart_id}/data"
        if max_elements:
            endpoint += f"?maxElements={max_elements}"
        return self.fetch_with_cache(key, endpoint)

    def find_plugin_by_name(self, name: str) -> Optional[Plugin]:
        """
        Best-effort match of a name against the plugin directory.

        Tries, in order: exact normalized name, containment in either
        direction, then the plugin owner's name.
        """
        plugins = self.fetch_all_plugins()
        target = normalize_name(name)
        if not target:
            return None

        for plugin in plugins:
            if normalize_name(plugin.name) == target:
                return plugin

        for plugin in plugins:
            candidate = normalize_name(plugin.name)
            if candidate and (target in candidate or candidate in target):
                return plugin

        for plugin in plugins:
            if plugin.owner_name and normalize_name(plugin.owner_name) == target:
                return plugin

        return None

    def mapped_plugin_id(self, repo_name: str) -> Optional[int]:
        if self.context is not None:
            return self.context.lookup_mapping(repo_name)
        target = repo_name.lower()
        for name, plugin_id in DEFAULT_BSTATS_MAPPING.items():
            if name.lower() == target:
                return plugin_id
        return None

    def find_plugin_for_repo(self, repo_name: str) -> Optional[Plugin]:
        """Resolve a repository to a plugin, preferring the manual mapping."""
        plugin_id = self.mapped_plugin_id(repo_name)
        if plugin_id is not None:
            try:
                return self.fetch_plugin_details(plugin_id)
            except (RemoteFailure, ParseFailure, NetworkFailure, KeyError, TypeError, ValueError) as e:
                logger.warning(f"bStats mapping exists for {repo_name} -> {plugin_id} but fetch failed: {e}")

        return self.find_plugin_by_name(repo_name)

    def test_bstats_api(self, endpoint: str = "/api/v1/plugins", timeout_ms: int = 10000) -> DiagnosticResult:
        """Probe bStats once, uncached, and report what happened."""
        url = f"{BSTATS_API_BASE}{endpoint}"
        try:
            response = self.session.get(url, timeout=timeout_ms / 1000)
        except requests.Timeout:
            return DiagnosticResult(ok=False, error=f"Network error: Timed out after {timeout_ms}ms")
        except requests.RequestException as e:
            return DiagnosticResult(ok=False, error=f"Network error: {e}")

        text = response.text
        try:
            body = json.loads(text) if text else None
        except ValueError:
            body = text

        if not response.ok:
            return DiagnosticResult(
                ok=False,
                status=response.status_code,
                status_text=response.reason,
                body=body,
                error=f"HTTP {response.status_code} {response.reason}"
            )
        return DiagnosticResult(ok=True, status=response.status_code, status_text=response.reason, body=body)

    def clear_cache(self) -> int:
        cleared = self.cache.clear()
        logger.info("bStats cache cleared.")
        return cleared
