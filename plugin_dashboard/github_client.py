#!/usr/bin/env python3
"""
GitHub REST API client for organization repositories, commits, releases and READMEs.

Every call first consults the local cache; responses are stored on the first
successful fetch and served from the cache until it is cleared.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from .cache import MISSING, CacheNamespace, LocalStore
from .errors import (AuthenticationFailure, NetworkFailure, ParseFailure,
                     RateLimitExceeded, RemoteFailure)
from .models import Commit, Release, Repository

GITHUB_API_BASE = "https://api.github.com"
CACHE_PREFIX = "github-cache-"
JSON_ACCEPT = "application/vnd.github.v3+json"
HTML_ACCEPT = "application/vnd.github.html+json"
REQUEST_TIMEOUT = 30


def parse_body(response: requests.Response) -> Any:
    """Return the response body as JSON when possible, otherwise as text."""
    text = response.text
    try:
        return response.json() if text else None
    except ValueError:
        return text


def raise_for_github_status(url: str, response: requests.Response):
    """Raise the matching RemoteFailure subclass for a non-2xx response."""
    if response.ok:
        return
    body = parse_body(response)
    status = response.status_code
    reason = response.reason or ""
    if status == 401:
        raise AuthenticationFailure(url, status, reason, body)
    message = body.get("message", "") if isinstance(body, dict) else str(body or "")
    if status in (403, 429) and "rate limit" in message.lower():
        raise RateLimitExceeded(url, status, reason, body)
    raise RemoteFailure(url, status, reason, body)


class GitHubClient:
    """Cache-backed client for the GitHub endpoints used by the dashboard."""

    def __init__(self, store: LocalStore, context=None, session: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            store: LocalStore holding the cached responses
            context: DashboardContext providing the token (None for anonymous access)
            session: Optional requests session (a new one is created when None)
        """
        self.cache = CacheNamespace(store, CACHE_PREFIX)
        self.context = context
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "plugin-dashboard/1.0"})
        self.logger = logging.getLogger(__name__)

    def _headers(self, accept: str) -> Dict[str, str]:
        headers = {"Accept": accept}
        token = self.context.token if self.context is not None else None
        if token:
            headers["Authorization"] = f"token {token}"
        return headers

    def _get(self, endpoint: str, accept: str = JSON_ACCEPT) -> requests.Response:
        url = f"{GITHUB_API_BASE}{endpoint}"
        try:
            return self.session.get(url, headers=self._headers(accept), timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            self.logger.error(f"Network error fetching {url}: {e}")
            raise NetworkFailure(url, e)

    def api_fetch(self, endpoint: str) -> Any:
        """GET a JSON endpoint, raising on any non-2xx status."""
        response = self._get(endpoint)
        url = f"{GITHUB_API_BASE}{endpoint}"
        raise_for_github_status(url, response)
        try:
            return response.json()
        except ValueError as e:
            raise ParseFailure(url, str(e))

    def api_fetch_with_cache(self, key: str, endpoint: str) -> Any:
        cached = self.cache.get(key, MISSING)
        if cached is not MISSING:
            return cached
        data = self.api_fetch(endpoint)
        self.cache.set(key, data)
        return data

    def fetch_repositories(self, org: str) -> List[Repository]:
        """List up to 100 repositories of org, most recently pushed first."""
        data = self.api_fetch_with_cache(f"repos-{org}", f"/orgs/{org}/repos?sort=pushed&per_page=100")
        return [Repository.from_github_entry(entry) for entry in data or []]

    def fetch_latest_commit(self, owner: str, repo: str) -> Optional[Commit]:
        """Fetch the most recent commit, or None when the repository has none."""
        key = f"commit-{owner}-{repo}"
        cached = self.cache.get(key, MISSING)
        if cached is MISSING:
            commits = self.api_fetch(f"/repos/{owner}/{repo}/commits?per_page=1")
            cached = commits[0] if commits else None
            self.cache.set(key, cached)
        return Commit.from_github_entry(cached) if cached else None

    def fetch_latest_release(self, owner: str, repo: str) -> Release:
        """Fetch the newest release. A missing release raises RemoteFailure (404)."""
        data = self.api_fetch_with_cache(
            f"release-latest-{owner}-{repo}",
            f"/repos/{owner}/{repo}/releases/latest"
        )
        return Release.from_github_entry(data)

    def fetch_all_releases(self, owner: str, repo: str) -> List[Release]:
        data = self.api_fetch_with_cache(
            f"releases-all-{owner}-{repo}",
            f"/repos/{owner}/{repo}/releases?per_page=100"
        )
        return [Release.from_github_entry(entry) for entry in data or []]

    def fetch_readme_html(self, owner: str, repo: str) -> Optional[str]:
        """Fetch the rendered README. Returns None when the repository has no README."""
        key = f"readme-{owner}-{repo}"
        cached = self.cache.get(key, MISSING)
        if cached is not MISSING:
            return cached

        endpoint = f"/repos/{owner}/{repo}/readme"
        response = self._get(endpoint, accept=HTML_ACCEPT)
        if response.status_code == 404:
            html = None
        else:
            raise_for_github_status(f"{GITHUB_API_BASE}{endpoint}", response)
            html = response.text
        self.cache.set(key, html)
        return html

    def clear_cache(self) -> int:
        cleared = self.cache.clear()
        self.logger.info("GitHub data cache cleared.")
        return cleared
