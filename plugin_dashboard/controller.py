#!/usr/bin/env python3
"""
View and state controller for the dashboard.

Holds the repository list, search/pagination/view state and the stats view,
and orchestrates the GitHub and bStats clients.
"""

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .bstats_client import BStatsClient
from .card_queue import CardDetailQueue, CardDetails
from .charts import (ChartKind, classify_chart, default_chart_id, latest_value,
                     line_points, parse_pie_items, pie_entries)
from .context import ACTIVE_TAB_KEY, VIEW_MODE_KEY, DashboardContext
from .errors import AuthenticationFailure, DashboardError, RateLimitExceeded
from .github_client import GitHubClient
from .models import DiagnosticResult, PieEntry, Release, Repository

ITEMS_PER_PAGE = 9
RELEASES_PER_PAGE = 3
SPARKLINE_ELEMENTS = 30
DETAIL_ELEMENTS = 500
FULL_HISTORY_ELEMENTS = 35000

RATE_LIMIT_MESSAGE = ("GitHub API rate limit exceeded. Authenticated requests have a higher limit. "
                      "Please check your token or try again later.")
AUTH_FAILED_MESSAGE = "Authentication failed. Your GitHub token may be invalid or expired."
DETAIL_FAILED_MESSAGE = "Failed to load project details. Please try again later."

logger = logging.getLogger(__name__)


@dataclass
class ProjectDetail:
    """README and paginated releases of the selected repository."""
    repo: Repository
    readme_html: Optional[str] = None
    releases: List[Release] = field(default_factory=list)
    page: int = 1
    total_pages: int = 0
    error: Optional[str] = None

    @property
    def page_releases(self) -> List[Release]:
        start = (self.page - 1) * RELEASES_PER_PAGE
        return self.releases[start:start + RELEASES_PER_PAGE]


@dataclass
class StatsRow:
    """One repository in the stats tab with its matched plugin and sparkline."""
    repo: Repository
    plugin_id: Optional[int] = None
    plugin_name: Optional[str] = None
    mapped: bool = False
    points: List[Tuple[float, float]] = field(default_factory=list)

    @property
    def latest(self) -> Optional[float]:
        return latest_value(self.points)


@dataclass
class ChartView:
    chart_id: str
    title: str
    kind: ChartKind
    points: List[Tuple[float, float]] = field(default_factory=list)
    pie: List[PieEntry] = field(default_factory=list)
    failed: bool = False


@dataclass
class PluginStats:
    plugin_id: int
    charts: List[ChartView] = field(default_factory=list)
    error: Optional[str] = None


class DashboardController:
    """Main class driving the dashboard views."""

    def __init__(self, context: DashboardContext, github: Optional[GitHubClient] = None,
                 bstats: Optional[BStatsClient] = None):
        """
        Initialize the controller.

        Args:
            context: Loaded DashboardContext
            github: GitHub client (built from the context when None)
            bstats: bStats client (built from the context when None)
        """
        self.context = context
        self.config = context.config
        self.github = github or GitHubClient(context.store, context)
        self.bstats = bstats or BStatsClient(context.store, context)
        self.lock = threading.RLock()

        self.repos: List[Repository] = []
        self.loading = False
        self.error: Optional[str] = None
        self.selected_repo: Optional[Repository] = None
        self.search_query = ""
        self.current_page = 1
        self.cards = CardDetailQueue(self.load_card_details)

        self.stats_rows: Dict[int, StatsRow] = {}
        self.stats_loaded = False
        self.stats_error: Optional[str] = None

    # --- Session -----------------------------------------------------------

    def login(self, token: str) -> bool:
        """Store a new token, drop any data cached by a previous session and load."""
        self.context.set_token(token)
        self.error = None
        self.github.clear_cache()
        return self.fetch_data()

    def logout(self):
        with self.lock:
            self.context.clear()
            self.repos = []
            self.selected_repo = None
            self.cards.reset()
            self.stats_rows = {}
            self.stats_loaded = False
            self.github.clear_cache()
        logger.info("Logged out; GitHub token and cache cleared")

    def refresh(self) -> bool:
        """Clear the GitHub cache and reload the organization's repositories."""
        with self.lock:
            self.github.clear_cache()
            return self.fetch_data()

    def fetch_data(self) -> bool:
        """Load the repository list. On failure the error banner is set and False returned."""
        with self.lock:
            if not self.context.is_authenticated:
                self.loading = False
                return False

            self.loading = True
            self.error = None
            self.selected_repo = None
            try:
                all_repos = self.github.fetch_repositories(self.config.org)
                self.repos = [
                    repo for repo in all_repos
                    if not repo.archived and repo.name != self.config.excluded_repo
                ]
                self.cards.reset()
                logger.info(f"Loaded {len(self.repos)} repositories for {self.config.org}")
                return True
            except AuthenticationFailure as e:
                logger.error(f"GitHub rejected the token: {e}")
                self.error = AUTH_FAILED_MESSAGE
                self.logout()
            except RateLimitExceeded as e:
                logger.error(f"GitHub rate limit exceeded: {e}")
                self.error = RATE_LIMIT_MESSAGE
            except DashboardError as e:
                logger.error(f"Failed to fetch repositories: {e}")
                self.error = f"Failed to fetch data: {e}"
            finally:
                self.loading = False
            return False

    # --- List view state ---------------------------------------------------

    @property
    def view_mode(self) -> str:
        return self.context.preferences[VIEW_MODE_KEY]

    def set_view_mode(self, mode: str):
        self.context.set_preference(VIEW_MODE_KEY, mode)
        self.current_page = 1

    @property
    def active_tab(self) -> str:
        return self.context.preferences[ACTIVE_TAB_KEY]

    def set_active_tab(self, tab: str):
        self.context.set_preference(ACTIVE_TAB_KEY, tab)

    def set_search(self, query: str):
        self.search_query = query or ""
        self.current_page = 1

    def filtered_repos(self) -> List[Repository]:
        query = self.search_query.strip().lower()
        if not query:
            return list(self.repos)
        return [
            repo for repo in self.repos
            if query in repo.name.lower() or query in (repo.description or "").lower()
        ]

    @property
    def total_pages(self) -> int:
        return math.ceil(len(self.filtered_repos()) / ITEMS_PER_PAGE)

    def set_page(self, page: int):
        self.current_page = max(1, min(page, max(self.total_pages, 1)))

    def page_repos(self) -> List[Repository]:
        start = (self.current_page - 1) * ITEMS_PER_PAGE
        return self.filtered_repos()[start:start + ITEMS_PER_PAGE]

    def page_cards(self) -> List[Tuple[Repository, Optional[CardDetails]]]:
        """Cards of the current page. Showing a card queues and loads its details."""
        repos = self.page_repos()
        for repo in repos:
            self.cards.mark_visible(repo)
        self.cards.drain()
        return [(repo, self.cards.get(repo.id)) for repo in repos]

    def find_repo(self, name: str) -> Optional[Repository]:
        target = name.lower()
        return next((repo for repo in self.repos if repo.name.lower() == target), None)

    def select_repo(self, name: str) -> Optional[Repository]:
        self.selected_repo = self.find_repo(name)
        return self.selected_repo

    def back_to_list(self):
        self.selected_repo = None

    # --- Cards and project detail -----------------------------------------

    def load_card_details(self, repo: Repository) -> CardDetails:
        """Fetch latest commit and release together; failures empty the card only."""
        owner = repo.owner_login
        with ThreadPoolExecutor(max_workers=2) as executor:
            commit_future = executor.submit(self.github.fetch_latest_commit, owner, repo.name)
            release_future = executor.submit(self.github.fetch_latest_release, owner, repo.name)

            try:
                release = release_future.result()
                release_error = None
            except DashboardError as e:
                release, release_error = None, e

            try:
                commit = commit_future.result()
                commit_error = None
            except DashboardError as e:
                commit, commit_error = None, e

        for error in (commit_error, release_error):
            if isinstance(error, AuthenticationFailure):
                logger.error(f"GitHub rejected the token while loading {repo.name}: {error}")
                self.error = AUTH_FAILED_MESSAGE
                self.logout()
                return CardDetails(failed=True)

        if release_error is not None:
            logger.debug(f"No latest release for {repo.name}: {release_error}")
        if commit_error is not None:
            logger.error(f"Failed to fetch details for {repo.name}: {commit_error}")
            return CardDetails(latest_release=release, failed=True)
        return CardDetails(commit=commit, latest_release=release)

    def load_project_detail(self, repo: Repository, page: int = 1) -> ProjectDetail:
        """Fetch README and all releases for the detail view."""
        detail = ProjectDetail(repo=repo)
        owner = repo.owner_login
        with ThreadPoolExecutor(max_workers=2) as executor:
            readme_future = executor.submit(self.github.fetch_readme_html, owner, repo.name)
            releases_future = executor.submit(self.github.fetch_all_releases, owner, repo.name)

            auth_error = None
            try:
                detail.releases = releases_future.result()
            except AuthenticationFailure as e:
                auth_error = e
            except DashboardError as e:
                logger.warning(f"Could not fetch releases for {repo.name}, treating as empty: {e}")
                detail.releases = []

            try:
                detail.readme_html = readme_future.result()
            except AuthenticationFailure as e:
                auth_error = e
            except DashboardError as e:
                logger.error(f"A critical error occurred while fetching project details: {e}")
                detail.error = DETAIL_FAILED_MESSAGE

        if auth_error is not None:
            logger.error(f"GitHub rejected the token while loading {repo.name}: {auth_error}")
            detail.error = AUTH_FAILED_MESSAGE
            detail.readme_html = None
            detail.releases = []
            self.logout()

        detail.total_pages = math.ceil(len(detail.releases) / RELEASES_PER_PAGE)
        detail.page = max(1, min(page, max(detail.total_pages, 1)))
        return detail

    # --- Stats tab ---------------------------------------------------------

    def run_stats_lookup(self) -> bool:
        """Match every repository to a plugin, then load each match's default chart one at a time."""
        self.stats_error = None
        self.stats_loaded = False
        try:
            self.bstats.fetch_all_plugins()  # warm cache
        except DashboardError as e:
            logger.error(f"bStats fetch error: {e}")
            self.stats_error = f"Failed to fetch bStats data: {e}"
            return False

        rows = {}
        for repo in self.repos:
            row = StatsRow(repo=repo, mapped=self.context.lookup_mapping(repo.name) is not None)
            try:
                plugin = self.bstats.find_plugin_for_repo(repo.name)
            except DashboardError as e:
                logger.warning(f"Plugin lookup failed for {repo.name}: {e}")
                plugin = None
            if plugin:
                row.plugin_id = plugin.id
                row.plugin_name = plugin.name
            rows[repo.id] = row
        self.stats_rows = rows
        self.stats_loaded = True

        # one plugin at a time
        for row in rows.values():
            if row.plugin_id is None:
                continue
            try:
                charts = self.bstats.fetch_plugin_charts(row.plugin_id)
                chart_id = default_chart_id(charts)
                if chart_id:
                    data = self.bstats.fetch_chart_data(row.plugin_id, chart_id, SPARKLINE_ELEMENTS)
                    row.points = line_points(data)
            except DashboardError as e:
                logger.warning(f"Failed to fetch charts/data for {row.repo.name}: {e}")
        return True

    def refresh_stats(self) -> bool:
        self.bstats.clear_cache()
        self.stats_rows = {}
        return self.run_stats_lookup()

    def sorted_stats_rows(self) -> List[StatsRow]:
        """Rows ordered by the latest sparkline value, unknown values last."""
        return sorted(
            self.stats_rows.values(),
            key=lambda row: row.latest if row.latest is not None else -math.inf,
            reverse=True
        )

    def load_plugin_stats(self, plugin_id: int) -> PluginStats:
        """Load and normalize every chart of a plugin, one chart at a time."""
        stats = PluginStats(plugin_id=plugin_id)
        try:
            charts = self.bstats.fetch_plugin_charts(plugin_id)
        except DashboardError as e:
            logger.error(f"Failed to load plugin charts for {plugin_id}: {e}")
            stats.error = f"Failed to load plugin charts: {e}"
            return stats

        for chart_id, meta in charts.items():
            try:
                data = self.bstats.fetch_chart_data(plugin_id, chart_id, DETAIL_ELEMENTS)
                failed = False
            except DashboardError as e:
                logger.warning(f"Failed to fetch chart data {chart_id}: {e}")
                data, failed = None, True

            kind = classify_chart(chart_id, meta, parse_pie_items(data))
            if kind is ChartKind.LOCATION:
                continue
            view = ChartView(chart_id=chart_id, title=meta.title, kind=kind, failed=failed)
            if kind is ChartKind.PIE:
                view.pie = pie_entries(data)
            else:
                view.points = line_points(data)
            stats.charts.append(view)
        return stats

    def load_full_history(self, plugin_id: int, chart_id: str) -> List[Tuple[float, float]]:
        return line_points(self.bstats.fetch_chart_data(plugin_id, chart_id, FULL_HISTORY_ELEMENTS))

    def test_bstats_api(self, endpoint: str = "/api/v1/plugins", timeout_ms: int = 10000) -> DiagnosticResult:
        return self.bstats.test_bstats_api(endpoint, timeout_ms)

    def save_mapping(self, raw) -> Dict[str, int]:
        """Validate and persist the manual mapping, then redo the plugin lookup."""
        mapping = self.context.save_mapping(raw)
        if self.repos:
            self.run_stats_lookup()
        return mapping
