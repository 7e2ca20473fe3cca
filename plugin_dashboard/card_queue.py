#!/usr/bin/env python3
"""
Deferred loading of per-repository card details.

Cards only fetch their latest commit and release once they become visible.
Visible cards are queued once and loaded in order when the queue is drained.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .models import Commit, Release, Repository

logger = logging.getLogger(__name__)


@dataclass
class CardDetails:
    """What a repository card shows besides the repository itself."""
    commit: Optional[Commit] = None
    latest_release: Optional[Release] = None
    failed: bool = False


class CardDetailQueue:
    """Visibility-triggered task queue for card details."""

    def __init__(self, loader: Callable[[Repository], CardDetails]):
        """
        Args:
            loader: Function fetching the details of one repository
        """
        self.loader = loader
        self.pending: "OrderedDict[int, Repository]" = OrderedDict()
        self.results: Dict[int, CardDetails] = {}
        self.generation = 0
        self.lock = threading.Lock()

    def mark_visible(self, repo: Repository) -> bool:
        """Queue repo unless it is already loaded or queued. Returns True if queued."""
        with self.lock:
            if repo.id in self.results or repo.id in self.pending:
                return False
            self.pending[repo.id] = repo
            return True

    def drain(self, limit: Optional[int] = None) -> List[int]:
        """Load queued cards in visibility order. Returns the ids that were loaded."""
        loaded = []
        while limit is None or len(loaded) < limit:
            with self.lock:
                if not self.pending:
                    break
                repo_id, repo = self.pending.popitem(last=False)
                generation = self.generation
            details = self.loader(repo)
            with self.lock:
                if generation != self.generation:
                    # reset while loading
                    break
                self.results[repo_id] = details
            loaded.append(repo_id)
        if loaded:
            logger.debug(f"Loaded card details for {len(loaded)} repositories")
        return loaded

    def get(self, repo_id: int) -> Optional[CardDetails]:
        with self.lock:
            return self.results.get(repo_id)

    def is_loading(self, repo_id: int) -> bool:
        with self.lock:
            return repo_id in self.pending

    def reset(self):
        with self.lock:
            self.generation += 1
            self.pending.clear()
            self.results.clear()
