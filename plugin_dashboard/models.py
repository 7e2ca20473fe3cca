#!/usr/bin/env python3
"""
Data models for GitHub repositories and bStats plugins.

Contains the core data classes used throughout the application.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Repository:
    """A repository of the organization as returned by the GitHub API."""
    id: int
    name: str
    full_name: str
    html_url: str
    description: Optional[str]
    pushed_at: Optional[str]
    archived: bool
    owner_login: str

    @classmethod
    def from_github_entry(cls, entry: Dict[str, Any]) -> 'Repository':
        """Create a Repository from a GitHub API response entry."""
        owner = entry.get("owner") or {}
        return cls(
            id=entry["id"],
            name=entry["name"],
            full_name=entry.get("full_name", entry["name"]),
            html_url=entry.get("html_url", ""),
            description=entry.get("description"),
            pushed_at=entry.get("pushed_at"),
            archived=bool(entry.get("archived", False)),
            owner_login=owner.get("login", ""),
        )


@dataclass
class Commit:
    """The latest commit of a repository."""
    sha: str
    html_url: str
    message: str
    author_name: Optional[str]
    author_date: Optional[str]

    @classmethod
    def from_github_entry(cls, entry: Dict[str, Any]) -> 'Commit':
        """Create a Commit from a GitHub API response entry."""
        commit = entry.get("commit") or {}
        author = commit.get("author") or {}
        return cls(
            sha=entry["sha"],
            html_url=entry.get("html_url", ""),
            message=commit.get("message", ""),
            author_name=author.get("name"),
            author_date=author.get("date"),
        )


@dataclass
class ReleaseAsset:
    id: int
    name: str
    download_url: str

    @classmethod
    def from_github_entry(cls, entry: Dict[str, Any]) -> 'ReleaseAsset':
        return cls(entry["id"], entry["name"], entry.get("browser_download_url", ""))


@dataclass
class Release:
    """A published release together with its downloadable assets."""
    id: int
    name: Optional[str]
    tag_name: str
    html_url: str
    published_at: Optional[str]
    assets: List[ReleaseAsset] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.name or self.tag_name

    @classmethod
    def from_github_entry(cls, entry: Dict[str, Any]) -> 'Release':
        """Create a Release from a GitHub API response entry."""
        return cls(
            id=entry["id"],
            name=entry.get("name"),
            tag_name=entry.get("tag_name", ""),
            html_url=entry.get("html_url", ""),
            published_at=entry.get("published_at"),
            assets=[ReleaseAsset.from_github_entry(a) for a in entry.get("assets") or []],
        )


@dataclass
class Plugin:
    """A plugin registered on bStats."""
    id: int
    name: str
    owner_name: Optional[str]
    software_name: Optional[str]
    is_global: bool
    owner_id: Optional[int] = None
    software_id: Optional[int] = None
    software_url: Optional[str] = None

    @classmethod
    def from_bstats_entry(cls, entry: Dict[str, Any]) -> 'Plugin':
        """Create a Plugin from a bStats API response entry."""
        owner = entry.get("owner") or {}
        software = entry.get("software") or {}
        return cls(
            id=int(entry["id"]),
            name=entry.get("name", ""),
            owner_name=owner.get("name"),
            software_name=software.get("name"),
            is_global=bool(entry.get("isGlobal", False)),
            owner_id=owner.get("id"),
            software_id=software.get("id"),
            software_url=software.get("url"),
        )


@dataclass
class ChartMetadata:
    """Metadata describing one chart of a plugin."""
    chart_id: str
    uid: Optional[int]
    type: str
    position: Optional[int]
    title: str
    is_default: bool
    id_custom: Optional[str] = None

    @classmethod
    def from_bstats_entry(cls, chart_id: str, entry: Dict[str, Any]) -> 'ChartMetadata':
        """Create ChartMetadata from one value of the bStats charts map."""
        entry = entry or {}
        return cls(
            chart_id=chart_id,
            uid=entry.get("uid"),
            type=str(entry.get("type") or ""),
            position=entry.get("position"),
            title=str(entry.get("title") or chart_id),
            is_default=bool(entry.get("isDefault", False)),
            id_custom=entry.get("idCustom"),
        )


@dataclass
class PieEntry:
    """One slice of a categorical chart, with an optional per-key breakdown."""
    label: str
    value: float
    drilldown: Optional[Dict[str, float]] = None


@dataclass
class DiagnosticResult:
    """Outcome of a bStats connectivity probe."""
    ok: bool
    status: Optional[int] = None
    status_text: Optional[str] = None
    body: Any = None
    error: Optional[str] = None
