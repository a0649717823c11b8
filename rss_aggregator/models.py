"""Data models for RSS Aggregator."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Article:
    """Represents a single normalized RSS/Atom item."""

    title: str
    link: str
    published_at_raw: str
    published_at_iso: str
    summary: str
    feed_name: str
    thumbnail_url: str | None = None
    # Stamped by the aggregation merge, never by the parser
    feed_color: str | None = None
    feed_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Article":
        return cls(
            title=data["title"],
            link=data["link"],
            published_at_raw=data["published_at_raw"],
            published_at_iso=data["published_at_iso"],
            summary=data["summary"],
            feed_name=data["feed_name"],
            thumbnail_url=data.get("thumbnail_url"),
        )


@dataclass(frozen=True)
class FeedDocument:
    """Parsed representation of one feed fetch."""

    title: str
    description: str
    items: tuple[Article, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeedDocument":
        return cls(
            title=data["title"],
            description=data["description"],
            items=tuple(Article.from_dict(item) for item in data["items"]),
        )


@dataclass(frozen=True)
class CacheEntry:
    """Cached feed document with its fetch time in epoch milliseconds."""

    timestamp: int
    data: FeedDocument


@dataclass(frozen=True)
class Feed:
    """A user subscription to a syndicated source, identified by URL."""

    url: str
    name: str
    articles: tuple[Article, ...] = ()
    tags: tuple[str, ...] = ()
    category: str | None = None
    color: str | None = None

    def subscription(self) -> dict[str, Any]:
        """Persisted subset of the feed (articles are re-fetched on load)."""
        return {
            "url": self.url,
            "name": self.name,
            "tags": list(self.tags),
            "category": self.category,
            "color": self.color,
        }


@dataclass(frozen=True)
class FeedStatus:
    """Transient refresh state of one feed URL."""

    is_refreshing: bool = False
    last_refreshed: datetime | None = None


@dataclass(frozen=True)
class Filter:
    """Search term and tag selection applied to the merged article stream."""

    search_term: str = ""
    tags: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class FeedRefreshError:
    """A non-fatal failure of one feed inside a batch operation."""

    url: str
    message: str
    kind: str


@dataclass(frozen=True)
class RefreshResult:
    """Snapshot returned by every batch operation."""

    feeds: tuple[Feed, ...]
    articles: tuple[Article, ...]
    errors: tuple[FeedRefreshError, ...] = ()


@dataclass(frozen=True)
class Trend:
    """A trending topic with its mention count."""

    topic: str
    count: int


@dataclass(frozen=True)
class DashboardInsights:
    """AI generated overview of recent headlines."""

    summary: str
    trends: tuple[Trend, ...] = ()


@dataclass(frozen=True)
class FeedSuggestion:
    """A feed proposed by topic discovery."""

    name: str
    url: str
