"""RSS/Atom document parsing and normalization."""

import io
import re
import xml.sax
from datetime import UTC, datetime

import feedparser
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from .errors import MalformedFeedError
from .logging_config import create_execution_logger
from .models import Article, FeedDocument

UNTITLED_FEED = "Untitled Feed"
SUMMARY_MAX_LENGTH = 200
SUMMARY_SUFFIX = "..."

IMG_SRC_PATTERN = re.compile(r"""<img[^>]+src\s*=\s*["']([^"']+)["']""", re.IGNORECASE)


class FeedParser:
    """Turns raw RSS 2.0 or Atom text into a FeedDocument."""

    def __init__(self, execution_id: str | None = None):
        self.logger = create_execution_logger("feed_parser", execution_id)

    def parse(self, raw_text: str) -> FeedDocument:
        """Parse a raw feed document.

        Args:
            raw_text: Feed XML as text

        Returns:
            FeedDocument with items in document order

        Raises:
            MalformedFeedError: If the text is not well-formed XML or no
                items could be extracted
        """
        # Wrapped in a stream so feedparser never treats the text as a URL or path
        feed = feedparser.parse(io.BytesIO(raw_text.encode("utf-8")))

        if feed.bozo and hasattr(feed, "bozo_exception"):
            if isinstance(feed.bozo_exception, xml.sax.SAXException):
                self.logger.error(
                    f"Feed is not well-formed XML: {feed.bozo_exception}",
                    error=str(feed.bozo_exception),
                )
                raise MalformedFeedError(f"Failed to parse XML: {feed.bozo_exception}")
            self.logger.warning(
                f"Feed parsing warning: {feed.bozo_exception}",
                bozo_exception=str(feed.bozo_exception),
            )

        title = feed.feed.get("title") or UNTITLED_FEED
        description = feed.feed.get("description") or ""

        items = []
        for entry in feed.entries:
            try:
                items.append(self.normalize_item(entry, title))
            except (AttributeError, KeyError, TypeError) as e:
                self.logger.warning(f"Failed to normalize entry: {e}", error=str(e))
                continue

        if not items:
            raise MalformedFeedError("Feed contains no items")

        self.logger.info(
            "Successfully parsed feed",
            items_count=len(items),
            total_entries=len(feed.entries),
        )
        return FeedDocument(title=title, description=description, items=tuple(items))

    def normalize_item(self, entry, feed_name: str) -> Article:
        """Normalize a feedparser entry into an Article.

        Args:
            entry: Entry produced by feedparser (RSS item or Atom entry)
            feed_name: Title of the owning document

        Returns:
            Normalized Article
        """
        title = entry.get("title") or ""
        link = entry.get("link") or ""

        published_raw = entry.get("published") or datetime.now(UTC).isoformat()
        published_iso = normalize_date(published_raw)

        source = summary_source(entry)
        summary = self.clean_html_content(source)[:SUMMARY_MAX_LENGTH] + SUMMARY_SUFFIX

        return Article(
            title=title,
            link=link,
            published_at_raw=published_raw,
            published_at_iso=published_iso,
            summary=summary,
            feed_name=feed_name,
            thumbnail_url=extract_thumbnail(entry, source),
        )

    def clean_html_content(self, content: str) -> str:
        """Remove HTML tags from content and normalize whitespace.

        Args:
            content: Raw content that may contain HTML

        Returns:
            Clean text content without HTML tags
        """
        if not content:
            return ""

        if "<" not in content and ">" not in content:
            return " ".join(content.split())

        soup = BeautifulSoup(content, "html.parser")
        for script in soup(["script", "style"]):
            script.decompose()

        text = soup.get_text(separator=" ")
        # Stray brackets survive get_text when they are not part of a tag
        text = text.replace("<", "").replace(">", "")
        return " ".join(text.split())


def summary_source(entry) -> str:
    """First non-empty of description/summary, content and content:encoded."""
    summary = entry.get("summary")
    if summary:
        return summary
    for content in entry.get("content") or []:
        value = content.get("value")
        if value:
            return value
    return ""


def extract_thumbnail(entry, source: str) -> str | None:
    """Pick a thumbnail from media:thumbnail, an image enclosure or an inline img."""
    for thumbnail in entry.get("media_thumbnail") or []:
        if thumbnail.get("url"):
            return thumbnail["url"]

    for enclosure in entry.get("enclosures") or []:
        if (enclosure.get("type") or "").startswith("image/"):
            url = enclosure.get("href") or enclosure.get("url")
            if url:
                return url

    match = IMG_SRC_PATTERN.search(source or "")
    if match:
        return match.group(1)
    return None


def normalize_date(raw: str) -> str:
    """Return raw as a UTC ISO-8601 timestamp, or now when it cannot be parsed."""
    try:
        published = date_parser.parse(raw)
    except (ValueError, TypeError, OverflowError):
        published = datetime.now(UTC)
    if published.tzinfo is None:
        published = published.replace(tzinfo=UTC)
    return published.astimezone(UTC).isoformat()
