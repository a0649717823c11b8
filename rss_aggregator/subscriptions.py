"""Subscription list persistence and import/export format."""

import json
import random
from typing import Any

from .errors import ImportFormatError
from .models import Feed

SUBSCRIPTIONS_KEY = "rss-feeds"
IMPORTED_CATEGORY = "Imported"

FEED_COLORS = (
    "#ef4444",
    "#f97316",
    "#f59e0b",
    "#84cc16",
    "#10b981",
    "#06b6d4",
    "#3b82f6",
    "#6366f1",
    "#8b5cf6",
    "#d946ef",
    "#ec4899",
    "#64748b",
)


def random_color() -> str:
    return random.choice(FEED_COLORS)


def _clean_tags(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    tags: list[str] = []
    for tag in value:
        if isinstance(tag, str) and tag.strip() and tag.strip() not in tags:
            tags.append(tag.strip())
    return tuple(tags)


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def feed_from_record(record: Any, default_category: str | None = None) -> Feed:
    """Build a Feed from one subscription record, applying defaults.

    Raises:
        ImportFormatError: If the record is not an object with a string url
    """
    if not isinstance(record, dict):
        raise ImportFormatError(f"Subscription must be an object, got {type(record).__name__}")
    url = record.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ImportFormatError("Subscription is missing a url")
    url = url.strip()

    # An explicit null category is kept so exports round-trip
    if "category" in record:
        category = _optional_str(record["category"])
    else:
        category = default_category

    return Feed(
        url=url,
        name=_optional_str(record.get("name")) or url,
        tags=_clean_tags(record.get("tags")),
        category=category,
        color=_optional_str(record.get("color")) or random_color(),
    )


def parse_import(text: str) -> list[Feed]:
    """Parse an import file: a JSON array of subscription records.

    Missing tags default to empty, missing category to "Imported" and
    missing color to a random palette colour. Repeated URLs keep the first
    occurrence.

    Raises:
        ImportFormatError: If the text is not a JSON array of valid records
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ImportFormatError(f"Import file is not valid JSON: {e}") from e
    if not isinstance(data, list):
        raise ImportFormatError("Import file must contain a JSON array")

    feeds: list[Feed] = []
    seen: set[str] = set()
    for index, record in enumerate(data):
        try:
            feed = feed_from_record(record, IMPORTED_CATEGORY)
        except ImportFormatError as e:
            raise ImportFormatError(f"Invalid entry at index {index}: {e}") from e
        if feed.url in seen:
            continue
        seen.add(feed.url)
        feeds.append(feed)
    return feeds


def export_feeds(feeds: list[Feed] | tuple[Feed, ...]) -> str:
    """Serialize subscriptions for export; every field is always present."""
    return json.dumps([feed.subscription() for feed in feeds], indent=2, ensure_ascii=False)


def dump_subscriptions(feeds: list[Feed] | tuple[Feed, ...]) -> str:
    return json.dumps([feed.subscription() for feed in feeds], ensure_ascii=False)


def load_subscriptions(text: str | None) -> list[Feed]:
    """Decode the persisted subscription list; unreadable entries are skipped."""
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, list):
        return []

    feeds = []
    for record in data:
        try:
            feeds.append(feed_from_record(record))
        except ImportFormatError:
            continue
    return feeds
