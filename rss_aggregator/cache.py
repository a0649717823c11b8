"""Time-boxed feed document cache."""

import json
import time
from dataclasses import replace
from typing import Callable

from .errors import CacheReadError
from .logging_config import create_execution_logger
from .models import CacheEntry, FeedDocument
from .storage import KeyValueStore

CACHE_KEY_PREFIX = "rss-cache-"
CACHE_DURATION_SECONDS = 60 * 60


def _now_ms() -> int:
    return int(time.time() * 1000)


class FeedCache:
    """Caches the last successfully parsed document of each feed URL."""

    def __init__(
        self,
        store: KeyValueStore,
        duration_seconds: int = CACHE_DURATION_SECONDS,
        clock: Callable[[], int] = _now_ms,
        execution_id: str | None = None,
    ):
        """Initialize the cache.

        Args:
            store: Key-value backend holding serialized entries
            duration_seconds: Validity window of an entry
            clock: Returns the current time in epoch milliseconds
            execution_id: Execution ID for logging context
        """
        self.store = store
        self.duration_ms = duration_seconds * 1000
        self.clock = clock
        self.logger = create_execution_logger("feed_cache", execution_id)

    @staticmethod
    def key_for(url: str) -> str:
        return f"{CACHE_KEY_PREFIX}{url}"

    def get(self, url: str) -> FeedDocument | None:
        """Return the cached document for url while it is still fresh.

        Stale and corrupted entries are removed and reported as a miss. On a
        hit every article's feed_name is rewritten to the document title.
        """
        key = self.key_for(url)
        raw = self.store.get(key)
        if raw is None:
            return None

        try:
            entry = self._decode(raw)
        except CacheReadError as e:
            self.logger.warning(
                f"Purging corrupted cache entry: {e}", feed_url=url, error=str(e)
            )
            self.store.delete(key)
            return None

        age_ms = self.clock() - entry.timestamp
        if age_ms >= self.duration_ms:
            self.logger.debug("Cache entry expired", feed_url=url)
            self.store.delete(key)
            return None

        document = entry.data
        items = tuple(replace(item, feed_name=document.title) for item in document.items)
        self.logger.debug("Cache hit", feed_url=url, items_count=len(items))
        return replace(document, items=items)

    def put(self, url: str, document: FeedDocument) -> None:
        entry = CacheEntry(timestamp=self.clock(), data=document)
        payload = {"timestamp": entry.timestamp, "data": entry.data.to_dict()}
        self.store.set(self.key_for(url), json.dumps(payload, ensure_ascii=False))

    def invalidate(self, url: str) -> None:
        self.store.delete(self.key_for(url))

    @staticmethod
    def _decode(raw: str) -> CacheEntry:
        try:
            payload = json.loads(raw)
            timestamp = payload["timestamp"]
            if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
                raise TypeError(f"timestamp must be a number, got {type(timestamp).__name__}")
            return CacheEntry(
                timestamp=int(timestamp),
                data=FeedDocument.from_dict(payload["data"]),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CacheReadError(f"Invalid cache entry: {e}") from e
