"""Unit tests for FeedCache freshness and corruption handling."""

import json

from rss_aggregator.cache import CACHE_DURATION_SECONDS, FeedCache
from rss_aggregator.models import Article, FeedDocument
from rss_aggregator.storage import MemoryStore

URL = "https://example.com/feed.xml"
NOW_MS = 1_704_067_200_000


def make_document(title="Example", feed_name="Example"):
    article = Article(
        title="Hello",
        link="https://example.com/hello",
        published_at_raw="Mon, 01 Jan 2024 00:00:00 GMT",
        published_at_iso="2024-01-01T00:00:00+00:00",
        summary="Hi...",
        feed_name=feed_name,
    )
    return FeedDocument(title=title, description="desc", items=(article,))


class Clock:
    def __init__(self, now_ms: int):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


class TestFeedCacheUnit:
    """Unit tests for FeedCache."""

    def test_put_then_get_returns_document(self):
        cache = FeedCache(MemoryStore(), clock=Clock(NOW_MS))
        document = make_document()

        cache.put(URL, document)

        assert cache.get(URL) == document

    def test_stored_record_shape(self):
        store = MemoryStore()
        cache = FeedCache(store, clock=Clock(NOW_MS))

        cache.put(URL, make_document())

        record = json.loads(store.get(f"rss-cache-{URL}"))
        assert record["timestamp"] == NOW_MS
        assert record["data"]["title"] == "Example"
        assert record["data"]["items"][0]["link"] == "https://example.com/hello"

    def test_missing_entry_is_absent(self):
        assert FeedCache(MemoryStore()).get(URL) is None

    def test_entry_just_inside_window_is_fresh(self):
        clock = Clock(NOW_MS)
        cache = FeedCache(MemoryStore(), clock=clock)
        cache.put(URL, make_document())

        clock.now_ms = NOW_MS + CACHE_DURATION_SECONDS * 1000 - 1

        assert cache.get(URL) is not None

    def test_expired_entry_is_absent_and_removed(self):
        store = MemoryStore()
        clock = Clock(NOW_MS)
        cache = FeedCache(store, clock=clock)
        cache.put(URL, make_document())

        clock.now_ms = NOW_MS + CACHE_DURATION_SECONDS * 1000

        assert cache.get(URL) is None
        assert store.get(f"rss-cache-{URL}") is None

    def test_custom_duration(self):
        clock = Clock(NOW_MS)
        cache = FeedCache(MemoryStore(), duration_seconds=60, clock=clock)
        cache.put(URL, make_document())

        clock.now_ms = NOW_MS + 61_000

        assert cache.get(URL) is None

    def test_hit_rewrites_feed_name_to_document_title(self):
        store = MemoryStore()
        cache = FeedCache(store, clock=Clock(NOW_MS))
        cache.put(URL, make_document(title="Corrected Title", feed_name="Old Title"))

        document = cache.get(URL)

        assert all(item.feed_name == "Corrected Title" for item in document.items)

    def test_corrupted_json_is_purged(self):
        store = MemoryStore({f"rss-cache-{URL}": "{not json"})
        cache = FeedCache(store, clock=Clock(NOW_MS))

        assert cache.get(URL) is None
        assert store.get(f"rss-cache-{URL}") is None

    def test_wrong_shape_is_purged(self):
        bad_records = [
            json.dumps({"timestamp": NOW_MS}),
            json.dumps({"timestamp": "yesterday", "data": make_document().to_dict()}),
            json.dumps({"timestamp": NOW_MS, "data": {"title": "x"}}),
            json.dumps([1, 2, 3]),
        ]
        for raw in bad_records:
            store = MemoryStore({f"rss-cache-{URL}": raw})
            cache = FeedCache(store, clock=Clock(NOW_MS))

            assert cache.get(URL) is None
            assert store.get(f"rss-cache-{URL}") is None

    def test_invalidate_removes_entry(self):
        cache = FeedCache(MemoryStore(), clock=Clock(NOW_MS))
        cache.put(URL, make_document())

        cache.invalidate(URL)

        assert cache.get(URL) is None

    def test_put_overwrites_entry(self):
        clock = Clock(NOW_MS)
        cache = FeedCache(MemoryStore(), clock=clock)
        cache.put(URL, make_document(title="First"))

        clock.now_ms = NOW_MS + 1000
        cache.put(URL, make_document(title="Second"))

        assert cache.get(URL).title == "Second"
