"""Test doubles and feed builders shared by the test modules."""

import asyncio
from datetime import UTC, datetime, timedelta
from xml.sax.saxutils import escape

from rss_aggregator.aggregator import AggregationEngine
from rss_aggregator.cache import FeedCache
from rss_aggregator.errors import AiServiceError
from rss_aggregator.ingestion import FeedIngestionService
from rss_aggregator.models import DashboardInsights, FeedSuggestion, Trend
from rss_aggregator.storage import MemoryStore

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


def rss_feed(title: str, items: list[tuple[str, str, str, str]], description: str = "") -> str:
    """Build an RSS 2.0 document from (title, link, pubDate, description) tuples."""
    body = "".join(
        f"<item><title>{escape(t)}</title><link>{escape(link)}</link>"
        f"<pubDate>{escape(date)}</pubDate><description>{escape(desc)}</description></item>"
        for t, link, date, desc in items
    )
    return (
        f"<rss version=\"2.0\"><channel><title>{escape(title)}</title>"
        f"<description>{escape(description)}</description>{body}</channel></rss>"
    )


def rfc822(day: int, hour: int = 0) -> str:
    moment = datetime(2024, 1, day, hour, 0, 0, tzinfo=UTC)
    return moment.strftime("%a, %d %b %Y %H:%M:%S GMT")


class FakeFetcher:
    """Returns canned documents per URL, optionally after a delay."""

    def __init__(self, responses: dict, delays: dict | None = None):
        self.responses = responses
        self.delays = delays or {}
        self.calls: list[str] = []
        self.closed = False

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        await asyncio.sleep(self.delays.get(url, 0))
        response = self.responses[url]
        if isinstance(response, Exception):
            raise response
        return response

    async def aclose(self) -> None:
        self.closed = True


class FakeAssistant:
    """In-memory stand-in for the Bedrock assistant."""

    def __init__(self, tags=("tech", "news"), fail: bool = False):
        self.tags = tuple(tags)
        self.fail = fail
        self.tag_calls: list[tuple[str, str, int]] = []
        self.insight_titles: list[str] | None = None

    async def generate_tags(self, title, description, sample_articles):
        self.tag_calls.append((title, description, len(sample_articles)))
        if self.fail:
            raise AiServiceError("tagging unavailable")
        return self.tags

    async def generate_insights(self, titles):
        self.insight_titles = list(titles)
        if self.fail:
            raise AiServiceError("insights unavailable")
        return DashboardInsights(summary="Busy news day.", trends=(Trend("ai", 4), Trend("cloud", 2)))

    async def find_feeds_by_topic(self, topic):
        if self.fail:
            raise AiServiceError("discovery unavailable")
        return (FeedSuggestion(name=f"{topic} weekly", url=f"https://{topic}.example/feed"),)


class StepClock:
    """Datetime clock advancing one minute per call."""

    def __init__(self, start: datetime = BASE_TIME):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(minutes=1)
        return value


def build_engine(responses, delays=None, assistant=None, store=None, clock=None):
    store = store if store is not None else MemoryStore()
    fetcher = FakeFetcher(responses, delays)
    ingestion = FeedIngestionService(FeedCache(store), fetcher)
    engine = AggregationEngine(ingestion, store, assistant, clock=clock or StepClock())
    return engine, fetcher, store
