"""Concurrent multi-feed refresh, merge and filtering."""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

from dateutil import parser as date_parser

from .assistant import DEFAULT_TAGS, FeedAssistant
from .errors import AiServiceError, DuplicateFeedError, FeedError, UnknownFeedError
from .ingestion import FeedIngestionService
from .logging_config import create_execution_logger
from .models import (
    Article,
    DashboardInsights,
    Feed,
    FeedDocument,
    FeedRefreshError,
    FeedStatus,
    FeedSuggestion,
    Filter,
    RefreshResult,
)
from .storage import KeyValueStore
from .subscriptions import (
    SUBSCRIPTIONS_KEY,
    dump_subscriptions,
    export_feeds,
    load_subscriptions,
    parse_import,
    random_color,
)

INSIGHTS_TITLE_LIMIT = 50
TAG_SAMPLE_SIZE = 5

_EPOCH = datetime.min.replace(tzinfo=UTC)
_UNSET = object()


def publish_instant(article: Article) -> datetime:
    """Parsed publish time of an article, from the ISO field or the raw date."""
    for value in (article.published_at_iso, article.published_at_raw):
        if not value:
            continue
        try:
            instant = date_parser.isoparse(value)
        except (ValueError, OverflowError):
            try:
                instant = date_parser.parse(value)
            except (ValueError, OverflowError):
                continue
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=UTC)
        return instant
    return _EPOCH


def merge_articles(feeds: Iterable[Feed]) -> tuple[Article, ...]:
    """Stamp each feed's articles with its colour and URL, flatten, sort newest first.

    The sort is stable, so articles with equal publish instants keep the
    feed order.
    """
    articles = [
        replace(article, feed_color=feed.color, feed_url=feed.url)
        for feed in feeds
        for article in feed.articles
    ]
    articles.sort(key=publish_instant, reverse=True)
    return tuple(articles)


def apply_filter(
    articles: Iterable[Article], feeds: Iterable[Feed], filter: Filter | None
) -> tuple[Article, ...]:
    """Keep articles matching the search term and belonging to a selected tag."""
    selected = tuple(articles)
    if filter is None:
        return selected

    if filter.search_term:
        term = filter.search_term.lower()
        selected = tuple(
            a for a in selected if term in a.title.lower() or term in a.summary.lower()
        )

    if filter.tags:
        tagged_urls = {f.url for f in feeds if set(f.tags) & set(filter.tags)}
        selected = tuple(a for a in selected if a.feed_url in tagged_urls)

    return selected


class AggregationEngine:
    """Owns the feed list, per-feed status and the merged article stream.

    Every public method returns immutable snapshots; the engine's own state
    is never shared with callers.
    """

    def __init__(
        self,
        ingestion: FeedIngestionService,
        store: KeyValueStore,
        assistant: FeedAssistant | None = None,
        clock: Callable[[], datetime] | None = None,
        execution_id: str | None = None,
    ):
        self.ingestion = ingestion
        self.store = store
        self.assistant = assistant
        self.clock = clock or (lambda: datetime.now(UTC))
        self.logger = create_execution_logger("aggregator", execution_id)

        self._feeds: list[Feed] = []
        self._statuses: dict[str, FeedStatus] = {}
        self._descriptions: dict[str, str] = {}
        self._articles: tuple[Article, ...] = ()
        self._errors: tuple[FeedRefreshError, ...] = ()
        self._in_flight: dict[str, asyncio.Task] = {}

    # Snapshots

    def feeds(self) -> tuple[Feed, ...]:
        return tuple(self._feeds)

    def feed(self, url: str) -> Feed | None:
        return next((f for f in self._feeds if f.url == url), None)

    def statuses(self) -> Mapping[str, FeedStatus]:
        return MappingProxyType(dict(self._statuses))

    def status(self, url: str) -> FeedStatus:
        return self._statuses.get(url, FeedStatus())

    def errors(self) -> tuple[FeedRefreshError, ...]:
        return self._errors

    def articles(self, filter: Filter | None = None) -> tuple[Article, ...]:
        return apply_filter(self._articles, self._feeds, filter)

    def all_tags(self) -> list[str]:
        return sorted({tag for feed in self._feeds for tag in feed.tags})

    def snapshot(self, errors: Iterable[FeedRefreshError] = ()) -> RefreshResult:
        return RefreshResult(
            feeds=tuple(self._feeds), articles=self._articles, errors=tuple(errors)
        )

    # Ingestion

    async def _ingest(self, url: str, force_refresh: bool) -> FeedDocument:
        """Fetch one feed, joining an ingestion already in flight for the same URL."""
        task = self._in_flight.get(url)
        if task is None:
            task = asyncio.create_task(
                self.ingestion.fetch_and_parse_feed(url, force_refresh)
            )
            self._in_flight[url] = task
            task.add_done_callback(lambda done, url=url: self._release(url, done))
        else:
            self.logger.debug("Joining in-flight refresh", feed_url=url)
        document = await asyncio.shield(task)
        self._descriptions[url] = document.description
        return document

    def _release(self, url: str, task: asyncio.Task) -> None:
        if self._in_flight.get(url) is task:
            del self._in_flight[url]
        # Every waiter may have been cancelled; mark the outcome as retrieved
        if not task.cancelled():
            task.exception()

    def _mark_refreshing(self, urls: Iterable[str]) -> None:
        for url in urls:
            previous = self._statuses.get(url, FeedStatus())
            self._statuses[url] = FeedStatus(True, previous.last_refreshed)

    def _mark_failed(self, url: str, error: BaseException) -> FeedRefreshError:
        previous = self._statuses.get(url, FeedStatus())
        self._statuses[url] = FeedStatus(False, previous.last_refreshed)
        kind = error.kind if isinstance(error, FeedError) else "unexpected"
        self.logger.error(
            f"Failed to refresh feed {url}: {error}",
            feed_url=url,
            error=str(error),
            error_kind=kind,
        )
        return FeedRefreshError(url=url, message=str(error), kind=kind)

    def _commit(self, feeds: list[Feed]) -> None:
        self._feeds = feeds
        self._articles = merge_articles(feeds)
        self._persist()

    def _persist(self) -> None:
        self.store.set(SUBSCRIPTIONS_KEY, dump_subscriptions(self._feeds))

    async def _generate_tags(self, document: FeedDocument) -> tuple[str, ...]:
        if self.assistant is None:
            return DEFAULT_TAGS
        try:
            return await self.assistant.generate_tags(
                document.title,
                document.description,
                document.items[:TAG_SAMPLE_SIZE],
            )
        except AiServiceError as e:
            self.logger.warning(f"Tagging failed, using defaults: {e}", error=str(e))
            return DEFAULT_TAGS

    # Operations

    async def refresh_feeds(
        self,
        subscriptions: Iterable[Feed],
        force_refresh: bool = False,
        override: bool = False,
    ) -> RefreshResult:
        """Refresh a batch of feeds concurrently and merge the results.

        A failing feed never aborts its siblings: it keeps its last known
        state if it was already subscribed, is left out if it is new, and
        is reported in the result's errors.

        A refresh only replaces name and articles of a subscribed feed, so
        edits made while the batch runs are kept. With override, the given
        feeds' tags, category and colour replace the subscribed ones.
        """
        targets: list[Feed] = []
        for feed in subscriptions:
            if all(t.url != feed.url for t in targets):
                targets.append(feed)

        known_urls = {f.url for f in self._feeds}
        self._mark_refreshing(t.url for t in targets)
        self.logger.log_batch_start(len(targets), force_refresh)

        results = await asyncio.gather(
            *(self._ingest(t.url, force_refresh) for t in targets),
            return_exceptions=True,
        )

        now = self.clock()
        current = {f.url: f for f in self._feeds}
        refreshed: dict[str, Feed] = {}
        errors: list[FeedRefreshError] = []
        for feed, result in zip(targets, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                errors.append(self._mark_failed(feed.url, result))
                continue
            self._statuses[feed.url] = FeedStatus(False, now)
            base = feed if override or feed.url not in current else current[feed.url]
            refreshed[feed.url] = replace(base, name=result.title, articles=result.items)

        current_urls = set(current)
        merged = [refreshed.get(f.url, f) for f in self._feeds]
        for feed in targets:
            # Skip feeds removed while the batch was running
            if feed.url in refreshed and feed.url not in current_urls and feed.url not in known_urls:
                merged.append(refreshed[feed.url])

        self._errors = tuple(errors)
        self._commit(merged)
        self.logger.log_batch_end(len(refreshed), len(errors), len(self._articles))
        return self.snapshot(errors)

    async def refresh_all(self, force_refresh: bool = True) -> RefreshResult:
        """Manual refresh of every subscribed feed."""
        return await self.refresh_feeds(list(self._feeds), force_refresh)

    async def refresh_feed(self, url: str, force_refresh: bool = True) -> RefreshResult:
        feed = self.feed(url)
        if feed is None:
            raise UnknownFeedError(url)
        return await self.refresh_feeds([feed], force_refresh)

    def restore(self) -> tuple[Feed, ...]:
        """Register persisted subscriptions without fetching them."""
        subscriptions = load_subscriptions(self.store.get(SUBSCRIPTIONS_KEY))
        self.logger.info(
            f"Loaded {len(subscriptions)} saved feeds", feed_count=len(subscriptions)
        )
        known = {f.url for f in self._feeds}
        self._feeds.extend(f for f in subscriptions if f.url not in known)
        return self.feeds()

    async def load(self) -> RefreshResult:
        """Restore persisted subscriptions and refresh them from the cache.

        Restored feeds are registered before the refresh, so a feed that is
        unreachable at startup stays subscribed with no articles.
        """
        if not self.restore():
            return self.snapshot()
        return await self.refresh_feeds(list(self._feeds))

    async def add_feed(self, url: str) -> RefreshResult:
        """Subscribe to a single feed.

        Raises:
            DuplicateFeedError: If the URL is already subscribed
            FeedError: If the feed cannot be fetched or parsed; nothing is
                committed in that case
        """
        url = url.strip()
        if self.feed(url) is not None:
            raise DuplicateFeedError(f"Feed already exists: {url}")

        self._mark_refreshing([url])
        try:
            document = await self._ingest(url, force_refresh=False)
        except Exception:
            self._statuses.pop(url, None)
            raise

        tags = await self._generate_tags(document)
        if self.feed(url) is not None:
            self._statuses[url] = FeedStatus(False, self.clock())
            raise DuplicateFeedError(f"Feed already exists: {url}")

        feed = Feed(
            url=url,
            name=document.title,
            articles=document.items,
            tags=tags,
            color=random_color(),
        )
        self._statuses[url] = FeedStatus(False, self.clock())
        self._commit(self._feeds + [feed])
        self.logger.info(f"Added feed {document.title}", feed_url=url)
        return self.snapshot()

    async def add_feeds(self, urls: Iterable[str]) -> RefreshResult:
        """Subscribe to several feeds at once; failures are reported per URL."""
        errors: list[FeedRefreshError] = []
        pending: list[str] = []
        for url in (u.strip() for u in urls):
            if not url or url in pending:
                continue
            if self.feed(url) is not None:
                errors.append(
                    FeedRefreshError(url=url, message=f"Feed already exists: {url}", kind="duplicate")
                )
                continue
            pending.append(url)

        self._mark_refreshing(pending)
        self.logger.log_batch_start(len(pending), False)
        results = await asyncio.gather(
            *(self._ingest(url, force_refresh=False) for url in pending),
            return_exceptions=True,
        )

        documents: list[tuple[str, FeedDocument]] = []
        for url, result in zip(pending, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                errors.append(self._mark_failed(url, result))
                self._statuses.pop(url, None)
                continue
            documents.append((url, result))

        tag_sets = await asyncio.gather(*(self._generate_tags(doc) for _, doc in documents))

        now = self.clock()
        added = []
        for (url, document), tags in zip(documents, tag_sets):
            if self.feed(url) is not None:
                continue
            self._statuses[url] = FeedStatus(False, now)
            added.append(
                Feed(
                    url=url,
                    name=document.title,
                    articles=document.items,
                    tags=tags,
                    color=random_color(),
                )
            )

        self._errors = tuple(errors)
        self._commit(self._feeds + added)
        self.logger.log_batch_end(len(added), len(errors), len(self._articles))
        return self.snapshot(errors)

    def remove_feed(self, url: str) -> RefreshResult:
        """Unsubscribe a feed and drop its status.

        Raises:
            UnknownFeedError: If the URL is not subscribed
        """
        if self.feed(url) is None:
            raise UnknownFeedError(url)
        self._statuses.pop(url, None)
        self._descriptions.pop(url, None)
        self._commit([f for f in self._feeds if f.url != url])
        self.logger.info("Removed feed", feed_url=url)
        return self.snapshot()

    def update_feed_details(self, url: str, category=_UNSET, color=_UNSET) -> Feed:
        """Edit a feed's category and/or colour.

        Raises:
            UnknownFeedError: If the URL is not subscribed
        """
        feed = self.feed(url)
        if feed is None:
            raise UnknownFeedError(url)

        changes = {}
        if category is not _UNSET:
            changes["category"] = category or None
        if color is not _UNSET:
            changes["color"] = color or random_color()
        updated = replace(feed, **changes)

        self._commit([updated if f.url == url else f for f in self._feeds])
        return updated

    async def import_feeds(self, text: str) -> RefreshResult:
        """Import a subscription file and refresh the imported feeds as one batch.

        Imported feeds without tags are tagged by the assistant once they
        have been fetched.

        Raises:
            ImportFormatError: If the file is not a valid subscription list
        """
        imported = parse_import(text)
        self.logger.info(f"Importing {len(imported)} feeds", feed_count=len(imported))
        result = await self.refresh_feeds(imported, override=True)

        untagged = [
            f for f in self._feeds
            if not f.tags and any(i.url == f.url for i in imported)
        ]
        if not untagged:
            return result

        tag_sets = await asyncio.gather(
            *(
                self._generate_tags(
                    FeedDocument(
                        title=f.name,
                        description=self._descriptions.get(f.url, ""),
                        items=f.articles,
                    )
                )
                for f in untagged
            )
        )
        retagged = {f.url: tags for f, tags in zip(untagged, tag_sets)}
        self._commit(
            [replace(f, tags=retagged[f.url]) if f.url in retagged else f for f in self._feeds]
        )
        return self.snapshot(result.errors)

    def export_feeds(self) -> str:
        return export_feeds(self._feeds)

    async def insights(self, filter: Filter | None = None) -> DashboardInsights | None:
        """Dashboard summary of the newest filtered headlines.

        Returns None when there is nothing to analyze.

        Raises:
            AiServiceError: If the assistant is unavailable or fails
        """
        articles = self.articles(filter)
        if not articles:
            return None
        if self.assistant is None:
            raise AiServiceError("No AI assistant configured")
        titles = [a.title for a in articles[:INSIGHTS_TITLE_LIMIT]]
        return await self.assistant.generate_insights(titles)

    async def discover_feeds(self, topic: str) -> tuple[FeedSuggestion, ...]:
        """Ask the assistant for feeds about a topic.

        Raises:
            ValueError: If the topic is blank
            AiServiceError: If the assistant is unavailable or fails
        """
        topic = topic.strip()
        if not topic:
            raise ValueError("Topic must not be empty")
        if self.assistant is None:
            raise AiServiceError("No AI assistant configured")
        return await self.assistant.find_feeds_by_topic(topic)

    async def aclose(self) -> None:
        await self.ingestion.fetcher.aclose()
