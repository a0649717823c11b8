"""Cache-first feed ingestion."""

from .cache import FeedCache
from .errors import MalformedFeedError
from .fetcher import FeedFetcher
from .logging_config import create_execution_logger
from .models import FeedDocument
from .parser import FeedParser


class FeedIngestionService:
    """Composes cache, fetcher and parser into a single operation."""

    def __init__(
        self,
        cache: FeedCache,
        fetcher: FeedFetcher,
        parser: FeedParser | None = None,
        execution_id: str | None = None,
    ):
        self.cache = cache
        self.fetcher = fetcher
        self.parser = parser or FeedParser(execution_id)
        self.logger = create_execution_logger("ingestion", execution_id)

    async def fetch_and_parse_feed(self, url: str, force_refresh: bool = False) -> FeedDocument:
        """Return the parsed document for url.

        A fresh cache entry is returned without network access unless
        force_refresh is set. Otherwise the feed is fetched and parsed, and
        the cache is written only when both steps succeed.

        Raises:
            FeedError: Whatever the fetcher or parser raised
        """
        if not force_refresh:
            cached = self.cache.get(url)
            if cached is not None:
                self.logger.info("Serving feed from cache", feed_url=url)
                return cached

        raw_text = await self.fetcher.fetch(url)
        try:
            document = self.parser.parse(raw_text)
        except MalformedFeedError as e:
            e.url = url
            raise
        self.cache.put(url, document)
        self.logger.log_feed_processing(url, len(document.items))
        return document
