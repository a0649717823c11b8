"""Feed retrieval through the outbound proxy."""

import httpx

from .config import FetcherConfig
from .errors import NetworkError, NotFoundError, RateLimitedError
from .logging_config import create_execution_logger


class FeedFetcher:
    """Downloads raw feed documents through a single proxy endpoint."""

    def __init__(
        self,
        config: FetcherConfig | None = None,
        client: httpx.AsyncClient | None = None,
        execution_id: str | None = None,
    ):
        """Initialize FeedFetcher with configuration.

        Args:
            config: Proxy base URL, timeout and User-Agent
            client: Optional preconfigured client; created lazily otherwise
            execution_id: Execution ID for logging context
        """
        self.config = config or FetcherConfig()
        self.logger = create_execution_logger("feed_fetcher", execution_id)
        self._client = client
        self._owns_client = client is None

        self.logger.info(
            "FeedFetcher initialized",
            proxy_base=self.config.proxy_base,
            timeout=self.config.timeout,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout,
                follow_redirects=True,
                headers={"User-Agent": self.config.user_agent},
            )
        return self._client

    async def fetch(self, url: str) -> str:
        """Fetch the raw text of a feed.

        Args:
            url: Feed URL, passed URL-encoded to the proxy

        Returns:
            Response body as text

        Raises:
            NotFoundError: The proxy answered 404
            RateLimitedError: The proxy answered 429
            NetworkError: Any other non-2xx status or transport failure
        """
        self.logger.info("Downloading feed content", feed_url=url)
        try:
            response = await self._get_client().get(
                self.config.proxy_base, params={"url": url}
            )
        except httpx.HTTPError as e:
            self.logger.error(
                f"Failed to download feed {url}: {e}", feed_url=url, error=str(e)
            )
            raise NetworkError(f"Could not reach feed {url}: {e}", url=url) from e

        status = response.status_code
        if status == 404:
            raise NotFoundError(f"Feed not found: {url}", url=url)
        if status == 429:
            raise RateLimitedError(f"Rate limited while fetching {url}", url=url)
        if not 200 <= status < 300:
            raise NetworkError(f"HTTP error {status} while fetching {url}", url=url)

        self.logger.info(
            "Feed downloaded successfully",
            feed_url=url,
            status_code=status,
            content_length=len(response.content),
        )
        return response.text

    async def aclose(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "FeedFetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
