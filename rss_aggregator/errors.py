"""Error types for RSS Aggregator."""


class AggregatorError(Exception):
    """Base class for all aggregator errors."""


class FeedError(AggregatorError):
    """Fetching or parsing a single feed failed."""

    kind = "feed_error"

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class NotFoundError(FeedError):
    """The proxy reported HTTP 404 for the feed."""

    kind = "not_found"


class RateLimitedError(FeedError):
    """The proxy reported HTTP 429 for the feed."""

    kind = "rate_limited"


class NetworkError(FeedError):
    """Any other non-2xx status or transport failure."""

    kind = "network"


class MalformedFeedError(FeedError):
    """The document is not XML or has no extractable items."""

    kind = "malformed"


class CacheReadError(AggregatorError):
    """A stored cache entry could not be deserialized."""


class AiServiceError(AggregatorError):
    """The generative AI collaborator failed or returned an invalid shape."""


class DuplicateFeedError(AggregatorError):
    """A feed with the same URL is already subscribed."""


class ImportFormatError(AggregatorError):
    """An import file does not match the subscription list format."""


class UnknownFeedError(AggregatorError):
    """No feed with the given URL is subscribed."""

    def __init__(self, url: str):
        super().__init__(f"Unknown feed {url}")
        self.url = url
