"""Configuration management for RSS Aggregator."""

import os
from dataclasses import dataclass

DEFAULT_PROXY_BASE = "https://api.allorigins.win/raw"


@dataclass
class FetcherConfig:
    """Configuration for the outbound feed proxy."""

    proxy_base: str = DEFAULT_PROXY_BASE
    timeout: float = 30.0
    user_agent: str = "RSS-Aggregator/1.0 (Feed reader)"


@dataclass
class CacheConfig:
    """Configuration for the feed document cache."""

    duration_seconds: int = 3600


@dataclass
class StorageConfig:
    """Configuration for the key-value persistence backend."""

    backend: str = "file"
    path: str = "rss_store.json"
    dynamodb_table: str = "rss-aggregator-store"
    region: str = "us-east-1"


@dataclass
class BedrockConfig:
    """Configuration for Amazon Bedrock."""

    model_id: str = "amazon.nova-micro-v1:0"
    region: str = "us-east-1"
    max_tokens: int = 1000


class Config:
    """Main configuration manager."""

    STORAGE_BACKENDS = ("memory", "file", "dynamodb")

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.proxy_base = os.getenv("RSS_PROXY_BASE", DEFAULT_PROXY_BASE)
        self.fetch_timeout = self._get_float("RSS_FETCH_TIMEOUT", 30.0)
        self.cache_duration_seconds = self._get_int("RSS_CACHE_DURATION_SECONDS", 3600)
        self.storage_backend = os.getenv("RSS_STORAGE_BACKEND", "file").lower()
        self.storage_path = os.getenv("RSS_STORAGE_PATH", "rss_store.json")
        self.dynamodb_table = os.getenv("DYNAMODB_TABLE", "rss-aggregator-store")
        self.aws_region = os.getenv("CURRENT_AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1"))
        self.bedrock_model_id = os.getenv("BEDROCK_MODEL_ID", "amazon.nova-micro-v1:0")

        if self.storage_backend not in self.STORAGE_BACKENDS:
            raise ValueError(
                f"Invalid RSS_STORAGE_BACKEND '{self.storage_backend}', "
                f"expected one of {', '.join(self.STORAGE_BACKENDS)}"
            )

    @staticmethod
    def _get_int(name: str, default: int) -> int:
        value = os.getenv(name)
        if value is None or not value.strip():
            return default
        try:
            parsed = int(value)
        except ValueError:
            raise ValueError(f"{name} must be an integer, got '{value}'")
        if parsed <= 0:
            raise ValueError(f"{name} must be positive, got {parsed}")
        return parsed

    @staticmethod
    def _get_float(name: str, default: float) -> float:
        value = os.getenv(name)
        if value is None or not value.strip():
            return default
        try:
            parsed = float(value)
        except ValueError:
            raise ValueError(f"{name} must be a number, got '{value}'")
        if parsed <= 0:
            raise ValueError(f"{name} must be positive, got {parsed}")
        return parsed

    def get_fetcher_config(self) -> FetcherConfig:
        """Get feed proxy configuration."""
        return FetcherConfig(proxy_base=self.proxy_base, timeout=self.fetch_timeout)

    def get_cache_config(self) -> CacheConfig:
        """Get cache configuration."""
        return CacheConfig(duration_seconds=self.cache_duration_seconds)

    def get_storage_config(self) -> StorageConfig:
        """Get persistence configuration."""
        return StorageConfig(
            backend=self.storage_backend,
            path=self.storage_path,
            dynamodb_table=self.dynamodb_table,
            region=self.aws_region,
        )

    def get_bedrock_config(self) -> BedrockConfig:
        """Get Bedrock configuration."""
        return BedrockConfig(
            model_id=self.bedrock_model_id,
            region=self.aws_region
        )
