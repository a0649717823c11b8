"""Key-value persistence backends for RSS Aggregator."""

import json
from abc import ABC, abstractmethod
from pathlib import Path

import boto3
from botocore.exceptions import ClientError

from .config import StorageConfig
from .logging_config import create_execution_logger


class KeyValueStore(ABC):
    """Durable string key-value store."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value or None when the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key; absent keys are ignored."""


class MemoryStore(KeyValueStore):
    """Process-local store, used for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore(KeyValueStore):
    """Store backed by a single JSON object on disk."""

    def __init__(self, path: str | Path, execution_id: str | None = None):
        self.path = Path(path)
        self.logger = create_execution_logger("storage", execution_id)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.warning(
                f"Store file {self.path} is not valid JSON, starting empty: {e}",
                error=str(e),
            )
            return {}
        if not isinstance(data, dict):
            self.logger.warning(f"Store file {self.path} is not a JSON object, starting empty")
            return {}
        return data

    def _save(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        tmp_path.replace(self.path)

    def get(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._save(data)


class DynamoDBStore(KeyValueStore):
    """Store backed by a DynamoDB table with a string hash key named 'key'."""

    def __init__(
        self,
        table_name: str,
        aws_region: str = "us-east-1",
        execution_id: str | None = None,
    ):
        """Initialize the store with DynamoDB configuration.

        Args:
            table_name: Name of the DynamoDB table
            aws_region: AWS region for DynamoDB client
            execution_id: Execution ID for logging context
        """
        self.table_name = table_name
        self.aws_region = aws_region
        self.logger = create_execution_logger("storage", execution_id)
        self.dynamodb = boto3.resource("dynamodb", region_name=aws_region)
        self.table = self.dynamodb.Table(table_name)

        self.logger.info(
            "DynamoDB store initialized", table_name=table_name, aws_region=aws_region
        )

    def get(self, key: str) -> str | None:
        try:
            response = self.table.get_item(Key={"key": key})
        except ClientError as e:
            self.logger.error(f"Error reading key {key}: {e}", error=str(e))
            raise
        item = response.get("Item")
        if item is None:
            return None
        value = item.get("value")
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        try:
            self.table.put_item(Item={"key": key, "value": value})
        except ClientError as e:
            self.logger.error(f"Error storing key {key}: {e}", error=str(e))
            raise

    def delete(self, key: str) -> None:
        try:
            self.table.delete_item(Key={"key": key})
        except ClientError as e:
            self.logger.error(f"Error deleting key {key}: {e}", error=str(e))
            raise


def build_store(config: StorageConfig, execution_id: str | None = None) -> KeyValueStore:
    """Create the backend selected by configuration."""
    if config.backend == "memory":
        return MemoryStore()
    if config.backend == "dynamodb":
        return DynamoDBStore(config.dynamodb_table, config.region, execution_id)
    return JsonFileStore(config.path, execution_id)
