"""Lambda handler exposing the aggregator operations."""

import asyncio
import json
import os
from dataclasses import asdict
from datetime import UTC, datetime
from typing import Any

import boto3

from .aggregator import AggregationEngine
from .assistant import FeedAssistant
from .cache import FeedCache
from .config import Config
from .errors import (
    AiServiceError,
    DuplicateFeedError,
    FeedError,
    ImportFormatError,
    UnknownFeedError,
)
from .fetcher import FeedFetcher
from .ingestion import FeedIngestionService
from .logging_config import create_execution_logger, setup_structured_logging
from .models import Filter, RefreshResult
from .parser import FeedParser
from .storage import build_store

setup_structured_logging(os.getenv("LOG_LEVEL", "INFO"))

BATCH_ACTIONS = ("refresh", "add_many", "import")
# Actions that read articles refresh the restored feeds from the cache first
READ_ACTIONS = ("articles", "insights")


class BadRequest(ValueError):
    """The event is missing a parameter or names an unknown action."""


def create_engine(config: Config, execution_id: str | None = None) -> AggregationEngine:
    """Wire the aggregation engine from configuration."""
    store = build_store(config.get_storage_config(), execution_id)
    cache = FeedCache(
        store,
        duration_seconds=config.get_cache_config().duration_seconds,
        execution_id=execution_id,
    )
    fetcher = FeedFetcher(config.get_fetcher_config(), execution_id=execution_id)
    ingestion = FeedIngestionService(cache, fetcher, FeedParser(execution_id), execution_id)
    assistant = FeedAssistant(config.get_bedrock_config(), execution_id=execution_id)
    return AggregationEngine(ingestion, store, assistant, execution_id=execution_id)


def _require(event: dict[str, Any], name: str) -> Any:
    value = event.get(name)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise BadRequest(f"Missing required parameter '{name}'")
    return value


def _filter_from_event(event: dict[str, Any]) -> Filter:
    tags = event.get("tags") or []
    if not isinstance(tags, list):
        raise BadRequest("'tags' must be a list")
    return Filter(
        search_term=str(event.get("search_term") or ""),
        tags=frozenset(str(tag) for tag in tags),
    )


def _result_body(result: RefreshResult, engine: AggregationEngine) -> dict[str, Any]:
    return {
        "feeds": [
            {**feed.subscription(), "article_count": len(feed.articles)}
            for feed in result.feeds
        ],
        "articles": [article.to_dict() for article in result.articles],
        "errors": [asdict(error) for error in result.errors],
        "statuses": {
            url: asdict(status) for url, status in engine.statuses().items()
        },
    }


async def _dispatch(
    engine: AggregationEngine, action: str, event: dict[str, Any]
) -> tuple[dict[str, Any], RefreshResult | None]:
    """Run one action and return the response body and any batch result."""
    if action == "discover":
        suggestions = await engine.discover_feeds(_require(event, "topic"))
        return {"feeds": [asdict(s) for s in suggestions]}, None

    if action in READ_ACTIONS:
        loaded = await engine.load()
    else:
        engine.restore()
        loaded = engine.snapshot()

    if action == "refresh":
        force = bool(event.get("force", True))
        url = event.get("url")
        if url:
            result = await engine.refresh_feed(url, force_refresh=force)
        else:
            result = await engine.refresh_all(force_refresh=force)
        return _result_body(result, engine), result

    if action == "add":
        result = await engine.add_feed(_require(event, "url"))
        return _result_body(result, engine), None

    if action == "add_many":
        urls = _require(event, "urls")
        if not isinstance(urls, list):
            raise BadRequest("'urls' must be a list")
        result = await engine.add_feeds(str(u) for u in urls)
        return _result_body(result, engine), result

    if action == "remove":
        result = engine.remove_feed(_require(event, "url"))
        return _result_body(result, engine), None

    if action == "update":
        changes = {k: event[k] for k in ("category", "color") if k in event}
        feed = engine.update_feed_details(_require(event, "url"), **changes)
        return {"feed": feed.subscription()}, None

    if action == "import":
        result = await engine.import_feeds(_require(event, "content"))
        return _result_body(result, engine), result

    if action == "export":
        return {"content": engine.export_feeds()}, None

    if action == "articles":
        articles = engine.articles(_filter_from_event(event))
        return {
            "articles": [a.to_dict() for a in articles],
            "errors": [asdict(error) for error in loaded.errors],
        }, None

    if action == "tags":
        return {"tags": engine.all_tags()}, None

    if action == "insights":
        insights = await engine.insights(_filter_from_event(event))
        return {"insights": asdict(insights) if insights else None}, None

    raise BadRequest(f"Unknown action '{action}'")


async def _run(config: Config, action: str, event: dict[str, Any], execution_id: str):
    engine = create_engine(config, execution_id)
    try:
        return await _dispatch(engine, action, event)
    finally:
        await engine.aclose()


def _response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body, default=str)}


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """
    Main Lambda handler dispatching an aggregator action.

    Args:
        event: Lambda event data with an 'action' key and its parameters
        context: Lambda context object

    Returns:
        Response dictionary with status code and JSON body
    """
    execution_id = f"lambda_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"
    main_logger = create_execution_logger("main", execution_id)

    action = (event or {}).get("action", "articles")
    main_logger.info(
        f"Handling action {action}",
        lambda_request_id=getattr(context, "aws_request_id", "unknown"),
    )

    try:
        config = Config()
        body, result = asyncio.run(_run(config, action, event or {}, execution_id))
    except (BadRequest, ImportFormatError, ValueError) as e:
        main_logger.warning(f"Bad request: {e}", error=str(e))
        return _response(400, {"error": str(e), "execution_id": execution_id})
    except UnknownFeedError as e:
        main_logger.warning(str(e), feed_url=e.url)
        return _response(404, {"error": str(e), "execution_id": execution_id})
    except DuplicateFeedError as e:
        return _response(409, {"error": str(e), "execution_id": execution_id})
    except (FeedError, AiServiceError) as e:
        main_logger.error(f"Upstream failure: {e}", error=str(e))
        return _response(502, {"error": str(e), "execution_id": execution_id})
    except Exception as e:
        error_msg = f"Critical error in Lambda handler: {str(e)}"
        main_logger.error(error_msg, error=str(e))
        return _response(500, {"error": error_msg, "execution_id": execution_id})

    if result is not None and action in BATCH_ACTIONS:
        metrics = {
            "feeds_tracked": len(result.feeds),
            "feeds_failed": len(result.errors),
            "articles_merged": len(result.articles),
        }
        main_logger.log_metrics(metrics)
        send_cloudwatch_metrics(metrics, config.aws_region, execution_id)

    body["execution_id"] = execution_id
    return _response(200, body)


def send_cloudwatch_metrics(
    metrics: dict[str, Any], aws_region: str, execution_id: str
) -> None:
    """
    Send refresh metrics to CloudWatch.

    Args:
        metrics: Dictionary with feeds_tracked, feeds_failed and articles_merged
        aws_region: AWS region for CloudWatch client
        execution_id: Execution ID for logging context
    """
    metrics_logger = create_execution_logger("cloudwatch_metrics", execution_id)

    try:
        metrics_logger.info("Sending metrics to CloudWatch", metrics=metrics)
        cloudwatch = boto3.client("cloudwatch", region_name=aws_region)

        execution_success = metrics["feeds_failed"] == 0
        dimensions = [{"Name": "ExecutionId", "Value": execution_id}]
        metric_data = [
            {
                "MetricName": "FeedsTracked",
                "Value": metrics["feeds_tracked"],
                "Unit": "Count",
                "Dimensions": dimensions,
            },
            {
                "MetricName": "FeedsFailed",
                "Value": metrics["feeds_failed"],
                "Unit": "Count",
                "Dimensions": dimensions,
            },
            {
                "MetricName": "ArticlesMerged",
                "Value": metrics["articles_merged"],
                "Unit": "Count",
                "Dimensions": dimensions,
            },
            {
                "MetricName": "ExecutionSuccess",
                "Value": 1 if execution_success else 0,
                "Unit": "Count",
                "Dimensions": [
                    {
                        "Name": "Status",
                        "Value": "Success" if execution_success else "Failure",
                    }
                ],
            },
        ]

        cloudwatch.put_metric_data(Namespace="RSS-Aggregator", MetricData=metric_data)
        metrics_logger.info(
            "Successfully sent metrics to CloudWatch",
            metrics_sent=len(metric_data),
            namespace="RSS-Aggregator",
        )

    except Exception as e:
        metrics_logger.error(f"Failed to send CloudWatch metrics: {e}", error=str(e))
        # Metrics failures never break the response
