"""Feed tagging, dashboard insights and feed discovery using Amazon Bedrock."""

import asyncio
import json
import re
import time
from typing import Any

import boto3
from botocore.exceptions import ClientError, NoCredentialsError

from .config import BedrockConfig
from .errors import AiServiceError
from .logging_config import create_execution_logger
from .models import Article, DashboardInsights, FeedSuggestion, Trend

DEFAULT_TAGS = ("general", "news")
MAX_TAGS = 5
MAX_TRENDS = 5

TAGS_PROMPT = """Based on this RSS feed information:
- Title: "{title}"
- Description: "{description}"
- Recent article titles: "{titles}"

Generate 3 to 5 relevant, one-word, lowercase tags that categorize this feed.
Answer ONLY with a JSON object of the form {{"tags": ["tag1", "tag2", "tag3"]}}."""

INSIGHTS_PROMPT = """Analyze these recent news headlines:
{headlines}

1. Provide a concise, engaging summary (3-4 sentences) of the most important news stories.
2. Identify the top 5 most frequently mentioned topics or keywords. Count their occurrences.

Answer ONLY with a JSON object of the form
{{"summary": "...", "trends": [{{"topic": "...", "count": 3}}]}}."""

DISCOVERY_PROMPT = """Suggest up to 5 popular, currently active RSS or Atom feeds about "{topic}".
Only include feeds whose URL points directly at the XML feed.
Answer ONLY with a JSON object of the form
{{"feeds": [{{"name": "...", "url": "https://..."}}]}}."""


def parse_json_object(raw: str) -> dict[str, Any]:
    """Extract the first JSON object from a model response.

    Raises:
        ValueError: If no JSON object can be decoded
    """
    if not raw or not raw.strip():
        raise ValueError("Empty AI response")

    match = re.search(r"\{[\s\S]*\}", raw)
    if not match:
        raise ValueError("No JSON object found in AI response")

    obj = json.loads(match.group(0))
    if not isinstance(obj, dict):
        raise ValueError("AI response is not a JSON object")
    return obj


def validate_tags(obj: dict[str, Any]) -> tuple[str, ...]:
    tags_val = obj.get("tags")
    if not isinstance(tags_val, list):
        raise ValueError("'tags' must be a list")
    tags: list[str] = []
    for tag in tags_val:
        if not isinstance(tag, str):
            continue
        tag = tag.strip().lower()
        if tag and " " not in tag and tag not in tags:
            tags.append(tag)
    if not tags:
        raise ValueError("No usable tags in AI response")
    return tuple(tags[:MAX_TAGS])


def validate_insights(obj: dict[str, Any]) -> DashboardInsights:
    summary = obj.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = "No summary available."

    trends = []
    for trend in obj.get("trends") or []:
        if not isinstance(trend, dict):
            continue
        topic = trend.get("topic")
        count = trend.get("count")
        if not isinstance(topic, str) or not topic.strip():
            continue
        if isinstance(count, bool):
            continue
        try:
            count = int(count)
        except (TypeError, ValueError):
            continue
        trends.append(Trend(topic=topic.strip(), count=count))

    trends.sort(key=lambda t: t.count, reverse=True)
    return DashboardInsights(summary=summary.strip(), trends=tuple(trends[:MAX_TRENDS]))


def validate_suggestions(obj: dict[str, Any]) -> tuple[FeedSuggestion, ...]:
    feeds_val = obj.get("feeds")
    if not isinstance(feeds_val, list):
        raise ValueError("'feeds' must be a list")
    suggestions = []
    for feed in feeds_val:
        if not isinstance(feed, dict):
            continue
        url = feed.get("url")
        if not isinstance(url, str) or not url.startswith(("http://", "https://")):
            continue
        name = feed.get("name")
        if not isinstance(name, str) or not name.strip():
            name = url
        suggestions.append(FeedSuggestion(name=name.strip(), url=url.strip()))
    return tuple(suggestions)


class FeedAssistant:
    """Generative AI collaborator backed by Amazon Bedrock."""

    def __init__(self, config: BedrockConfig, execution_id: str | None = None):
        """Initialize the assistant with Bedrock configuration."""
        self.config = config
        self.logger = create_execution_logger("assistant", execution_id)
        self.bedrock_client = None
        self._initialize_bedrock_client()

    def _initialize_bedrock_client(self) -> None:
        """Initialize Bedrock client with error handling."""
        try:
            self.bedrock_client = boto3.client(
                "bedrock-runtime", region_name=self.config.region
            )
            self.logger.info("Initialized Bedrock client", region=self.config.region)
        except (NoCredentialsError, ClientError) as e:
            self.logger.warning(
                f"Failed to initialize Bedrock client: {e}", error=str(e)
            )
            self.bedrock_client = None

    @property
    def is_llama(self) -> bool:
        return "llama" in self.config.model_id.lower()

    def _build_request(self, prompt: str) -> dict[str, Any]:
        # Llama: legacy prompt format; Nova/Mistral: Invoke API messages format
        if self.is_llama:
            return {
                "prompt": (
                    "<|begin_of_text|><|start_header_id|>user<|end_header_id|>\n\n"
                    f"{prompt}<|eot_id|><|start_header_id|>assistant<|end_header_id|>\n\n"
                ),
                "max_gen_len": self.config.max_tokens,
                "temperature": 0.3,
                "top_p": 0.9,
            }
        return {
            "messages": [{"role": "user", "content": [{"text": prompt}]}],
            "inferenceConfig": {
                "maxTokens": self.config.max_tokens,
                "temperature": 0.3,
            },
        }

    def _extract_text(self, response_body: dict[str, Any]) -> str | None:
        if self.is_llama:
            return response_body.get("generation")
        message = response_body.get("output", {}).get("message", {})
        content = message.get("content") or []
        if content:
            return content[0].get("text")
        return None

    def invoke(self, prompt: str) -> str:
        """Send a prompt to the configured model and return its text.

        Raises:
            AiServiceError: If the client is unavailable, the call fails or
                the response carries no text
        """
        if not self.bedrock_client:
            raise AiServiceError("Bedrock client not available")

        try:
            start_time = time.time()
            response = self.bedrock_client.invoke_model(
                modelId=self.config.model_id,
                body=json.dumps(self._build_request(prompt)),
                contentType="application/json",
                accept="application/json",
            )
            response_time_ms = int((time.time() - start_time) * 1000)
            response_body = json.loads(response["body"].read())
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            self.logger.error(f"Bedrock client error: {error_code}", error=str(e))
            raise AiServiceError(f"Bedrock call failed: {error_code or e}") from e
        except (ValueError, KeyError) as e:
            self.logger.error(f"Invalid Bedrock response: {e}", error=str(e))
            raise AiServiceError(f"Invalid Bedrock response: {e}") from e

        text = self._extract_text(response_body)
        if not text or not text.strip():
            raise AiServiceError(f"Empty response from model {self.config.model_id}")

        self.logger.info(
            "Bedrock response received",
            model_id=self.config.model_id,
            response_time_ms=response_time_ms,
        )
        return text.strip()

    async def _ask(self, prompt: str) -> dict[str, Any]:
        # boto3 is blocking; keep the event loop free for feed fetches
        text = await asyncio.to_thread(self.invoke, prompt)
        try:
            return parse_json_object(text)
        except ValueError as e:
            raise AiServiceError(f"Could not decode AI response: {e}") from e

    async def generate_tags(
        self,
        title: str,
        description: str,
        sample_articles: list[Article] | tuple[Article, ...],
    ) -> tuple[str, ...]:
        """Generate 3-5 lowercase tags for a feed; falls back to DEFAULT_TAGS."""
        prompt = TAGS_PROMPT.format(
            title=title,
            description=description,
            titles=", ".join(article.title for article in sample_articles),
        )
        try:
            tags = validate_tags(await self._ask(prompt))
        except (AiServiceError, ValueError) as e:
            self.logger.warning(f"Tag generation failed, using defaults: {e}", error=str(e))
            return DEFAULT_TAGS
        self.logger.info(f"Generated {len(tags)} tags for {title}")
        return tags

    async def generate_insights(self, titles: list[str]) -> DashboardInsights:
        """Summarize headlines and rank trending topics.

        Raises:
            AiServiceError: If the model cannot be reached or answers nonsense
        """
        headlines = "\n".join(f'- "{title}"' for title in titles)
        obj = await self._ask(INSIGHTS_PROMPT.format(headlines=headlines))
        return validate_insights(obj)

    async def find_feeds_by_topic(self, topic: str) -> tuple[FeedSuggestion, ...]:
        """Suggest feeds about a topic.

        Raises:
            AiServiceError: If the model cannot be reached or answers nonsense
        """
        obj = await self._ask(DISCOVERY_PROMPT.format(topic=topic))
        try:
            return validate_suggestions(obj)
        except ValueError as e:
            raise AiServiceError(f"Invalid feed suggestions: {e}") from e
