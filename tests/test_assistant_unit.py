"""Unit tests for the Bedrock feed assistant."""

import asyncio
import io
import json
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError

from rss_aggregator.assistant import (
    DEFAULT_TAGS,
    FeedAssistant,
    parse_json_object,
    validate_insights,
    validate_suggestions,
    validate_tags,
)
from rss_aggregator.config import BedrockConfig
from rss_aggregator.errors import AiServiceError


def nova_body(text):
    payload = {"output": {"message": {"content": [{"text": text}]}}}
    return {"body": io.BytesIO(json.dumps(payload).encode("utf-8"))}


def llama_body(text):
    return {"body": io.BytesIO(json.dumps({"generation": text}).encode("utf-8"))}


def make_assistant(config=None, **invoke_kwargs):
    with patch("boto3.client") as mock_boto_client:
        mock_client = Mock()
        mock_client.invoke_model = Mock(**invoke_kwargs)
        mock_boto_client.return_value = mock_client
        assistant = FeedAssistant(config or BedrockConfig())
    return assistant, mock_client


class TestAssistantParsingUnit:
    """Unit tests for response decoding and validation."""

    def test_json_is_extracted_from_surrounding_text(self):
        raw = 'Sure! Here you go:\n```json\n{"tags": ["ai", "cloud"]}\n```'

        assert parse_json_object(raw) == {"tags": ["ai", "cloud"]}

    def test_unusable_responses(self):
        for raw in ("", "   ", "no json here", "{broken"):
            with pytest.raises(ValueError):
                parse_json_object(raw)

    def test_validate_tags_normalizes(self):
        tags = validate_tags({"tags": ["AI", "ai", "machine learning", 4, "Cloud", "a", "b", "c", "d"]})

        assert tags == ("ai", "cloud", "a", "b", "c")

    def test_validate_tags_rejects_empty(self):
        with pytest.raises(ValueError):
            validate_tags({"tags": ["two words"]})
        with pytest.raises(ValueError):
            validate_tags({"labels": ["x"]})

    def test_validate_insights(self):
        insights = validate_insights(
            {
                "summary": "  Markets rallied.  ",
                "trends": [
                    {"topic": "ai", "count": 2},
                    {"topic": "cloud", "count": "7"},
                    {"topic": "", "count": 3},
                    {"topic": "bad", "count": "many"},
                    {"topic": "flag", "count": True},
                    "junk",
                    {"topic": "a", "count": 1},
                    {"topic": "b", "count": 1},
                    {"topic": "c", "count": 1},
                    {"topic": "d", "count": 1},
                ],
            }
        )

        assert insights.summary == "Markets rallied."
        assert [t.topic for t in insights.trends] == ["cloud", "ai", "a", "b", "c"]
        assert insights.trends[0].count == 7

    def test_validate_insights_defaults_summary(self):
        insights = validate_insights({"trends": []})

        assert insights.summary == "No summary available."
        assert insights.trends == ()

    def test_validate_suggestions(self):
        suggestions = validate_suggestions(
            {
                "feeds": [
                    {"name": "Space News", "url": "https://space.example/rss"},
                    {"name": "No scheme", "url": "space.example/rss"},
                    {"url": "http://nameless.example/feed"},
                ]
            }
        )

        assert [(s.name, s.url) for s in suggestions] == [
            ("Space News", "https://space.example/rss"),
            ("http://nameless.example/feed", "http://nameless.example/feed"),
        ]


class TestFeedAssistantUnit:
    """Unit tests for FeedAssistant against a mocked Bedrock client."""

    def test_generate_tags_with_nova(self):
        assistant, client = make_assistant(return_value=nova_body('{"tags": ["space", "science"]}'))

        tags = asyncio.run(assistant.generate_tags("Space", "Rockets", []))

        assert tags == ("space", "science")
        request = json.loads(client.invoke_model.call_args.kwargs["body"])
        assert request["messages"][0]["content"][0]["text"].startswith("Based on this RSS feed")
        assert client.invoke_model.call_args.kwargs["modelId"] == "amazon.nova-micro-v1:0"

    def test_generate_tags_with_llama(self):
        config = BedrockConfig(model_id="meta.llama3-8b-instruct-v1:0")
        assistant, client = make_assistant(config, return_value=llama_body('{"tags": ["dev"]}'))

        tags = asyncio.run(assistant.generate_tags("Dev", "", []))

        assert tags == ("dev",)
        request = json.loads(client.invoke_model.call_args.kwargs["body"])
        assert request["prompt"].startswith("<|begin_of_text|>")
        assert request["max_gen_len"] == 1000

    def test_generate_tags_falls_back_on_client_error(self):
        error = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "InvokeModel"
        )
        assistant, _ = make_assistant(side_effect=error)

        assert asyncio.run(assistant.generate_tags("T", "D", [])) == DEFAULT_TAGS

    def test_generate_tags_falls_back_on_invalid_answer(self):
        assistant, _ = make_assistant(return_value=nova_body("I cannot help with that."))

        assert asyncio.run(assistant.generate_tags("T", "D", [])) == DEFAULT_TAGS

    def test_generate_insights(self):
        answer = '{"summary": "Quiet day.", "trends": [{"topic": "rust", "count": 3}]}'
        assistant, client = make_assistant(return_value=nova_body(answer))

        insights = asyncio.run(assistant.generate_insights(["Rust 2.0", "Rust in Linux"]))

        assert insights.summary == "Quiet day."
        assert insights.trends[0].topic == "rust"
        prompt = json.loads(client.invoke_model.call_args.kwargs["body"])["messages"][0]["content"][0]["text"]
        assert '- "Rust 2.0"' in prompt

    def test_generate_insights_raises_on_failure(self):
        error = ClientError({"Error": {"Code": "ThrottlingException"}}, "InvokeModel")
        assistant, _ = make_assistant(side_effect=error)

        with pytest.raises(AiServiceError, match="ThrottlingException"):
            asyncio.run(assistant.generate_insights(["x"]))

    def test_find_feeds_by_topic(self):
        answer = '{"feeds": [{"name": "Astro", "url": "https://astro.example/feed"}]}'
        assistant, _ = make_assistant(return_value=nova_body(answer))

        suggestions = asyncio.run(assistant.find_feeds_by_topic("astronomy"))

        assert suggestions[0].url == "https://astro.example/feed"

    def test_find_feeds_rejects_wrong_shape(self):
        assistant, _ = make_assistant(return_value=nova_body('{"feeds": "none"}'))

        with pytest.raises(AiServiceError):
            asyncio.run(assistant.find_feeds_by_topic("astronomy"))

    def test_empty_model_output(self):
        assistant, _ = make_assistant(return_value=nova_body("   "))

        with pytest.raises(AiServiceError):
            assistant.invoke("hello")

    def test_missing_client(self):
        assistant, _ = make_assistant()
        assistant.bedrock_client = None

        with pytest.raises(AiServiceError):
            asyncio.run(assistant.generate_insights(["x"]))
