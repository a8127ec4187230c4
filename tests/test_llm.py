"""Tests for docsum/llm.py: OpenAI backend wrapper and backend selection."""

import os
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest

from docsum.llm import OpenAISummarizer, _extract_status_code, create_summarizer
from docsum.models import (
    AuthMissingError,
    Config,
    NoContentError,
    ResponseParseError,
    Settings,
    SummarizerError,
    TransportError,
)
from docsum.ollama import OllamaSummarizer


def _completion(content):
    return MagicMock(choices=[MagicMock(message=MagicMock(content=content))])


def _status_error(cls, status, message):
    """An SDK status error as raised for an HTTP reply with *status*."""
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls(message, response=response, body=None)


@pytest.fixture
def mock_openai():
    """Patch the SDK client class; yields the ``chat.completions.create`` mock."""
    with patch("docsum.llm._openai.OpenAI") as openai_cls:
        create = openai_cls.return_value.chat.completions.create
        create.return_value = _completion('{"summary": "S", "keywords": ["a", "b"]}')
        create.openai_cls = openai_cls
        yield create


# ---------------------------------------------------------------------------
# create_summarizer
# ---------------------------------------------------------------------------


def test_create_summarizer_selects_openai_backend():
    settings = Settings(backend="openai", openai_api_key="sk-test")
    summarizer = create_summarizer(settings, Config(max_chars=1234, max_output_tokens=99))
    assert isinstance(summarizer, OpenAISummarizer)
    assert summarizer.supports_direct_file is False
    assert summarizer.max_chars == 1234
    assert summarizer.max_output_tokens == 99


def test_create_summarizer_selects_ollama_backend():
    settings = Settings(backend="ollama", ollama_url="http://gpu-box:11434/api/chat")
    summarizer = create_summarizer(settings, Config(vision_timeout_s=7))
    assert isinstance(summarizer, OllamaSummarizer)
    assert summarizer.supports_direct_file is True
    assert summarizer.url == "http://gpu-box:11434/api/chat"
    assert summarizer.vision_timeout_s == 7


# ---------------------------------------------------------------------------
# OpenAISummarizer.summarize
# ---------------------------------------------------------------------------


def test_summarize_returns_parsed_result(mock_openai):
    summarizer = OpenAISummarizer(api_key="sk-test")
    assert summarizer.summarize("Some text", "gpt-4-turbo") == ("S", ["a", "b"])


def test_summarize_requests_json_mode_and_max_tokens(mock_openai):
    OpenAISummarizer(api_key="sk-test", max_output_tokens=321).summarize("Some text", "gpt-4o")
    kwargs = mock_openai.call_args[1]
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["max_tokens"] == 321
    assert kwargs["response_format"] == {"type": "json_object"}
    content = kwargs["messages"][0]["content"]
    assert content.endswith("Text to process:\nSome text")


def test_summarize_truncates_long_text(mock_openai):
    text = "A" * 50 + "B" * 10_000 + "C" * 50
    OpenAISummarizer(api_key="sk-test", max_chars=100).summarize(text, "gpt-4-turbo")
    content = mock_openai.call_args[1]["messages"][0]["content"]
    body = content.split("Text to process:\n", 1)[1]
    assert body == "A" * 50 + "..." + "C" * 50


def test_summarize_uses_env_api_key(mock_openai):
    with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-env"}):
        OpenAISummarizer().summarize("text", "gpt-4-turbo")
    assert mock_openai.openai_cls.call_args[1]["api_key"] == "sk-env"


def test_summarize_without_api_key_raises_auth_missing(mock_openai):
    with patch.dict(os.environ, {}, clear=True):
        with pytest.raises(AuthMissingError):
            OpenAISummarizer(api_key="  ").summarize("text", "gpt-4-turbo")
    mock_openai.assert_not_called()


def test_summarize_reuses_client(mock_openai):
    summarizer = OpenAISummarizer(api_key="sk-test")
    summarizer.summarize("one", "m")
    summarizer.summarize("two", "m")
    assert mock_openai.openai_cls.call_count == 1


@pytest.mark.parametrize("content", [None, "", "   "])
def test_summarize_empty_content_raises_no_content(mock_openai, content):
    mock_openai.return_value = _completion(content)
    with pytest.raises(NoContentError):
        OpenAISummarizer(api_key="sk-test").summarize("text", "m")


def test_summarize_no_choices_raises_no_content(mock_openai):
    mock_openai.return_value = MagicMock(choices=[])
    with pytest.raises(NoContentError):
        OpenAISummarizer(api_key="sk-test").summarize("text", "m")


def test_summarize_plain_text_reply_still_parses(mock_openai):
    mock_openai.return_value = _completion("The contract renews automatically every year.")
    summary, keywords = OpenAISummarizer(api_key="sk-test").summarize("text", "m")
    assert summary == "The contract renews automatically every year."
    assert "contract" in keywords


def test_summarize_unparseable_reply_raises_parse_error(mock_openai):
    with patch("docsum.llm.parse_summary_and_keywords", return_value=(None, [])):
        with pytest.raises(ResponseParseError):
            OpenAISummarizer(api_key="sk-test").summarize("text", "m")


def test_summarize_file_is_not_supported():
    with pytest.raises(SummarizerError, match="Direct file processing not supported"):
        OpenAISummarizer(api_key="sk-test").summarize_file("x.pdf", "m")


# ---------------------------------------------------------------------------
# Error mapping and retries
# ---------------------------------------------------------------------------


def test_transient_error_is_retried(mock_openai):
    mock_openai.side_effect = [
        _status_error(openai.InternalServerError, 503, "Error code: 503 - service unavailable"),
        _completion('{"summary": "S", "keywords": ["k"]}'),
    ]
    with patch("docsum.llm.time.sleep") as mock_sleep:
        result = OpenAISummarizer(api_key="sk-test").summarize("text", "m")
    assert result == ("S", ["k"])
    mock_sleep.assert_called_once_with(1.0)


def test_transient_error_gives_up_after_retries(mock_openai):
    mock_openai.side_effect = _status_error(openai.RateLimitError, 429, "Error code: 429 - rate limited")
    with patch("docsum.llm.time.sleep") as mock_sleep, pytest.raises(TransportError):
        OpenAISummarizer(api_key="sk-test").summarize("text", "m")
    assert mock_openai.call_count == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]


def test_client_error_is_not_retried(mock_openai):
    mock_openai.side_effect = _status_error(
        openai.AuthenticationError, 401, "Error code: 401 - invalid api key"
    )
    with patch("docsum.llm.time.sleep") as mock_sleep, pytest.raises(TransportError, match="401"):
        OpenAISummarizer(api_key="sk-test").summarize("text", "m")
    mock_sleep.assert_not_called()


def test_json_mode_rejection_gets_a_helpful_message(mock_openai):
    mock_openai.side_effect = _status_error(
        openai.BadRequestError,
        400,
        "Error code: 400 - 'response_format' of type 'json_object' is not valid with this model",
    )
    with pytest.raises(TransportError, match="does not support JSON mode"):
        OpenAISummarizer(api_key="sk-test").summarize("text", "m")


def test_connection_error_is_not_retried(mock_openai):
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    mock_openai.side_effect = openai.APIConnectionError(request=request)
    with patch("docsum.llm.time.sleep") as mock_sleep, pytest.raises(TransportError):
        OpenAISummarizer(api_key="sk-test").summarize("text", "m")
    mock_sleep.assert_not_called()


@pytest.mark.parametrize(
    "exc, expected",
    [
        (_status_error(openai.InternalServerError, 502, "bad gateway"), 502),
        (_status_error(openai.RateLimitError, 429, "slow down"), 429),
        (_status_error(openai.APIStatusError, 418, "teapot"), 418),
        # Look-alikes with a code in the message or an attribute don't count.
        (Exception("Error code: 502"), None),
        (MagicMock(status_code=500), None),
        (Exception("connection reset"), None),
    ],
)
def test_extract_status_code(exc, expected):
    assert _extract_status_code(exc) == expected
