"""Remote summarizer backend and backend selection; wraps the openai SDK.

``OpenAISummarizer.summarize(text, model, prompt)`` sends extracted text to
an OpenAI chat model in JSON mode and returns ``(summary, keywords)``.  It
cannot take files directly; the pipeline runs the extractor first.

``create_summarizer`` picks the remote or local backend from ``Settings``
once, at pipeline construction.
"""

import logging
import os
import time

import openai as _openai

from docsum.models import (
    AuthMissingError,
    Config,
    DecodeError,
    NoContentError,
    ResponseParseError,
    Settings,
    SummarizerError,
    TransportError,
)
from docsum.ollama import OllamaSummarizer
from docsum.prompts import build_openai_prompt, truncate_text
from docsum.response import parse_summary_and_keywords

logger = logging.getLogger(__name__)

_MAX_TRANSIENT_RETRIES = 2

_JSON_MODE_HINT = (
    "The selected model does not support JSON mode. Please select a "
    "compatible model like gpt-4-turbo or gpt-3.5-turbo-0125."
)


class OpenAISummarizer:
    """Summarizer backed by the OpenAI chat completions API.

    Attributes:
        supports_direct_file: Always ``False``; callers must extract text.
        max_chars:            Truncation budget for the document text.
        max_output_tokens:    ``max_tokens`` sent with every request.
    """

    supports_direct_file = False

    def __init__(
        self,
        api_key: str | None = None,
        max_chars: int = 8_000,
        max_output_tokens: int = 1500,
        base_url: str | None = None,
    ) -> None:
        self.api_key = api_key
        self.max_chars = max_chars
        self.max_output_tokens = max_output_tokens
        self.base_url = base_url
        self._client = None

    def summarize(self, text: str, model: str, prompt: str = "") -> tuple[str, list[str]]:
        """Summarize *text* with *model* and return ``(summary, keywords)``.

        Raises:
            AuthMissingError:   no API key configured.
            TransportError:     network failure or API error status.
            DecodeError:        the response body could not be decoded.
            NoContentError:     the response carried no message content.
            ResponseParseError: no summary could be derived from the content.
        """
        client = self._get_client()
        final_prompt = build_openai_prompt(prompt, truncate_text(text, self.max_chars))
        logger.info("Calling OpenAI  model=%s  prompt=%s chars", model, f"{len(final_prompt):,}")

        t0 = time.monotonic()
        response = _complete_with_retries(
            lambda: client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": final_prompt}],
                max_tokens=self.max_output_tokens,
                response_format={"type": "json_object"},
            )
        )
        logger.info("Response received (%.1fs)", time.monotonic() - t0)

        content = _message_content(response)
        summary, keywords = parse_summary_and_keywords(content)
        if summary is None:
            logger.debug("Unparseable OpenAI content: %r", content[:200])
            raise ResponseParseError(
                "Failed to parse summary and keywords from the response."
            )
        return summary, keywords

    def summarize_file(self, path, model: str, prompt: str = "") -> tuple[str, list[str]]:
        raise SummarizerError(
            "Direct file processing not supported. Use text-based processing instead."
        )

    def _get_client(self):
        api_key = (self.api_key or os.environ.get("OPENAI_API_KEY") or "").strip()
        if not api_key:
            raise AuthMissingError("OpenAI API Key is not set.")
        if self._client is None:
            self._client = _openai.OpenAI(api_key=api_key, base_url=self.base_url)
        return self._client


# ---------------------------------------------------------------------------
# Backend selection
# ---------------------------------------------------------------------------


def create_summarizer(settings: Settings, config: Config):
    """Return the summarizer for ``settings.backend``.

    Both implementations expose ``supports_direct_file``, ``summarize`` and
    ``summarize_file``.
    """
    if settings.backend == "openai":
        return OpenAISummarizer(
            api_key=settings.openai_api_key or None,
            max_chars=config.max_chars,
            max_output_tokens=config.max_output_tokens,
        )
    return OllamaSummarizer(
        url=settings.ollama_url,
        max_chars=config.max_chars,
        connect_timeout_s=config.connect_timeout_s,
        text_timeout_s=config.text_timeout_s,
        vision_timeout_s=config.vision_timeout_s,
    )


# ---------------------------------------------------------------------------
# Response handling
# ---------------------------------------------------------------------------


def _message_content(response) -> str:
    choices = getattr(response, "choices", None)
    if not choices:
        raise NoContentError("Could not find content in the API response.")
    content = choices[0].message.content
    if not content or not content.strip():
        raise NoContentError("Could not find content in the API response.")
    return content


def _complete_with_retries(call):
    """Run one completion with retry/backoff on transient 429/5xx errors."""
    attempts = _MAX_TRANSIENT_RETRIES + 1
    for attempt in range(1, attempts + 1):
        try:
            return call()
        except Exception as exc:
            if attempt >= attempts or not _is_retryable_status_error(exc):
                raise _map_error(exc) from exc

            delay_s = _retry_delay_seconds(attempt)
            logger.warning(
                "Transient OpenAI error on attempt %d/%d (%s); retrying in %.1fs",
                attempt,
                attempts,
                exc,
                delay_s,
            )
            time.sleep(delay_s)

    raise TransportError("API request failed after retries")


def _map_error(exc: Exception) -> SummarizerError:
    """Translate an SDK exception into the docsum error taxonomy."""
    if isinstance(exc, SummarizerError):
        return exc
    if isinstance(exc, _openai.APIResponseValidationError):
        return DecodeError(f"Failed to decode response: {exc}")
    message = str(exc)
    if "response_format" in message and "not valid" in message:
        return TransportError(_JSON_MODE_HINT)
    if isinstance(exc, ValueError):
        return DecodeError(f"Failed to decode response: {exc}")
    return TransportError(f"API request failed: {exc}")


def _retry_delay_seconds(attempt: int) -> float:
    """Exponential backoff delay: 1.0s, 2.0s, ..."""
    return float(2 ** (attempt - 1))


def _is_retryable_status_error(exc: Exception) -> bool:
    """Return True for transient API errors that should be retried."""
    status_code = _extract_status_code(exc)
    if status_code == 429:
        return True
    if status_code is not None and 500 <= status_code <= 599:
        return True
    return False


def _extract_status_code(exc: Exception) -> int | None:
    """HTTP status of an SDK status error; ``None`` for anything else."""
    if isinstance(exc, _openai.APIStatusError):
        return exc.status_code
    return None
