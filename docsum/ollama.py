"""Local summarizer backend talking to an Ollama server over HTTP.

Two modes:

* ``summarize(text, ...)``: fast, text-only; the pipeline extracts text first.
* ``summarize_file(path, ...)``: vision; the image (or the first page of a
  PDF) is downscaled, re-encoded as JPEG and sent base64-encoded with the
  prompt.

Every request is preceded by a short connectivity check so that a server
that is not running surfaces as ``BackendUnreachableError`` rather than a
generic timeout.
"""

import base64
import io
import logging
import time
import urllib.parse
from pathlib import Path

import requests
from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError

from docsum.extractor import render_pdf_page
from docsum.models import (
    IMAGE_EXTENSIONS,
    BackendUnreachableError,
    DecodeError,
    EndpointMisconfiguredError,
    LoadError,
    OllamaChatResponse,
    ResponseParseError,
    TransportError,
    UnsupportedTypeError,
    file_extension,
)
from docsum.prompts import build_text_prompt, build_vision_prompt, truncate_text
from docsum.response import parse_summary_and_keywords

logger = logging.getLogger(__name__)

#: Longest edge of images sent to a vision model.
MAX_IMAGE_EDGE = 1024
JPEG_QUALITY = 80
#: Render scale for the first PDF page before it is capped to MAX_IMAGE_EDGE.
PDF_PREVIEW_SCALE = 1.5


class OllamaSummarizer:
    """Summarizer backed by a local Ollama ``/api/chat`` endpoint.

    Attributes:
        url:                  Chat endpoint, e.g. ``http://localhost:11434/api/chat``.
        supports_direct_file: Always ``True``; vision mode takes files.
    """

    supports_direct_file = True

    def __init__(
        self,
        url: str = "http://localhost:11434/api/chat",
        max_chars: int = 8_000,
        connect_timeout_s: float = 10.0,
        text_timeout_s: float = 60.0,
        vision_timeout_s: float = 120.0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url
        self.max_chars = max_chars
        self.connect_timeout_s = connect_timeout_s
        self.text_timeout_s = text_timeout_s
        self.vision_timeout_s = vision_timeout_s
        self._session = session or requests.Session()

    def summarize(self, text: str, model: str, prompt: str = "") -> tuple[str, list[str]]:
        """Summarize already extracted *text*.

        Raises:
            EndpointMisconfiguredError: the endpoint URL is unusable.
            BackendUnreachableError:    the server does not answer at all.
            TransportError:             the chat request failed.
            DecodeError:                the reply is not a chat response.
            ResponseParseError:         no summary/keywords could be derived.
        """
        url = self._endpoint()
        self.check_connection()
        message = {
            "role": "user",
            "content": build_text_prompt(prompt, truncate_text(text, self.max_chars)),
        }
        return self._chat(url, model, message, self.text_timeout_s)

    def summarize_file(self, path: Path, model: str, prompt: str = "") -> tuple[str, list[str]]:
        """Send an image, or the first page of a PDF, to a vision model.

        Raises the same errors as ``summarize`` plus ``UnsupportedTypeError``
        and ``LoadError`` when the file cannot be turned into an image.
        """
        url = self._endpoint()
        self.check_connection()
        message = {
            "role": "user",
            "content": build_vision_prompt(prompt),
            "images": [encode_image(path)],
        }
        return self._chat(url, model, message, self.vision_timeout_s)

    def check_connection(self) -> None:
        """Check that the server answers at all.

        Raises:
            BackendUnreachableError: on connection errors or timeouts.
        """
        root = server_root(self._endpoint())
        try:
            response = self._session.get(root, timeout=self.connect_timeout_s)
        except requests.exceptions.RequestException as e:
            logger.debug("Ollama connection check failed for %s: %s", root, e)
            raise BackendUnreachableError(root, e) from e
        if response.status_code != 200:
            logger.warning("Ollama at %s answered the connection check with HTTP %d", root, response.status_code)
        else:
            logger.debug("Ollama is running at %s", root)

    def _endpoint(self) -> str:
        parsed = urllib.parse.urlparse(self.url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise EndpointMisconfiguredError(f"Ollama API URL is not set or invalid: {self.url!r}")
        return self.url

    def _chat(self, url: str, model: str, message: dict, timeout: float) -> tuple[str, list[str]]:
        payload = {"model": model, "messages": [message], "stream": False}
        logger.info("Calling Ollama  model=%s  images=%d", model, len(message.get("images", [])))
        t0 = time.monotonic()
        try:
            response = self._session.post(url, json=payload, timeout=timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Ollama API request failed: {e}") from e
        logger.info("Response received (%.1fs)", time.monotonic() - t0)

        try:
            chat = OllamaChatResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DecodeError(f"Failed to decode Ollama response: {e}") from e

        summary, keywords = parse_summary_and_keywords(chat.message.content)
        if summary is None or not keywords:
            raise ResponseParseError(
                "Failed to parse summary and keywords from the Ollama response."
            )
        return summary, keywords


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def server_root(url: str) -> str:
    """Return ``scheme://host:port`` of an endpoint URL."""
    parsed = urllib.parse.urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def check_backend(url: str, timeout: float = 5.0) -> bool:
    """Return True if the server behind *url* lists its models (``/api/tags``)."""
    tags_url = f"{server_root(url)}/api/tags"
    try:
        response = requests.get(tags_url, timeout=timeout)
    except requests.exceptions.RequestException as e:
        logger.debug("Ollama status check failed for %s: %s", tags_url, e)
        return False
    return response.status_code == 200


def encode_image(path: Path) -> str:
    """Return *path* as a base64 JPEG no larger than ``MAX_IMAGE_EDGE``.

    Images keep their aspect ratio and are never upscaled.  For PDFs only
    the first page is rendered.
    """
    ext = file_extension(path)
    if ext == "pdf":
        image = render_pdf_page(path, 0, scale=PDF_PREVIEW_SCALE)
    elif ext in IMAGE_EXTENSIONS:
        try:
            with Image.open(path) as img:
                img.load()
                image = img.convert("RGB")
        except (OSError, UnidentifiedImageError) as e:
            raise LoadError(f"Failed to process image for vision model: {e}") from e
    else:
        raise UnsupportedTypeError("File type not supported for direct processing.")

    original = image.size
    image.thumbnail((MAX_IMAGE_EDGE, MAX_IMAGE_EDGE), Image.Resampling.LANCZOS)
    out = io.BytesIO()
    image.save(out, format="JPEG", quality=JPEG_QUALITY)
    data = out.getvalue()
    logger.debug(
        "Prepared %s for vision model: %sx%s -> %sx%s (%s KB)",
        path.name,
        original[0],
        original[1],
        image.size[0],
        image.size[1],
        max(1, len(data) // 1024),
    )
    return base64.b64encode(data).decode("ascii")
