"""Pydantic models, dataclass Config, and exceptions for the docsum pipeline.

``Document`` and ``Settings`` are persisted by ``store.py``; the wire models
at the bottom validate replies from the local model server.  ``Config`` holds
runtime knobs that come from CLI flags and is never written to disk.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

DocumentState = Literal["pending", "extracting", "summarizing", "done", "failed"]
"""Per-attempt processing state of a document."""

Backend = Literal["openai", "ollama"]
"""The two interchangeable summarization providers."""

OllamaMode = Literal["fast", "vision"]
"""``fast`` sends extracted text, ``vision`` sends the rendered image."""

SUPPORTED_EXTENSIONS = frozenset({"pdf", "png", "jpg", "jpeg", "tiff"})
IMAGE_EXTENSIONS = frozenset({"png", "jpg", "jpeg", "tiff"})

_ACTIVE_STATES = frozenset({"pending", "extracting", "summarizing"})


def file_extension(path: Path) -> str:
    """Return the lowercase extension of *path* without the leading dot."""
    return path.suffix.lower().lstrip(".")


def _now() -> datetime:
    return datetime.now()


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------


class Document(BaseModel):
    """One observed file and the result of its latest processing attempt.

    ``summary`` is only ever set together with ``state="done"``.  A record
    left with ``is_processing=True`` and no summary after a restart is
    considered stuck and purged by ``Coordinator.startup``.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    path: str
    state: DocumentState = "pending"
    is_processing: bool = True
    progress: str = "Starting..."
    summary: str | None = None
    keywords: list[str] = Field(default_factory=list)
    text_path: str | None = None
    error: str | None = None
    processed_at: datetime = Field(default_factory=_now)

    @property
    def name(self) -> str:
        return Path(self.path).name

    @property
    def is_stuck(self) -> bool:
        return self.is_processing and self.summary is None

    @property
    def is_active(self) -> bool:
        return self.state in _ACTIVE_STATES


# ---------------------------------------------------------------------------
# Settings (persisted)
# ---------------------------------------------------------------------------


class Settings(BaseModel):
    """The single persisted settings record.

    Attributes:
        backend:         Which summarizer is used for new documents.
        openai_api_key:  API key for the remote backend.  Empty means the
                         ``OPENAI_API_KEY`` environment variable is used.
        openai_model:    Chat model for the remote backend.
        ollama_url:      Chat endpoint of the local model server.
        ollama_model:    Model name on the local server.
        ollama_mode:     ``vision`` sends the file itself, ``fast`` sends
                         OCR/PDF text.
        prompt:          Custom prompt; empty selects the built-in one.
        ocr_language:    ``en`` or ``id``, the primary OCR language.
        watched_folders: Folders monitored by ``docsum watch``.
    """

    backend: Backend = "ollama"
    openai_api_key: str = ""
    openai_model: str = "gpt-4-turbo"
    ollama_url: str = "http://localhost:11434/api/chat"
    ollama_model: str = "llama3.1:8b"
    ollama_mode: OllamaMode = "vision"
    prompt: str = ""
    ocr_language: str = "en"
    watched_folders: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def active_model(self) -> str:
        if self.backend == "openai":
            return self.openai_model
        return self.ollama_model

    @property
    def uses_vision(self) -> bool:
        return self.backend == "ollama" and self.ollama_mode == "vision"


# ---------------------------------------------------------------------------
# Local model server wire format
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    role: str
    content: str


class OllamaChatResponse(BaseModel):
    """Non-streaming reply of the ``/api/chat`` endpoint."""

    model: str
    created_at: str
    message: ChatMessage
    done: bool


# ---------------------------------------------------------------------------
# Config (dataclass, not pydantic; holds runtime settings)
# ---------------------------------------------------------------------------

#: Characters of document text sent to a model.  Longer texts keep the first
#: and last half of this budget and drop the middle.
_DEFAULT_MAX_CHARS = 8_000


@dataclass
class Config:
    """Runtime configuration for the pipeline.

    All fields correspond to CLI flags.

    Attributes:
        state_dir:         Directory holding ``documents.json``,
                           ``settings.json`` and extracted text files.
        text_dir:          Where extracted text side files are written.
                           Defaults to ``state_dir / "text"``.
        workers:           Size of the pipeline worker pool.  Kept small so a
                           local model server is not flooded.
        max_chars:         Truncation budget for text sent to a model.
        max_output_tokens: ``max_tokens`` for the remote backend.
        connect_timeout_s: Connectivity check timeout for the local backend.
        text_timeout_s:    Local backend timeout for text requests.
        vision_timeout_s:  Local backend timeout for image requests.
        settle_s:          Seconds between file-size readings before a newly
                           discovered file is read.  ``0`` disables waiting.
        settle_checks:     Number of equal consecutive size readings required.
        verbose:           Enables DEBUG logging.
    """

    state_dir: Path = Path(".docsum")
    text_dir: Path | None = None
    workers: int = 3
    max_chars: int = _DEFAULT_MAX_CHARS
    max_output_tokens: int = 1500
    connect_timeout_s: float = 10.0
    text_timeout_s: float = 60.0
    vision_timeout_s: float = 120.0
    settle_s: float = 1.0
    settle_checks: int = 2
    verbose: bool = False

    def __post_init__(self) -> None:
        self.state_dir = Path(self.state_dir)
        if self.text_dir is None:
            self.text_dir = self.state_dir / "text"
        self.text_dir = Path(self.text_dir)

    @property
    def documents_path(self) -> Path:
        return self.state_dir / "documents.json"

    @property
    def settings_path(self) -> Path:
        return self.state_dir / "settings.json"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class DocsumError(Exception):
    """Base class for every error raised by docsum."""


class ExtractionError(DocsumError):
    """Raised when text cannot be obtained from a file."""


class UnsupportedTypeError(ExtractionError):
    """Raised for file extensions outside ``SUPPORTED_EXTENSIONS``."""


class LoadError(ExtractionError):
    """Raised when a PDF or image cannot be opened or decoded."""


class RecognitionError(ExtractionError):
    """Raised when OCR produces no text."""


class SummarizerError(DocsumError):
    """Base class for summarizer backend failures."""


class AuthMissingError(SummarizerError):
    """Raised when the remote backend has no API key."""


class EndpointMisconfiguredError(SummarizerError):
    """Raised when the local backend URL is missing or malformed."""


class TransportError(SummarizerError):
    """Raised on network failures and HTTP error responses."""


class BackendUnreachableError(TransportError):
    """Raised when the local model server does not answer the connectivity check.

    Kept distinct from a plain ``TransportError`` so the user can be told how
    to start the server instead of seeing a generic timeout.
    """

    hint = (
        "Ollama is not running. Start it with 'ollama serve' "
        "or switch to the OpenAI backend."
    )

    def __init__(self, url: str, cause: Exception | None = None) -> None:
        self.url = url
        self.cause = cause
        super().__init__(self.hint)


class DecodeError(SummarizerError):
    """Raised when a response body is not in the expected format."""


class NoContentError(SummarizerError):
    """Raised when a well-formed response carries no message content."""


class ResponseParseError(SummarizerError):
    """Raised when no summary can be derived from the model's reply."""


class PipelineError(DocsumError):
    """Wraps any sub-error that occurs during per-file processing.

    Attributes:
        path:  The file that failed.
        cause: The original exception that triggered the failure.
    """

    def __init__(self, path: Path, cause: Exception) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Pipeline failed for {path}: {cause}")


# ---------------------------------------------------------------------------
# Folder scan reporting
# ---------------------------------------------------------------------------


class FailedDocument(BaseModel):
    """Records a single file that could not be processed during a scan."""

    path: str
    error: str


class ScanReport(BaseModel):
    """Aggregate result of a one-off scan over a folder."""

    processed: int
    skipped: int
    failed: int
    failed_documents: list[FailedDocument]
