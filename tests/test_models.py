"""Tests for docsum/models.py: records, settings, Config and exceptions."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from docsum.models import (
    BackendUnreachableError,
    Config,
    DocsumError,
    Document,
    ExtractionError,
    OllamaChatResponse,
    PipelineError,
    RecognitionError,
    Settings,
    SummarizerError,
    TransportError,
    file_extension,
)


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------


def test_new_document_defaults():
    doc = Document(path="/inbox/Scan 01.PDF")
    assert doc.state == "pending"
    assert doc.is_processing is True
    assert doc.progress == "Starting..."
    assert doc.summary is None
    assert doc.keywords == []
    assert doc.name == "Scan 01.PDF"
    assert doc.is_active


def test_documents_get_distinct_ids():
    assert Document(path="/a.pdf").id != Document(path="/a.pdf").id


def test_stuck_means_processing_without_summary():
    assert Document(path="/a.pdf", state="extracting").is_stuck
    assert not Document(path="/a.pdf", state="done", is_processing=False, summary="S").is_stuck
    assert not Document(path="/a.pdf", state="failed", is_processing=False).is_stuck


def test_invalid_state_is_rejected():
    with pytest.raises(ValidationError):
        Document(path="/a.pdf", state="archived")


def test_document_json_round_trip():
    doc = Document(path="/a.pdf", state="done", is_processing=False, summary="S", keywords=["k"])
    assert Document.model_validate_json(doc.model_dump_json()) == doc


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def test_settings_defaults():
    settings = Settings()
    assert settings.backend == "ollama"
    assert settings.openai_model == "gpt-4-turbo"
    assert settings.ollama_url == "http://localhost:11434/api/chat"
    assert settings.ollama_model == "llama3.1:8b"
    assert settings.ollama_mode == "vision"
    assert settings.prompt == ""


def test_active_model_follows_backend():
    assert Settings(backend="openai", openai_model="gpt-4o").active_model == "gpt-4o"
    assert Settings(backend="ollama", ollama_model="llava").active_model == "llava"


def test_uses_vision_only_for_ollama_vision_mode():
    assert Settings(backend="ollama", ollama_mode="vision").uses_vision
    assert not Settings(backend="ollama", ollama_mode="fast").uses_vision
    assert not Settings(backend="openai", ollama_mode="vision").uses_vision


def test_unknown_backend_is_rejected():
    with pytest.raises(ValidationError):
        Settings(backend="anthropic")


def test_ollama_chat_response_parses_wire_format():
    reply = OllamaChatResponse.model_validate(
        {
            "model": "llama3.1:8b",
            "created_at": "2024-05-01T10:00:00Z",
            "message": {"role": "assistant", "content": "hi"},
            "done": True,
            "total_duration": 123,
        }
    )
    assert reply.message.content == "hi"


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def test_config_defaults():
    config = Config()
    assert config.workers == 3
    assert config.max_chars == 8_000
    assert config.max_output_tokens == 1500
    assert (config.connect_timeout_s, config.text_timeout_s, config.vision_timeout_s) == (10.0, 60.0, 120.0)


def test_config_paths_derive_from_state_dir(tmp_path):
    config = Config(state_dir=str(tmp_path))
    assert config.state_dir == tmp_path
    assert config.text_dir == tmp_path / "text"
    assert config.documents_path == tmp_path / "documents.json"
    assert config.settings_path == tmp_path / "settings.json"


def test_config_explicit_text_dir(tmp_path):
    assert Config(state_dir=tmp_path, text_dir=tmp_path / "out").text_dir == tmp_path / "out"


@pytest.mark.parametrize("name, ext", [("a.PDF", "pdf"), ("b.tar.gz", "gz"), ("README", "")])
def test_file_extension(name, ext):
    assert file_extension(Path(name)) == ext


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


def test_exception_hierarchy():
    assert issubclass(RecognitionError, ExtractionError)
    assert issubclass(ExtractionError, DocsumError)
    assert issubclass(BackendUnreachableError, TransportError)
    assert issubclass(TransportError, SummarizerError)


def test_backend_unreachable_message_is_remediation_hint():
    cause = ConnectionError("refused")
    exc = BackendUnreachableError("http://localhost:11434", cause)
    assert str(exc) == BackendUnreachableError.hint
    assert "ollama serve" in str(exc)
    assert exc.url == "http://localhost:11434"
    assert exc.cause is cause


def test_pipeline_error_carries_path_and_cause():
    cause = RecognitionError("No recognizable text found")
    exc = PipelineError(Path("/inbox/a.png"), cause)
    assert exc.path == Path("/inbox/a.png")
    assert exc.cause is cause
    assert "a.png" in str(exc)
    assert "No recognizable text" in str(exc)
