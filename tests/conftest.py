"""Shared pytest fixtures for the docsum test suite."""

import logging
from pathlib import Path

import fitz
import pytest
from PIL import Image

from docsum.models import Config, Settings
from docsum.store import DocumentStore


# ---------------------------------------------------------------------------
# Logger isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_docsum_logger():
    """Clear the docsum logger between tests.

    Tests that call ``main()`` trigger ``setup_logging()``, which attaches
    handlers and sets ``propagate=False``.  Without this fixture the state
    leaks into subsequent tests and breaks ``caplog`` capture.
    """
    logger = logging.getLogger("docsum")

    def _clear():
        for h in logger.handlers[:]:
            h.close()
            logger.removeHandler(h)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)

    _clear()
    yield
    _clear()


# ---------------------------------------------------------------------------
# Sample files
# ---------------------------------------------------------------------------


def make_text_pdf(path: Path, *pages: str) -> Path:
    """Write a PDF with one page per string, each carrying a text layer."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    doc.save(str(path))
    doc.close()
    return path


def make_blank_pdf(path: Path) -> Path:
    """Write a one-page PDF without any text layer (a "scanned" page)."""
    doc = fitz.open()
    doc.new_page()
    doc.save(str(path))
    doc.close()
    return path


def make_png(path: Path, size=(64, 48)) -> Path:
    Image.new("RGB", size, color=(255, 255, 255)).save(path)
    return path


@pytest.fixture
def hello_pdf(tmp_path) -> Path:
    """A single-page PDF whose text layer reads "Hello world"."""
    return make_text_pdf(tmp_path / "hello.pdf", "Hello world")


@pytest.fixture
def blank_pdf(tmp_path) -> Path:
    return make_blank_pdf(tmp_path / "scan.pdf")


@pytest.fixture
def png_file(tmp_path) -> Path:
    return make_png(tmp_path / "receipt.png")


# ---------------------------------------------------------------------------
# Pipeline wiring
# ---------------------------------------------------------------------------


class FakeSummarizer:
    """In-memory stand-in for a summarizer backend.

    Records every call; returns ``result`` or raises ``error``.  An optional
    ``gate`` (threading.Event) blocks ``summarize`` until it is set.
    """

    def __init__(self, result=("A short summary.", ["alpha", "beta"]), error=None,
                 supports_direct_file=False, gate=None):
        self.result = result
        self.error = error
        self.supports_direct_file = supports_direct_file
        self.gate = gate
        self.text_calls: list[tuple[str, str, str]] = []
        self.file_calls: list[tuple[Path, str, str]] = []

    def summarize(self, text, model, prompt=""):
        self.text_calls.append((text, model, prompt))
        return self._respond()

    def summarize_file(self, path, model, prompt=""):
        self.file_calls.append((path, model, prompt))
        return self._respond()

    def _respond(self):
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def fake_summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def config(tmp_path) -> Config:
    """Config rooted in a temp state dir, without the settle wait."""
    return Config(state_dir=tmp_path / "state", workers=2, settle_s=0)


@pytest.fixture
def fast_settings() -> Settings:
    """Local backend in text mode, so the extractor runs."""
    return Settings(backend="ollama", ollama_mode="fast")


@pytest.fixture
def store(config) -> DocumentStore:
    return DocumentStore(config.documents_path)
