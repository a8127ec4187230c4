"""Text extraction from PDFs and images, with a plain-text side file.

PDF pages with embedded text are read with pypdf; pages without it are
rendered with PyMuPDF and passed through tesseract.  Images go straight to
tesseract.  The combined text is written to ``{text_dir}/{stem}-{digest}.txt``
so the user can inspect exactly what was sent to the model; the digest is
taken from the full source path, so same-named files in different folders
(or with different extensions) get separate side files.
"""

import hashlib
import io
import logging
import tempfile
from pathlib import Path

import fitz
import pytesseract
from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader

from docsum.models import (
    SUPPORTED_EXTENSIONS,
    LoadError,
    RecognitionError,
    UnsupportedTypeError,
    file_extension,
)

logger = logging.getLogger(__name__)

#: Render scale for pages that have no embedded text.
PAGE_RENDER_SCALE = 2.0

# LSTM engine: the accurate recognizer, not the fast legacy one.
_TESSERACT_CONFIG = "--oem 1 --psm 3"

_LANGUAGE_PRIORITY = {
    "en": ("eng", "ind"),
    "english": ("eng", "ind"),
    "id": ("ind", "eng"),
    "indonesian": ("ind", "eng"),
}


def extract_text(
    path: Path,
    language: str = "en",
    text_dir: Path | None = None,
) -> tuple[str, Path]:
    """Extract the text of a PDF or image and persist it next to other artifacts.

    Args:
        path:     File to read.  Must have a supported extension.
        language: OCR language hint (``en`` or ``id``); selects the order of
                  the tesseract language list.
        text_dir: Directory for the ``.txt`` side file.  Defaults to the
                  system temp directory.

    Returns:
        ``(text, text_path)``.  For PDFs each page contributes its text plus
        one newline, in page order.

    Raises:
        UnsupportedTypeError: for extensions outside the supported set.
        LoadError:            if the file cannot be opened.
        RecognitionError:     if OCR finds no text at all.
    """
    ext = file_extension(path)
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedTypeError(f"Unsupported file type: {path.name}")

    if ext == "pdf":
        text = _extract_pdf(path, language)
    else:
        text = _extract_image(path, language)

    text_path = _write_text_file(path, text, text_dir)
    logger.info(
        "Extracted %s chars from %s -> %s", f"{len(text):,}", path.name, text_path
    )
    return text, text_path


def ocr_languages(language: str) -> str:
    """Return the tesseract ``lang`` argument for a language hint."""
    primary, fallback = _LANGUAGE_PRIORITY.get(language.lower(), ("eng", "ind"))
    return f"{primary}+{fallback}"


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------


def _extract_pdf(path: Path, language: str) -> str:
    try:
        reader = PdfReader(str(path))
        pages = list(reader.pages)
    except Exception as e:
        raise LoadError(f"Failed to load PDF {path.name}: {e}") from e

    parts: list[str] = []
    rendered = None
    try:
        for index, page in enumerate(pages):
            try:
                embedded = page.extract_text() or ""
            except Exception as e:
                logger.debug("pypdf text extraction failed on page %d: %s", index + 1, e)
                embedded = ""

            if embedded.strip():
                parts.append(embedded + "\n")
                continue

            logger.debug("Page %d of %s has no text layer; running OCR", index + 1, path.name)
            if rendered is None:
                rendered = _open_for_rendering(path)
            image = _render_page(rendered, index)
            parts.append(_ocr_image(image, language) + "\n")
    finally:
        if rendered is not None:
            rendered.close()

    text = "".join(parts)
    if not text.strip():
        raise RecognitionError(f"No recognizable text found in {path.name}")
    return text


def render_pdf_page(path: Path, index: int = 0, scale: float = PAGE_RENDER_SCALE) -> Image.Image:
    """Rasterize a single page of the PDF at *path*."""
    doc = _open_for_rendering(path)
    try:
        if index >= doc.page_count:
            raise LoadError(f"{path.name} has no page {index + 1}")
        return _render_page(doc, index, scale)
    finally:
        doc.close()


def _open_for_rendering(path: Path):
    try:
        return fitz.open(str(path))
    except Exception as e:
        raise LoadError(f"Failed to open {path.name} for rendering: {e}") from e


def _render_page(doc, index: int, scale: float = PAGE_RENDER_SCALE) -> Image.Image:
    """Rasterize one page on a white background (no alpha channel)."""
    page = doc.load_page(index)
    pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), alpha=False)
    return Image.open(io.BytesIO(pix.tobytes("png"))).convert("RGB")


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


def _extract_image(path: Path, language: str) -> str:
    try:
        with Image.open(path) as img:
            img.load()
            image = img.convert("RGB")
    except (OSError, UnidentifiedImageError) as e:
        raise LoadError(f"Failed to load image {path.name}: {e}") from e

    text = _ocr_image(image, language)
    if not text.strip():
        raise RecognitionError(f"No recognizable text found in {path.name}")
    return text


def _ocr_image(image: Image.Image, language: str) -> str:
    try:
        text = pytesseract.image_to_string(
            image, lang=ocr_languages(language), config=_TESSERACT_CONFIG
        )
    except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as e:
        raise RecognitionError(f"OCR processing failed: {e}") from e
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


# ---------------------------------------------------------------------------
# Side file
# ---------------------------------------------------------------------------


def side_file_name(source: Path) -> str:
    """``{stem}-{digest}.txt``, where the digest identifies the absolute path."""
    digest = hashlib.sha1(str(source.resolve()).encode("utf-8")).hexdigest()[:10]
    return f"{source.stem}-{digest}.txt"


def _write_text_file(source: Path, text: str, text_dir: Path | None) -> Path:
    directory = text_dir if text_dir is not None else Path(tempfile.gettempdir())
    directory.mkdir(parents=True, exist_ok=True)
    text_path = directory / side_file_name(source)
    text_path.write_text(text, encoding="utf-8")
    return text_path
