"""Render ``Document`` records to markdown for the CLI.

No file I/O is performed here; ``cli.py`` prints the returned strings.
"""

from typing import Sequence

from docsum.models import Document

_STATE_LABELS: dict[str, str] = {
    "pending": "Queued",
    "extracting": "Extracting text",
    "summarizing": "Summarizing",
    "done": "Done",
    "failed": "Failed",
}

# Summary preview length in listings.
_PREVIEW_CHARS = 80


def render_document(doc: Document) -> str:
    """Convert one record to a markdown section.

    Args:
        doc: The record to render, in any state.

    Returns:
        Markdown text with title, status, keywords, summary and the location
        of the extracted-text file when there is one.
    """
    lines = [
        f"# {doc.name}",
        "",
        f"- **ID:** `{doc.id}`",
        f"- **File:** `{doc.path}`",
        f"- **Status:** {_status(doc)}",
        f"- **Updated:** {doc.processed_at:%Y-%m-%d %H:%M:%S}",
    ]
    if doc.keywords:
        lines.append(f"- **Keywords:** {_render_keywords(doc.keywords)}")
    if doc.text_path:
        lines.append(f"- **Extracted text:** `{doc.text_path}`")

    if doc.summary:
        lines += ["", "## Summary", "", doc.summary.strip()]
    if doc.error:
        lines += ["", "## Error", "", doc.error]

    return "\n".join(lines) + "\n"


def render_listing(docs: Sequence[Document]) -> str:
    """One line per record: short id, status, file name and summary preview."""
    if not docs:
        return "No documents.\n"
    rows = []
    for doc in docs:
        preview = ""
        if doc.summary:
            preview = " ".join(doc.summary.split())
            if len(preview) > _PREVIEW_CHARS:
                preview = preview[: _PREVIEW_CHARS - 3] + "..."
            preview = f"  {preview}"
        rows.append(f"{doc.id[:8]}  {_STATE_LABELS[doc.state]:<15} {doc.name}{preview}")
    return "\n".join(rows) + "\n"


def _status(doc: Document) -> str:
    label = _STATE_LABELS[doc.state]
    if doc.is_processing and doc.progress:
        return f"{label} ({doc.progress})"
    return label


def _render_keywords(keywords: Sequence[str]) -> str:
    return ", ".join(f"`{k}`" for k in keywords)
