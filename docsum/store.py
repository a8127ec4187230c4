"""Persistence for documents and settings as JSON files in the state directory.

``documents.json`` holds every ``Document`` record keyed by id;
``settings.json`` holds the single ``Settings`` record.  Files are rewritten
through a temp file and ``os.replace`` so a crash never leaves a half-written
file behind.  The store is shared between pipeline worker threads; every
access goes through one lock.

Several processes may share one state directory (a running ``docsum watch``
next to ``docsum delete``, for example).  The store therefore re-reads the
file whenever it has changed on disk since this process last saw it, and
every write starts from that fresh copy, so changes made elsewhere are
merged rather than overwritten.
"""

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable

from docsum.models import Document, Settings

logger = logging.getLogger(__name__)

_settings_lock = threading.Lock()


class DocumentStore:
    """Thread-safe collection of ``Document`` records backed by a JSON file.

    Records handed out are copies; callers change a record by passing an
    updated copy to ``put`` (or ``update``).
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()
        self._docs: dict[str, Document] = {}
        self._stamp: tuple[int, int, int] | None = None
        self._refresh()

    # -- reads -------------------------------------------------------------

    def all(self) -> list[Document]:
        with self._lock:
            self._refresh()
            docs = [d.model_copy(deep=True) for d in self._docs.values()]
        return sorted(docs, key=lambda d: d.processed_at, reverse=True)

    def get(self, doc_id: str) -> Document | None:
        with self._lock:
            self._refresh()
            doc = self._docs.get(doc_id)
            return doc.model_copy(deep=True) if doc else None

    def find_by_path(self, path: Path | str) -> Document | None:
        key = str(path)
        with self._lock:
            self._refresh()
            for doc in self._docs.values():
                if doc.path == key:
                    return doc.model_copy(deep=True)
        return None

    def __len__(self) -> int:
        with self._lock:
            self._refresh()
            return len(self._docs)

    # -- writes ------------------------------------------------------------

    def put(self, doc: Document) -> Document:
        """Insert or replace *doc* and persist; returns the stored copy."""
        with self._lock:
            self._refresh()
            stored = doc.model_copy(deep=True)
            self._docs[stored.id] = stored
            self._save()
            return stored.model_copy(deep=True)

    def update(self, doc_id: str, **changes) -> Document:
        """Apply *changes* to one record in a single write.

        ``processed_at`` is refreshed on every update.

        Raises:
            KeyError: if no record has *doc_id*, including one deleted by
                another process since the last read.
        """
        with self._lock:
            self._refresh()
            current = self._docs[doc_id]
            changes.setdefault("processed_at", datetime.now())
            updated = current.model_copy(update=changes, deep=True)
            self._docs[doc_id] = updated
            self._save()
            return updated.model_copy(deep=True)

    def delete(self, doc_id: str) -> bool:
        with self._lock:
            self._refresh()
            removed = self._docs.pop(doc_id, None)
            if removed is not None:
                self._save()
            return removed is not None

    def delete_many(self, doc_ids) -> int:
        with self._lock:
            self._refresh()
            removed = [self._docs.pop(i) for i in list(doc_ids) if i in self._docs]
            if removed:
                self._save()
            return len(removed)

    def clear(self) -> None:
        with self._lock:
            self._docs.clear()
            self._save()

    # -- file I/O ----------------------------------------------------------

    def _refresh(self) -> None:
        """Reload the records if the file changed since we last read or wrote it."""
        stamp = _file_stamp(self.path)
        if stamp == self._stamp:
            return
        self._docs = self._load() if stamp is not None else {}
        self._stamp = stamp

    def _load(self) -> dict[str, Document]:
        raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        docs = [Document.model_validate(item) for item in raw]
        logger.debug("Loaded %d documents from %s", len(docs), self.path)
        return {d.id: d for d in docs}

    def _save(self) -> None:
        payload = [d.model_dump(mode="json") for d in self._docs.values()]
        _atomic_write(self.path, json.dumps(payload, indent=2, ensure_ascii=False))
        self._stamp = _file_stamp(self.path)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def load_settings(path: Path) -> Settings:
    """Read ``Settings`` from *path*; defaults if the file does not exist."""
    if not path.exists():
        return Settings()
    return Settings.model_validate_json(path.read_text(encoding="utf-8"))


def save_settings(settings: Settings, path: Path) -> None:
    """Write *settings* to *path*, stamping ``updated_at``."""
    settings.updated_at = datetime.now()
    _atomic_write(path, settings.model_dump_json(indent=2))


def update_settings(path: Path, change: Callable[[Settings], Settings]) -> Settings:
    """Re-read the settings at *path*, apply *change* and save the result.

    Use this instead of ``save_settings`` when holding a copy that may be
    stale; only the fields *change* touches are overwritten.
    """
    with _settings_lock:
        settings = change(load_settings(path))
        save_settings(settings, path)
        return settings


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _file_stamp(path: Path) -> tuple[int, int, int] | None:
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    # os.replace gives every save a new inode.
    return (st.st_ino, st.st_mtime_ns, st.st_size)


def _atomic_write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp.write_text(text + "\n", encoding="utf-8")
    os.replace(tmp, path)
