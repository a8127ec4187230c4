"""Folder monitoring built on watchdog.

``FolderWatcher`` reports every supported file in one directory: once for
each file already present when ``start()`` is called, then again whenever
watchdog sees the file created, modified or moved into the directory.  The
same path may therefore be reported several times, including while it is
still being written; deduplication and write-completion checks belong to
the caller.
"""

import logging
import threading
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from docsum.models import SUPPORTED_EXTENSIONS, file_extension

logger = logging.getLogger(__name__)

FileCallback = Callable[[Path], None]


def is_supported(path: Path) -> bool:
    """True for non-hidden files with a supported extension."""
    return not path.name.startswith(".") and file_extension(path) in SUPPORTED_EXTENSIONS


def scan(folder: Path) -> list[Path]:
    """Return supported files directly inside *folder*, sorted by name."""
    return sorted(p for p in folder.iterdir() if p.is_file() and is_supported(p))


class _FolderEventHandler(FileSystemEventHandler):
    """Translate watchdog events into watcher callbacks."""

    def __init__(self, watcher: "FolderWatcher") -> None:
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher._file_seen(Path(str(event.src_path)))

    def on_modified(self, event: FileSystemEvent) -> None:
        # Directory modifications fire for every change inside it.
        if not event.is_directory:
            self.watcher._file_seen(Path(str(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.watcher._file_gone(Path(str(event.src_path)))
        self.watcher._file_seen(Path(str(event.dest_path)))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher._file_gone(Path(str(event.src_path)))


class FolderWatcher:
    """Watch one directory (non-recursively) for supported files.

    Args:
        folder:     Directory to watch.
        on_file:    Called with the path of every discovered or changed file.
        on_removed: Optional; called with the path of a deleted or moved-away
                    file.

    Callbacks run on watchdog's observer thread (and on the caller's thread
    for the initial scan).  Once ``stop()`` has returned no callback fires.
    """

    def __init__(
        self,
        folder: Path,
        on_file: FileCallback,
        on_removed: FileCallback | None = None,
    ) -> None:
        self.folder = Path(folder)
        self.on_file = on_file
        self.on_removed = on_removed
        self._observer = None
        self._lock = threading.RLock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Report existing files, then start receiving filesystem events.

        Raises:
            NotADirectoryError: if the folder does not exist or is a file.
        """
        if not self.folder.is_dir():
            raise NotADirectoryError(f"Not a directory: {self.folder}")
        with self._lock:
            if self._running:
                return
            self._running = True

        existing = scan(self.folder)
        logger.info("Watching %s (%d existing files)", self.folder, len(existing))
        for path in existing:
            self._file_seen(path)

        observer = Observer()
        observer.schedule(_FolderEventHandler(self), str(self.folder), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        """Stop the observer and release its OS watch handle."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()
        logger.info("Stopped watching %s", self.folder)

    def __enter__(self) -> "FolderWatcher":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()

    def _file_seen(self, path: Path) -> None:
        if not is_supported(path):
            return
        with self._lock:
            if not self._running:
                return
            logger.debug("Discovered %s", path)
            self.on_file(path)

    def _file_gone(self, path: Path) -> None:
        if self.on_removed is None or not is_supported(path):
            return
        with self._lock:
            if not self._running:
                return
            logger.debug("Removed %s", path)
            self.on_removed(path)
