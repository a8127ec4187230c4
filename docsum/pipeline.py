"""Pipeline coordination: folder watchers, per-file workers and record updates.

The ``Coordinator`` owns everything with a lifetime: the watcher for each
monitored folder, the bounded worker pool, and the set of paths currently
being processed.  Each discovered file moves through

    pending -> extracting -> summarizing -> done
                                         \\-> failed   (from any step)

``extracting`` is skipped when the local backend runs in vision mode.  Every
transition is written to the store before ``on_change`` is told about it, so
a crash leaves a visible record that ``startup()`` sweeps on the next run.
"""

import logging
import sys
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed, wait
from pathlib import Path
from typing import Callable

from tqdm.auto import tqdm

from docsum.extractor import extract_text
from docsum.llm import create_summarizer
from docsum.models import (
    Config,
    Document,
    FailedDocument,
    PipelineError,
    ScanReport,
    Settings,
    UnsupportedTypeError,
)
from docsum.store import DocumentStore, update_settings
from docsum.watcher import FolderWatcher, is_supported, scan

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Document], None]

# Upper bound on size polls before a file that keeps growing is read anyway.
_MAX_SETTLE_POLLS = 120


class Coordinator:
    """Wire watchers, extractor, summarizer and store together.

    Args:
        settings:   Active settings; the backend is chosen from it once, here.
        config:     Runtime configuration (pool size, timeouts, paths).
        store:      Record store.  Defaults to ``config.documents_path``.
        summarizer: Backend override, mainly for tests.
        on_change:  Called with a copy of a record after every transition.
        persist_settings: Write settings to ``config.settings_path`` when
                    folders are added or removed.
    """

    def __init__(
        self,
        settings: Settings,
        config: Config,
        store: DocumentStore | None = None,
        summarizer=None,
        on_change: ChangeCallback | None = None,
        persist_settings: bool = True,
    ) -> None:
        self.settings = settings
        self.config = config
        self.store = store if store is not None else DocumentStore(config.documents_path)
        self.summarizer = summarizer if summarizer is not None else create_summarizer(settings, config)
        self.on_change = on_change
        self.persist_settings = persist_settings

        self._lock = threading.RLock()
        self._in_flight: set[str] = set()
        self._futures: set[Future] = set()
        self._watchers: dict[str, FolderWatcher] = {}
        self._closed = False
        self._executor = ThreadPoolExecutor(
            max_workers=config.workers,
            thread_name_prefix="worker",
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def startup(self) -> None:
        """Sweep stale records, then resume watching the configured folders."""
        self.purge_stale()
        for folder in list(self.settings.watched_folders):
            path = Path(folder)
            if not path.is_dir():
                logger.warning("Watched folder no longer exists, skipping: %s", path)
                continue
            self._start_watcher(path)

    def purge_stale(self) -> int:
        """Delete stuck records and records whose file has disappeared.

        A record is stuck when it is still marked as processing but has no
        summary, i.e. a previous run died part-way through.
        """
        docs = self.store.all()
        stuck = [d for d in docs if d.is_stuck]
        orphaned = [d for d in docs if not d.is_stuck and not Path(d.path).exists()]
        if stuck:
            logger.info("Found %d stuck documents, cleaning up", len(stuck))
        if orphaned:
            logger.info("Cleaning up %d orphaned documents", len(orphaned))
        return self.store.delete_many(d.id for d in stuck + orphaned)

    def wait(self) -> None:
        """Block until every dispatched pipeline run has finished."""
        while True:
            with self._lock:
                pending = [f for f in self._futures if not f.done()]
            if not pending:
                return
            wait(pending)

    def shutdown(self) -> None:
        """Stop all watchers, let in-flight runs finish and close the pool."""
        with self._lock:
            watchers = list(self._watchers.values())
            self._watchers.clear()
        for watcher in watchers:
            watcher.stop()
        self.wait()
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "Coordinator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    @property
    def watched_folders(self) -> list[Path]:
        with self._lock:
            return [Path(p) for p in self._watchers]

    def add_folder(self, folder: Path) -> FolderWatcher:
        """Start monitoring *folder* and remember it in the settings.

        Files already in the folder are picked up by the watcher's initial
        scan.

        Raises:
            NotADirectoryError: if *folder* is not a directory.
        """
        folder = Path(folder).resolve()
        if not folder.is_dir():
            raise NotADirectoryError(f"Not a directory: {folder}")
        key = str(folder)
        if key not in self.settings.watched_folders:
            self.settings.watched_folders.append(key)
        self._save_folder(key, watched=True)
        return self._start_watcher(folder)

    def remove_folder(self, folder: Path) -> bool:
        """Stop monitoring *folder*.  Runs already dispatched keep going."""
        key = str(Path(folder).resolve())
        with self._lock:
            watcher = self._watchers.pop(key, None)
        # Stopped outside the lock: watcher callbacks take it in submit().
        if watcher is not None:
            watcher.stop()
        known = key in self.settings.watched_folders
        if known:
            self.settings.watched_folders.remove(key)
        self._save_folder(key, watched=False)
        return known or watcher is not None

    def _start_watcher(self, folder: Path) -> FolderWatcher:
        key = str(folder)
        with self._lock:
            existing = self._watchers.get(key)
            if existing is not None:
                return existing
            watcher = FolderWatcher(folder, on_file=self.submit, on_removed=self._file_removed)
            self._watchers[key] = watcher
        watcher.start()
        return watcher

    def _save_folder(self, key: str, watched: bool) -> None:
        """Record one folder change against the settings file as it is now.

        Other processes (``docsum config``) may have rewritten the file since
        ``self.settings`` was loaded; only the folder list entry changes.
        """
        if not self.persist_settings:
            return

        def change(settings: Settings) -> Settings:
            if watched and key not in settings.watched_folders:
                settings.watched_folders.append(key)
            elif not watched and key in settings.watched_folders:
                settings.watched_folders.remove(key)
            return settings

        update_settings(self.config.settings_path, change)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def documents(self) -> list[Document]:
        return self.store.all()

    def delete_document(self, doc_id: str) -> bool:
        deleted = self.store.delete(doc_id)
        if deleted:
            logger.info("Deleted document %s", doc_id)
        return deleted

    def reset(self) -> None:
        """Delete every record."""
        self.store.clear()
        logger.info("All documents deleted")

    def _file_removed(self, path: Path) -> None:
        key = str(path.resolve())
        with self._lock:
            if key in self._in_flight:
                return
        try:
            doc = self.store.find_by_path(key)
            if doc is None or not self.store.delete(doc.id):
                return
        except Exception:
            logger.exception("Could not drop record for removed file %s", path.name)
            return
        logger.info("Source file removed, dropped record: %s", path.name)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def submit(self, path: Path) -> Future | None:
        """Queue *path* for processing unless it is already known.

        The claim is atomic: the in-flight check, the store lookup and the
        placeholder insert happen under one lock, so concurrent discovery of
        the same file dispatches one run.  A record in ``failed`` state is
        replaced by a fresh attempt under the same id.

        Returns:
            The run's future (resolving to the final ``Document``), or
            ``None`` when nothing was dispatched.
        """
        path = Path(path).resolve()
        if not is_supported(path):
            return None
        key = str(path)

        with self._lock:
            if self._closed or key in self._in_flight:
                return None
            try:
                existing = self.store.find_by_path(key)
                if existing is not None and existing.state != "failed":
                    return None
                self._in_flight.add(key)
                doc = Document(path=key)
                if existing is not None:
                    doc.id = existing.id
                doc = self.store.put(doc)
                # Announced before the worker can publish a later state.
                self._notify(doc)
                future = self._executor.submit(self._process, doc.id, path)
            except Exception:
                # Runs on watcher threads, which must not see the exception.
                self._in_flight.discard(key)
                logger.exception("Could not queue %s", path.name)
                return None
            self._futures.add(future)

        future.add_done_callback(self._forget_future)
        logger.info("Queued %s", path.name)
        return future

    def process_file(self, path: Path) -> Document:
        """Process one file synchronously and return its record.

        A file that already has a non-failed record is not processed again;
        the existing record is returned.

        Raises:
            PipelineError: if the file is unsupported or processing fails.
        """
        path = Path(path).resolve()
        if not is_supported(path):
            raise PipelineError(path, UnsupportedTypeError(f"Unsupported file type: {path.name}"))
        future = self.submit(path)
        if future is None:
            self.wait()
            existing = self.store.find_by_path(str(path))
            if existing is None:
                raise PipelineError(path, RuntimeError("no record after queueing; see the log"))
            logger.info("Already processed: %s", path.name)
            return existing
        return future.result()

    def process_folder(self, folder: Path) -> ScanReport:
        """Process every supported file in *folder* once and report.

        Mirrors a single watcher scan without starting a watcher; a progress
        bar is shown when stderr is a terminal.
        """
        files = scan(Path(folder))
        futures: dict[Future, Path] = {}
        n_skipped = 0
        for path in files:
            future = self.submit(path)
            if future is None:
                n_skipped += 1
            else:
                futures[future] = path
        logger.info("Discovered files: %d  queued: %d  skipped: %d", len(files), len(futures), n_skipped)

        n_processed = 0
        failed: list[FailedDocument] = []
        with tqdm(
            total=len(futures),
            desc="Process",
            unit="file",
            disable=not sys.stderr.isatty(),
        ) as progress:
            for future in as_completed(futures):
                try:
                    future.result()
                    n_processed += 1
                except PipelineError as exc:
                    failed.append(FailedDocument(path=str(futures[future]), error=str(exc.cause)))
                finally:
                    progress.update(1)
                    progress.set_postfix(ok=n_processed, failed=len(failed))

        return ScanReport(
            processed=n_processed,
            skipped=n_skipped,
            failed=len(failed),
            failed_documents=failed,
        )

    def _forget_future(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _process(self, doc_id: str, path: Path) -> Document | None:
        """Worker task: run one file through the pipeline.

        Raises:
            PipelineError: after the record has been marked ``failed``.
        """
        try:
            try:
                return self._run_stages(doc_id, path)
            except Exception as exc:
                message = str(exc) or type(exc).__name__
                logger.error("Error processing %s: %s", path.name, message)
                self._transition(
                    doc_id,
                    state="failed",
                    is_processing=False,
                    progress="",
                    error=message,
                )
                raise PipelineError(path, exc) from exc
        finally:
            with self._lock:
                self._in_flight.discard(str(path))

    def _run_stages(self, doc_id: str, path: Path) -> Document | None:
        settings = self.settings
        model = settings.active_model
        self._wait_until_stable(path)

        text_path = None
        if self.summarizer.supports_direct_file and settings.uses_vision:
            self._transition(doc_id, state="summarizing", progress="Processing with vision model...")
            summary, keywords = self.summarizer.summarize_file(path, model, settings.prompt)
        else:
            self._transition(doc_id, state="extracting", progress="Extracting text...")
            text, text_path = extract_text(path, settings.ocr_language, self.config.text_dir)
            self._transition(doc_id, state="summarizing", progress="Generating summary...")
            summary, keywords = self.summarizer.summarize(text, model, settings.prompt)

        doc = self._transition(
            doc_id,
            state="done",
            is_processing=False,
            progress="",
            summary=summary,
            keywords=list(keywords),
            text_path=str(text_path) if text_path is not None else None,
            error=None,
        )
        logger.info("Processed %s  keywords=%s", path.name, ", ".join(keywords))
        return doc

    def _transition(self, doc_id: str, **changes) -> Document | None:
        try:
            doc = self.store.update(doc_id, **changes)
        except KeyError:
            # Deleted by the user while the run was in progress.
            logger.debug("Record %s disappeared during processing", doc_id)
            return None
        self._notify(doc)
        return doc

    def _notify(self, doc: Document) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(doc)
        except Exception:
            logger.exception("on_change callback failed for %s", doc.name)

    def _wait_until_stable(self, path: Path) -> None:
        """Wait until the file size stops changing (it may still be copied in)."""
        if self.config.settle_s <= 0:
            return
        previous = path.stat().st_size
        equal = 1
        polls = 0
        while equal < self.config.settle_checks:
            if polls >= _MAX_SETTLE_POLLS:
                logger.warning("%s is still changing size; reading it anyway", path.name)
                return
            time.sleep(self.config.settle_s)
            polls += 1
            size = path.stat().st_size
            equal = equal + 1 if size == previous else 1
            previous = size
