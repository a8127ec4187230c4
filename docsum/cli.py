"""Command-line interface for docsum.

Entry point: ``docsum`` (configured in ``pyproject.toml``).

Usage:
    docsum watch [FOLDER ...]     # add folders and watch until Ctrl-C
    docsum process FILE           # summarize one file
    docsum scan FOLDER            # summarize every supported file once
    docsum list | show ID | delete ID | reset
    docsum config [--backend ...] # show or change persisted settings

Common options (accepted after any subcommand):
    --state-dir, --workers, --max-chars, --settle,
    --verbose/--no-verbose, --log-file.

``watch``, ``process`` and ``scan`` check that the configured backend is
usable before any work starts and exit with status 1 when it is not.
"""

import argparse
import logging
import os
import sys
import time
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

from docsum.log import setup_logging
from docsum.models import (
    BackendUnreachableError,
    Config,
    Document,
    PipelineError,
    Settings,
    _DEFAULT_MAX_CHARS,
)
from docsum.ollama import check_backend
from docsum.pipeline import Coordinator
from docsum.renderer import render_document, render_listing
from docsum.store import DocumentStore, load_settings, update_settings

logger = logging.getLogger(__name__)

# Commands that run the pipeline; they get a log file by default.
_PROCESSING_COMMANDS = ("watch", "process", "scan")


def _positive_int(value: str) -> int:
    parsed = int(value)
    if parsed < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return parsed


def _non_negative_float(value: str) -> float:
    parsed = float(value)
    if parsed < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return parsed


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments, load settings and dispatch to a subcommand."""
    load_dotenv()

    parser = _build_parser()
    args = parser.parse_args(argv)

    config = Config(
        state_dir=Path(args.state_dir),
        workers=args.workers,
        max_chars=args.max_chars,
        settle_s=args.settle,
        verbose=args.verbose,
    )

    # Configure logging before any other output
    if args.log_file:
        log_file = Path(args.log_file)
    elif args.command in _PROCESSING_COMMANDS:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = config.state_dir / "logs" / f"run_{ts}.log"
    else:
        log_file = None
    setup_logging(verbose=args.verbose, log_file=log_file)

    settings = load_settings(config.settings_path)
    args.func(args, settings, config)


# ---------------------------------------------------------------------------
# Pipeline commands
# ---------------------------------------------------------------------------


def _cmd_watch(args: argparse.Namespace, settings: Settings, config: Config) -> None:
    """Add FOLDERs, resume the saved ones and watch until interrupted."""
    folders = [Path(f) for f in args.folders]
    for folder in folders:
        if not folder.is_dir():
            logger.error("Directory not found: %s", folder)
            sys.exit(1)
    if not folders and not settings.watched_folders:
        logger.error("No folders to watch. Pass one or more FOLDER arguments.")
        sys.exit(1)

    _check_backend(settings)

    with Coordinator(settings, config, on_change=_log_change) as coordinator:
        coordinator.startup()
        for folder in folders:
            coordinator.add_folder(folder)
        logger.info(
            "Watching %d folder(s); press Ctrl-C to stop",
            len(coordinator.watched_folders),
        )
        try:
            while True:
                time.sleep(1.0)
        except KeyboardInterrupt:
            logger.info("Stopping; waiting for running documents to finish")


def _cmd_process(args: argparse.Namespace, settings: Settings, config: Config) -> None:
    """Process a single file and print its record."""
    path = Path(args.file)
    if not path.is_file():
        logger.error("File not found: %s", path)
        sys.exit(1)

    _check_backend(settings)

    logger.info("Processing: %s", path.name)
    with Coordinator(settings, config, on_change=_log_change) as coordinator:
        try:
            doc = coordinator.process_file(path)
        except PipelineError as exc:
            logger.error("%s", exc)
            sys.exit(1)
    print(render_document(doc), end="")


def _cmd_scan(args: argparse.Namespace, settings: Settings, config: Config) -> None:
    """Process every supported file in FOLDER once."""
    folder = Path(args.folder)
    if not folder.is_dir():
        logger.error("Directory not found: %s", folder)
        sys.exit(1)

    _check_backend(settings)

    with Coordinator(settings, config) as coordinator:
        report = coordinator.process_folder(folder)

    logger.info(
        "Done: processed: %d, skipped: %d, failed: %d",
        report.processed,
        report.skipped,
        report.failed,
    )

    if report.failed_documents:
        logger.error("Failed documents:")
        for fd in report.failed_documents:
            logger.error("  %s: %s", fd.path, fd.error)
        sys.exit(1)


# ---------------------------------------------------------------------------
# Record commands
# ---------------------------------------------------------------------------


def _cmd_list(args: argparse.Namespace, settings: Settings, config: Config) -> None:
    docs = DocumentStore(config.documents_path).all()
    print(render_listing(docs), end="")


def _cmd_show(args: argparse.Namespace, settings: Settings, config: Config) -> None:
    doc = _find_document(DocumentStore(config.documents_path), args.id)
    print(render_document(doc), end="")


def _cmd_delete(args: argparse.Namespace, settings: Settings, config: Config) -> None:
    store = DocumentStore(config.documents_path)
    doc = _find_document(store, args.id)
    store.delete(doc.id)
    logger.info("Deleted %s (%s)", doc.name, doc.id)


def _cmd_reset(args: argparse.Namespace, settings: Settings, config: Config) -> None:
    store = DocumentStore(config.documents_path)
    n = len(store)
    store.clear()
    logger.info("Deleted %d document(s)", n)


def _find_document(store: DocumentStore, ref: str) -> Document:
    """Resolve a full id or a unique id prefix (as shown by ``list``)."""
    doc = store.get(ref)
    if doc is not None:
        return doc
    matches = [d for d in store.all() if d.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        logger.error("No document with id %s", ref)
    else:
        logger.error("Id prefix %s is ambiguous (%d matches)", ref, len(matches))
    sys.exit(1)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

_SETTING_FIELDS = (
    "backend",
    "openai_api_key",
    "openai_model",
    "ollama_url",
    "ollama_model",
    "ollama_mode",
    "prompt",
    "ocr_language",
)


def _cmd_config(args: argparse.Namespace, settings: Settings, config: Config) -> None:
    """Apply any given setting options, then print the settings."""
    changes = {
        field: getattr(args, field)
        for field in _SETTING_FIELDS
        if getattr(args, field) is not None
    }
    removed = str(Path(args.remove_folder).resolve()) if args.remove_folder else None

    def apply(current: Settings) -> Settings:
        data = {**current.model_dump(), **changes}
        if removed is not None:
            data["watched_folders"] = [f for f in current.watched_folders if f != removed]
        return Settings.model_validate(data)

    if changes or removed is not None:
        # A running watcher may have added folders since main() loaded these.
        settings = update_settings(config.settings_path, apply)
        logger.info("Settings saved to %s", config.settings_path)

    shown = settings.model_dump(mode="json", exclude={"updated_at"})
    if shown["openai_api_key"]:
        shown["openai_api_key"] = "****" + shown["openai_api_key"][-4:]
    for key, value in shown.items():
        print(f"{key}: {value}")


# ---------------------------------------------------------------------------
# Backend health check
# ---------------------------------------------------------------------------


def _check_backend(settings: Settings) -> None:
    """Exit with status 1 when the configured backend cannot be used."""
    if settings.backend == "openai":
        if not (settings.openai_api_key or os.environ.get("OPENAI_API_KEY")):
            logger.error("OpenAI API Key is not set. Use 'docsum config --openai-api-key'.")
            sys.exit(1)
        return

    if not check_backend(settings.ollama_url):
        logger.error(
            "Cannot reach Ollama at %s\n  %s",
            settings.ollama_url,
            BackendUnreachableError.hint,
        )
        sys.exit(1)
    logger.info("Ollama is running at %s (model %s)", settings.ollama_url, settings.ollama_model)


def _log_change(doc: Document) -> None:
    if doc.state == "done":
        logger.info("Done: %s  [%s]", doc.name, ", ".join(doc.keywords))
    elif doc.state == "failed":
        logger.warning("Failed: %s  (%s)", doc.name, doc.error)
    else:
        logger.debug("%s: %s", doc.name, doc.progress)


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    _default_state_dir = os.environ.get("DOCSUM_STATE_DIR", ".docsum")
    common.add_argument(
        "--state-dir",
        metavar="DIR",
        default=_default_state_dir,
        help=(
            "Directory for documents.json, settings.json, extracted text and logs "
            f"(default: DOCSUM_STATE_DIR env var, currently {_default_state_dir!r})."
        ),
    )
    common.add_argument(
        "--workers",
        metavar="N",
        type=_positive_int,
        default=3,
        help="Number of documents processed in parallel (default: 3).",
    )
    common.add_argument(
        "--max-chars",
        metavar="N",
        type=_positive_int,
        default=_DEFAULT_MAX_CHARS,
        help=(
            f"Maximum characters of document text sent to the model "
            f"(default: {_DEFAULT_MAX_CHARS:,}). Longer texts keep both ends."
        ),
    )
    common.add_argument(
        "--settle",
        metavar="S",
        type=_non_negative_float,
        default=1.0,
        help=(
            "Seconds between file-size checks before a new file is read, "
            "so files still being copied are not read early (default: 1.0; 0 disables)."
        ),
    )
    common.add_argument(
        "--verbose",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Enable DEBUG-level logging (default: off).",
    )
    common.add_argument(
        "--log-file",
        metavar="FILE",
        default=None,
        help="Write log output to FILE (default for watch/process/scan: STATE_DIR/logs/run_TIMESTAMP.log).",
    )

    parser = argparse.ArgumentParser(
        prog="docsum",
        description=(
            "Watch folders for PDFs and images, extract their text and "
            "summarize them with OpenAI or a local Ollama model."
        ),
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = sub.add_parser("watch", parents=[common], help="Watch folders until interrupted.")
    p.add_argument(
        "folders",
        nargs="*",
        metavar="FOLDER",
        help="Folders to add; previously added folders are always resumed.",
    )
    p.set_defaults(func=_cmd_watch)

    p = sub.add_parser("process", parents=[common], help="Summarize a single file.")
    p.add_argument("file", metavar="FILE")
    p.set_defaults(func=_cmd_process)

    p = sub.add_parser("scan", parents=[common], help="Summarize every file in a folder once.")
    p.add_argument("folder", metavar="FOLDER")
    p.set_defaults(func=_cmd_scan)

    p = sub.add_parser("list", parents=[common], help="List documents, newest first.")
    p.set_defaults(func=_cmd_list)

    p = sub.add_parser("show", parents=[common], help="Show one document.")
    p.add_argument("id", metavar="ID", help="Document id or a unique prefix of it.")
    p.set_defaults(func=_cmd_show)

    p = sub.add_parser("delete", parents=[common], help="Delete one document record.")
    p.add_argument("id", metavar="ID", help="Document id or a unique prefix of it.")
    p.set_defaults(func=_cmd_delete)

    p = sub.add_parser("reset", parents=[common], help="Delete every document record.")
    p.set_defaults(func=_cmd_reset)

    p = sub.add_parser("config", parents=[common], help="Show or change settings.")
    p.add_argument("--backend", choices=["openai", "ollama"], default=None)
    p.add_argument("--openai-api-key", metavar="KEY", default=None)
    p.add_argument("--openai-model", metavar="MODEL", default=None)
    p.add_argument("--ollama-url", metavar="URL", default=None)
    p.add_argument("--ollama-model", metavar="MODEL", default=None)
    p.add_argument("--ollama-mode", choices=["fast", "vision"], default=None)
    p.add_argument(
        "--prompt",
        default=None,
        help="Custom summary prompt; pass an empty string to restore the default.",
    )
    p.add_argument(
        "--ocr-language",
        choices=["en", "id", "english", "indonesian"],
        default=None,
    )
    p.add_argument(
        "--remove-folder",
        metavar="FOLDER",
        default=None,
        help="Stop watching FOLDER; its documents are kept.",
    )
    p.set_defaults(func=_cmd_config)

    return parser


if __name__ == "__main__":
    main()
