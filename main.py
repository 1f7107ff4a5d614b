"""CLI entry point for bookmark sync.

Runs one reconciliation policy (push, pull, mirror), keeps the mirror
scheduler alive (watch), edits the persisted settings, and exposes the remote
service's search/save/delete/reprocess calls.
"""

from __future__ import annotations

# Standard library imports (alphabetical within groups)
import argparse
import logging
import os
import sys
import threading
from pathlib import Path
from typing import TYPE_CHECKING

# Third-party imports
from dotenv import load_dotenv

# Internal imports
from bookmark_sync.config import (
    BOOKMARKS_FILE_ENV,
    DEFAULT_SETTINGS_FILE,
    SETTINGS_FILE_ENV,
    SETTINGS_POLL_SECONDS,
)
from bookmark_sync.html_store import NetscapeHtmlStore
from bookmark_sync.local_store import BookmarkStoreError, ChromiumBookmarkStore
from bookmark_sync.reconciler import Reconciler, SyncAbortedError
from bookmark_sync.remote import RemoteBookmarkClient
from bookmark_sync.scheduler import MirrorScheduler
from bookmark_sync.settings import ConfigurationError, JsonFileSettingsStore, SettingsGateway
from bookmark_sync.transport import TransportError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Sequence

    from bookmark_sync.local_store import BookmarkTreeStore

LOGGER = logging.getLogger("bookmark_sync")

_HTML_SUFFIXES = {".html", ".htm"}


def configure_logging(*, verbose: bool) -> None:
    """Configure root logging (debug when verbose).

    verbose: when True, sets DEBUG level; otherwise INFO.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def _parse_header(value: str) -> dict[str, str]:
    key, sep, header_value = value.partition("=")
    if not sep or not key.strip():
        msg = f"Expected KEY=VALUE, got {value!r}"
        raise argparse.ArgumentTypeError(msg)
    return {"key": key.strip(), "value": header_value.strip()}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Keep local browser bookmarks and a remote bookmark service in sync",
    )
    parser.add_argument(
        "--settings-file",
        type=Path,
        help=(
            f"Settings JSON file. Defaults to ${SETTINGS_FILE_ENV} or {DEFAULT_SETTINGS_FILE}."
        ),
    )
    parser.add_argument(
        "--bookmarks",
        type=Path,
        help=(
            "Local bookmark store: a Chromium profile 'Bookmarks' JSON file or a"
            f" Netscape HTML export. Defaults to ${BOOKMARKS_FILE_ENV}."
        ),
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("push", help="Upsert every local bookmark remotely (tagged 'imported')")
    commands.add_parser("pull", help="Add remote bookmarks missing from the local store")
    commands.add_parser(
        "mirror", help="Make the local store an exact copy of the remote (needs autoSync)",
    )
    commands.add_parser("watch", help="Run the auto-sync scheduler until interrupted")

    config = commands.add_parser("config", help="Show or change settings")
    config_commands = config.add_subparsers(dest="config_command", required=True)
    config_commands.add_parser("show", help="Print the current settings")
    config_set = config_commands.add_parser("set", help="Change settings")
    config_set.add_argument("--backend-url")
    config_set.add_argument("--api-key")
    config_set.add_argument(
        "--auto-sync", action=argparse.BooleanOptionalAction, default=None,
        help="Enable/disable periodic destructive mirroring",
    )
    config_set.add_argument(
        "--header", type=_parse_header, action="append", dest="headers",
        help="Extra static header KEY=VALUE (repeatable; replaces the stored list)",
    )

    search = commands.add_parser("search", help="Search remote bookmarks")
    search.add_argument("--q", help="Free-text match against URL and title")
    search.add_argument("--title")
    search.add_argument("--tag", action="append", default=[], dest="tags")
    search.add_argument("--start-date")
    search.add_argument("--end-date")

    save = commands.add_parser("save", help="Save (or update) one remote bookmark")
    save.add_argument("url")
    save.add_argument("--title")
    save.add_argument("--tag", action="append", default=[], dest="tags")

    delete = commands.add_parser("delete", help="Delete one remote bookmark by URL")
    delete.add_argument("url")

    reprocess = commands.add_parser("reprocess", help="Request re-tagging of a remote bookmark")
    reprocess.add_argument("bookmark_id")
    return parser


def _resolve_settings_path(path_arg: Path | None) -> Path:
    resolved = path_arg or Path(os.getenv(SETTINGS_FILE_ENV) or DEFAULT_SETTINGS_FILE)
    return resolved.expanduser()


def open_store(path_arg: Path | None) -> BookmarkTreeStore:
    """Open the local bookmark store, picking the format from the file suffix."""
    resolved = path_arg or (
        Path(os.environ[BOOKMARKS_FILE_ENV]) if os.getenv(BOOKMARKS_FILE_ENV) else None
    )
    if resolved is None:
        msg = f"No bookmark store provided. Supply --bookmarks or set {BOOKMARKS_FILE_ENV}."
        raise ConfigurationError(msg)
    resolved = resolved.expanduser()
    if resolved.suffix.lower() in _HTML_SUFFIXES:
        return NetscapeHtmlStore(resolved)
    return ChromiumBookmarkStore(resolved)


def _handle_push(args: argparse.Namespace, gateway: SettingsGateway) -> None:
    result = Reconciler(open_store(args.bookmarks), gateway).push()
    print(f"Imported {result.success} bookmarks. {result.fail} failed.")  # noqa: T201


def _handle_pull(args: argparse.Namespace, gateway: SettingsGateway) -> None:
    result = Reconciler(open_store(args.bookmarks), gateway).pull()
    print(f"Synced {result.created} new bookmarks to local store.")  # noqa: T201


def _handle_mirror(args: argparse.Namespace, gateway: SettingsGateway) -> None:
    result = Reconciler(open_store(args.bookmarks), gateway).mirror()
    print(  # noqa: T201
        f"Mirror {result.status.value}: {result.created} created,"
        f" {result.deleted} deleted, {result.failed} failed.",
    )


def run_watch(
    gateway: SettingsGateway,
    scheduler: MirrorScheduler,
    stop_event: threading.Event,
    poll_seconds: float = SETTINGS_POLL_SECONDS,
) -> None:
    """Keep the mirror job in step with autoSync until ``stop_event`` is set.

    Settings written by other processes (``config set``) are picked up by
    polling the store and reach the scheduler as change notifications.
    """
    gateway.poll()
    if not scheduler.resume(gateway):
        LOGGER.info("Auto-sync is disabled; waiting for it to be enabled")
    unsubscribe = gateway.subscribe(scheduler.handle_settings_changed)
    try:
        while not stop_event.wait(poll_seconds):
            try:
                gateway.poll()
            except ConfigurationError as exc:
                LOGGER.error("Cannot reload settings: %s", exc)  # noqa: TRY400
    finally:
        unsubscribe()
        scheduler.shutdown(wait=True)


def _handle_watch(args: argparse.Namespace, gateway: SettingsGateway) -> None:
    scheduler = MirrorScheduler(Reconciler(open_store(args.bookmarks), gateway))
    try:
        run_watch(gateway, scheduler, threading.Event())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; waited for any running pass to finish")


def _handle_config(args: argparse.Namespace, gateway: SettingsGateway) -> None:
    if args.config_command == "set":
        changes: dict[str, object] = {}
        if args.backend_url is not None:
            changes["backendUrl"] = args.backend_url
        if args.api_key is not None:
            changes["apiKey"] = args.api_key
        if args.auto_sync is not None:
            changes["autoSync"] = args.auto_sync
        if args.headers is not None:
            changes["extraHeaders"] = args.headers
        if not changes:
            msg = "Nothing to change; pass at least one option"
            raise ConfigurationError(msg)
        gateway.write(changes)
    settings = gateway.read()
    for key, value in settings.to_storage().items():
        shown = "********" if key == "apiKey" and value else value
        print(f"{key}: {shown}")  # noqa: T201


def _handle_search(args: argparse.Namespace, gateway: SettingsGateway) -> None:
    client = RemoteBookmarkClient(gateway.read())
    records = client.search(
        q=args.q, title=args.title, tags=args.tags,
        start_date=args.start_date, end_date=args.end_date,
    )
    if not records:
        print("No bookmarks found matching your criteria.")  # noqa: T201
        return
    for record in records:
        created = record.created_at.date().isoformat() if record.created_at else ""
        tags = ", ".join(record.tags)
        print(f"{record.display_title}\n  {record.url}\n  [{tags}] {created}")  # noqa: T201


def _handle_save(args: argparse.Namespace, gateway: SettingsGateway) -> None:
    client = RemoteBookmarkClient(gateway.read())
    existing = client.find(args.url)
    # Without --tag/--title an existing bookmark keeps its stored values.
    tags = list(args.tags) or (list(existing.tags) if existing else [])
    client.upsert(args.url, args.title or (existing.title if existing else None), tags)
    print("Bookmark updated!" if existing else "Bookmark saved!")  # noqa: T201


def _handle_delete(args: argparse.Namespace, gateway: SettingsGateway) -> None:
    RemoteBookmarkClient(gateway.read()).delete(args.url)
    print("Bookmark deleted!")  # noqa: T201


def _handle_reprocess(args: argparse.Namespace, gateway: SettingsGateway) -> None:
    RemoteBookmarkClient(gateway.read()).reprocess(args.bookmark_id)
    print(f"Retagging requested for {args.bookmark_id}. It will update in a moment.")  # noqa: T201


_HANDLERS = {
    "push": _handle_push,
    "pull": _handle_pull,
    "mirror": _handle_mirror,
    "watch": _handle_watch,
    "config": _handle_config,
    "search": _handle_search,
    "save": _handle_save,
    "delete": _handle_delete,
    "reprocess": _handle_reprocess,
}


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the bookmark sync CLI."""
    load_dotenv()
    args = _build_parser().parse_args(argv)
    configure_logging(verbose=args.verbose)
    gateway = SettingsGateway(JsonFileSettingsStore(_resolve_settings_path(args.settings_file)))
    try:
        _HANDLERS[args.command](args, gateway)
    except (
        ConfigurationError, SyncAbortedError, TransportError, BookmarkStoreError, ValueError,
    ) as exc:
        LOGGER.error("%s", exc)  # noqa: TRY400
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
