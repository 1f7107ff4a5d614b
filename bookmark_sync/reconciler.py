"""Reconciliation policies between the local tree and the remote service.

Three policies are supported:

* push: upsert every local leaf remotely, tagged ``imported``; never deletes.
* pull: create local leaves for remote bookmarks missing locally; never deletes.
* mirror: make the local URL set an exact copy of the remote one (remote wins).
  Runs only while ``autoSync`` is on, and never touches the local store unless
  the remote collection was read successfully.

Planning is pure (``plan_*``); :class:`Reconciler` reads both sides, plans and
applies. Every run starts from a fresh settings snapshot.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import requests

from .config import IMPORT_TAGS
from .flatten import flatten, url_set
from .local_store import BookmarkStoreError
from .models import (
    ImportResult,
    MirrorResult,
    MirrorStatus,
    PullResult,
    ReconciliationPlan,
)
from .remote import RemoteBookmarkClient
from .transport import TransportError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Sequence

    from .local_store import BookmarkTreeStore
    from .models import BookmarkRecord, FlatBookmark, Settings
    from .settings import SettingsGateway

LOGGER = logging.getLogger(__name__)


class SyncAbortedError(RuntimeError):
    """Raised when the remote collection could not be read; nothing was changed locally."""


def _missing_locally(
    local: Sequence[FlatBookmark], remote: Sequence[BookmarkRecord],
) -> list[BookmarkRecord]:
    local_urls = url_set(list(local))
    missing: list[BookmarkRecord] = []
    seen: set[str] = set()
    for record in remote:
        if record.url in local_urls or record.url in seen:
            continue
        seen.add(record.url)
        missing.append(record)
    return missing


def plan_push(local: Sequence[FlatBookmark]) -> ReconciliationPlan:
    """Every local leaf is upserted remotely; nothing is deleted."""
    return ReconciliationPlan(to_create_remotely=list(local))


def plan_pull(
    local: Sequence[FlatBookmark], remote: Sequence[BookmarkRecord],
) -> ReconciliationPlan:
    """Remote bookmarks absent locally are created; nothing is deleted."""
    return ReconciliationPlan(to_create_locally=_missing_locally(local, remote))


def plan_mirror(
    local: Sequence[FlatBookmark], remote: Sequence[BookmarkRecord],
) -> ReconciliationPlan:
    """Create what only the remote has and delete what only the local tree has.

    Both lists are derived from membership in opposite URL sets, so no URL can
    end up in both.
    """
    remote_urls = {record.url for record in remote}
    return ReconciliationPlan(
        to_create_locally=_missing_locally(local, remote),
        to_delete_locally=[leaf for leaf in local if leaf.url not in remote_urls],
    )


class Reconciler:
    """Apply the reconciliation policies against a local store and the remote service."""

    def __init__(
        self,
        store: BookmarkTreeStore,
        gateway: SettingsGateway,
        session: requests.Session | None = None,
        client_factory: Callable[..., RemoteBookmarkClient] = RemoteBookmarkClient,
    ) -> None:
        """Initialise the reconciler.

        Args:
            store: Local bookmark tree store; only this object is mutated locally.
            gateway: Settings gateway read at the start of every run.
            session: HTTP session shared by every remote call.
            client_factory: Builds the remote client from a settings snapshot.

        """
        self._store = store
        self._gateway = gateway
        self._session = session if session is not None else requests.Session()
        self._client_factory = client_factory

    def _client(self, settings: Settings) -> RemoteBookmarkClient:
        return self._client_factory(settings, session=self._session)

    def _fetch_remote(self, client: RemoteBookmarkClient) -> list[BookmarkRecord]:
        try:
            return client.fetch_all()
        except (TransportError, ValueError) as exc:
            msg = f"Failed to fetch bookmarks from backend: {exc}"
            raise SyncAbortedError(msg) from exc

    def push(self) -> ImportResult:
        """Upsert every local bookmark remotely with the fixed import tags."""
        settings = self._gateway.read()
        client = self._client(settings)
        plan = plan_push(flatten(self._store.get_tree()))
        result = ImportResult()
        if not plan.to_create_remotely:
            LOGGER.info("No local bookmarks found; nothing to push")
            return result

        for leaf in plan.to_create_remotely:
            try:
                client.upsert(leaf.url, leaf.title, IMPORT_TAGS)
            except TransportError as exc:
                result.fail += 1
                LOGGER.warning("Failed to push %s: %s", leaf.url, exc)
            else:
                result.success += 1
        LOGGER.info("Pushed %d bookmarks. %d failed.", result.success, result.fail)
        return result

    def pull(self) -> PullResult:
        """Create local bookmarks for remote ones missing locally."""
        settings = self._gateway.read()
        remote = self._fetch_remote(self._client(settings))
        plan = plan_pull(flatten(self._store.get_tree()), remote)
        result = PullResult(remote_total=len(remote))
        result.created, result.failed = self._create_locally(plan.to_create_locally)
        LOGGER.info("Pulled %d new bookmarks to the local store", result.created)
        return result

    def mirror(self) -> MirrorResult:
        """Make the local store an exact copy of the remote URL set.

        Skipped when autoSync is off at call time. Raises ``SyncAbortedError``
        before any local change when the remote collection cannot be read.
        """
        settings = self._gateway.read()
        if not settings.auto_sync:
            LOGGER.info("Auto-sync is disabled; skipping mirror pass")
            return MirrorResult(status=MirrorStatus.SKIPPED)

        remote = self._fetch_remote(self._client(settings))
        plan = plan_mirror(flatten(self._store.get_tree()), remote)
        result = MirrorResult(status=MirrorStatus.COMPLETED)
        result.created, failed_creates = self._create_locally(plan.to_create_locally)
        result.deleted, failed_deletes = self._delete_locally(plan.to_delete_locally)
        result.failed = failed_creates + failed_deletes
        LOGGER.info(
            "Auto-sync completed: %d created, %d deleted, %d failed",
            result.created,
            result.deleted,
            result.failed,
        )
        return result

    def _create_locally(self, records: Sequence[BookmarkRecord]) -> tuple[int, int]:
        created = failed = 0
        for record in records:
            try:
                self._store.create(record.display_title, record.url)
            except BookmarkStoreError as exc:
                failed += 1
                LOGGER.warning("Failed to create local bookmark %s: %s", record.url, exc)
            else:
                created += 1
        return created, failed

    def _delete_locally(self, leaves: Sequence[FlatBookmark]) -> tuple[int, int]:
        deleted = failed = 0
        # Later leaves first: stores that number nodes by position keep earlier ids valid.
        for leaf in reversed(leaves):
            try:
                self._store.remove(leaf.id)
            except BookmarkStoreError as exc:
                failed += 1
                LOGGER.warning("Failed to remove local bookmark %s: %s", leaf.url, exc)
            else:
                deleted += 1
        return deleted, failed
