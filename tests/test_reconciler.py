"""Tests for the push, pull and mirror reconciliation policies."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

import pytest
import requests

from bookmark_sync.flatten import flatten
from bookmark_sync.local_store import ChromiumBookmarkStore, InMemoryBookmarkStore
from bookmark_sync.models import BookmarkRecord, FlatBookmark, MirrorStatus
from bookmark_sync.reconciler import (
    Reconciler,
    SyncAbortedError,
    plan_mirror,
    plan_pull,
    plan_push,
)
from bookmark_sync.settings import ConfigurationError, InMemorySettingsStore, SettingsGateway

from conftest import BACKEND, DummyResponse, ScriptedSession

if TYPE_CHECKING:
    from pathlib import Path

SYNC_URL = f"{BACKEND}/bookmarks/sync"
BOOKMARKS_URL = f"{BACKEND}/bookmarks"


def _records(*urls: str) -> list[BookmarkRecord]:
    return [BookmarkRecord(url=url) for url in urls]


def _urls(store: InMemoryBookmarkStore | ChromiumBookmarkStore) -> list[str]:
    return [leaf.url for leaf in flatten(store.get_tree())]


class UpsertSession:
    """Answer POST /bookmarks per bookmark URL found in the JSON body."""

    def __init__(self, statuses: dict[str, int]) -> None:
        self.statuses = statuses
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, timeout: float | None = None, **kwargs: Any) -> Any:
        self.calls.append({"method": method, "url": url, "timeout": timeout, **kwargs})
        if method != "POST" or url != BOOKMARKS_URL:
            msg = f"Unexpected request {method} {url}"
            raise AssertionError(msg)
        return DummyResponse(self.statuses[kwargs["json"]["url"]], {})


def test_push_counts_success_and_failure(
    store: InMemoryBookmarkStore, gateway: SettingsGateway, sleeps: list[float],
) -> None:
    store.create("A", "http://a")
    store.create("B", "http://b")
    session = UpsertSession({"http://a": 500, "http://b": 201})

    result = Reconciler(store, gateway, session=session).push()  # type: ignore[arg-type]

    if (result.success, result.fail) != (1, 1):
        msg = f"Expected success=1 fail=1, got {result}"
        raise AssertionError(msg)
    bodies = [c["json"] for c in session.calls]
    if any(body["tags"] != ["imported"] for body in bodies):
        raise AssertionError("Every pushed bookmark must be tagged 'imported'")
    # 4 attempts for the failing bookmark (first + 3 retries), 1 for the other.
    if len(session.calls) != 5:  # noqa: PLR2004
        msg = f"Unexpected number of POSTs: {len(session.calls)}"
        raise AssertionError(msg)
    if [c["json"]["title"] for c in session.calls][-1] != "B":
        raise AssertionError("The second bookmark must still be pushed after the first failed")
    if sleeps != [1.0, 2.0, 4.0]:
        raise AssertionError("The failing upsert should use the default backoff")
    if _urls(store) != ["http://a", "http://b"]:
        raise AssertionError("Push must not modify the local store")


def test_push_client_error_counts_without_retry(
    store: InMemoryBookmarkStore, gateway: SettingsGateway, sleeps: list[float],
) -> None:
    store.create("A", "http://a")
    session = UpsertSession({"http://a": 422})
    result = Reconciler(store, gateway, session=session).push()  # type: ignore[arg-type]
    if (result.success, result.fail) != (0, 1) or sleeps:
        raise AssertionError("A 4xx upsert is counted as failed without retrying")


def test_push_with_empty_store(store: InMemoryBookmarkStore, gateway: SettingsGateway) -> None:
    session = ScriptedSession()
    result = Reconciler(store, gateway, session=session).push()  # type: ignore[arg-type]
    if result.total != 0 or session.calls:
        raise AssertionError("Nothing should be sent for an empty store")


def test_plan_push_includes_every_leaf() -> None:
    local = [FlatBookmark(id="1", url="http://a"), FlatBookmark(id="2", url="http://a")]
    plan = plan_push(local)
    if plan.to_create_remotely != local or plan.to_create_locally or plan.to_delete_locally:
        raise AssertionError("Push only creates remotely")


def test_mirror_plan_scenario() -> None:
    local = [FlatBookmark(id="3", url="http://y"), FlatBookmark(id="4", url="http://z")]
    plan = plan_mirror(local, _records("http://x", "http://y"))
    if [r.url for r in plan.to_create_locally] != ["http://x"]:
        raise AssertionError("Only http://x should be created")
    if plan.to_delete_locally != [FlatBookmark(id="4", url="http://z")]:
        raise AssertionError("Only the http://z leaf should be deleted")


@pytest.mark.parametrize(
    ("local_urls", "remote_urls"),
    [
        ([], []),
        (["http://a"], []),
        ([], ["http://a"]),
        (["http://a", "http://a", "http://b"], ["http://b", "http://c", "http://c"]),
        (["http://A", "http://b"], ["http://a", "http://B"]),
        (["http://same"], ["http://same"]),
    ],
)
def test_mirror_plan_is_disjoint(local_urls: list[str], remote_urls: list[str]) -> None:
    local = [FlatBookmark(id=str(i), url=url) for i, url in enumerate(local_urls)]
    plan = plan_mirror(local, _records(*remote_urls))
    created = {r.url for r in plan.to_create_locally}
    deleted = {leaf.url for leaf in plan.to_delete_locally}
    if created & deleted:
        msg = f"URLs both created and deleted: {created & deleted}"
        raise AssertionError(msg)
    if len(created) != len(plan.to_create_locally):
        raise AssertionError("Duplicate remote URLs must be created once")
    if created != set(remote_urls) - set(local_urls):
        raise AssertionError("Creates must be exactly the remote-only URLs")
    if deleted != set(local_urls) - set(remote_urls):
        raise AssertionError("Deletes must be exactly the local-only URLs")


def test_mirror_applies_create_and_delete(
    store: InMemoryBookmarkStore, gateway: SettingsGateway,
) -> None:
    kept = store.create("Y", "http://y")
    store.create("Z", "http://z")
    session = ScriptedSession(
        {("GET", SYNC_URL): [DummyResponse(200, [{"url": "http://x"}, {"url": "http://y"}])]},
    )

    result = Reconciler(store, gateway, session=session).mirror()  # type: ignore[arg-type]

    if (result.status, result.created, result.deleted) != (MirrorStatus.COMPLETED, 1, 1):
        msg = f"Unexpected mirror result: {result}"
        raise AssertionError(msg)
    leaves = flatten(store.get_tree())
    if sorted(leaf.url for leaf in leaves) != ["http://x", "http://y"]:
        msg = f"Unexpected local URLs: {leaves}"
        raise AssertionError(msg)
    y_leaf = next(leaf for leaf in leaves if leaf.url == "http://y")
    if y_leaf.id != kept.id or y_leaf.title != "Y":
        raise AssertionError("The shared leaf must be left untouched")
    x_leaf = next(leaf for leaf in leaves if leaf.url == "http://x")
    if x_leaf.title != "http://x":
        raise AssertionError("Title falls back to the URL when the remote has none")


def test_mirror_sends_auth_and_accept_headers(
    store: InMemoryBookmarkStore, gateway: SettingsGateway,
) -> None:
    session = ScriptedSession({("GET", SYNC_URL): [DummyResponse(200, [])]})
    Reconciler(store, gateway, session=session).mirror()  # type: ignore[arg-type]
    headers = session.calls[0]["headers"]
    if headers.get("Authorization") != "Bearer secret":
        raise AssertionError("Bearer token missing")
    if headers.get("Accept") != "application/json":
        raise AssertionError("Read calls must accept JSON")


def test_mirror_with_empty_remote_removes_every_leaf(
    store: InMemoryBookmarkStore, gateway: SettingsGateway,
) -> None:
    store.create("A", "http://a")
    store.create("B", "http://b")
    session = ScriptedSession({("GET", SYNC_URL): [DummyResponse(200, [])]})
    result = Reconciler(store, gateway, session=session).mirror()  # type: ignore[arg-type]
    if result.deleted != 2 or _urls(store):  # noqa: PLR2004
        raise AssertionError("An empty remote collection empties the local store")
    if [child.title for child in store.get_tree().children or []] != [
        "Bookmarks bar",
        "Other bookmarks",
    ]:
        raise AssertionError("Folders are never removed")


def test_mirror_fail_closed_on_transport_error(
    chromium_bookmarks_file: Path, gateway: SettingsGateway, sleeps: list[float],
) -> None:
    before = chromium_bookmarks_file.read_bytes()
    session = ScriptedSession(
        {("GET", SYNC_URL): [requests.ConnectionError("connection refused")]},
    )
    store = ChromiumBookmarkStore(chromium_bookmarks_file)

    with pytest.raises(SyncAbortedError):
        Reconciler(store, gateway, session=session).mirror()  # type: ignore[arg-type]

    if chromium_bookmarks_file.read_bytes() != before:
        raise AssertionError("Local store must be byte-for-byte unchanged")
    if len(sleeps) != 3:  # noqa: PLR2004
        raise AssertionError("The remote read should exhaust its retries first")


@pytest.mark.parametrize("payload", [None, {"error": "oops"}, [{"title": "no url"}]])
def test_mirror_fail_closed_on_malformed_payload(
    store: InMemoryBookmarkStore, gateway: SettingsGateway, payload: object,
) -> None:
    store.create("Keep", "http://keep")
    before = copy.deepcopy(store.get_tree())
    session = ScriptedSession({("GET", SYNC_URL): [DummyResponse(200, payload)]})

    with pytest.raises(SyncAbortedError):
        Reconciler(store, gateway, session=session).mirror()  # type: ignore[arg-type]

    if store.get_tree() != before:
        raise AssertionError("Local store must be unchanged after a bad remote read")


def test_mirror_skipped_when_auto_sync_off(store: InMemoryBookmarkStore) -> None:
    gateway = SettingsGateway(
        InMemorySettingsStore({"backendUrl": BACKEND, "apiKey": "k", "autoSync": False}),
    )
    store.create("Keep", "http://keep")
    session = ScriptedSession()

    result = Reconciler(store, gateway, session=session).mirror()  # type: ignore[arg-type]

    if result.status is not MirrorStatus.SKIPPED or session.calls:
        raise AssertionError("Mirror must not run while autoSync is off")
    if _urls(store) != ["http://keep"]:
        raise AssertionError("Skipped mirror must not touch the local store")


def test_mirror_rechecks_auto_sync_on_every_call(
    store: InMemoryBookmarkStore, gateway: SettingsGateway,
) -> None:
    session = ScriptedSession({("GET", SYNC_URL): [DummyResponse(200, [])]})
    reconciler = Reconciler(store, gateway, session=session)  # type: ignore[arg-type]
    reconciler.mirror()
    gateway.write({"autoSync": False})
    result = reconciler.mirror()
    if result.status is not MirrorStatus.SKIPPED or len(session.calls) != 1:
        raise AssertionError("Settings must be re-read at every invocation")


@pytest.mark.parametrize("policy", ["push", "pull", "mirror"])
def test_missing_backend_url_aborts_before_network(
    store: InMemoryBookmarkStore, policy: str,
) -> None:
    gateway = SettingsGateway(InMemorySettingsStore({"autoSync": True}))
    store.create("A", "http://a")
    session = ScriptedSession()
    reconciler = Reconciler(store, gateway, session=session)  # type: ignore[arg-type]
    with pytest.raises(ConfigurationError, match="backend URL"):
        getattr(reconciler, policy)()
    if session.calls:
        raise AssertionError("No network call may happen without a backend URL")


def test_pull_is_idempotent(store: InMemoryBookmarkStore, gateway: SettingsGateway) -> None:
    store.create("Local only", "http://local")
    remote = [
        {"url": "http://r1", "title": "Remote one", "tags": ["News"]},
        {"url": "http://r2", "title": ""},
        {"url": "http://local", "title": "Renamed remotely"},
    ]
    session = ScriptedSession({("GET", SYNC_URL): [DummyResponse(200, remote)]})
    reconciler = Reconciler(store, gateway, session=session)  # type: ignore[arg-type]

    first = reconciler.pull()
    after_first = store.get_tree()
    second = reconciler.pull()

    if (first.created, first.remote_total) != (2, 3):  # noqa: PLR2004
        msg = f"Unexpected first pull: {first}"
        raise AssertionError(msg)
    if second.created != 0 or store.get_tree() != after_first:
        raise AssertionError("Second pull with unchanged remote must be a no-op")
    titles = {leaf.url: leaf.title for leaf in flatten(store.get_tree())}
    if titles != {
        "http://local": "Local only",
        "http://r1": "Remote one",
        "http://r2": "http://r2",
    }:
        msg = f"Unexpected local titles: {titles}"
        raise AssertionError(msg)


def test_pull_failure_leaves_store_untouched(
    store: InMemoryBookmarkStore, gateway: SettingsGateway, sleeps: list[float],
) -> None:
    store.create("A", "http://a")
    session = ScriptedSession({("GET", SYNC_URL): [DummyResponse(401)]})
    with pytest.raises(SyncAbortedError, match="401"):
        Reconciler(store, gateway, session=session).pull()  # type: ignore[arg-type]
    if _urls(store) != ["http://a"] or sleeps:
        raise AssertionError("A rejected pull must not retry or mutate the store")


def test_plan_pull_never_deletes() -> None:
    local = [FlatBookmark(id="1", url="http://only-local")]
    plan = plan_pull(local, _records("http://remote"))
    if plan.to_delete_locally or [r.url for r in plan.to_create_locally] != ["http://remote"]:
        raise AssertionError("Pull only creates what is missing locally")


@pytest.mark.parametrize("backend_url", ["backend.test", "ftp://backend.test", "http://"])
def test_malformed_backend_url_aborts_before_network(
    store: InMemoryBookmarkStore, sleeps: list[float], backend_url: str,
) -> None:
    gateway = SettingsGateway(
        InMemorySettingsStore({"backendUrl": backend_url, "autoSync": True}),
    )
    store.create("Keep", "http://keep")
    session = ScriptedSession()
    with pytest.raises(ConfigurationError, match="backendUrl"):
        Reconciler(store, gateway, session=session).mirror()  # type: ignore[arg-type]
    if session.calls or sleeps:
        raise AssertionError("A malformed backend URL must fail before any request")
    if _urls(store) != ["http://keep"]:
        raise AssertionError("Local store must be untouched")
