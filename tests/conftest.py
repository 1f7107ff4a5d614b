"""Shared pytest fixtures for bookmark sync tests."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest

from bookmark_sync import transport
from bookmark_sync.local_store import InMemoryBookmarkStore
from bookmark_sync.settings import InMemorySettingsStore, SettingsGateway

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

BACKEND = "http://backend.test"


class DummyResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status: int = 200, payload: object = None) -> None:
        self.status_code = status
        self._payload = payload

    def json(self) -> object:
        if self._payload is None:
            msg = "Expecting value: line 1 column 1 (char 0)"
            raise ValueError(msg)
        return self._payload


class ScriptedSession:
    """Answer requests from per-(method, url) scripts and record every call.

    Each script is a list of responses or exceptions consumed in order; the
    last entry keeps answering once the others are used up.
    """

    def __init__(self, routes: dict[tuple[str, str], list[object]] | None = None) -> None:
        self.routes = {key: list(script) for key, script in (routes or {}).items()}
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, timeout: float | None = None, **kwargs: Any) -> Any:
        self.calls.append({"method": method, "url": url, "timeout": timeout, **kwargs})
        script = self.routes.get((method, url))
        if not script:
            msg = f"Unexpected request {method} {url}"
            raise AssertionError(msg)
        outcome = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def calls_to(self, method: str, url: str) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["url"] == url]


class FakeJob:
    def __init__(self, owner: FakeJobScheduler, func: Callable[[], object], **kwargs: Any) -> None:
        self.owner = owner
        self.func = func
        self.kwargs = kwargs
        self.removed = False

    def remove(self) -> None:
        self.removed = True
        self.owner.jobs.remove(self)


class FakeJobScheduler:
    """Record job registrations instead of starting APScheduler threads."""

    def __init__(self) -> None:
        self.running = False
        self.jobs: list[FakeJob] = []
        self.added: list[FakeJob] = []
        self.shutdown_calls = 0

    def start(self) -> None:
        self.running = True

    def shutdown(self, wait: bool = True) -> None:  # noqa: FBT001, FBT002, ARG002
        self.running = False
        self.shutdown_calls += 1

    def add_job(self, func: Callable[[], object], **kwargs: Any) -> FakeJob:
        job = FakeJob(self, func, **kwargs)
        self.jobs.append(job)
        self.added.append(job)
        return job


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record transport backoff waits instead of sleeping."""
    recorded: list[float] = []
    monkeypatch.setattr(transport.time, "sleep", recorded.append)
    return recorded


@pytest.fixture
def gateway() -> SettingsGateway:
    """Settings gateway configured for the test backend with auto-sync on."""
    return SettingsGateway(
        InMemorySettingsStore(
            {"backendUrl": BACKEND, "apiKey": "secret", "autoSync": True, "extraHeaders": []},
        ),
    )


@pytest.fixture
def store() -> InMemoryBookmarkStore:
    """Empty in-memory store laid out like a browser profile."""
    return InMemoryBookmarkStore()


@pytest.fixture
def chromium_bookmarks_file(tmp_path: Path) -> Path:
    """Write a small Chromium profile ``Bookmarks`` file."""
    document = {
        "checksum": "0123456789abcdef",
        "roots": {
            "bookmark_bar": {
                "children": [
                    {
                        "date_added": "13300000000000000",
                        "guid": "guid-python",
                        "id": "4",
                        "meta_info": {"last_visited_desktop": "13300000000000001"},
                        "name": "Python",
                        "type": "url",
                        "url": "https://python.org/",
                    },
                ],
                "date_added": "13200000000000000",
                "date_modified": "0",
                "guid": "guid-bar",
                "id": "1",
                "name": "Bookmarks bar",
                "type": "folder",
            },
            "other": {
                "children": [],
                "date_added": "13200000000000000",
                "guid": "guid-other",
                "id": "2",
                "name": "Other bookmarks",
                "type": "folder",
            },
            "synced": {
                "children": [],
                "guid": "guid-synced",
                "id": "3",
                "name": "Mobile bookmarks",
                "type": "folder",
            },
        },
        "version": 1,
    }
    path = tmp_path / "Bookmarks"
    path.write_text(json.dumps(document, indent=3), encoding="utf-8")
    return path


@pytest.fixture
def sample_export_html(tmp_path: Path) -> Path:
    """Create a synthetic bookmark export with nested folders."""
    content = (
        "<!DOCTYPE NETSCAPE-Bookmark-file-1>\n"
        "<TITLE>Bookmarks</TITLE>\n<H1>Bookmarks</H1>\n"
        "<DL><p>\n"
        '    <DT><H3 ADD_DATE="1700000000">Dev</H3>\n'
        "    <DL><p>\n"
        '        <DT><A HREF="https://docs.python.org/" ADD_DATE="1700000001">Python docs</A>\n'
        "        <DT><H3>Nested</H3>\n"
        "        <DL><p>\n"
        '            <DT><A HREF="https://pypi.org/">PyPI</A>\n'
        "        </DL><p>\n"
        "    </DL><p>\n"
        '    <DT><A HREF="https://example.com/">Example</A>\n'
        "</DL><p>\n"
    )
    p = tmp_path / "bookmarks.html"
    p.write_text(content, encoding="utf-8")
    return p
