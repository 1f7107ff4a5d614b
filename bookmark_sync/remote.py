"""Client for the remote bookmark service."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import quote, urljoin

from .models import BookmarkRecord, BookmarkRecordList, normalise_tags
from .settings import ConfigurationError
from .transport import request_with_retry

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable

    import requests

    from .models import Settings

LOGGER = logging.getLogger(__name__)


def build_headers(settings: Settings, *, json_body: bool = False) -> dict[str, str]:
    """Build the headers for a remote call.

    The bearer token comes first and configured extra headers are applied on top,
    so an extra header may override it. Rows with an empty key are skipped.
    """
    headers = {"Authorization": f"Bearer {settings.api_key}"}
    if json_body:
        headers["Content-Type"] = "application/json"
    else:
        headers["Accept"] = "application/json"
    for header in settings.extra_headers:
        if header.key:
            headers[header.key] = header.value
    return headers


class RemoteBookmarkClient:
    """Typed wrapper over every endpoint of the bookmark service.

    All calls go through :func:`request_with_retry`; errors surface as
    ``TransportError`` subclasses and malformed listings as ``ValueError``.
    """

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        """Bind the client to one settings snapshot."""
        if not settings.backend_url:
            msg = "Please set the backend URL first."
            raise ConfigurationError(msg)
        self._settings = settings
        self._session = session

    def _url(self, path: str) -> str:
        # Absolute paths replace any path component of the configured base URL.
        return urljoin(self._settings.backend_url, path)

    def _get_records(self, path: str, params: dict[str, str] | None = None) -> list[BookmarkRecord]:
        response = request_with_retry(
            self._url(path),
            session=self._session,
            headers=build_headers(self._settings),
            params=params,
        )
        payload = response.json()
        return BookmarkRecordList.model_validate(payload).root

    def search(  # noqa: PLR0913
        self,
        q: str | None = None,
        title: str | None = None,
        tags: Iterable[str] = (),
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> list[BookmarkRecord]:
        """List bookmarks matching every given filter (newest first)."""
        params: dict[str, str] = {}
        if q:
            params["q"] = q
        if title:
            params["title"] = title
        tag_list = normalise_tags(tags)
        if tag_list:
            params["tag"] = ",".join(tag_list)
        if start_date:
            params["startDate"] = start_date
        if end_date:
            params["endDate"] = end_date
        return self._get_records("/bookmarks", params)

    def find(self, url: str) -> BookmarkRecord | None:
        """Return the remote bookmark stored under exactly this URL, if any."""
        for record in self.search(q=url):
            if record.url == url:
                return record
        return None

    def fetch_all(self) -> list[BookmarkRecord]:
        """Fetch the full remote collection used for pull and mirror."""
        records = self._get_records("/bookmarks/sync")
        LOGGER.debug("Fetched %d remote bookmarks", len(records))
        return records

    def upsert(self, url: str, title: str | None, tags: Iterable[str] = ()) -> None:
        """Create or replace the bookmark keyed by URL."""
        request_with_retry(
            self._url("/bookmarks"),
            "POST",
            session=self._session,
            headers=build_headers(self._settings, json_body=True),
            json={"url": url, "title": title, "tags": normalise_tags(tags)},
        )

    def delete(self, url: str) -> None:
        """Remove the bookmark stored under this URL."""
        request_with_retry(
            self._url("/bookmarks"),
            "DELETE",
            session=self._session,
            headers=build_headers(self._settings),
            params={"url": url},
        )

    def reprocess(self, bookmark_id: str) -> None:
        """Ask the service to re-tag a bookmark; the work happens asynchronously."""
        request_with_retry(
            self._url(f"/admin/bookmarks/{quote(bookmark_id, safe='')}/reprocess"),
            "POST",
            session=self._session,
            headers=build_headers(self._settings),
        )
