"""Data models shared by the sync pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime  # noqa: TC003 - pydantic resolves it at runtime
from enum import Enum
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from attrs import define
from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterable


def normalise_tags(values: Iterable[object]) -> list[str]:
    """Lowercase, strip and deduplicate tags while keeping their first-seen order."""
    seen: list[str] = []
    for value in values:
        cleaned = str(value).strip().lower()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


class BookmarkRecord(BaseModel):
    """Bookmark as owned by the remote service (identity is the URL)."""

    id: str | None = None
    url: str
    title: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> str | None:
        return None if value is None else str(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value: list[object] | None) -> list[str]:
        return normalise_tags(value) if value else []

    @property
    def display_title(self) -> str:
        """Title to use for a local node, falling back to the URL."""
        return self.title or self.url


class BookmarkRecordList(RootModel[list[BookmarkRecord]]):
    """Root list model for remote listings (strict all-or-nothing validation)."""


class ExtraHeader(BaseModel):
    """Static header sent along with every remote call."""

    key: str = ""
    value: str = ""

    @field_validator("key", "value", mode="before")
    @classmethod
    def _strip(cls, value: object) -> str:
        return "" if value is None else str(value).strip()


class Settings(BaseModel):
    """Snapshot of the persisted configuration.

    Field aliases are the persisted key names; ``to_storage`` dumps them back.
    """

    model_config = ConfigDict(populate_by_name=True)

    backend_url: str = Field(default="", alias="backendUrl")
    api_key: str = Field(default="", alias="apiKey")
    auto_sync: bool = Field(default=False, alias="autoSync")
    extra_headers: list[ExtraHeader] = Field(default_factory=list, alias="extraHeaders")

    @field_validator("backend_url", "api_key", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("backend_url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        if not value:
            return value
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            msg = f"backendUrl must be an absolute http(s) URL, got {value!r}"
            raise ValueError(msg)
        return value

    @field_validator("auto_sync", mode="before")
    @classmethod
    def _coerce_missing_flag(cls, value: object) -> object:
        return False if value is None else value

    @field_validator("extra_headers", mode="before")
    @classmethod
    def _coerce_missing_headers(cls, value: object) -> object:
        return [] if value is None else value

    def to_storage(self) -> dict[str, object]:
        """Dump the settings using their persisted key names."""
        return self.model_dump(mode="json", by_alias=True)


@define(slots=True)
class NativeNode:
    """Node of the local bookmark tree: a leaf (has a URL) or a folder (has children)."""

    id: str
    title: str = ""
    url: str | None = None
    children: list[NativeNode] | None = None
    parent_id: str | None = None
    date_added: int | None = None

    @property
    def is_leaf(self) -> bool:
        return self.url is not None

    @classmethod
    def folder(
        cls, node_id: str, title: str, children: list[NativeNode] | None = None,
    ) -> NativeNode:
        """Create a folder node, re-parenting the given children onto it."""
        node = cls(id=node_id, title=title, children=[])
        for child in children or []:
            node.add_child(child)
        return node

    def add_child(self, child: NativeNode) -> NativeNode:
        """Append a child (folders only) and return it."""
        if self.children is None:
            msg = f"Bookmark node {self.id} is a leaf and cannot hold children"
            raise ValueError(msg)
        child.parent_id = self.id
        self.children.append(child)
        return child


@dataclass(slots=True, frozen=True)
class FlatBookmark:
    """Leaf of the local tree projected for reconciliation."""

    id: str
    url: str
    title: str = ""


@dataclass(slots=True)
class ReconciliationPlan:
    """Mutations computed by one reconciliation policy."""

    to_create_locally: list[BookmarkRecord] = field(default_factory=list)
    to_delete_locally: list[FlatBookmark] = field(default_factory=list)
    to_create_remotely: list[FlatBookmark] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.to_create_locally or self.to_delete_locally or self.to_create_remotely)


@dataclass(slots=True)
class ImportResult:
    """Aggregate outcome of a push; per-item failures are counted, not raised."""

    success: int = 0
    fail: int = 0

    @property
    def total(self) -> int:
        return self.success + self.fail


@dataclass(slots=True)
class PullResult:
    """Outcome of a non-destructive pull."""

    created: int = 0
    failed: int = 0
    remote_total: int = 0


class MirrorStatus(Enum):
    """Whether a mirror pass ran or was skipped because autoSync is off."""

    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class MirrorResult:
    """Outcome of a destructive mirror pass."""

    status: MirrorStatus
    created: int = 0
    deleted: int = 0
    failed: int = 0
