"""Local hierarchical bookmark stores.

Every store exposes the same three operations to the reconciler:
``get_tree`` (a detached snapshot), ``create`` (append a leaf) and ``remove``
(delete a leaf by id). Folders are never created or removed by the sync code.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from .models import NativeNode

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterator

LOGGER = logging.getLogger(__name__)

# Seconds between 1601-01-01 (WebKit epoch) and 1970-01-01.
_WEBKIT_EPOCH_OFFSET = 11_644_473_600

_CHROMIUM_ROOT_TITLES = {
    "bookmark_bar": "Bookmarks bar",
    "other": "Other bookmarks",
    "synced": "Mobile bookmarks",
}


class BookmarkStoreError(RuntimeError):
    """Raised when the local store cannot be read or mutated as requested."""


def iter_nodes(root: NativeNode) -> Iterator[NativeNode]:
    """Yield every node of the tree, depth-first in pre-order."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        if node.children:
            stack.extend(reversed(node.children))


class BookmarkTreeStore(ABC):
    """Base class holding the tree operations shared by every store.

    Subclasses only provide ``_load`` (the current tree), ``_save`` (persist
    it after a mutation) and ``_default_parent_id`` (where new leaves go).
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @abstractmethod
    def _load(self) -> NativeNode:
        """Return the live tree to read or mutate."""

    @abstractmethod
    def _save(self, root: NativeNode) -> None:
        """Persist the tree after a mutation."""

    @abstractmethod
    def _default_parent_id(self, root: NativeNode) -> str:
        """Id of the folder receiving leaves created without an explicit parent."""

    def get_tree(self) -> NativeNode:
        """Return a snapshot of the whole tree, detached from the store."""
        with self._lock:
            return copy.deepcopy(self._load())

    def create(self, title: str, url: str, parent_id: str | None = None) -> NativeNode:
        """Append a leaf bookmark and return a snapshot of it."""
        with self._lock:
            root = self._load()
            index = {node.id: node for node in iter_nodes(root)}
            target_id = parent_id or self._default_parent_id(root)
            parent = index.get(target_id)
            if parent is None or parent.children is None:
                msg = f"Bookmark folder {target_id} does not exist"
                raise BookmarkStoreError(msg)
            node = NativeNode(
                id=_next_id(index),
                title=title,
                url=url,
                date_added=int(time.time()),
            )
            parent.add_child(node)
            self._save(root)
            LOGGER.debug("Created bookmark %s (%s) under %s", node.id, url, parent.id)
            return copy.deepcopy(node)

    def remove(self, node_id: str) -> None:
        """Remove a leaf bookmark by id."""
        with self._lock:
            root = self._load()
            index = {node.id: node for node in iter_nodes(root)}
            node = index.get(node_id)
            if node is None:
                msg = f"Bookmark {node_id} does not exist"
                raise BookmarkStoreError(msg)
            if not node.is_leaf:
                msg = f"Bookmark {node_id} is a folder; only leaves can be removed"
                raise BookmarkStoreError(msg)
            parent = index.get(node.parent_id) if node.parent_id is not None else None
            if parent is None or parent.children is None:
                msg = f"Bookmark {node_id} has no parent folder"
                raise BookmarkStoreError(msg)
            parent.children = [child for child in parent.children if child is not node]
            self._save(root)
            LOGGER.debug("Removed bookmark %s (%s)", node_id, node.url)


def _next_id(index: dict[str, NativeNode]) -> str:
    numeric = [int(node_id) for node_id in index if node_id.isdigit()]
    return str(max(numeric, default=0) + 1)


class InMemoryBookmarkStore(BookmarkTreeStore):
    """Store keeping the tree in process memory.

    Without an explicit tree it starts with the browser layout: a root holding
    "Bookmarks bar" and "Other bookmarks", new leaves going to the latter.
    """

    def __init__(self, root: NativeNode | None = None, default_parent_id: str | None = None) -> None:
        super().__init__()
        if root is None:
            root = NativeNode.folder(
                "0",
                "",
                [
                    NativeNode.folder("1", _CHROMIUM_ROOT_TITLES["bookmark_bar"]),
                    NativeNode.folder("2", _CHROMIUM_ROOT_TITLES["other"]),
                ],
            )
            default_parent_id = default_parent_id or "2"
        self._root = root
        self._default = default_parent_id or root.id

    def _load(self) -> NativeNode:
        return self._root

    def _save(self, root: NativeNode) -> None:
        self._root = root

    def _default_parent_id(self, root: NativeNode) -> str:  # noqa: ARG002
        return self._default


class ChromiumBookmarkStore(BookmarkTreeStore):
    """Store backed by a Chromium-family profile ``Bookmarks`` JSON file.

    The file is re-read for every operation, so edits made by the browser between
    passes are picked up. Keys this module does not know (guid, meta_info, ...)
    are carried over on write. The stale ``checksum`` is dropped; the browser
    recomputes it. Write only while the browser is closed, or it will overwrite
    the file with its in-memory copy.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path.expanduser()
        self._root_keys: dict[str, str] = {}

    @property
    def path(self) -> Path:
        return self._path

    def _read_document(self) -> dict[str, object]:
        try:
            document: object = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            msg = f"Cannot read bookmark file {self._path}: {exc}"
            raise BookmarkStoreError(msg) from exc
        if not isinstance(document, dict) or not isinstance(document.get("roots"), dict):
            msg = f"Bookmark file {self._path} is missing its 'roots' object"
            raise BookmarkStoreError(msg)
        return document

    def _load(self) -> NativeNode:
        roots: dict[str, object] = self._read_document()["roots"]  # type: ignore[assignment]
        root = NativeNode.folder("0", "")
        self._root_keys = {}
        for key, raw in roots.items():
            if not isinstance(raw, dict) or raw.get("type") != "folder":
                continue
            node = _node_from_chromium(raw)
            node.title = node.title or _CHROMIUM_ROOT_TITLES.get(key, key)
            root.add_child(node)
            self._root_keys[node.id] = key
        return root

    def _default_parent_id(self, root: NativeNode) -> str:
        by_key = {key: node_id for node_id, key in self._root_keys.items()}
        if "other" in by_key:
            return by_key["other"]
        if root.children:
            return root.children[0].id
        msg = f"Bookmark file {self._path} has no root folder to add bookmarks to"
        raise BookmarkStoreError(msg)

    def _save(self, root: NativeNode) -> None:
        document = self._read_document()
        raw_by_id = {
            str(raw.get("id")): raw for raw in _iter_raw_nodes(document["roots"])  # type: ignore[arg-type]
        }
        roots: dict[str, object] = dict(document["roots"])  # type: ignore[arg-type]
        for node in root.children or []:
            key = self._root_keys.get(node.id)
            if key is not None:
                roots[key] = _node_to_chromium(node, raw_by_id)
        document["roots"] = roots
        document.pop("checksum", None)

        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".Bookmarks-")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(document, fh, indent=3, ensure_ascii=False)
        Path(tmp_name).replace(self._path)
        LOGGER.debug("Wrote bookmark file %s", self._path)


def _iter_raw_nodes(roots: dict[str, object]) -> Iterator[dict[str, object]]:
    stack = [raw for raw in roots.values() if isinstance(raw, dict)]
    while stack:
        raw = stack.pop()
        yield raw
        children = raw.get("children")
        if isinstance(children, list):
            stack.extend(child for child in children if isinstance(child, dict))


def _node_from_chromium(raw: dict[str, object]) -> NativeNode:
    """Convert a raw node (and its subtree) without recursion."""

    def _convert(item: dict[str, object]) -> NativeNode:
        node = NativeNode(
            id=str(item.get("id", "")),
            title=str(item.get("name") or ""),
            date_added=_from_webkit(item.get("date_added")),
        )
        if item.get("type") == "url":
            node.url = str(item.get("url") or "")
        else:
            node.children = []
        return node

    top = _convert(raw)
    stack: list[tuple[dict[str, object], NativeNode]] = [(raw, top)]
    while stack:
        item, node = stack.pop()
        if node.children is None:
            continue
        for child_raw in item.get("children") or []:  # type: ignore[union-attr]
            if isinstance(child_raw, dict):
                child = node.add_child(_convert(child_raw))
                stack.append((child_raw, child))
    return top


def _node_to_chromium(
    node: NativeNode, raw_by_id: dict[str, dict[str, object]],
) -> dict[str, object]:
    def _convert(item: NativeNode) -> dict[str, object]:
        out = {k: v for k, v in raw_by_id.get(item.id, {}).items() if k != "children"}
        out.update({"id": item.id, "name": item.title})
        out.setdefault("guid", str(uuid.uuid4()))
        out.setdefault("date_added", _to_webkit(item.date_added or int(time.time())))
        if item.is_leaf:
            out.update({"type": "url", "url": item.url})
        else:
            out.update({"type": "folder", "children": []})
        return out

    top = _convert(node)
    stack: list[tuple[NativeNode, dict[str, object]]] = [(node, top)]
    while stack:
        item, out = stack.pop()
        for child in item.children or []:
            child_out = _convert(child)
            out["children"].append(child_out)  # type: ignore[union-attr]
            stack.append((child, child_out))
    return top


def _from_webkit(value: object) -> int | None:
    try:
        micros = int(str(value))
    except (TypeError, ValueError):
        return None
    if micros <= 0:
        return None
    return micros // 1_000_000 - _WEBKIT_EPOCH_OFFSET


def _to_webkit(seconds: int) -> str:
    return str((seconds + _WEBKIT_EPOCH_OFFSET) * 1_000_000)
