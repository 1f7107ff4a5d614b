"""Project a bookmark tree onto the flat list of its leaves."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import FlatBookmark

if TYPE_CHECKING:  # pragma: no cover
    from .models import NativeNode


def flatten(root: NativeNode) -> list[FlatBookmark]:
    """Return every leaf of the tree, depth-first in pre-order.

    Children are visited in the store's native order. Folders are walked but
    never emitted. The walk uses an explicit stack so deeply nested folders
    cannot exhaust the interpreter's recursion limit.
    """
    flat: list[FlatBookmark] = []
    stack: list[NativeNode] = [root]
    while stack:
        node = stack.pop()
        if node.url is not None:
            flat.append(FlatBookmark(id=node.id, url=node.url, title=node.title))
        if node.children:
            stack.extend(reversed(node.children))
    return flat


def url_set(bookmarks: list[FlatBookmark]) -> set[str]:
    """Return the identity keys of the given leaves."""
    return {bookmark.url for bookmark in bookmarks}
