"""Local store backed by a Netscape bookmark HTML export (Chrome/Brave/Firefox)."""

from __future__ import annotations

import html
import logging
from typing import TYPE_CHECKING

from bs4 import BeautifulSoup, Tag

from .local_store import BookmarkStoreError, BookmarkTreeStore
from .models import NativeNode

if TYPE_CHECKING:  # pragma: no cover
    from pathlib import Path

LOGGER = logging.getLogger(__name__)

HTML_HEADER = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<!-- This is an automatically generated file.
     It will be read and overwritten.
     DO NOT EDIT! -->
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>Bookmarks</TITLE>
<H1>Bookmarks</H1>
"""


def parse_bookmark_tree(html_text: str) -> NativeNode:
    """Parse an exported bookmark file into a tree.

    Folders are ``<DT><H3>`` headers followed by a ``<DL>`` of entries; leaves
    are ``<A HREF>`` anchors. Ids are assigned in document order, so the same
    file always yields the same ids.
    """
    soup = BeautifulSoup(html_text, "html.parser")
    root_dl = soup.find("dl")
    if root_dl is None:
        msg = "Bookmark export is missing <DL> root element"
        raise ValueError(msg)

    root = NativeNode.folder("0", "")
    folders_by_dt: dict[int, NativeNode] = {}
    next_id = 1

    for element in root_dl.find_all(["h3", "a"]):
        parent = folders_by_dt.get(id(_enclosing_folder_dt(element)), root)
        if element.name == "h3":
            container = element.find_parent("dt")
            if container is None:
                continue
            folder = parent.add_child(
                NativeNode.folder(str(next_id), element.get_text(strip=True)),
            )
            folder.date_added = _int_attr(element, "add_date")
            folders_by_dt[id(container)] = folder
            next_id += 1
            continue

        href_value = element.get("href")
        if not isinstance(href_value, str) or not href_value.strip():
            LOGGER.debug("Skipping anchor without textual href")
            continue
        parent.add_child(
            NativeNode(
                id=str(next_id),
                title=element.get_text(strip=True),
                url=href_value.strip(),
                date_added=_int_attr(element, "add_date"),
            ),
        )
        next_id += 1

    return root


def _enclosing_folder_dt(element: Tag) -> Tag | None:
    """Return the ``<DT>`` of the folder an element belongs to (None at top level)."""
    start = element.find_parent("dt") if element.name == "h3" else element
    if start is None:
        return None
    current_dl = start.find_parent("dl")
    if current_dl is None:
        return None
    return current_dl.find_parent("dt")


def _int_attr(element: Tag, name: str) -> int | None:
    value = element.get(name)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def render_html(root: NativeNode) -> str:
    """Render the tree as a Netscape bookmark file, keeping native child order."""
    lines: list[str] = [HTML_HEADER.strip(), "<DL><p>"]
    # Explicit stack of (node, depth); a None node closes the folder list at that depth.
    stack: list[tuple[NativeNode | None, int]] = [
        (child, 1) for child in reversed(root.children or [])
    ]
    while stack:
        node, depth = stack.pop()
        indent = "    " * depth
        if node is None:
            lines.append(f"{indent}</DL><p>")
            continue
        add_date = f' ADD_DATE="{node.date_added}"' if node.date_added else ""
        if node.is_leaf:
            lines.append(
                f'{indent}<DT><A HREF="{html.escape(node.url or "", quote=True)}"{add_date}>'
                f"{html.escape(node.title)}</A>",
            )
            continue
        lines.append(f"{indent}<DT><H3{add_date}>{html.escape(node.title)}</H3>")
        lines.append(f"{indent}<DL><p>")
        stack.append((None, depth))
        stack.extend((child, depth + 1) for child in reversed(node.children or []))
    lines.append("</DL><p>")
    return "\n".join(lines) + "\n"


class NetscapeHtmlStore(BookmarkTreeStore):
    """Store reading and rewriting a bookmark HTML export.

    New leaves are appended at the top level of the export. The file is parsed
    again for every operation and fully re-rendered after each mutation.
    """

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path.expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> NativeNode:
        LOGGER.debug("Parsing bookmark export from %s", self._path)
        try:
            html_text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            msg = f"Cannot read bookmark export {self._path}: {exc}"
            raise BookmarkStoreError(msg) from exc
        try:
            return parse_bookmark_tree(html_text)
        except ValueError as exc:
            raise BookmarkStoreError(str(exc)) from exc

    def _save(self, root: NativeNode) -> None:
        self._path.write_text(render_html(root), encoding="utf-8")
        LOGGER.debug("Wrote bookmark export %s", self._path)

    def _default_parent_id(self, root: NativeNode) -> str:
        return root.id
