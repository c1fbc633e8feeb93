# -*- coding: utf-8 -*-
"""
Source Index Module
===================
Reads a PBIR report definition folder exactly once and keeps every parsed
JSON document in memory, addressable by its POSIX-style relative path.

This is the only module that touches the report files. Extractors receive a
SourceIndex and never a filesystem path, so every downstream step is a pure
function of the snapshot.

Expected layout (all files optional except the root folder itself):

    <Name>.Report/definition/
        version.json
        report.json
        pages/pages.json
        pages/<pageId>/page.json
        pages/<pageId>/visuals/<visualId>/visual.json
        bookmarks/bookmarks.json
        bookmarks/<bookmarkName>.bookmark.json
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping, Optional

logger = logging.getLogger(__name__)


# Shared read-only stand-in for a missing or unparseable document
EMPTY_DOCUMENT = MappingProxyType({})

VERSION_PATH = "version.json"
REPORT_PATH = "report.json"
PAGES_MANIFEST_PATH = "pages/pages.json"
BOOKMARKS_MANIFEST_PATH = "bookmarks/bookmarks.json"


def normalize_path(path: str) -> str:
    """Normalize a relative path to forward slashes without leading './' or '/'."""
    norm = str(path).replace("\\", "/")
    while norm.startswith("./"):
        norm = norm[2:]
    return norm.strip("/")


def page_path(page_id: str) -> str:
    return f"pages/{page_id}/page.json"


def visual_path(page_id: str, visual_id: str) -> str:
    return f"pages/{page_id}/visuals/{visual_id}/visual.json"


def bookmark_path(bookmark_name: str) -> str:
    return f"bookmarks/{bookmark_name}.bookmark.json"


def document_kind(rel_path: str) -> str:
    """Classify a relative path into a logical document kind.

    Used by the schema auditor to group paths across files of the same shape.
    """
    parts = normalize_path(rel_path).split("/")
    name = parts[-1]
    if len(parts) == 1 and name in ("version.json", "report.json"):
        return name[:-len(".json")]
    if parts[0] == "pages":
        if len(parts) == 2 and name == "pages.json":
            return "pages"
        if len(parts) == 3 and name == "page.json":
            return "page"
        if len(parts) == 5 and parts[2] == "visuals" and name == "visual.json":
            return "visual"
    if parts[0] == "bookmarks":
        if len(parts) == 2 and name == "bookmarks.json":
            return "bookmarks"
        if len(parts) == 2 and name.endswith(".bookmark.json"):
            return "bookmark"
    return "other"


def report_name_from_root(root: Path) -> str:
    """Derive the report display name from a '<Name>.Report[/definition]' path."""
    folder = root.name
    if folder.lower() == "definition" and root.parent.name:
        folder = root.parent.name
    if folder.endswith(".Report"):
        folder = folder[:-len(".Report")]
    return folder


def read_json_document(path: Path):
    """Read one JSON file. Power BI Desktop writes these with a UTF-8 BOM."""
    return json.loads(path.read_text(encoding="utf-8-sig"))


# ============================================================
# Snapshot
# ============================================================

@dataclass(frozen=True)
class BookmarkEntry:
    """One bookmark as declared in bookmarks.json, in declared order."""
    name: str
    ordinal: int
    group: str = ""


@dataclass(frozen=True)
class SourceIndex:
    """Immutable in-memory snapshot of a PBIR report definition."""
    report_name: str
    documents: Mapping[str, object]
    root: str = ""
    degraded: tuple = ()
    page_order: tuple = field(default=(), init=False)
    bookmark_order: tuple = field(default=(), init=False)

    def __post_init__(self):
        # Frozen dataclass: derived orderings are computed once here
        object.__setattr__(self, "documents", MappingProxyType(dict(self.documents)))
        object.__setattr__(self, "page_order", self._declared_page_order())
        object.__setattr__(self, "bookmark_order", self._declared_bookmark_order())

    @classmethod
    def from_documents(cls, documents: Mapping[str, object], report_name: str = "",
                       degraded: tuple = ()) -> "SourceIndex":
        """Build an index from already-parsed documents keyed by relative path."""
        normalized = {normalize_path(k): v for k, v in documents.items()}
        return cls(report_name=report_name, documents=normalized, degraded=tuple(degraded))

    # --- lookups ---

    def get(self, rel_path: str) -> Mapping:
        """Return the parsed document at rel_path, or EMPTY_DOCUMENT."""
        doc = self.documents.get(normalize_path(rel_path))
        if isinstance(doc, Mapping):
            return doc
        return EMPTY_DOCUMENT

    @property
    def version(self) -> Mapping:
        return self.get(VERSION_PATH)

    @property
    def report(self) -> Mapping:
        return self.get(REPORT_PATH)

    @property
    def pages_manifest(self) -> Mapping:
        return self.get(PAGES_MANIFEST_PATH)

    @property
    def bookmarks_manifest(self) -> Mapping:
        return self.get(BOOKMARKS_MANIFEST_PATH)

    def page(self, page_id: str) -> Mapping:
        return self.get(page_path(page_id))

    def visual_ids(self, page_id: str) -> list:
        """Visual folder names under a page, sorted for a stable row order."""
        prefix = f"pages/{page_id}/visuals/"
        ids = set()
        for rel_path in self.documents:
            if rel_path.startswith(prefix) and rel_path.endswith("/visual.json"):
                vid = rel_path[len(prefix):-len("/visual.json")]
                if vid and "/" not in vid:
                    ids.add(vid)
        return sorted(ids)

    def visuals(self, page_id: str) -> list:
        """(visual_id, document) pairs for one page."""
        return [(vid, self.get(visual_path(page_id, vid))) for vid in self.visual_ids(page_id)]

    def bookmark(self, bookmark_name: str) -> Mapping:
        return self.get(bookmark_path(bookmark_name))

    def documents_by_kind(self) -> dict:
        """Group relative paths by document kind, each list sorted."""
        grouped = {}
        for rel_path in sorted(self.documents):
            grouped.setdefault(document_kind(rel_path), []).append(rel_path)
        return grouped

    # --- declared orderings ---

    def _page_folder_ids(self) -> list:
        ids = set()
        for rel_path in self.documents:
            parts = rel_path.split("/")
            if len(parts) >= 3 and parts[0] == "pages" and parts[1] != "pages.json":
                ids.add(parts[1])
        return sorted(ids)

    def _declared_page_order(self) -> tuple:
        declared = self.pages_manifest.get("pageOrder", [])
        if not isinstance(declared, list):
            declared = []
        order = []
        for page_id in declared:
            if isinstance(page_id, str) and page_id and page_id not in order:
                order.append(page_id)
        # Page folders missing from the manifest go last, by id
        for page_id in self._page_folder_ids():
            if page_id not in order:
                order.append(page_id)
        return tuple(order)

    def _declared_bookmark_order(self) -> tuple:
        items = self.bookmarks_manifest.get("items", [])
        if not isinstance(items, list):
            return ()
        entries = []
        seen = set()

        def add(name, group=""):
            if isinstance(name, str) and name and name not in seen:
                seen.add(name)
                entries.append(BookmarkEntry(name=name, ordinal=len(entries), group=group))

        for item in items:
            if not isinstance(item, Mapping):
                continue
            # An item carrying "children" is a group, even an empty one
            if "children" in item:
                children = item["children"] if isinstance(item["children"], list) else []
                group = item.get("displayName") or item.get("name", "")
                for child in children:
                    # Children are bare names in PBIR, objects in some older exports
                    if isinstance(child, Mapping):
                        child = child.get("name", "")
                    add(child, group)
            else:
                add(item.get("name", ""))
        return tuple(entries)


# ============================================================
# The single read
# ============================================================

def resolve_definition_root(report_root) -> Path:
    """Return the PBIR definition folder for a report root.

    Accepts either '<Name>.Report' or '<Name>.Report/definition'.
    Raises FileNotFoundError when the folder is not accessible.
    """
    root = Path(report_root)
    if not root.is_dir():
        raise FileNotFoundError(f"Report root not found: {report_root}")
    definition = root / "definition"
    if definition.is_dir():
        return definition
    return root


def build_source_index(report_root, report_name: Optional[str] = None,
                       read_document: Callable = read_json_document) -> SourceIndex:
    """Enumerate and parse every JSON document under the report root, once.

    Malformed or unreadable files become EMPTY_DOCUMENT and are listed in
    SourceIndex.degraded; only an inaccessible root is fatal.
    """
    root = resolve_definition_root(report_root)
    name = report_name or report_name_from_root(root)

    documents = {}
    degraded = []
    for file_path in sorted(root.rglob("*.json")):
        if not file_path.is_file():
            continue
        rel_path = normalize_path(file_path.relative_to(root).as_posix())
        try:
            documents[rel_path] = read_document(file_path)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Unreadable document {rel_path}, using empty document: {e}")
            documents[rel_path] = EMPTY_DOCUMENT
            degraded.append(rel_path)

    logger.info(f"Indexed {len(documents)} documents under {root}")
    index = SourceIndex(report_name=name, documents=documents, root=str(root),
                        degraded=tuple(degraded))
    return index
