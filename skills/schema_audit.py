# -*- coding: utf-8 -*-
"""
Schema Coverage Audit
=====================
On-demand diagnostic: which JSON paths exist in the report that the
extractors never read?

Every key path in every document is enumerated (list levels collapse into a
'[]' suffix on the key holding the list, e.g. "visual.objects.labels[]") and
checked against the known-path registry in report_fields. Descent stops at
expression-grammar keys; what lies below them is read generically by the
expression walker.

A path is reported as a gap only when it and its parent are both unknown.
Coarse registry entries cover whole subtrees through their parent, so this
keeps noise down, at the cost of missing an unread leaf under a known parent.
"""

import logging
from collections import Counter
from collections.abc import Mapping

import pandas as pd

from expression_walker import EXPRESSION_MARKERS
from report_fields import known_path_patterns
from source_index import SourceIndex

logger = logging.getLogger(__name__)

LIST_SUFFIX = "[]"
WILDCARD = "*"

SCHEMA_PATH_COLUMNS = [
    "ReportName", "Document", "Path", "Depth", "Occurrences", "IsKnown",
    "ParentIsUnknown", "IsGap",
]


def base_key(segment: str) -> str:
    """Key name without its list suffixes ('filters[][]' -> 'filters')."""
    while segment.endswith(LIST_SUFFIX):
        segment = segment[:-len(LIST_SUFFIX)]
    return segment


# ============================================================
# Enumeration
# ============================================================

def _visit(path: tuple, value, counts: Counter):
    if isinstance(value, list):
        path = path[:-1] + (path[-1] + LIST_SUFFIX,)
    counts[path] += 1
    if base_key(path[-1]) in EXPRESSION_MARKERS:
        return
    for element in value if isinstance(value, list) else [value]:
        if isinstance(element, Mapping):
            for key, child in element.items():
                _visit(path + (str(key),), child, counts)
        elif isinstance(element, list):
            _visit(path, element, counts)


def enumerate_paths(document, counts: Counter = None) -> Counter:
    """Count every key path (as a tuple of segments) in one document."""
    counts = Counter() if counts is None else counts
    if isinstance(document, Mapping):
        for key, child in document.items():
            _visit((str(key),), child, counts)
    return counts


# ============================================================
# Registry matching
# ============================================================

def _segment_matches(pattern: str, segment: str) -> bool:
    if pattern == WILDCARD:
        return True
    if pattern == WILDCARD + LIST_SUFFIX:
        return segment.endswith(LIST_SUFFIX)
    if pattern == segment:
        return True
    # A registered field that holds a list covers its list levels too
    return not pattern.endswith(LIST_SUFFIX) and pattern == base_key(segment)


def path_matches(pattern: tuple, path: tuple) -> bool:
    return len(pattern) == len(path) and all(
        _segment_matches(p, s) for p, s in zip(pattern, path))


def registry_patterns(document: str) -> list:
    """Registry patterns for a document kind, plus every prefix of them.

    Reading a field means walking through its ancestors, so ancestors count
    as known.
    """
    patterns = set()
    for dotted in known_path_patterns(document):
        segments = tuple(dotted.split("."))
        for depth in range(1, len(segments) + 1):
            patterns.add(segments[:depth])
    return sorted(patterns)


def is_known(path: tuple, patterns: list) -> bool:
    return any(path_matches(pattern, path) for pattern in patterns)


# ============================================================
# Audit
# ============================================================

def audit_schema_coverage(index: SourceIndex) -> pd.DataFrame:
    """One observation per (document kind, path) across the whole snapshot.

    Output is sorted by document kind then path, so repeated runs over the
    same snapshot produce identical tables.
    """
    rows = []
    for kind, rel_paths in sorted(index.documents_by_kind().items()):
        counts = Counter()
        for rel_path in rel_paths:
            enumerate_paths(index.get(rel_path), counts)

        patterns = registry_patterns(kind)
        known = {path: is_known(path, patterns) for path in counts}
        for path in sorted(counts, key=".".join):
            parent = path[:-1]
            # Top-level keys hang off the document root, which is always read
            parent_unknown = bool(parent) and not known[parent]
            rows.append({
                "ReportName": index.report_name,
                "Document": kind,
                "Path": ".".join(path),
                "Depth": len(path),
                "Occurrences": counts[path],
                "IsKnown": known[path],
                "ParentIsUnknown": parent_unknown,
                "IsGap": not known[path] and parent_unknown,
            })

    df = pd.DataFrame(rows, columns=SCHEMA_PATH_COLUMNS)
    logger.info(f"Schema audit: {len(df)} paths, {int(df['IsGap'].sum())} gaps")
    return df
