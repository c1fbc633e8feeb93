# -*- coding: utf-8 -*-
"""
Bookmark Parser Module
======================
Reads bookmarks from an indexed PBIR report: one Bookmarks row per declared
bookmark (declared order, groups flattened) and one BookmarkActions row per
visual captured in a bookmark's snapshot.

Bookmark filter conditions are rendered to DAX-like text so analysts can
read what a bookmark applies without opening the JSON.
"""

import logging
import re
from collections.abc import Mapping

from expression_walker import decode_literal
from report_fields import read_field
from source_index import SourceIndex

logger = logging.getLogger(__name__)

RECORD_ERRORS = (KeyError, TypeError, AttributeError, ValueError, IndexError)

BOOKMARK_COLUMNS = [
    "ReportName", "BookmarkName", "DisplayName", "BookmarkOrdinal", "BookmarkGroup",
    "ActivePageId", "ActivePageName", "TargetPageExists", "SnapshotVisualCount",
    "HiddenVisualCount", "FilterCount", "Filters", "CapturesData",
    "CapturesDisplay", "CapturesCurrentPage", "AppliesToSelectedVisuals",
]

BOOKMARK_ACTION_COLUMNS = [
    "ReportName", "BookmarkName", "BookmarkDisplayName", "PageId", "VisualId",
    "SnapshotVisualType", "IsHidden", "IsGroup", "FilterCount",
    "ProjectionCount", "HasObjectOverrides",
]

GROUP_SNAPSHOT_TYPE = "visualGroup"


# ============================================================
# Filter condition -> DAX text
# ============================================================

# ComparisonKind -> DAX operator
_COMPARISON_OPS = {0: "=", 1: ">", 2: ">=", 3: "<", 4: "<=", 5: "<>"}

# Two-operand string predicates -> DAX template
_STRING_PREDICATES = {
    "Contains": "CONTAINSSTRING({col}, {val})",
    "DoesNotContain": "NOT CONTAINSSTRING({col}, {val})",
    "StartsWith": "LEFT({col}, LEN({val})) = {val}",
    "DoesNotStartWith": "NOT (LEFT({col}, LEN({val})) = {val})",
}

UNSUPPORTED = "-- unsupported condition"


def literal_to_dax(value_str) -> str:
    """PBIR literal -> DAX literal ('x' -> "x", datetime'2020-06-01T..' -> DATE(2020, 6, 1))."""
    if isinstance(value_str, str):
        dt = re.match(r"datetime'(\d{4})-(\d{2})-(\d{2})", value_str.strip())
        if dt:
            y, m, d = (int(g) for g in dt.groups())
            return f"DATE({y}, {m}, {d})"
    value = decode_literal(value_str)
    if value is None:
        return "BLANK()"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value_str, str) and value_str.strip().startswith("'"):
        return '"' + str(value).replace('"', '""') + '"'
    return str(value)


def _alias_map(query_filter) -> dict:
    aliases = {}
    for entry in query_filter.get("From", []) or []:
        if isinstance(entry, Mapping) and entry.get("Name") and entry.get("Entity"):
            aliases[entry["Name"]] = entry["Entity"]
    return aliases


def _column_text(node, aliases: dict) -> str:
    """'Table'[Column] for a Column/Measure operand, resolving From aliases."""
    if not isinstance(node, Mapping):
        return "[?]"
    for kind in ("Column", "Measure"):
        ref = node.get(kind)
        if isinstance(ref, Mapping):
            source = ref.get("Expression", {}).get("SourceRef", {})
            table = aliases.get(source.get("Source", ""), source.get("Entity", ""))
            prop = ref.get("Property", "")
            return f"'{table}'[{prop}]" if table else f"[{prop}]"
    return "[?]"


def _value_text(node) -> str:
    lit = node.get("Literal", {}) if isinstance(node, Mapping) else {}
    return literal_to_dax(lit.get("Value") if isinstance(lit, Mapping) else None)


def _in_text(in_node, aliases: dict, negated: bool) -> str:
    expressions = in_node.get("Expressions", [])
    if not expressions:
        return UNSUPPORTED
    col = _column_text(expressions[0], aliases)
    values = [_value_text(row[0]) for row in in_node.get("Values", []) if isinstance(row, list) and row]
    if len(values) == 1:
        return f"{col} {'<>' if negated else '='} {values[0]}"
    return f"{'NOT ' if negated else ''}{col} IN {{{', '.join(values)}}}"


def condition_to_dax(condition, aliases: dict) -> str:
    """Render one Where[].Condition node; unknown shapes render as UNSUPPORTED."""
    if not isinstance(condition, Mapping):
        return UNSUPPORTED

    if "Not" in condition:
        inner = condition["Not"].get("Expression", {})
        if "In" in inner:
            return _in_text(inner["In"], aliases, negated=True)
        return f"NOT ({condition_to_dax(inner, aliases)})"

    for op, joiner, wrap in (("And", " && ", False), ("Or", " || ", True)):
        if op in condition:
            node = condition[op]
            left = condition_to_dax(node.get("Left", {}), aliases)
            right = condition_to_dax(node.get("Right", {}), aliases)
            return f"({left}){joiner}({right})" if wrap else f"{left}{joiner}{right}"

    if "Comparison" in condition:
        comp = condition["Comparison"]
        op = _COMPARISON_OPS.get(comp.get("ComparisonKind", 0), "=")
        col = _column_text(comp.get("Left", {}), aliases)
        return f"{col} {op} {_value_text(comp.get('Right'))}"

    if "In" in condition:
        return _in_text(condition["In"], aliases, negated=False)

    if "Between" in condition:
        node = condition["Between"]
        col = _column_text(node.get("Expression", node.get("Left", {})), aliases)
        lower = _value_text(node.get("LowerBound", node.get("Lower")))
        upper = _value_text(node.get("UpperBound", node.get("Upper")))
        return f"{col} >= {lower} && {col} <= {upper}"

    for op, template in _STRING_PREDICATES.items():
        if op in condition:
            node = condition[op]
            return template.format(col=_column_text(node.get("Left", {}), aliases),
                                   val=_value_text(node.get("Right")))

    return UNSUPPORTED


def filter_expressions(filter_obj) -> list:
    """DAX text for each Where clause of one filter; value-less filters yield nothing."""
    if not isinstance(filter_obj, Mapping):
        return []
    query_filter = filter_obj.get("filter")
    if not isinstance(query_filter, Mapping):
        return []
    aliases = _alias_map(query_filter)
    results = []
    for where in query_filter.get("Where", []) or []:
        condition = where.get("Condition") if isinstance(where, Mapping) else None
        if condition:
            dax = condition_to_dax(condition, aliases)
            if not dax.startswith("--"):
                results.append(dax)
    return results


def filters_in(container) -> list:
    """DAX text for a filters block ({"byName": {...}, "byExpr": [...]})."""
    block = container.get("filters", {}) if isinstance(container, Mapping) else {}
    if not isinstance(block, Mapping):
        return []
    results = []
    by_name = block.get("byName", {})
    if isinstance(by_name, Mapping):
        for name in sorted(by_name):
            results.extend(filter_expressions(by_name[name]))
    by_expr = block.get("byExpr", [])
    for filter_obj in by_expr if isinstance(by_expr, list) else []:
        results.extend(filter_expressions(filter_obj))
    return results


# ============================================================
# Snapshot walking
# ============================================================

def _sections(bm_data) -> dict:
    return read_field(bm_data, "bookmark.sections")


def _projection_count(single_visual) -> int:
    projections = single_visual.get("projections", {})
    if not isinstance(projections, Mapping):
        return 0
    return sum(len(p) for p in projections.values() if isinstance(p, list))


def _snapshot_type(single_visual) -> str:
    """Recorded visual type, or "" when the snapshot did not record one."""
    vis_type = single_visual.get("visualType", "")
    return vis_type if isinstance(vis_type, str) else ""


def snapshot_visuals(bm_data) -> list[dict]:
    """One entry per visual captured in the snapshot, across every section."""
    entries = []
    sections = _sections(bm_data)
    for page_id in sorted(sections):
        section = sections[page_id]
        if not isinstance(section, Mapping):
            continue

        containers = section.get("visualContainers", {})
        containers = containers if isinstance(containers, Mapping) else {}
        for visual_id in sorted(containers):
            container = containers[visual_id]
            if not isinstance(container, Mapping):
                continue
            single = container.get("singleVisual", {})
            single = single if isinstance(single, Mapping) else {}
            display = single.get("display", {})
            mode = display.get("mode", "") if isinstance(display, Mapping) else ""
            entries.append({
                "PageId": page_id,
                "VisualId": visual_id,
                "SnapshotVisualType": _snapshot_type(single),
                "IsHidden": mode == "hidden",
                "IsGroup": False,
                "FilterCount": len(filters_in(container)),
                "ProjectionCount": _projection_count(single),
                "HasObjectOverrides": bool(single.get("objects")),
            })

        groups = section.get("visualContainerGroups", {})
        groups = groups if isinstance(groups, Mapping) else {}
        for group_id in sorted(groups):
            if group_id in containers:
                continue
            group = groups[group_id]
            group = group if isinstance(group, Mapping) else {}
            entries.append({
                "PageId": page_id,
                "VisualId": group_id,
                "SnapshotVisualType": GROUP_SNAPSHOT_TYPE,
                "IsHidden": group.get("isHidden", False) is True,
                "IsGroup": True,
                "FilterCount": 0,
                "ProjectionCount": 0,
                "HasObjectOverrides": False,
            })
    return entries


def bookmark_filters(bm_data) -> list:
    """Report-level plus per-section filters captured by the bookmark."""
    exploration = bm_data.get("explorationState", {})
    exploration = exploration if isinstance(exploration, Mapping) else {}
    results = filters_in(exploration)
    sections = _sections(bm_data)
    for page_id in sorted(sections):
        results.extend(filters_in(sections[page_id]))
    return results


# ============================================================
# Main bookmark parsing
# ============================================================

def _bookmark_row(index: SourceIndex, entry, bm_data, visuals: list, page_names: dict) -> dict:
    active = read_field(bm_data, "bookmark.active_section")
    filters = bookmark_filters(bm_data)
    return {
        "ReportName": index.report_name,
        "BookmarkName": entry.name,
        "DisplayName": read_field(bm_data, "bookmark.display_name") or entry.name,
        "BookmarkOrdinal": entry.ordinal,
        "BookmarkGroup": entry.group,
        "ActivePageId": active,
        "ActivePageName": page_names.get(active, active),
        "TargetPageExists": bool(active) and active in page_names,
        "SnapshotVisualCount": len(visuals),
        "HiddenVisualCount": sum(1 for v in visuals if v["IsHidden"]),
        "FilterCount": len(filters),
        "Filters": "; ".join(filters),
        "CapturesData": not read_field(bm_data, "bookmark.suppress_data"),
        "CapturesDisplay": not read_field(bm_data, "bookmark.suppress_display"),
        "CapturesCurrentPage": not read_field(bm_data, "bookmark.suppress_active_section"),
        "AppliesToSelectedVisuals": read_field(bm_data, "bookmark.apply_only_to_targets"),
    }


def parse_bookmarks(index: SourceIndex, page_names: dict) -> tuple:
    """Bookmarks and BookmarkActions rows for every declared bookmark.

    Args:
        index: the report snapshot
        page_names: page id -> display name, from the Pages extractor

    Returns:
        (bookmark_rows, action_rows)
    """
    bookmark_rows = []
    action_rows = []

    for entry in index.bookmark_order:
        bm_data = index.bookmark(entry.name)
        if not bm_data:
            logger.warning(f"Bookmark file not found or empty: {entry.name}")
        try:
            visuals = snapshot_visuals(bm_data)
            row = _bookmark_row(index, entry, bm_data, visuals, page_names)
        except RECORD_ERRORS as e:
            logger.warning(f"Bookmark {entry.name} degraded to defaults: {e}")
            visuals = []
            row = _bookmark_row(index, entry, {}, visuals, page_names)

        bookmark_rows.append(row)
        for visual in visuals:
            action_rows.append({
                "ReportName": index.report_name,
                "BookmarkName": entry.name,
                "BookmarkDisplayName": row["DisplayName"],
                **visual,
            })

    return bookmark_rows, action_rows
