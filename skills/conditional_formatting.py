# -*- coding: utf-8 -*-
"""
Conditional Formatting Extraction
=================================
Finds conditional formatting on a visual by scanning two independent
configuration surfaces:

  - colour-by-rule: visual.objects.<object>[].properties.<prop>.solid.color.expr
    whose expression resolves to a model object (cases, fill rule, or field value)
  - bar-style:      visual.objects.<object>[].properties.dataBars

Each hit becomes one ConditionalFormattingRules row. Rules, Gradient and
FieldValue rows carry a small SVG colour swatch for inline display.
"""

import base64
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

from expression_walker import (
    SHAPE_CASES, SHAPE_FILL_RULE, SHAPE_REFERENCE,
    CasesExpr, FillRuleExpr, LiteralExpr,
    color_literal, parse_expression, resolve_expression,
)
from query_ref_parser import parse_query_ref
from report_fields import read_field


CF_RULES = "Rules"
CF_GRADIENT = "Gradient"
CF_FIELD_VALUE = "FieldValue"
CF_DATA_BARS = "DataBars"

# Walker outcome -> CF type. A hit lands in exactly one bucket.
CF_TYPE_BY_SHAPE = {
    SHAPE_CASES: CF_RULES,
    SHAPE_FILL_RULE: CF_GRADIENT,
    SHAPE_REFERENCE: CF_FIELD_VALUE,
}

DATA_BAR_PROPERTY = "dataBars"
DATA_BAR_COLORS = ("positiveColor", "negativeColor", "axisColor")

SWATCH_CELLS = 5
SWATCH_CELL_SIZE = 12
SWATCH_FALLBACK_COLOR = "#CCCCCC"

CF_RULE_COLUMNS = [
    "ReportName", "PageId", "PageName", "VisualId", "VisualType",
    "ConfigObject", "ConfigProperty", "Selector", "CFType", "RefType",
    "TableName", "ObjectName", "RuleCount", "Colors", "SwatchImage",
]


@dataclass(frozen=True)
class FormattingHit:
    """One conditionally formatted property on a visual."""
    config_object: str
    config_property: str
    selector: str
    cf_type: str
    ref_type: str
    table_name: str
    object_name: str
    agg_function: Optional[str]
    rule_count: int
    colors: tuple


# ============================================================
# Surfaces
# ============================================================

def _object_entries(objects):
    """(object_name, entry) for every entry of every object in an objects bag."""
    if not isinstance(objects, Mapping):
        return
    for object_name in sorted(objects):
        entries = objects[object_name]
        if not isinstance(entries, list):
            continue
        for entry in entries:
            if isinstance(entry, Mapping):
                yield object_name, entry


def _selector_metadata(entry) -> str:
    selector = entry.get("selector", {})
    if not isinstance(selector, Mapping):
        return ""
    metadata = selector.get("metadata", "")
    return metadata if isinstance(metadata, str) else ""


def iter_color_rule_surfaces(objects):
    """(object_name, property_name, selector, expr) for colour properties set by expression."""
    for object_name, entry in _object_entries(objects):
        properties = entry.get("properties", {})
        if not isinstance(properties, Mapping):
            continue
        for prop_name in sorted(properties):
            value = properties[prop_name]
            if not isinstance(value, Mapping):
                continue
            solid = value.get("solid")
            color = solid.get("color") if isinstance(solid, Mapping) else None
            if isinstance(color, Mapping) and "expr" in color:
                yield object_name, prop_name, _selector_metadata(entry), color["expr"]


def iter_bar_surfaces(objects):
    """(object_name, selector, dataBars node) for bar-style entries."""
    for object_name, entry in _object_entries(objects):
        properties = entry.get("properties", {})
        if not isinstance(properties, Mapping):
            continue
        bars = properties.get(DATA_BAR_PROPERTY)
        if isinstance(bars, Mapping):
            yield object_name, _selector_metadata(entry), bars


# ============================================================
# Classification
# ============================================================

def _expression_colors(expr_node) -> tuple:
    """Colours a rule can paint, in rule order."""
    parsed = parse_expression(expr_node)
    colors = []
    if isinstance(parsed, CasesExpr):
        for value in parsed.values:
            if isinstance(value, LiteralExpr) and isinstance(value.value, str):
                colors.append(value.value)
        if isinstance(parsed.default, LiteralExpr) and isinstance(parsed.default.value, str):
            colors.append(parsed.default.value)
    elif isinstance(parsed, FillRuleExpr):
        colors.extend(color for _, color in parsed.stops if color)
    return tuple(colors)


def _rule_count(expr_node) -> int:
    parsed = parse_expression(expr_node)
    if isinstance(parsed, CasesExpr):
        return len(parsed.values)
    if isinstance(parsed, FillRuleExpr):
        return len(parsed.stops)
    return 1


def color_rule_hits(objects) -> list:
    """Classify every colour-by-rule surface that resolves to a model object."""
    hits = []
    for object_name, prop_name, selector, expr in iter_color_rule_surfaces(objects):
        match = resolve_expression(expr)
        if match is None:
            continue
        hits.append(FormattingHit(
            config_object=object_name,
            config_property=prop_name,
            selector=selector,
            cf_type=CF_TYPE_BY_SHAPE[match.shape],
            ref_type=match.ref.ref_type,
            table_name=match.entity,
            object_name=match.prop,
            agg_function=match.ref.function,
            rule_count=_rule_count(expr),
            colors=_expression_colors(expr),
        ))
    return hits


def data_bar_hits(objects) -> list:
    hits = []
    for object_name, selector, bars in iter_bar_surfaces(objects):
        ref = parse_query_ref(selector)
        colors = tuple(c for c in (color_literal(bars.get(k, {})) for k in DATA_BAR_COLORS) if c)
        hits.append(FormattingHit(
            config_object=object_name,
            config_property=DATA_BAR_PROPERTY,
            selector=selector,
            cf_type=CF_DATA_BARS,
            ref_type=ref.ref_type if selector else "",
            table_name=ref.table_name,
            object_name=ref.object_name,
            agg_function=ref.agg_function,
            rule_count=1,
            colors=colors,
        ))
    return hits


def formatting_hits(visual_doc) -> list:
    """All CF hits on a visual: colour-by-rule first, then bar-style."""
    objects = read_field(visual_doc, "visual.objects")
    return color_rule_hits(objects) + data_bar_hits(objects)


def count_conditional_formatting(visual_doc) -> int:
    objects = read_field(visual_doc, "visual.objects")
    return len(color_rule_hits(objects)) + len(data_bar_hits(objects))


# ============================================================
# Swatch rendering
# ============================================================

def _is_hex_color(color: str) -> bool:
    if not isinstance(color, str) or not color.startswith("#"):
        return False
    digits = color[1:]
    return len(digits) in (3, 6, 8) and all(c in "0123456789abcdefABCDEF" for c in digits)


def render_swatch(colors, cf_type: str) -> str:
    """Fixed-size SVG swatch as a data URI.

    Always SWATCH_CELLS cells: extra colours are dropped and short lists are
    padded with their last colour. FieldValue rules have no fixed palette and
    get a striped placeholder.
    """
    size = SWATCH_CELL_SIZE
    width = size * SWATCH_CELLS
    cells = [c if _is_hex_color(c) else SWATCH_FALLBACK_COLOR for c in colors][:SWATCH_CELLS]

    parts = [f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{size}">']
    if cf_type == CF_FIELD_VALUE or not cells:
        for i in range(SWATCH_CELLS):
            fill = "#FFFFFF" if i % 2 else SWATCH_FALLBACK_COLOR
            parts.append(f'<rect x="{i * size}" y="0" width="{size}" height="{size}" fill="{fill}"/>')
    else:
        cells = cells + [cells[-1]] * (SWATCH_CELLS - len(cells))
        for i, fill in enumerate(cells):
            parts.append(f'<rect x="{i * size}" y="0" width="{size}" height="{size}" fill="{fill}"/>')
    parts.append("</svg>")

    encoded = base64.b64encode("".join(parts).encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"


def swatch_for(hit: FormattingHit) -> Optional[str]:
    if hit.cf_type == CF_DATA_BARS:
        return None
    return render_swatch(hit.colors, hit.cf_type)


# ============================================================
# Rows
# ============================================================

def cf_rule_rows(visual_doc, report_name: str, page_id: str, page_name: str,
                 visual_id: str, visual_type: str) -> list[dict]:
    """ConditionalFormattingRules rows for one visual."""
    rows = []
    for hit in formatting_hits(visual_doc):
        rows.append({
            "ReportName": report_name,
            "PageId": page_id,
            "PageName": page_name,
            "VisualId": visual_id,
            "VisualType": visual_type,
            "ConfigObject": hit.config_object,
            "ConfigProperty": hit.config_property,
            "Selector": hit.selector,
            "CFType": hit.cf_type,
            "RefType": hit.ref_type,
            "TableName": hit.table_name,
            "ObjectName": hit.object_name,
            "RuleCount": hit.rule_count,
            "Colors": ", ".join(hit.colors),
            "SwatchImage": swatch_for(hit) or "",
        })
    return rows
