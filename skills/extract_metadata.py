# -*- coding: utf-8 -*-
"""
Skill 1: extract_metadata.py
PBIR Inventory: Power BI report content inventory

Extracts one relational table per entity from an indexed PBIR report:
report settings, pages, visuals, model references, conditional formatting
rules, buttons, and (via bookmark_parser) bookmarks and bookmark actions.

Input:  SourceIndex built by source_index.build_source_index()
Output: dict of table name -> pandas DataFrame (see *_COLUMNS below)
"""

import logging
import re
from collections.abc import Mapping

import pandas as pd

from bookmark_parser import BOOKMARK_ACTION_COLUMNS, BOOKMARK_COLUMNS, parse_bookmarks
from conditional_formatting import (
    CF_RULE_COLUMNS, cf_rule_rows, color_rule_hits, count_conditional_formatting,
)
from expression_walker import SHAPE_REFERENCE, literal_value, resolve_expression
from query_ref_parser import REF_FIELD_PARAMETER, parse_query_ref
from report_fields import field_default, read_field
from source_index import SourceIndex

logger = logging.getLogger(__name__)

# Per-record failures degrade that record only
RECORD_ERRORS = (KeyError, TypeError, AttributeError, ValueError, IndexError)


# ============================================================
# Visual type display names
# ============================================================

VISUAL_TYPE_DISPLAY = {
    "barChart": "Bar Chart",
    "clusteredBarChart": "Clustered Bar Chart",
    "clusteredColumnChart": "Clustered Column Chart",
    "stackedBarChart": "Stacked Bar Chart",
    "stackedColumnChart": "Stacked Column Chart",
    "hundredPercentStackedBarChart": "100% Stacked Bar Chart",
    "hundredPercentStackedColumnChart": "100% Stacked Column Chart",
    "lineChart": "Line Chart",
    "areaChart": "Area Chart",
    "stackedAreaChart": "Stacked Area Chart",
    "lineStackedColumnComboChart": "Line & Stacked Column Chart",
    "lineClusteredColumnComboChart": "Line & Clustered Column Chart",
    "ribbonChart": "Ribbon Chart",
    "waterfallChart": "Waterfall Chart",
    "funnelChart": "Funnel Chart",
    "pieChart": "Pie Chart",
    "donutChart": "Donut Chart",
    "treemap": "Treemap",
    "map": "Map",
    "filledMap": "Filled Map",
    "azureMap": "Azure Map",
    "tableEx": "Table",
    "pivotTable": "Matrix",
    "card": "Card",
    "cardVisual": "New Card",
    "multiRowCard": "Multi-Row Card",
    "kpi": "KPI",
    "gauge": "Gauge",
    "slicer": "Slicer",
    "advancedSlicerVisual": "New Slicer",
    "scatterChart": "Scatter Chart",
    "decompositionTreeVisual": "Decomposition Tree",
    "keyDriversVisual": "Key Influencers",
    "qnaVisual": "Q&A",
    "actionButton": "Button",
    "bookmarkNavigator": "Bookmark Navigator",
    "pageNavigator": "Page Navigator",
    "textbox": "Text Box",
    "image": "Image",
    "shape": "Shape",
    "visualGroup": "Group",
    "unknown": "Unknown",
}

SLICER_VISUAL_TYPES = {"slicer", "advancedSlicerVisual", "listSlicer", "textSlicer"}
PAGE_NAVIGATOR_TYPE = "pageNavigator"
VISUAL_GROUP_TYPE = "visualGroup"
UNKNOWN_VISUAL_TYPE = "unknown"

SOURCE_PROJECTION = "Projection"
SOURCE_FIELD_PARAMETER = "FieldParameter"
SOURCE_CONDITIONAL_FORMATTING = "ConditionalFormatting"
SOURCE_LABEL = "Label"


# ============================================================
# Output contracts
# ============================================================

REPORT_SETTINGS_COLUMNS = [
    "ReportName", "SchemaVersion", "DefinitionVersion", "ThemeName",
    "ThemeReportVersion", "CustomThemeName", "ActivePageId", "PageCount",
    "BookmarkCount", "ReportFilterCount", "CustomVisualCount",
    "UseStylableVisualContainerHeader", "ExportDataMode",
    "DefaultDrillFilterOtherVisuals", "AllowChangeFilterTypes",
    "UseEnhancedTooltips", "UseDefaultAggregateDisplayName", "DegradedDocuments",
]

PAGE_COLUMNS = [
    "ReportName", "PageId", "PageName", "PageOrdinal", "Width", "Height",
    "DisplayOption", "IsHidden", "PageType", "IsTooltipPage",
    "IsDrillthroughPage", "IsActivePage", "VisualCount", "PageFilterCount",
]

VISUAL_COLUMNS = [
    "ReportName", "PageId", "PageName", "PageOrdinal", "VisualId", "VisualType",
    "VisualTypeDisplay", "Title", "X", "Y", "Z", "Width", "Height", "TabOrder",
    "ParentGroup", "IsHidden", "FieldCount", "ProjectedRoles",
    "HasConditionalFormatting", "ConditionalFormattingCount", "VisualFilterCount",
    "SyncGroupName", "SyncFieldChanges", "SyncFilterChanges",
    "DrillFilterOtherVisuals", "NavigatorShownPages", "NavigatorExcludedPages",
    "NavigatorShowsHiddenPages", "NavigatorShowsTooltipPages",
]

MODEL_REFERENCE_COLUMNS = [
    "ReportName", "PageId", "PageName", "VisualId", "VisualType", "Source",
    "Role", "RefType", "TableName", "ObjectName", "AggFunction", "FieldKey",
]

BUTTON_COLUMNS = [
    "ReportName", "PageId", "PageName", "VisualId", "VisualType", "LinkType",
    "IsEnabled", "TargetBookmark", "TargetPage", "WebUrl", "Tooltip",
]


# ============================================================
# Visual helpers
# ============================================================

def get_visual_display_name(vis_type: str) -> str:
    """Convert camelCase visual type to human-readable name."""
    if vis_type in VISUAL_TYPE_DISPLAY:
        return VISUAL_TYPE_DISPLAY[vis_type]
    name = re.sub(r"([A-Z])", r" \1", vis_type).strip()
    return name.title()


def classify_visual_type(visual_doc) -> str:
    """visualType, else 'visualGroup' for group containers, else 'unknown'."""
    vis_type = read_field(visual_doc, "visual.type")
    if vis_type:
        return vis_type
    if read_field(visual_doc, "visual.group_marker") is not None:
        return VISUAL_GROUP_TYPE
    return UNKNOWN_VISUAL_TYPE


def _get_visual_title(visual_doc) -> str:
    """Extract explicit title from visual JSON, if set."""
    for title in read_field(visual_doc, "visual.title"):
        if not isinstance(title, Mapping):
            continue
        props = title.get("properties", {})
        if not isinstance(props, Mapping):
            continue
        text = literal_value(props.get("text", {}), "")
        if isinstance(text, str) and text:
            return text
    return read_field(visual_doc, "visual.group_display_name")


def query_state_roles(visual_doc) -> tuple:
    """(field count, role names) from the visual's queryState.

    A role bound through field parameters contributes no direct fields.
    """
    query_state = read_field(visual_doc, "visual.query_state")
    roles = []
    field_count = 0
    for role, role_data in query_state.items():
        roles.append(role)
        if not isinstance(role_data, Mapping) or "fieldParameters" in role_data:
            continue
        projections = role_data.get("projections", [])
        if isinstance(projections, list):
            field_count += len(projections)
    return field_count, roles


def _object_entries(objects, object_name):
    entries = objects.get(object_name, []) if isinstance(objects, Mapping) else []
    if not isinstance(entries, list):
        return []
    return [e for e in entries if isinstance(e, Mapping)]


def page_navigator_detail(visual_doc, pages: list) -> dict:
    """Which pages a page navigator lists.

    pages is the ordered page info list from extract_pages(). A page is
    listed unless explicitly excluded, hidden (unless hidden pages are shown)
    or a tooltip page (unless tooltip pages are shown).
    """
    objects = read_field(visual_doc, "visual.objects")
    show_hidden = False
    show_tooltip = False
    excluded = []
    for entry in _object_entries(objects, "pages"):
        props = entry.get("properties", {})
        if not isinstance(props, Mapping):
            continue
        selector = entry.get("selector", {})
        page_id = selector.get("id", "") if isinstance(selector, Mapping) else ""
        if page_id:
            if literal_value(props.get("showPage", {}), True) is False:
                excluded.append(page_id)
            continue
        show_hidden = literal_value(props.get("showHiddenPages", {}), show_hidden) is True
        show_tooltip = literal_value(props.get("showTooltipPages", {}), show_tooltip) is True

    names = {p["PageId"]: p["PageName"] for p in pages}
    shown = []
    for page in pages:
        if page["PageId"] in excluded:
            continue
        if page["IsHidden"] and not show_hidden:
            continue
        if page["IsTooltipPage"] and not show_tooltip:
            continue
        shown.append(page["PageName"])

    return {
        "NavigatorShownPages": ", ".join(shown),
        "NavigatorExcludedPages": ", ".join(names.get(pid, pid) for pid in excluded),
        "NavigatorShowsHiddenPages": show_hidden,
        "NavigatorShowsTooltipPages": show_tooltip,
    }


_NO_NAVIGATOR = {
    "NavigatorShownPages": "",
    "NavigatorExcludedPages": "",
    "NavigatorShowsHiddenPages": None,
    "NavigatorShowsTooltipPages": None,
}


# ============================================================
# Model references
# ============================================================

def _reference_row(source, role, ref_type, table, obj, agg=None) -> dict:
    return {
        "Source": source,
        "Role": role,
        "RefType": ref_type,
        "TableName": table,
        "ObjectName": obj,
        "AggFunction": agg,
        "FieldKey": f"{table}.{obj}",
    }


def projection_references(visual_doc) -> list[dict]:
    """Field-well projections. queryRef is authoritative; the field node is the fallback."""
    refs = []
    for role, role_data in read_field(visual_doc, "visual.query_state").items():
        if not isinstance(role_data, Mapping):
            continue
        projections = role_data.get("projections", [])
        for proj in projections if isinstance(projections, list) else []:
            if not isinstance(proj, Mapping):
                continue
            query_ref = proj.get("queryRef", "")
            if isinstance(query_ref, str) and query_ref:
                ref = parse_query_ref(query_ref)
                refs.append(_reference_row(SOURCE_PROJECTION, role, ref.ref_type,
                                           ref.table_name, ref.object_name, ref.agg_function))
                continue
            match = resolve_expression(proj.get("field", {}))
            if match is not None:
                refs.append(_reference_row(SOURCE_PROJECTION, role, match.ref.ref_type,
                                           match.entity, match.prop, match.ref.function))
    return refs


def field_parameter_references(visual_doc) -> list[dict]:
    refs = []
    for role, role_data in read_field(visual_doc, "visual.query_state").items():
        if not isinstance(role_data, Mapping):
            continue
        params = role_data.get("fieldParameters", [])
        for param in params if isinstance(params, list) else []:
            if not isinstance(param, Mapping):
                continue
            match = resolve_expression(param.get("parameterExpr", {}))
            if match is not None:
                refs.append(_reference_row(SOURCE_FIELD_PARAMETER, role, REF_FIELD_PARAMETER,
                                           match.entity, match.prop))
    return refs


def conditional_formatting_references(visual_doc) -> list[dict]:
    refs = []
    for hit in color_rule_hits(read_field(visual_doc, "visual.objects")):
        refs.append(_reference_row(SOURCE_CONDITIONAL_FORMATTING,
                                   f"{hit.config_object}.{hit.config_property}",
                                   hit.ref_type, hit.table_name, hit.object_name,
                                   hit.agg_function))
    return refs


def label_references(visual_doc) -> list[dict]:
    """Fields bound directly to label-style properties (data labels, reference labels)."""
    refs = []
    objects = read_field(visual_doc, "visual.objects")
    for object_name in sorted(objects):
        if "label" not in object_name.lower():
            continue
        for entry in _object_entries(objects, object_name):
            props = entry.get("properties", {})
            if not isinstance(props, Mapping):
                continue
            for prop_name in sorted(props):
                value = props[prop_name]
                if not isinstance(value, Mapping) or "expr" not in value:
                    continue
                match = resolve_expression(value["expr"])
                if match is None or match.shape != SHAPE_REFERENCE:
                    continue
                refs.append(_reference_row(SOURCE_LABEL, f"{object_name}.{prop_name}",
                                           match.ref.ref_type, match.entity, match.prop,
                                           match.ref.function))
    return refs


def model_reference_rows(visual_doc) -> list[dict]:
    """All references of one visual, from every source, not deduplicated."""
    return (projection_references(visual_doc)
            + field_parameter_references(visual_doc)
            + conditional_formatting_references(visual_doc)
            + label_references(visual_doc))


# ============================================================
# Buttons
# ============================================================

def navigation_link(visual_doc):
    """First visualLink entry that declares a link type, or None."""
    for surface in ("visual.container_objects", "visual.objects"):
        for entry in _object_entries(read_field(visual_doc, surface), "visualLink"):
            props = entry.get("properties", {})
            if not isinstance(props, Mapping):
                continue
            link_type = literal_value(props.get("type", {}), "")
            if isinstance(link_type, str) and link_type:
                return props
    return None


def button_row(props) -> dict:
    def text(key):
        value = literal_value(props.get(key, {}), "")
        return value if isinstance(value, str) else str(value)

    return {
        "LinkType": text("type"),
        "IsEnabled": literal_value(props.get("show", {}), False) is True,
        "TargetBookmark": text("bookmark"),
        "TargetPage": text("navigationSection") or text("drillthroughSection"),
        "WebUrl": text("webUrl"),
        "Tooltip": text("tooltip"),
    }


# ============================================================
# Per-table extractors
# ============================================================

def _schema_version(schema_url: str) -> str:
    m = re.search(r"/(\d+(?:\.\d+)+)/schema\.json$", schema_url or "")
    return m.group(1) if m else ""


def extract_report_settings(index: SourceIndex) -> pd.DataFrame:
    report = index.report
    row = {
        "ReportName": index.report_name,
        "SchemaVersion": _schema_version(read_field(report, "report.schema")),
        "DefinitionVersion": read_field(index.version, "version.version"),
        "ThemeName": read_field(report, "report.theme_name"),
        "ThemeReportVersion": read_field(report, "report.theme_version"),
        "CustomThemeName": read_field(report, "report.custom_theme_name"),
        "ActivePageId": read_field(index.pages_manifest, "pages.active_page"),
        "PageCount": len(index.page_order),
        "BookmarkCount": len(index.bookmark_order),
        "ReportFilterCount": len(read_field(report, "report.filters")),
        "CustomVisualCount": len(read_field(report, "report.custom_visuals")),
        "UseStylableVisualContainerHeader": read_field(report, "report.stylable_header"),
        "ExportDataMode": read_field(report, "report.export_data_mode"),
        "DefaultDrillFilterOtherVisuals": read_field(report, "report.default_drill_filter"),
        "AllowChangeFilterTypes": read_field(report, "report.allow_change_filter_types"),
        "UseEnhancedTooltips": read_field(report, "report.enhanced_tooltips"),
        "UseDefaultAggregateDisplayName": read_field(report, "report.default_aggregate_name"),
        "DegradedDocuments": len(index.degraded),
    }
    return pd.DataFrame([row], columns=REPORT_SETTINGS_COLUMNS)


def _page_row(index: SourceIndex, page_id: str, ordinal: int, active_page: str) -> dict:
    page = index.page(page_id)
    page_type = read_field(page, "page.binding_type")
    return {
        "ReportName": index.report_name,
        "PageId": page_id,
        "PageName": read_field(page, "page.display_name") or page_id,
        "PageOrdinal": ordinal,
        "Width": read_field(page, "page.width"),
        "Height": read_field(page, "page.height"),
        "DisplayOption": read_field(page, "page.display_option"),
        "IsHidden": read_field(page, "page.visibility") == "HiddenInViewMode",
        "PageType": page_type,
        "IsTooltipPage": page_type == "Tooltip",
        "IsDrillthroughPage": page_type == "Drillthrough",
        "IsActivePage": page_id == active_page,
        "VisualCount": len(index.visual_ids(page_id)),
        "PageFilterCount": len(read_field(page, "page.filters")),
    }


def extract_pages(index: SourceIndex) -> list[dict]:
    """Page rows in declared page order; ordinal is the position in that order."""
    active_page = read_field(index.pages_manifest, "pages.active_page")
    rows = []
    for ordinal, page_id in enumerate(index.page_order):
        try:
            rows.append(_page_row(index, page_id, ordinal, active_page))
        except RECORD_ERRORS as e:
            logger.warning(f"Page {page_id} degraded to defaults: {e}")
            rows.append({
                "ReportName": index.report_name, "PageId": page_id, "PageName": page_id,
                "PageOrdinal": ordinal, "Width": field_default("page.width"),
                "Height": field_default("page.height"),
                "DisplayOption": field_default("page.display_option"), "IsHidden": False,
                "PageType": field_default("page.binding_type"), "IsTooltipPage": False,
                "IsDrillthroughPage": False, "IsActivePage": page_id == active_page,
                "VisualCount": 0, "PageFilterCount": 0,
            })
    return rows


def _visual_row(visual_doc, vis_type: str, pages: list) -> dict:
    field_count, roles = query_state_roles(visual_doc)
    cf_count = count_conditional_formatting(visual_doc)
    row = {
        "VisualType": vis_type,
        "VisualTypeDisplay": get_visual_display_name(vis_type),
        "Title": _get_visual_title(visual_doc),
        "X": read_field(visual_doc, "visual.x"),
        "Y": read_field(visual_doc, "visual.y"),
        "Z": read_field(visual_doc, "visual.z"),
        "Width": read_field(visual_doc, "visual.width"),
        "Height": read_field(visual_doc, "visual.height"),
        "TabOrder": read_field(visual_doc, "visual.tab_order"),
        "ParentGroup": read_field(visual_doc, "visual.parent_group"),
        "IsHidden": read_field(visual_doc, "visual.is_hidden"),
        "FieldCount": field_count,
        "ProjectedRoles": ", ".join(roles),
        "HasConditionalFormatting": cf_count > 0,
        "ConditionalFormattingCount": cf_count,
        "VisualFilterCount": len(read_field(visual_doc, "visual.filters")),
        "SyncGroupName": read_field(visual_doc, "visual.sync_group_name"),
        "SyncFieldChanges": read_field(visual_doc, "visual.sync_field_changes"),
        "SyncFilterChanges": read_field(visual_doc, "visual.sync_filter_changes"),
        "DrillFilterOtherVisuals": read_field(visual_doc, "visual.drill_filter_other_visuals"),
    }
    if vis_type == PAGE_NAVIGATOR_TYPE:
        row.update(page_navigator_detail(visual_doc, pages))
    else:
        row.update(_NO_NAVIGATOR)
    return row


def _degraded_visual_row() -> dict:
    return {
        "VisualType": UNKNOWN_VISUAL_TYPE,
        "VisualTypeDisplay": get_visual_display_name(UNKNOWN_VISUAL_TYPE),
        "Title": "",
        "X": field_default("visual.x"), "Y": field_default("visual.y"),
        "Z": field_default("visual.z"), "Width": field_default("visual.width"),
        "Height": field_default("visual.height"),
        "TabOrder": field_default("visual.tab_order"),
        "ParentGroup": "", "IsHidden": False, "FieldCount": 0, "ProjectedRoles": "",
        "HasConditionalFormatting": False, "ConditionalFormattingCount": 0,
        "VisualFilterCount": 0, "SyncGroupName": "", "SyncFieldChanges": False,
        "SyncFilterChanges": False, "DrillFilterOtherVisuals": False,
        **_NO_NAVIGATOR,
    }


def extract_visual_tables(index: SourceIndex, pages: list) -> dict:
    """Visuals, ModelReferences, ConditionalFormattingRules and Buttons rows.

    Walks every visual once; a visual that fails to extract keeps its
    identity row with defaults and contributes no detail rows.
    """
    visual_rows, reference_rows, cf_rows, button_rows = [], [], [], []

    for page in pages:
        page_id = page["PageId"]
        page_name = page["PageName"]
        for visual_id, visual_doc in index.visuals(page_id):
            identity = {
                "ReportName": index.report_name,
                "PageId": page_id,
                "PageName": page_name,
                "VisualId": visual_id,
            }
            try:
                vis_type = classify_visual_type(visual_doc)
                row = _visual_row(visual_doc, vis_type, pages)
                refs = model_reference_rows(visual_doc)
                rules = cf_rule_rows(visual_doc, index.report_name, page_id, page_name,
                                     visual_id, vis_type)
                link = navigation_link(visual_doc)
            except RECORD_ERRORS as e:
                logger.warning(f"Visual {page_id}/{visual_id} degraded to defaults: {e}")
                visual_rows.append({**identity, "PageOrdinal": page["PageOrdinal"],
                                    **_degraded_visual_row()})
                continue

            visual_rows.append({**identity, "PageOrdinal": page["PageOrdinal"], **row})
            for ref in refs:
                reference_rows.append({**identity, "VisualType": vis_type, **ref})
            cf_rows.extend(rules)
            if link is not None:
                button_rows.append({**identity, "VisualType": vis_type, **button_row(link)})

    return {
        "Visuals": pd.DataFrame(visual_rows, columns=VISUAL_COLUMNS),
        "ModelReferences": pd.DataFrame(reference_rows, columns=MODEL_REFERENCE_COLUMNS),
        "ConditionalFormattingRules": pd.DataFrame(cf_rows, columns=CF_RULE_COLUMNS),
        "Buttons": pd.DataFrame(button_rows, columns=BUTTON_COLUMNS),
    }


# ============================================================
# Main extraction function
# ============================================================

def extract_metadata(index: SourceIndex, include_bookmarks: bool = True) -> dict:
    """Run every entity extractor over the snapshot.

    Args:
        index: the report snapshot
        include_bookmarks: whether to extract Bookmarks / BookmarkActions

    Returns:
        dict of table name -> DataFrame, in a fixed order.
    """
    tables = {"ReportSettings": extract_report_settings(index)}

    pages = extract_pages(index)
    tables["Pages"] = pd.DataFrame(pages, columns=PAGE_COLUMNS)
    logger.info(f"Pages: {len(pages)}")

    tables.update(extract_visual_tables(index, pages))
    logger.info(f"Visuals: {len(tables['Visuals'])}, "
                f"model references: {len(tables['ModelReferences'])}, "
                f"CF rules: {len(tables['ConditionalFormattingRules'])}, "
                f"buttons: {len(tables['Buttons'])}")

    # Skipped bookmarks leave no tables, so orphan checks know nothing was read
    if include_bookmarks:
        page_names = {p["PageId"]: p["PageName"] for p in pages}
        bookmark_rows, action_rows = parse_bookmarks(index, page_names)
        logger.info(f"Bookmarks: {len(bookmark_rows)}, bookmark actions: {len(action_rows)}")
        tables["Bookmarks"] = pd.DataFrame(bookmark_rows, columns=BOOKMARK_COLUMNS)
        tables["BookmarkActions"] = pd.DataFrame(action_rows, columns=BOOKMARK_ACTION_COLUMNS)

    return tables


def export_to_excel(tables: dict, output_path: str):
    """Save every table to its own sheet with auto-sized columns."""
    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        for sheet_name, df in tables.items():
            df.to_excel(writer, sheet_name=sheet_name[:31], index=False)
            ws = writer.sheets[sheet_name[:31]]
            for col_idx, col_name in enumerate(df.columns, 1):
                max_len = max(
                    len(str(col_name)),
                    df[col_name].astype(str).str.len().max() if len(df) > 0 else 0,
                )
                ws.column_dimensions[ws.cell(row=1, column=col_idx).column_letter].width = min(max_len + 2, 60)
            logger.info(f"{sheet_name} sheet: {len(df)} rows")

    logger.info(f"Excel file saved to: {output_path}")
