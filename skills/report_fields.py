# -*- coding: utf-8 -*-
"""
Report Field Defaults
=====================
One table of every field the extractors read, with the path it lives at and
the default used when the field (or any ancestor) is absent. PBIR elides
fields left at their default value, so absence and "set to the default" are
treated the same way.

The same table is the schema auditor's registry of known paths.
"""

import copy
from collections.abc import Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class FieldSpec:
    """Where a field lives (document kind + key path) and its typed default."""
    document: str
    path: tuple
    default: object

    @property
    def dotted(self) -> str:
        return ".".join(self.path)


def _f(document, dotted, default):
    return FieldSpec(document, tuple(dotted.split(".")), default)


# ============================================================
# Per-field defaults (the single place default policy lives)
# ============================================================

FIELD_DEFAULTS = {
    # version.json
    "version.version": _f("version", "version", ""),

    # report.json
    "report.schema": _f("report", "$schema", ""),
    "report.theme_name": _f("report", "themeCollection.baseTheme.name", ""),
    "report.theme_version": _f("report", "themeCollection.baseTheme.reportVersionAtImport", ""),
    "report.custom_theme_name": _f("report", "themeCollection.customTheme.name", ""),
    "report.stylable_header": _f("report", "settings.useStylableVisualContainerHeader", False),
    "report.export_data_mode": _f("report", "settings.exportDataMode", "AllowSummarized"),
    "report.default_drill_filter": _f("report", "settings.defaultDrillFilterOtherVisuals", False),
    "report.allow_change_filter_types": _f("report", "settings.allowChangeFilterTypes", False),
    "report.enhanced_tooltips": _f("report", "settings.useEnhancedTooltips", False),
    "report.default_aggregate_name": _f("report", "settings.useDefaultAggregateDisplayName", False),
    "report.filters": _f("report", "filterConfig.filters", []),
    "report.custom_visuals": _f("report", "publicCustomVisuals", []),

    # pages/pages.json
    "pages.active_page": _f("pages", "activePageName", ""),
    "pages.page_order": _f("pages", "pageOrder", []),

    # pages/<id>/page.json
    "page.name": _f("page", "name", ""),
    "page.display_name": _f("page", "displayName", ""),
    "page.width": _f("page", "width", 0.0),
    "page.height": _f("page", "height", 0.0),
    "page.display_option": _f("page", "displayOption", "FitToPage"),
    "page.visibility": _f("page", "visibility", "AlwaysVisible"),
    "page.binding_type": _f("page", "pageBinding.type", "Default"),
    "page.filters": _f("page", "filterConfig.filters", []),

    # pages/<id>/visuals/<vid>/visual.json
    "visual.name": _f("visual", "name", ""),
    "visual.type": _f("visual", "visual.visualType", ""),
    "visual.group_marker": _f("visual", "visualGroup", None),
    "visual.group_display_name": _f("visual", "visualGroup.displayName", ""),
    "visual.x": _f("visual", "position.x", 0.0),
    "visual.y": _f("visual", "position.y", 0.0),
    "visual.z": _f("visual", "position.z", 0.0),
    "visual.width": _f("visual", "position.width", 0.0),
    "visual.height": _f("visual", "position.height", 0.0),
    "visual.tab_order": _f("visual", "position.tabOrder", 0.0),
    "visual.parent_group": _f("visual", "parentGroupName", ""),
    "visual.is_hidden": _f("visual", "isHidden", False),
    "visual.query_state": _f("visual", "visual.query.queryState", {}),
    "visual.objects": _f("visual", "visual.objects", {}),
    "visual.container_objects": _f("visual", "visual.visualContainerObjects", {}),
    "visual.title": _f("visual", "visual.visualContainerObjects.title", []),
    "visual.filters": _f("visual", "filterConfig.filters", []),
    "visual.sync_group_name": _f("visual", "visual.syncGroup.groupName", ""),
    "visual.sync_field_changes": _f("visual", "visual.syncGroup.fieldChanges", False),
    "visual.sync_filter_changes": _f("visual", "visual.syncGroup.filterChanges", False),
    "visual.drill_filter_other_visuals": _f("visual", "visual.drillFilterOtherVisuals", False),

    # bookmarks/bookmarks.json
    "bookmarks.items": _f("bookmarks", "items", []),

    # bookmarks/<name>.bookmark.json
    "bookmark.name": _f("bookmark", "name", ""),
    "bookmark.display_name": _f("bookmark", "displayName", ""),
    "bookmark.active_section": _f("bookmark", "explorationState.activeSection", ""),
    "bookmark.sections": _f("bookmark", "explorationState.sections", {}),
    "bookmark.suppress_data": _f("bookmark", "options.suppressData", False),
    "bookmark.suppress_display": _f("bookmark", "options.suppressDisplay", False),
    "bookmark.suppress_active_section": _f("bookmark", "options.suppressActiveSection", False),
    "bookmark.apply_only_to_targets": _f("bookmark", "options.applyOnlyToTargetVisuals", False),
}


# Subtrees read generically (through the expression walker or by iterating
# arbitrary keys) rather than field by field. '*' matches one path segment.
COARSE_PATHS = {
    "report": [
        "themeCollection", "themeCollection.*", "settings",
        "filterConfig.filters[].*", "objects", "resourcePackages",
    ],
    "page": [
        "filterConfig.filters[].*", "pageBinding", "objects",
    ],
    "visual": [
        "position", "visual",
        "visual.query.queryState.*",
        "visual.query.queryState.*.projections[].*",
        "visual.query.queryState.*.fieldParameters[].*",
        "visual.objects.*",
        "visual.objects.*[].properties",
        "visual.objects.*[].properties.*",
        "visual.objects.*[].properties.*.solid",
        "visual.objects.*[].properties.*.solid.color",
        "visual.objects.*[].selector",
        "visual.objects.*[].selector.*",
        "visual.visualContainerObjects.*",
        "visual.visualContainerObjects.*[].properties",
        "visual.visualContainerObjects.*[].properties.*",
        "visual.syncGroup",
        "filterConfig.filters[].*",
    ],
    "bookmarks": [
        "items[].name", "items[].displayName", "items[].children",
    ],
    "bookmark": [
        "options",
        "explorationState.sections.*",
        "explorationState.sections.*.visualContainers.*",
        "explorationState.sections.*.visualContainers.*.singleVisual",
        "explorationState.sections.*.visualContainers.*.singleVisual.visualType",
        "explorationState.sections.*.visualContainers.*.singleVisual.display",
        "explorationState.sections.*.visualContainers.*.singleVisual.display.mode",
        "explorationState.sections.*.visualContainers.*.singleVisual.projections",
        "explorationState.sections.*.visualContainers.*.singleVisual.objects",
        "explorationState.sections.*.visualContainers.*.filters",
        "explorationState.sections.*.visualContainerGroups.*",
        "explorationState.sections.*.visualContainerGroups.*.isHidden",
        "explorationState.sections.*.visualContainerGroups.*.children",
        "explorationState.sections.*.filters",
        "explorationState.sections.*.filters.*",
    ],
}


# ============================================================
# Optional-path resolver
# ============================================================

def _matches_default_type(value, default) -> bool:
    if default is None:
        return True
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, (int, float)):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if isinstance(default, Mapping):
        return isinstance(value, Mapping)
    return isinstance(value, type(default))


def get_path(node, path, default=None):
    """Walk nested mappings along path; return default if any step is absent.

    The result must have the same type as the default (a dict default only
    accepts mappings, a bool default only bools, a number default any
    int/float), otherwise the default is returned.
    """
    current = node
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    if current is None or not _matches_default_type(current, default):
        return default
    return current


def read_field(node, field_id: str):
    """Read a registered field from a document, falling back to its default."""
    spec = FIELD_DEFAULTS[field_id]
    return get_path(node, spec.path, field_default(field_id))


def field_default(field_id: str):
    """Default for a field; list and dict defaults are fresh copies."""
    return copy.copy(FIELD_DEFAULTS[field_id].default)


def known_path_patterns(document: str) -> list:
    """All registry patterns for one document kind, exact fields first."""
    patterns = [spec.dotted for spec in FIELD_DEFAULTS.values() if spec.document == document]
    patterns.extend(COARSE_PATHS.get(document, []))
    return patterns
