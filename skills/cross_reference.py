# -*- coding: utf-8 -*-
"""
Cross-Reference Analyzer
========================
Joins the extractor tables to derive findings that no single document holds:

  - UnusedObjects:   distinct model objects the report references (the
                     candidate set to diff against a model catalog)
  - SlicerInventory: slicers with their bound field and sync-group size
  - stale bookmark actions (snapshot visual type no longer matches)
  - orphaned buttons (bookmark target no longer exists)

Every function takes DataFrames and returns new DataFrames; inputs are never
modified in place.
"""

import logging
from typing import Optional

import pandas as pd

from bookmark_parser import BOOKMARK_ACTION_COLUMNS
from extract_metadata import BUTTON_COLUMNS, SLICER_VISUAL_TYPES, SOURCE_PROJECTION

logger = logging.getLogger(__name__)

VISUAL_KEY = ["PageId", "VisualId"]

UNUSED_OBJECT_COLUMNS = [
    "ReportName", "FieldKey", "TableName", "ObjectName", "RefType",
    "ReferenceCount", "VisualCount", "Sources",
]

UNREFERENCED_CATALOG_COLUMNS = ["ReportName", "TableName", "ObjectName", "FieldKey"]

SLICER_INVENTORY_COLUMNS = [
    "ReportName", "PageId", "PageName", "PageOrdinal", "VisualId", "VisualType",
    "TableName", "ObjectName", "FieldKey", "HasBoundField", "SyncGroupName",
    "SyncGroupSize", "SyncFieldChanges", "SyncFilterChanges",
    "DrillFilterOtherVisuals", "IsHidden",
]

STALE_ACTION_COLUMNS = BOOKMARK_ACTION_COLUMNS + ["LiveVisualType", "IsStale", "StaleReason"]
CHECKED_BUTTON_COLUMNS = BUTTON_COLUMNS + ["TargetPageExists", "TargetBookmarkExists", "IsOrphaned"]

STALE_VISUAL_MISSING = "VisualMissing"
STALE_TYPE_CHANGED = "VisualTypeChanged"

BOOKMARK_LINK = "Bookmark"

# Output table order after cross-referencing
TABLE_ORDER = [
    "ReportSettings", "Pages", "Visuals", "ModelReferences",
    "ConditionalFormattingRules", "UnusedObjects", "UnreferencedCatalogObjects",
    "SlicerInventory", "Bookmarks", "BookmarkActions", "Buttons",
    "SchemaPathObservations",
]


# ============================================================
# Referenced objects
# ============================================================

def summarize_unused_objects(model_refs: pd.DataFrame) -> pd.DataFrame:
    """Distinct (table, object, ref type) triples with usage counts.

    ReferenceCount counts reference rows; VisualCount counts distinct
    visuals; Sources lists the reference sources that hit the triple.
    """
    if model_refs.empty:
        return pd.DataFrame(columns=UNUSED_OBJECT_COLUMNS)

    refs = model_refs.assign(_Visual=model_refs["PageId"] + "/" + model_refs["VisualId"])
    summary = (
        refs.groupby(["ReportName", "TableName", "ObjectName", "RefType"], sort=True)
        .agg(
            ReferenceCount=("FieldKey", "count"),
            VisualCount=("_Visual", "nunique"),
            Sources=("Source", lambda s: ", ".join(sorted(set(s)))),
        )
        .reset_index()
    )
    summary["FieldKey"] = summary["TableName"] + "." + summary["ObjectName"]
    return summary[UNUSED_OBJECT_COLUMNS].reset_index(drop=True)


def diff_model_catalog(unused: pd.DataFrame, catalog: pd.DataFrame,
                       report_name: str = "") -> pd.DataFrame:
    """Catalog objects that no visual references.

    catalog needs TableName and ObjectName columns (one row per model
    column or measure). Raises ValueError when either is missing.
    """
    missing_cols = {"TableName", "ObjectName"} - set(catalog.columns)
    if missing_cols:
        raise ValueError(f"Model catalog is missing columns: {sorted(missing_cols)}")

    keys = ["TableName", "ObjectName"]
    catalog_keys = catalog[keys].astype(str).drop_duplicates()
    used_keys = unused[keys].astype(str).drop_duplicates()
    merged = catalog_keys.merge(used_keys, how="left", on=keys, indicator=True)
    result = merged[merged["_merge"] == "left_only"].drop(columns="_merge")

    result = result.sort_values(keys).reset_index(drop=True)
    result.insert(0, "ReportName", report_name)
    result["FieldKey"] = result["TableName"] + "." + result["ObjectName"]
    logger.info(f"Catalog objects: {len(catalog_keys)}, unreferenced: {len(result)}")
    return result[UNREFERENCED_CATALOG_COLUMNS]


# ============================================================
# Slicers
# ============================================================

def build_slicer_inventory(visuals: pd.DataFrame, model_refs: pd.DataFrame) -> pd.DataFrame:
    """One row per slicer visual with its first projected field, if any."""
    slicers = visuals[visuals["VisualType"].isin(SLICER_VISUAL_TYPES)]

    bound = (
        model_refs[model_refs["Source"] == SOURCE_PROJECTION]
        .drop_duplicates(subset=VISUAL_KEY, keep="first")
        [VISUAL_KEY + ["TableName", "ObjectName", "FieldKey"]]
    )
    inventory = slicers.merge(bound, how="left", on=VISUAL_KEY)
    inventory["HasBoundField"] = inventory["FieldKey"].notna()
    for col in ("TableName", "ObjectName", "FieldKey"):
        inventory[col] = inventory[col].fillna("")

    # Group size counts slicers only; ungrouped slicers get 0
    grouped = slicers[slicers["SyncGroupName"] != ""]
    sizes = grouped.groupby("SyncGroupName").size()
    inventory["SyncGroupSize"] = inventory["SyncGroupName"].map(sizes).fillna(0).astype(int)

    return inventory[SLICER_INVENTORY_COLUMNS].reset_index(drop=True)


# ============================================================
# Bookmark staleness
# ============================================================

def flag_stale_bookmark_actions(actions: pd.DataFrame, visuals: pd.DataFrame) -> pd.DataFrame:
    """Mark bookmark actions whose visual is gone or has changed type.

    Only a recorded snapshot type can count as a type change. Position,
    size or formatting changes do not make an action stale.
    """
    live = (
        visuals[VISUAL_KEY + ["VisualType"]]
        .drop_duplicates(subset=VISUAL_KEY)
        .rename(columns={"VisualType": "LiveVisualType"})
    )
    flagged = actions.merge(live, how="left", on=VISUAL_KEY)

    missing = flagged["LiveVisualType"].isna()
    recorded = flagged["SnapshotVisualType"].fillna("").astype(str) != ""
    changed = ~missing & recorded & (flagged["LiveVisualType"] != flagged["SnapshotVisualType"])
    flagged["IsStale"] = (missing | changed).astype(bool)
    flagged["StaleReason"] = ""
    flagged.loc[changed, "StaleReason"] = STALE_TYPE_CHANGED
    flagged.loc[missing, "StaleReason"] = STALE_VISUAL_MISSING
    flagged["LiveVisualType"] = flagged["LiveVisualType"].fillna("")

    stale = int(flagged["IsStale"].sum())
    if stale:
        logger.info(f"Stale bookmark actions: {stale} of {len(flagged)}")
    return flagged[STALE_ACTION_COLUMNS]


# ============================================================
# Buttons
# ============================================================

def flag_orphaned_buttons(buttons: pd.DataFrame, bookmarks: Optional[pd.DataFrame],
                          pages: pd.DataFrame) -> pd.DataFrame:
    """Resolve button targets against live pages and bookmarks.

    A bookmark-linked button whose target is blank or not a live bookmark
    is orphaned. With bookmarks=None (bookmarks not extracted) the bookmark
    columns are left empty rather than reporting every link as broken.
    """
    checked = buttons.copy()
    checked["TargetPageExists"] = checked["TargetPage"].isin(pages["PageId"])

    if bookmarks is None:
        checked["TargetBookmarkExists"] = None
        checked["IsOrphaned"] = None
        return checked[CHECKED_BUTTON_COLUMNS]

    checked["TargetBookmarkExists"] = checked["TargetBookmark"].isin(bookmarks["BookmarkName"])
    checked["IsOrphaned"] = (checked["LinkType"] == BOOKMARK_LINK) & ~checked["TargetBookmarkExists"]
    checked["IsOrphaned"] = checked["IsOrphaned"].astype(bool)

    orphans = int(checked["IsOrphaned"].sum())
    if orphans:
        logger.info(f"Orphaned bookmark buttons: {orphans}")
    return checked[CHECKED_BUTTON_COLUMNS]


# ============================================================
# Pipeline step
# ============================================================

def apply_cross_references(tables: dict, catalog: Optional[pd.DataFrame] = None) -> dict:
    """Return a new table dict with the derived tables and flag columns added.

    Bookmark-dependent steps run only when the Bookmarks tables are present.
    """
    result = dict(tables)
    model_refs = tables["ModelReferences"]

    result["UnusedObjects"] = summarize_unused_objects(model_refs)
    if catalog is not None:
        report_name = tables["ReportSettings"]["ReportName"].iloc[0] if len(tables["ReportSettings"]) else ""
        result["UnreferencedCatalogObjects"] = diff_model_catalog(
            result["UnusedObjects"], catalog, report_name=report_name)

    result["SlicerInventory"] = build_slicer_inventory(tables["Visuals"], model_refs)

    if "BookmarkActions" in tables:
        result["BookmarkActions"] = flag_stale_bookmark_actions(
            tables["BookmarkActions"], tables["Visuals"])

    result["Buttons"] = flag_orphaned_buttons(
        tables["Buttons"], tables.get("Bookmarks"), tables["Pages"])

    ordered = {name: result[name] for name in TABLE_ORDER if name in result}
    ordered.update({name: df for name, df in result.items() if name not in ordered})
    return ordered
