# -*- coding: utf-8 -*-
"""
Unified CLI for the PBIR Report Inventory.

Chains all skills in sequence: one read of the report folder → entity
extraction → cross-referencing → (optional) schema coverage audit → Excel.

Usage:
    python pbir_inventory.py "data/Sales.Report"
    python pbir_inventory.py "data/Sales.Report/definition" --audit
    python pbir_inventory.py "data/Sales.Report" --catalog model_objects.csv
"""

import argparse
import logging
import os
import re
import sys

# Windows console encoding fix
os.environ.setdefault("PYTHONIOENCODING", "utf-8")

# Add skills/ to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "skills"))

import pandas as pd

from cross_reference import apply_cross_references
from extract_metadata import export_to_excel, extract_metadata
from schema_audit import audit_schema_coverage
from source_index import build_source_index


def sanitize_filename(name: str) -> str:
    """Sanitize a report name for use as a filename."""
    return re.sub(r'[^\w\-]', '_', name) or "report"


def read_catalog(catalog_path: str) -> pd.DataFrame:
    """Read a model object catalog CSV with TableName and ObjectName columns."""
    if not os.path.isfile(catalog_path):
        raise FileNotFoundError(f"Model catalog not found: {catalog_path}")
    return pd.read_csv(catalog_path, dtype=str, keep_default_na=False)


def run_inventory(report_root, include_bookmarks: bool = True, include_audit: bool = False,
                  catalog: pd.DataFrame = None) -> dict:
    """Build every inventory table for one report folder.

    Raises FileNotFoundError when the report root is not accessible.
    """
    index = build_source_index(report_root)
    tables = extract_metadata(index, include_bookmarks=include_bookmarks)
    tables = apply_cross_references(tables, catalog=catalog)
    if include_audit:
        tables["SchemaPathObservations"] = audit_schema_coverage(index)
    return tables


def main():
    parser = argparse.ArgumentParser(
        description="PBIR Report Inventory: extract and cross-reference report content",
        epilog="Examples:\n"
               '  python pbir_inventory.py "data/Sales.Report"\n'
               '  python pbir_inventory.py "data/Sales.Report" --audit --output sales.xlsx',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("report_root", help="Path to a <Name>.Report folder or its definition/ folder")
    parser.add_argument("--output-dir", default="output", help="Output directory (default: output/)")
    parser.add_argument("--output", help="Output workbook path (default: <output-dir>/<report>_inventory.xlsx)")
    parser.add_argument("--audit", action="store_true", help="Add the schema coverage audit sheet")
    parser.add_argument("--catalog", help="CSV of model objects (TableName, ObjectName) to diff against")
    parser.add_argument("--no-bookmarks", action="store_true", help="Skip bookmark extraction")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s: %(message)s")

    catalog = None
    if args.catalog:
        try:
            catalog = read_catalog(args.catalog)
        except FileNotFoundError as e:
            print(f"ERROR: {e}")
            sys.exit(1)

    # --- Step 1: Extract and cross-reference ---
    print("=" * 60)
    print("[1] Extracting report inventory...")
    print("=" * 60)

    try:
        tables = run_inventory(args.report_root,
                               include_bookmarks=not args.no_bookmarks,
                               include_audit=args.audit,
                               catalog=catalog)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    settings = tables["ReportSettings"]
    report_name = settings["ReportName"].iloc[0]

    # --- Step 2: Write workbook ---
    print("\n" + "=" * 60)
    print("[2] Writing workbook...")
    print("=" * 60)

    if args.output:
        output_path = args.output
        output_dir = os.path.dirname(os.path.abspath(output_path))
    else:
        output_dir = os.path.abspath(args.output_dir)
        output_path = os.path.join(output_dir, f"{sanitize_filename(report_name)}_inventory.xlsx")
    os.makedirs(output_dir, exist_ok=True)
    export_to_excel(tables, output_path)

    # --- Summary ---
    print("\n" + "=" * 60)
    print("Inventory complete!")
    print("=" * 60)
    print(f"  Report:      {report_name}")
    print(f"  Pages:       {len(tables['Pages'])}")
    print(f"  Visuals:     {len(tables['Visuals'])}")
    print(f"  References:  {len(tables['ModelReferences'])}")
    if "Bookmarks" in tables:
        stale = int(tables["BookmarkActions"]["IsStale"].sum())
        print(f"  Bookmarks:   {len(tables['Bookmarks'])} ({stale} stale actions)")
        orphans = int(tables["Buttons"]["IsOrphaned"].sum())
        print(f"  Buttons:     {len(tables['Buttons'])} ({orphans} orphaned)")
    if "UnreferencedCatalogObjects" in tables:
        print(f"  Unreferenced catalog objects: {len(tables['UnreferencedCatalogObjects'])}")
    if "SchemaPathObservations" in tables:
        gaps = int(tables["SchemaPathObservations"]["IsGap"].sum())
        print(f"  Schema gaps: {gaps}")
    degraded = int(settings["DegradedDocuments"].iloc[0])
    if degraded:
        print(f"  WARNING: {degraded} unreadable documents")
    print(f"  Workbook:    {output_path}")
    print()


if __name__ == "__main__":
    main()
