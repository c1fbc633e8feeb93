"""Tests for the pbir_inventory command line."""

import sys

import pandas as pd
import pytest

import pbir_inventory
from pbir_inventory import run_inventory, sanitize_filename


def run_main(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["pbir_inventory.py", *argv])
    pbir_inventory.main()


class TestRunInventory:

    def test_all_tables(self, report_root):
        tables = run_inventory(report_root, include_audit=True)
        assert "SchemaPathObservations" in tables
        assert "UnusedObjects" in tables
        assert len(tables["Visuals"]) == 10

    def test_missing_root(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            run_inventory(tmp_path / "missing")


class TestMain:

    def test_writes_workbook(self, report_root, tmp_path, monkeypatch, capsys):
        output = tmp_path / "out" / "sales.xlsx"
        run_main(monkeypatch, str(report_root), "--output", str(output), "--audit")
        sheets = pd.read_excel(output, sheet_name=None)
        assert "SchemaPathObservations" in sheets
        assert len(sheets["Buttons"]) == 2
        assert "Inventory complete!" in capsys.readouterr().out

    def test_default_output_name(self, report_root, tmp_path, monkeypatch):
        run_main(monkeypatch, str(report_root), "--output-dir", str(tmp_path / "o"))
        assert (tmp_path / "o" / "Sales_inventory.xlsx").is_file()

    def test_catalog(self, report_root, tmp_path, monkeypatch):
        catalog = tmp_path / "catalog.csv"
        catalog.write_text("TableName,ObjectName\nSales,Cost\nSales,Amount\n", encoding="utf-8")
        output = tmp_path / "c.xlsx"
        run_main(monkeypatch, str(report_root), "--catalog", str(catalog), "--output", str(output))
        unreferenced = pd.read_excel(output, sheet_name="UnreferencedCatalogObjects")
        assert list(unreferenced["FieldKey"]) == ["Sales.Cost"]

    def test_no_bookmarks(self, report_root, tmp_path, monkeypatch):
        output = tmp_path / "nb.xlsx"
        run_main(monkeypatch, str(report_root), "--no-bookmarks", "--output", str(output))
        assert "Bookmarks" not in pd.read_excel(output, sheet_name=None)

    def test_missing_root_exits(self, tmp_path, monkeypatch, capsys):
        with pytest.raises(SystemExit) as exc:
            run_main(monkeypatch, str(tmp_path / "missing"))
        assert exc.value.code == 1
        assert "ERROR:" in capsys.readouterr().out

    def test_missing_catalog_exits(self, report_root, tmp_path, monkeypatch):
        with pytest.raises(SystemExit):
            run_main(monkeypatch, str(report_root), "--catalog", str(tmp_path / "nope.csv"))


def test_sanitize_filename():
    assert sanitize_filename("Sales & Ops 2024") == "Sales___Ops_2024"
    assert sanitize_filename("") == "report"
