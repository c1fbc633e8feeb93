"""Shared test fixtures: a small PBIR report tree written to tmp_path."""

import json

import pytest

from cross_reference import apply_cross_references
from extract_metadata import extract_metadata
from source_index import build_source_index


REPORT_SCHEMA = ("https://developer.microsoft.com/json-schemas/fabric/item/report/"
                 "definition/report/1.2.0/schema.json")


# ── Expression helpers ──────────────────────────────────────────────────

def lit(value: str) -> dict:
    return {"Literal": {"Value": value}}


def column(entity: str, prop: str) -> dict:
    return {"Column": {"Expression": {"SourceRef": {"Entity": entity}}, "Property": prop}}


def measure(entity: str, prop: str) -> dict:
    return {"Measure": {"Expression": {"SourceRef": {"Entity": entity}}, "Property": prop}}


def aggregation(entity: str, prop: str, function: int = 0) -> dict:
    return {"Aggregation": {"Expression": column(entity, prop), "Function": function}}


def projection(field: dict, query_ref: str) -> dict:
    return {"field": field, "queryRef": query_ref, "active": True}


def link(link_type: str, **props) -> dict:
    properties = {"type": {"expr": lit(f"'{link_type}'")}, "show": {"expr": lit("true")}}
    for key, value in props.items():
        properties[key] = {"expr": lit(f"'{value}'")}
    return {"visualLink": [{"properties": properties}]}


# ── Sample documents ────────────────────────────────────────────────────

GRADIENT_FILL = {
    "Input": aggregation("Sales", "Amount"),
    "FillRule": {
        "linearGradient2": {
            "min": {"color": lit("'#FFFFFF'")},
            "max": {"color": lit("'#118DFF'")},
            "nullColoringStrategy": {"strategy": lit("'asZero'")},
        }
    },
}

CASES_RULE = {
    "Conditional": {
        "Cases": [{
            "Condition": {"Comparison": {
                "ComparisonKind": 1,
                "Left": measure("Sales", "Total Sales"),
                "Right": lit("1000D"),
            }},
            "Value": lit("'#00FF00'"),
        }],
        "DefaultValue": lit("'#FF0000'"),
    }
}

CATEGORY_FILTER = {
    "name": "f1",
    "type": "Categorical",
    "filter": {
        "Version": 2,
        "From": [{"Name": "p", "Entity": "Product", "Type": 0}],
        "Where": [{"Condition": {"In": {
            "Expressions": [{"Column": {"Expression": {"SourceRef": {"Source": "p"}},
                                        "Property": "Category"}}],
            "Values": [[lit("'Bikes'")]],
        }}}],
    },
}


def sample_documents() -> dict:
    """Relative path -> parsed JSON for the sample report."""
    return {
        "version.json": {"version": "2.0.0"},
        "report.json": {
            "$schema": REPORT_SCHEMA,
            "themeCollection": {"baseTheme": {"name": "CY24SU06", "reportVersionAtImport": "5.55"}},
            "settings": {"useStylableVisualContainerHeader": True},
            "filterConfig": {"filters": [{"name": "rf1"}]},
        },
        "pages/pages.json": {"pageOrder": ["page_b", "page_a", "tooltip"], "activePageName": "page_a"},
        "pages/page_a/page.json": {"name": "page_a", "displayName": "Overview",
                                   "width": 1280, "height": 720},
        "pages/page_b/page.json": {"name": "page_b", "displayName": "Details",
                                   "visibility": "HiddenInViewMode"},
        "pages/tooltip/page.json": {"name": "tooltip", "displayName": "Tip",
                                    "pageBinding": {"type": "Tooltip"}},

        # page_a
        "pages/page_a/visuals/chart1/visual.json": {
            "name": "chart1",
            "position": {"x": 10, "y": 20, "z": 1000, "width": 300, "height": 200, "tabOrder": 1},
            "visual": {
                "visualType": "barChart",
                "query": {"queryState": {
                    "Category": {"projections": [projection(column("Product", "Category"),
                                                            "Product.Category")]},
                    "Y": {"projections": [projection(aggregation("Sales", "Amount"),
                                                     "Sum(Sales.Amount)")]},
                }},
                "objects": {
                    "dataPoint": [{"properties": {"fill": {"solid": {"color": {"expr": {
                        "FillRule": GRADIENT_FILL}}}}}}],
                    "labels": [{"properties": {
                        "color": {"solid": {"color": {"expr": lit("'#000000'")}}},
                        "titleText": {"expr": measure("Sales", "Label Text")},
                    }}],
                },
            },
        },
        "pages/page_a/visuals/table1/visual.json": {
            "name": "table1",
            "visual": {
                "visualType": "tableEx",
                "query": {"queryState": {
                    "Values": {"projections": [projection(measure("Sales", "Total Sales"),
                                                          "Sales.Total Sales")]},
                }},
                "objects": {
                    "values": [{
                        "properties": {
                            "backColor": {"solid": {"color": {"expr": CASES_RULE}}},
                            "dataBars": {"positiveColor": {"solid": {"color": lit("'#5B9BD5'")}}},
                        },
                        "selector": {"metadata": "Sum(Sales.Amount)"},
                    }],
                },
            },
        },
        "pages/page_a/visuals/slicer1/visual.json": {
            "name": "slicer1",
            "visual": {
                "visualType": "slicer",
                "query": {"queryState": {"Values": {"projections": [
                    projection(column("Product", "Category"), "Product.Category")]}}},
                "syncGroup": {"groupName": "cat", "fieldChanges": True, "filterChanges": True},
            },
        },
        "pages/page_a/visuals/btn2/visual.json": {
            "name": "btn2",
            "visual": {"visualType": "actionButton",
                       "visualContainerObjects": link("Bookmark", bookmark="bm_one")},
        },
        "pages/page_a/visuals/nav1/visual.json": {
            "name": "nav1",
            "visual": {"visualType": "pageNavigator", "objects": {"pages": [
                {"properties": {"showHiddenPages": {"expr": lit("false")}}},
                {"properties": {"showPage": {"expr": lit("false")}}, "selector": {"id": "page_b"}},
            ]}},
        },
        "pages/page_a/visuals/group1/visual.json": {
            "name": "group1",
            "visualGroup": {"displayName": "Header", "groupMode": "ScaleMode"},
        },

        # page_b
        "pages/page_b/visuals/slicer2/visual.json": {
            "name": "slicer2",
            "visual": {
                "visualType": "advancedSlicerVisual",
                "query": {"queryState": {"Values": {"projections": [
                    projection(column("Product", "Category"), "Product.Category")]}}},
                "syncGroup": {"groupName": "cat", "fieldChanges": True, "filterChanges": False},
            },
        },
        "pages/page_b/visuals/slicer3/visual.json": {
            "name": "slicer3",
            "visual": {"visualType": "slicer"},
            "isHidden": True,
        },
        "pages/page_b/visuals/btn1/visual.json": {
            "name": "btn1",
            "visual": {"visualType": "actionButton",
                       "visualContainerObjects": link("Bookmark", bookmark="bm_missing")},
        },
        "pages/page_b/visuals/fp1/visual.json": {
            "name": "fp1",
            "visual": {
                "visualType": "tableEx",
                "query": {"queryState": {"Values": {"fieldParameters": [
                    {"parameterExpr": column("Metric Picker", "Metric Picker"), "index": 0}]}}},
            },
        },

        # bookmarks: bm_three is declared but has no file
        "bookmarks/bookmarks.json": {"items": [
            {"name": "bm_one", "displayName": "One"},
            {"name": "grp", "displayName": "Group A", "children": ["bm_two", "bm_three"]},
        ]},
        "bookmarks/bm_one.bookmark.json": {
            "name": "bm_one",
            "displayName": "One",
            "explorationState": {
                "activeSection": "page_a",
                "filters": {"byExpr": [CATEGORY_FILTER]},
                "sections": {"page_a": {"visualContainers": {
                    "chart1": {"singleVisual": {"visualType": "barChart",
                                                "display": {"mode": "hidden"}}},
                    "table1": {"singleVisual": {"visualType": "pivotTable",
                                                "projections": {"Rows": [{"queryRef": "a"}],
                                                                "Values": [{"queryRef": "b"}]}}},
                    "gone1": {"singleVisual": {"visualType": "card"}},
                }}},
            },
        },
        "bookmarks/bm_two.bookmark.json": {
            "name": "bm_two",
            "displayName": "Two",
            "options": {"suppressData": True},
            "explorationState": {
                "activeSection": "page_b",
                "sections": {
                    "page_b": {"visualContainers": {
                        "slicer2": {"singleVisual": {"visualType": "advancedSlicerVisual",
                                                     "objects": {"header": [{}]}}},
                    }},
                    "page_a": {"visualContainerGroups": {"group1": {"isHidden": True}}},
                },
            },
        },
    }


# ── Fixtures ────────────────────────────────────────────────────────────

def write_report(root, documents: dict):
    """Write documents under root, creating folders as needed."""
    for rel_path, data in documents.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return root


@pytest.fixture
def report_root(tmp_path):
    """A Sales.Report folder holding the sample definition."""
    root = tmp_path / "Sales.Report"
    write_report(root / "definition", sample_documents())
    return root


@pytest.fixture
def index(report_root):
    return build_source_index(report_root)


@pytest.fixture
def tables(index):
    return extract_metadata(index)


@pytest.fixture
def analyzed(tables):
    return apply_cross_references(tables)
