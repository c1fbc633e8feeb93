"""Tests for the schema coverage audit."""

import pandas as pd

from conftest import lit
from expression_walker import EXPRESSION_MARKERS
from schema_audit import (
    SCHEMA_PATH_COLUMNS, audit_schema_coverage, base_key, enumerate_paths,
    is_known, path_matches, registry_patterns,
)
from source_index import SourceIndex


AUDIT_VISUAL = {
    "visual": {
        "visualType": "card",
        "objects": {"labels": [{"properties": {
            "color": {"solid": {"color": {"expr": lit("'#000000'")}}},
        }}]},
        "mystery": {"inner": 1},
    },
    "position": {"x": 1},
}


def audit_of(documents: dict) -> pd.DataFrame:
    return audit_schema_coverage(SourceIndex.from_documents(documents, report_name="R"))


def observation(df: pd.DataFrame, path: str) -> pd.Series:
    return df[df["Path"] == path].iloc[0]


class TestEnumeratePaths:

    def test_every_prefix_is_counted(self):
        counts = enumerate_paths({"a": {"b": {"c": 1}}})
        assert set(counts) == {("a",), ("a", "b"), ("a", "b", "c")}

    def test_lists_collapse(self):
        counts = enumerate_paths({"items": [{"name": "x"}, {"name": "y"}], "grid": [[1], [2]]})
        assert counts[("items[]",)] == 1
        assert counts[("items[]", "name")] == 2
        assert ("grid[][]",) in counts

    def test_stops_at_expression_markers(self):
        counts = enumerate_paths({"p": {"expr": {"Measure": {"Property": "M"}}},
                                  "q": {"Literal": {"Value": "1"}}})
        assert ("p", "expr") in counts
        assert ("q", "Literal") in counts
        assert all(len(path) <= 2 for path in counts)

    def test_non_mapping_document(self):
        assert not enumerate_paths([1, 2])


class TestMatching:

    def test_wildcards(self):
        assert path_matches(("a", "*"), ("a", "x"))
        assert path_matches(("a", "*[]", "b"), ("a", "x[]", "b"))
        assert not path_matches(("a", "*[]"), ("a", "x"))
        assert not path_matches(("a",), ("a", "b"))

    def test_list_field_matches_its_list_level(self):
        assert path_matches(("filterConfig", "filters"), ("filterConfig", "filters[]"))
        assert not path_matches(("items[]",), ("items",))

    def test_prefixes_are_known(self):
        patterns = registry_patterns("visual")
        assert is_known(("visual", "query"), patterns)
        assert is_known(("visual", "visualContainerObjects", "title[]"), patterns)

    def test_base_key(self):
        assert base_key("filters[][]") == "filters"


class TestAuditSchemaCoverage:

    def test_columns_and_kind(self):
        df = audit_of({"pages/p/visuals/v/visual.json": AUDIT_VISUAL})
        assert list(df.columns) == SCHEMA_PATH_COLUMNS
        assert set(df["Document"]) == {"visual"}

    def test_gap_requires_unknown_parent(self):
        df = audit_of({"pages/p/visuals/v/visual.json": AUDIT_VISUAL})
        mystery = observation(df, "visual.mystery")
        assert not mystery["IsKnown"] and not mystery["ParentIsUnknown"] and not mystery["IsGap"]
        inner = observation(df, "visual.mystery.inner")
        assert inner["ParentIsUnknown"] and inner["IsGap"]
        assert observation(df, "position.x")["IsKnown"]
        assert observation(df, "visual.objects.labels[].properties.color.solid")["IsKnown"]

    def test_top_level_unknown_is_not_a_gap(self):
        df = audit_of({"report.json": {"zzz": 1}})
        zzz = observation(df, "zzz")
        assert not zzz["IsKnown"] and not zzz["IsGap"]

    def test_never_descends_past_markers(self, index):
        df = audit_schema_coverage(index)
        for path in df["Path"]:
            segments = [base_key(s) for s in path.split(".")]
            assert not any(s in EXPRESSION_MARKERS for s in segments[:-1]), path

    def test_occurrences_aggregate_across_documents(self, index):
        df = audit_schema_coverage(index)
        visual_type = df[(df["Document"] == "visual") & (df["Path"] == "visual.visualType")].iloc[0]
        assert visual_type["Occurrences"] == 9

    def test_deterministic(self, index):
        first = audit_schema_coverage(index)
        second = audit_schema_coverage(index)
        pd.testing.assert_frame_equal(first, second)
        assert list(first["Path"]) == list(first.sort_values(["Document", "Path"])["Path"])

    def test_empty_index(self):
        df = audit_of({})
        assert df.empty
        assert list(df.columns) == SCHEMA_PATH_COLUMNS
