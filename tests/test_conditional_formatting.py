"""Tests for conditional formatting detection and swatches."""

import base64

from conftest import CASES_RULE, GRADIENT_FILL, lit, measure, sample_documents
from conditional_formatting import (
    CF_DATA_BARS, CF_FIELD_VALUE, CF_GRADIENT, CF_RULES, SWATCH_CELLS,
    cf_rule_rows, count_conditional_formatting, formatting_hits, render_swatch,
)


def visual_with(objects: dict) -> dict:
    return {"visual": {"visualType": "tableEx", "objects": objects}}


def color_entry(expr: dict, prop: str = "fontColor") -> dict:
    return {"properties": {prop: {"solid": {"color": {"expr": expr}}}}}


def decode_swatch(uri: str) -> str:
    return base64.b64decode(uri.split(",", 1)[1]).decode("utf-8")


class TestFormattingHits:

    def test_each_shape_lands_in_one_bucket(self):
        visual = visual_with({"values": [
            color_entry(CASES_RULE, "backColor"),
            color_entry({"FillRule": GRADIENT_FILL}, "fontColor"),
            color_entry(measure("Sales", "Color Measure"), "iconColor"),
        ]})
        types = {h.config_property: h.cf_type for h in formatting_hits(visual)}
        assert types == {"backColor": CF_RULES, "fontColor": CF_GRADIENT, "iconColor": CF_FIELD_VALUE}

    def test_literal_colors_are_not_formatting(self):
        visual = visual_with({"labels": [color_entry(lit("'#000000'"), "color")]})
        assert formatting_hits(visual) == []
        assert count_conditional_formatting(visual) == 0

    def test_data_bars_parse_selector(self):
        visual = visual_with({"values": [{
            "properties": {"dataBars": {"positiveColor": {"solid": {"color": lit("'#5B9BD5'")}}}},
            "selector": {"metadata": "Avg(Sales.Amount)"},
        }]})
        [hit] = formatting_hits(visual)
        assert hit.cf_type == CF_DATA_BARS
        assert (hit.table_name, hit.object_name, hit.ref_type) == ("Sales", "Amount", "Aggregation(Avg)")
        assert hit.colors == ("#5B9BD5",)

    def test_count_adds_both_surfaces(self):
        visual = sample_documents()["pages/page_a/visuals/table1/visual.json"]
        assert count_conditional_formatting(visual) == 2

    def test_missing_objects(self):
        assert formatting_hits({}) == []


class TestRenderSwatch:

    def test_fixed_cell_count(self):
        few = decode_swatch(render_swatch(("#FF0000",), CF_RULES))
        many = decode_swatch(render_swatch(tuple(f"#00000{i}" for i in range(8)), CF_RULES))
        assert few.count("<rect") == SWATCH_CELLS
        assert many.count("<rect") == SWATCH_CELLS

    def test_invalid_colors_fall_back(self):
        svg = decode_swatch(render_swatch(("red",), CF_GRADIENT))
        assert 'fill="#CCCCCC"' in svg

    def test_field_value_placeholder(self):
        svg = decode_swatch(render_swatch((), CF_FIELD_VALUE))
        assert 'fill="#FFFFFF"' in svg and 'fill="#CCCCCC"' in svg


class TestCfRuleRows:

    def test_rows_for_sample_table(self):
        visual = sample_documents()["pages/page_a/visuals/table1/visual.json"]
        rows = cf_rule_rows(visual, "Sales", "page_a", "Overview", "table1", "tableEx")
        assert [r["CFType"] for r in rows] == [CF_RULES, CF_DATA_BARS]
        rules, bars = rows
        assert rules["Colors"] == "#00FF00, #FF0000"
        assert rules["RuleCount"] == 1
        assert rules["SwatchImage"].startswith("data:image/svg+xml;base64,")
        assert bars["SwatchImage"] == ""
        assert bars["Selector"] == "Sum(Sales.Amount)"

    def test_gradient_row(self):
        visual = sample_documents()["pages/page_a/visuals/chart1/visual.json"]
        [row] = cf_rule_rows(visual, "Sales", "page_a", "Overview", "chart1", "barChart")
        assert (row["ConfigObject"], row["ConfigProperty"]) == ("dataPoint", "fill")
        assert row["CFType"] == CF_GRADIENT
        assert row["RuleCount"] == 2
        assert row["Colors"] == "#FFFFFF, #118DFF"
