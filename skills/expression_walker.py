# -*- coding: utf-8 -*-
"""
Expression Walker
=================
Recursive matcher for the PBIR expression grammar used wherever a property
value can come from data instead of a constant:

    Literal        {"Literal": {"Value": "'#FF0000'"}}
    Reference      {"Column" | "Measure": {"Expression": {"SourceRef": {"Entity": T}}, "Property": P}}
                   {"Aggregation": {"Expression": <Reference>, "Function": 0}}
                   {"HierarchyLevel": {"Expression": {"Hierarchy": ...}, "Level": L}}
    Cases          {"Conditional": {"Cases": [{"Condition": ..., "Value": ...}, ...]}}
    FillRule       {"FillRule": {"Input": <Reference>, "FillRule": {"linearGradient2": ...}}}

Any of these may be wrapped in {"expr": ...}.

resolve_expression() answers "which model object drives this value?" by
trying conditional cases, then the fill rule, then a direct reference. The
first shape that resolves wins, so a value is only ever attributed to one
kind of conditional formatting.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional, Union

from query_ref_parser import REF_COLUMN_MEASURE, aggregation_ref_type


# Keys that open expression-grammar substructure. The schema auditor stops
# descending at these.
EXPRESSION_MARKERS = frozenset({
    "expr", "Literal", "Column", "Measure", "Aggregation", "HierarchyLevel",
    "Conditional", "FillRule", "SourceRef",
})

REFERENCE_KINDS = ("Column", "Measure", "Aggregation", "HierarchyLevel")

SHAPE_CASES = "cases"
SHAPE_FILL_RULE = "fill_rule"
SHAPE_REFERENCE = "reference"

GRADIENT_STOPS = ("min", "mid", "max")


# ============================================================
# Tagged variant
# ============================================================

@dataclass(frozen=True)
class LiteralExpr:
    value: object
    raw: str = ""


@dataclass(frozen=True)
class RefExpr:
    kind: str           # Column / Measure / Aggregation / HierarchyLevel
    entity: str
    prop: str
    function: Optional[str] = None

    @property
    def ref_type(self) -> str:
        if self.function:
            return aggregation_ref_type(self.function)
        return REF_COLUMN_MEASURE


@dataclass(frozen=True)
class CasesExpr:
    operands: tuple     # left comparison operand per case (UnknownExpr if none)
    values: tuple       # result expression per case
    default: Optional["ExprNode"] = None


@dataclass(frozen=True)
class FillRuleExpr:
    input: "ExprNode"
    stops: tuple        # ((stop_name, color), ...) in min/mid/max order


@dataclass(frozen=True)
class UnknownExpr:
    keys: tuple = ()


ExprNode = Union[LiteralExpr, RefExpr, CasesExpr, FillRuleExpr, UnknownExpr]


@dataclass(frozen=True)
class ExpressionMatch:
    """The model object an expression resolves to, and the shape that matched."""
    shape: str
    ref: RefExpr

    @property
    def entity(self) -> str:
        return self.ref.entity

    @property
    def prop(self) -> str:
        return self.ref.prop


# ============================================================
# Literals
# ============================================================

def decode_literal(value_str):
    """Convert a PBIR literal string to a Python value.

    'text' -> text, true/false -> bool, 12D / 3L / 1.5M -> number,
    null -> None. Anything else (e.g. datetime'...') is returned as-is.
    """
    if not isinstance(value_str, str):
        return value_str
    s = value_str.strip()
    if s.lower() == "null":
        return None
    if s.lower() in ("true", "false"):
        return s.lower() == "true"
    if len(s) >= 2 and s.startswith("'") and s.endswith("'"):
        return s[1:-1].replace("''", "'")
    if re.match(r"^-?\d+L$", s):
        return int(s[:-1])
    if re.match(r"^-?\d+(\.\d+)?[DM]$", s):
        num = s[:-1]
        return float(num) if "." in num else int(num)
    if re.match(r"^-?\d+(\.\d+)?$", s):
        return float(s) if "." in s else int(s)
    return s


def unwrap_expr(node):
    """Strip an {"expr": ...} wrapper if present."""
    if isinstance(node, Mapping) and "expr" in node:
        return node["expr"]
    return node


def literal_value(node, default=None):
    """Decoded value of a (possibly expr-wrapped) Literal node, else default."""
    node = unwrap_expr(node)
    if not isinstance(node, Mapping):
        return default
    lit = node.get("Literal")
    if not isinstance(lit, Mapping) or "Value" not in lit:
        return default
    value = decode_literal(lit.get("Value"))
    return default if value is None else value


def color_literal(node) -> str:
    """Colour string from {"solid": {"color": <literal>}} or a bare colour literal."""
    if isinstance(node, Mapping) and "solid" in node:
        node = node.get("solid", {})
        node = node.get("color", {}) if isinstance(node, Mapping) else {}
    value = literal_value(node, "")
    return value if isinstance(value, str) else ""


# ============================================================
# Reference helpers (same shapes as field wells)
# ============================================================

def _get_entity(node) -> str:
    """Table name of a field node: Expression > SourceRef > Entity."""
    try:
        entity = node["Expression"]["SourceRef"]["Entity"]
    except (KeyError, TypeError):
        return ""
    return entity if isinstance(entity, str) else ""


def _get_agg_name(func_id) -> str:
    """Map Power BI aggregation function ID to readable name."""
    agg_map = {0: "Sum", 1: "Avg", 2: "Count", 3: "Min", 4: "Max",
               5: "CountNonNull", 6: "Median"}
    return agg_map.get(func_id, f"Func{func_id}")


def _reference(node) -> Optional[RefExpr]:
    """Direct Column/Measure/Aggregation/HierarchyLevel reference, or None."""
    node = unwrap_expr(node)
    if not isinstance(node, Mapping):
        return None

    for kind in ("Column", "Measure"):
        if kind in node and isinstance(node[kind], Mapping):
            col = node[kind]
            prop = col.get("Property", "")
            if not isinstance(prop, str) or not prop:
                return None
            return RefExpr(kind, _get_entity(col), prop)

    if "Aggregation" in node and isinstance(node["Aggregation"], Mapping):
        agg = node["Aggregation"]
        inner = _reference(agg.get("Expression", {}))
        if inner is None:
            return None
        return RefExpr("Aggregation", inner.entity, inner.prop,
                       _get_agg_name(agg.get("Function", 0)))

    if "HierarchyLevel" in node and isinstance(node["HierarchyLevel"], Mapping):
        hl = node["HierarchyLevel"]
        hier = hl.get("Expression", {}).get("Hierarchy", {}) if isinstance(
            hl.get("Expression"), Mapping) else {}
        if not isinstance(hier, Mapping):
            return None
        entity = _get_entity(hier)
        prop = hl.get("Level", "") or hier.get("Hierarchy", "")
        # Auto date hierarchies hang off a PropertyVariationSource
        if not entity:
            pvs = hier.get("Expression", {}).get("PropertyVariationSource", {}) if isinstance(
                hier.get("Expression"), Mapping) else {}
            if isinstance(pvs, Mapping) and pvs:
                entity = _get_entity(pvs)
                prop = pvs.get("Property", prop)
        if not isinstance(prop, str) or not prop:
            return None
        return RefExpr("HierarchyLevel", entity, prop)

    return None


def _first_left_operand(condition):
    """Left operand of a case condition, looking through a leading And."""
    if not isinstance(condition, Mapping):
        return {}
    if "And" in condition and isinstance(condition["And"], Mapping):
        return _first_left_operand(condition["And"].get("Left", {}))
    comparison = condition.get("Comparison")
    if isinstance(comparison, Mapping):
        return comparison.get("Left", {})
    return {}


def _cases(node) -> list:
    node = unwrap_expr(node)
    if not isinstance(node, Mapping):
        return []
    conditional = node.get("Conditional")
    if not isinstance(conditional, Mapping):
        return []
    cases = conditional.get("Cases", [])
    return [c for c in cases if isinstance(c, Mapping)] if isinstance(cases, list) else []


def _fill_rule(node):
    node = unwrap_expr(node)
    if not isinstance(node, Mapping):
        return None
    fill_rule = node.get("FillRule")
    return fill_rule if isinstance(fill_rule, Mapping) else None


# ============================================================
# Parsing into the tagged variant
# ============================================================

def parse_expression(node) -> ExprNode:
    """Classify a raw expression node into its grammar shape."""
    raw = unwrap_expr(node)
    if not isinstance(raw, Mapping):
        return UnknownExpr()

    if "Conditional" in raw:
        cases = _cases(raw)
        conditional = raw.get("Conditional")
        default = None
        if isinstance(conditional, Mapping) and "DefaultValue" in conditional:
            default = parse_expression(conditional["DefaultValue"])
        return CasesExpr(
            operands=tuple(parse_expression(_first_left_operand(c.get("Condition"))) for c in cases),
            values=tuple(parse_expression(c.get("Value", {})) for c in cases),
            default=default,
        )

    fill_rule = _fill_rule(raw)
    if fill_rule is not None:
        return FillRuleExpr(input=parse_expression(fill_rule.get("Input", {})),
                            stops=gradient_stops(fill_rule))

    ref = _reference(raw)
    if ref is not None:
        return ref

    if "Literal" in raw:
        lit = raw.get("Literal")
        raw_value = lit.get("Value", "") if isinstance(lit, Mapping) else ""
        return LiteralExpr(decode_literal(raw_value), str(raw_value))

    return UnknownExpr(tuple(sorted(str(k) for k in raw)))


def gradient_stops(fill_rule) -> tuple:
    """(stop, colour) pairs from linearGradient2 / linearGradient3."""
    if not isinstance(fill_rule, Mapping):
        return ()
    gradient = fill_rule.get("FillRule", {})
    if not isinstance(gradient, Mapping):
        return ()
    for key in ("linearGradient3", "linearGradient2"):
        spec = gradient.get(key)
        if isinstance(spec, Mapping):
            stops = []
            for stop in GRADIENT_STOPS:
                stop_node = spec.get(stop)
                if isinstance(stop_node, Mapping):
                    stops.append((stop, color_literal(stop_node.get("color", {}))))
            return tuple(stops)
    return ()


# ============================================================
# Resolution
# ============================================================

def _resolve_cases(node) -> Optional[ExpressionMatch]:
    cases = _cases(node)
    if not cases:
        return None
    # First-match semantics: only the first case's operand names the driver
    operand = _first_left_operand(cases[0].get("Condition"))
    inner = resolve_expression(operand)
    if inner is None:
        return None
    return ExpressionMatch(SHAPE_CASES, inner.ref)


def _resolve_fill_rule(node) -> Optional[ExpressionMatch]:
    fill_rule = _fill_rule(node)
    if fill_rule is None:
        return None
    inner = resolve_expression(fill_rule.get("Input", {}))
    if inner is None:
        return None
    return ExpressionMatch(SHAPE_FILL_RULE, inner.ref)


def _resolve_reference(node) -> Optional[ExpressionMatch]:
    ref = _reference(node)
    if ref is None:
        return None
    return ExpressionMatch(SHAPE_REFERENCE, ref)


_RESOLVERS = (_resolve_cases, _resolve_fill_rule, _resolve_reference)


def resolve_expression(node) -> Optional[ExpressionMatch]:
    """First resolvable (entity, property) in the node, or None.

    Tries conditional cases, then fill rule, then a direct reference.
    """
    for resolver in _RESOLVERS:
        match = resolver(node)
        if match is not None:
            return match
    return None
