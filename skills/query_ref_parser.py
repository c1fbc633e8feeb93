# -*- coding: utf-8 -*-
"""
QueryRef parser: turns a PBIR queryRef token into a structured model reference.

    "Sum(Sales.Amount)"  -> Aggregation(Sum), Sales, Amount, Sum
    "Sales.Total Sales"  -> Column/Measure, Sales, Total Sales
    "Amount"             -> Column/Measure, "", Amount
"""

import re
from dataclasses import dataclass
from typing import Optional

AGGREGATION_FUNCTIONS = ("Sum", "Avg", "Min", "Max", "Count", "CountNonNull")

REF_COLUMN_MEASURE = "Column/Measure"
REF_FIELD_PARAMETER = "FieldParameter"

# Longest names first so "CountNonNull(" is not read as "Count("
_AGG_PATTERN = re.compile(
    r"^(%s)\((.*)\)$" % "|".join(sorted(AGGREGATION_FUNCTIONS, key=len, reverse=True)),
    re.DOTALL,
)


def aggregation_ref_type(func: str) -> str:
    return f"Aggregation({func})"


@dataclass(frozen=True)
class QueryRef:
    ref_type: str
    table_name: str
    object_name: str
    agg_function: Optional[str] = None

    @property
    def field_key(self) -> str:
        return f"{self.table_name}.{self.object_name}"


def split_table_object(inner: str) -> tuple:
    """Split 'Table.Object' on the first dot; no dot means no table."""
    if "." not in inner:
        return "", inner
    table, obj = inner.split(".", 1)
    return table, obj


def parse_query_ref(text) -> QueryRef:
    """Parse a queryRef. Never raises; malformed input degrades to a bare object name."""
    token = (text or "").strip() if isinstance(text, str) else ""

    match = _AGG_PATTERN.match(token)
    if match:
        func, inner = match.group(1), match.group(2).strip()
        table, obj = split_table_object(inner)
        return QueryRef(aggregation_ref_type(func), table, obj, func)

    table, obj = split_table_object(token)
    return QueryRef(REF_COLUMN_MEASURE, table, obj, None)
