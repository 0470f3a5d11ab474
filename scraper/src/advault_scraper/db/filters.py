"""Row filters understood by the store."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

COMPARISON_OPS = {"eq": "=", "neq": "<>", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}
NULL_OPS = {"is_null": "IS NULL", "not_null": "IS NOT NULL"}


@dataclass(frozen=True)
class Filter:
    column: str
    op: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.op not in COMPARISON_OPS and self.op not in NULL_OPS and self.op != "in":
            raise ValueError(f"unsupported filter op: {self.op}")


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def neq(column: str, value: Any) -> Filter:
    return Filter(column, "neq", value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, "gt", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def in_(column: str, values: Iterable[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def is_null(column: str) -> Filter:
    return Filter(column, "is_null")


def not_null(column: str) -> Filter:
    return Filter(column, "not_null")


__all__ = ["COMPARISON_OPS", "NULL_OPS", "Filter", "eq", "gt", "gte", "in_", "is_null", "lt", "lte", "neq", "not_null"]
