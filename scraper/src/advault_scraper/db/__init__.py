"""Database helpers for the pipeline stages."""

from .filters import Filter, eq, gt, gte, in_, is_null, lt, lte, neq, not_null
from .postgres import PostgresStore, sql_connect

__all__ = [
    "Filter",
    "PostgresStore",
    "eq",
    "gt",
    "gte",
    "in_",
    "is_null",
    "lt",
    "lte",
    "neq",
    "not_null",
    "sql_connect",
]
