"""Postgres persistence used by every pipeline stage.

Two connections back a :class:`PostgresStore`: a reduced-privilege one for
reads and an elevated-privilege one for writes and procedure calls. Each
write commits immediately; a failed statement is rolled back and surfaced as
:class:`~advault_scraper.errors.PersistenceError`.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping, Sequence
from enum import Enum
from typing import Any

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2 import sql

from ..errors import DuplicateRowError, PersistenceError
from ..logging import jlog
from .filters import COMPARISON_OPS, NULL_OPS, Filter


def sql_connect(
    sql_conn: str | None,
    db_host: str | None = None,
    db_port: int | None = None,
    *,
    dbname: str | None = None,
    user: str | None = None,
    password: str | None = None,
    sslmode: str | None = None,
):
    """Return a psycopg2 connection using either TCP or a Cloud SQL socket."""

    dbname = dbname or os.getenv("DB_NAME", "advault")
    user = user or os.getenv("DB_USER", "postgres")
    password = password or os.getenv("DB_PASSWORD")
    if not password:
        raise RuntimeError("DB_PASSWORD environment variable is required for database connections")

    if db_host:
        return psycopg2.connect(
            host=db_host,
            port=db_port or 5432,
            dbname=dbname,
            user=user,
            password=password,
            connect_timeout=10,
            sslmode=sslmode or os.getenv("DB_SSLMODE", "prefer"),
        )

    if not sql_conn:
        raise RuntimeError("sql_conn must be provided when db_host is not set")
    socket_dir = "/cloudsql"
    host = f"{socket_dir}/{sql_conn}"
    return psycopg2.connect(
        host=host,
        dbname=dbname,
        user=user,
        password=password,
        connect_timeout=10,
    )


def _adapt(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return psycopg2.extras.Json(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _where(filters: Iterable[Filter]) -> tuple[sql.Composable, list[Any]]:
    clauses: list[sql.Composable] = []
    params: list[Any] = []
    for f in filters:
        col = sql.Identifier(f.column)
        if f.op in COMPARISON_OPS:
            clauses.append(sql.SQL("{} " + COMPARISON_OPS[f.op] + " %s").format(col))
            params.append(_adapt(f.value))
        elif f.op in NULL_OPS:
            clauses.append(sql.SQL("{} " + NULL_OPS[f.op]).format(col))
        elif not f.value:
            clauses.append(sql.SQL("FALSE"))
        else:
            clauses.append(sql.SQL("{} = ANY(%s)").format(col))
            params.append([_adapt(v) for v in f.value])
    if not clauses:
        return sql.SQL(""), params
    return sql.SQL(" WHERE ") + sql.SQL(" AND ").join(clauses), params


class PostgresStore:
    """Table-generic CRUD over psycopg2 with dict rows."""

    def __init__(self, reader, writer=None) -> None:
        self.reader = reader
        self.writer = writer or reader

    def close(self) -> None:
        self.reader.close()
        if self.writer is not self.reader:
            self.writer.close()

    def _run(self, con, query: sql.Composable, params: Sequence[Any], *, fetch: str, commit: bool) -> Any:
        try:
            with con.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, params)
                if fetch == "all":
                    out = [dict(r) for r in cur.fetchall()]
                elif fetch == "one":
                    row = cur.fetchone()
                    out = dict(row) if row is not None else None
                else:
                    out = cur.rowcount
            if commit:
                con.commit()
            return out
        except psycopg2.errors.UniqueViolation as exc:
            con.rollback()
            raise DuplicateRowError(str(exc).strip()) from exc
        except psycopg2.Error as exc:
            con.rollback()
            jlog("error", event="db_error", error=str(exc).strip(), pgcode=getattr(exc, "pgcode", None))
            raise PersistenceError(str(exc).strip()) from exc

    # ============================
    # Reads
    # ============================

    def select(
        self,
        table: str,
        filters: Iterable[Filter] = (),
        *,
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        cols = sql.SQL(", ").join([sql.Identifier(c) for c in columns]) if columns else sql.SQL("*")
        where, params = _where(filters)
        query = sql.SQL("SELECT {} FROM {}").format(cols, sql.Identifier(table)) + where
        if order_by:
            query += sql.SQL(" ORDER BY {} " + ("DESC" if descending else "ASC")).format(sql.Identifier(order_by))
        if limit is not None:
            query += sql.SQL(" LIMIT %s")
            params.append(limit)
        if offset:
            query += sql.SQL(" OFFSET %s")
            params.append(offset)
        return self._run(self.reader, query, params, fetch="all", commit=False)

    def select_one(self, table: str, filters: Iterable[Filter] = (), **kw: Any) -> dict[str, Any] | None:
        rows = self.select(table, filters, limit=1, **kw)
        return rows[0] if rows else None

    def count(self, table: str, filters: Iterable[Filter] = ()) -> int:
        where, params = _where(filters)
        query = sql.SQL("SELECT COUNT(*) AS n FROM {}").format(sql.Identifier(table)) + where
        row = self._run(self.reader, query, params, fetch="one", commit=False)
        return int(row["n"]) if row else 0

    # ============================
    # Writes
    # ============================

    def insert(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        cols = list(row)
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join([sql.Identifier(c) for c in cols]),
            sql.SQL(", ").join(sql.Placeholder() * len(cols)),
        )
        return self._run(self.writer, query, [_adapt(row[c]) for c in cols], fetch="one", commit=True)

    def update(self, table: str, values: Mapping[str, Any], filters: Iterable[Filter]) -> list[dict[str, Any]]:
        """Update only the named columns of matching rows; returns the updated rows."""

        filters = list(filters)
        if not filters:
            raise PersistenceError(f"refusing unfiltered update of {table}")
        assignments = sql.SQL(", ").join([sql.SQL("{} = %s").format(sql.Identifier(c)) for c in values])
        where, where_params = _where(filters)
        query = sql.SQL("UPDATE {} SET {}").format(sql.Identifier(table), assignments) + where + sql.SQL(" RETURNING *")
        params = [_adapt(v) for v in values.values()] + where_params
        return self._run(self.writer, query, params, fetch="all", commit=True)

    def call(self, procedure: str, *args: Any) -> Any:
        """Invoke a stored procedure and return its scalar result."""

        query = sql.SQL("SELECT {}({}) AS result").format(
            sql.Identifier(procedure),
            sql.SQL(", ").join(sql.Placeholder() * len(args)),
        )
        row = self._run(self.writer, query, [_adapt(a) for a in args], fetch="one", commit=True)
        return row["result"] if row else None


__all__ = ["PostgresStore", "sql_connect"]
