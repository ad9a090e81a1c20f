from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Generator, List, Optional, Tuple

from .models import TodoEntity
from .repositories import ListQuery, Repository, changed_fields, parse_sort, utcnow
from .schemas import TodoCreate, TodoUpdate


@dataclass(frozen=True)
class _Cols:
    table: str = "todos"
    id: str = "id"
    owner_id: str = "owner_id"
    title: str = "title"
    description: str = "description"
    completed: str = "completed"
    priority: str = "priority"
    due_date: str = "due_date"
    created_at: str = "created_at"
    updated_at: str = "updated_at"


_COLS = _Cols()

# Columns an update may write, in a fixed order
_UPDATABLE = ("title", "description", "completed", "priority", "due_date")


def _dt_to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value else None


def _text_to_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


# SQLite INTEGER is a signed 64-bit value; binding anything wider raises OverflowError
_MIN_ID = -(2 ** 63)
_MAX_ID = 2 ** 63 - 1


def _storable_id(todo_id: int) -> bool:
    return _MIN_ID <= todo_id <= _MAX_ID


def _lower(value: Optional[str]) -> Optional[str]:
    return value.lower() if value is not None else None


class SQLiteRepository(Repository):
    """
    Lightweight SQLite repository implementing the Repository interface.
    AUTOINCREMENT keeps ids of deleted rows from being handed out again.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        # Same case folding as InMemoryRepository, including non-ASCII text
        conn.create_function("py_lower", 1, _lower, deterministic=True)
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_COLS.table} (
                    {_COLS.id} INTEGER PRIMARY KEY AUTOINCREMENT,
                    {_COLS.owner_id} TEXT NOT NULL,
                    {_COLS.title} TEXT NOT NULL,
                    {_COLS.description} TEXT NULL,
                    {_COLS.completed} INTEGER NOT NULL DEFAULT 0,
                    {_COLS.priority} TEXT NOT NULL DEFAULT 'medium',
                    {_COLS.due_date} TEXT NULL,
                    {_COLS.created_at} TEXT NOT NULL,
                    {_COLS.updated_at} TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_owner ON {_COLS.table}({_COLS.owner_id})"
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{_COLS.table}_owner_completed "
                f"ON {_COLS.table}({_COLS.owner_id}, {_COLS.completed})"
            )

    def _row_to_entity(self, row: sqlite3.Row) -> TodoEntity:
        return {
            "id": int(row[_COLS.id]),
            "owner_id": str(row[_COLS.owner_id]),
            "title": str(row[_COLS.title]),
            "description": row[_COLS.description],
            "completed": bool(row[_COLS.completed]),
            "priority": row[_COLS.priority],
            "due_date": _text_to_dt(row[_COLS.due_date]),
            "created_at": _text_to_dt(row[_COLS.created_at]),  # type: ignore
            "updated_at": _text_to_dt(row[_COLS.updated_at]),  # type: ignore
        }

    def _fetch(self, conn: sqlite3.Connection, todo_id: int) -> Optional[TodoEntity]:
        row = conn.execute(f"SELECT * FROM {_COLS.table} WHERE {_COLS.id} = ?", (todo_id,)).fetchone()
        return self._row_to_entity(row) if row else None

    def create(self, owner_id: str, data: TodoCreate) -> TodoEntity:
        now = _dt_to_text(utcnow())
        with self._conn() as conn:
            cur = conn.execute(
                f"""
                INSERT INTO {_COLS.table} ({_COLS.owner_id}, {_COLS.title}, {_COLS.description},
                    {_COLS.completed}, {_COLS.priority}, {_COLS.due_date},
                    {_COLS.created_at}, {_COLS.updated_at})
                VALUES (?, ?, ?, 0, ?, ?, ?, ?)
                """,
                (owner_id, data.title, data.description, data.priority, _dt_to_text(data.due_date), now, now),
            )
            created = self._fetch(conn, int(cur.lastrowid))
            assert created is not None
            return created

    def get(self, todo_id: int) -> Optional[TodoEntity]:
        if not _storable_id(todo_id):
            return None
        with self._conn() as conn:
            return self._fetch(conn, todo_id)

    def update(self, todo_id: int, data: TodoUpdate) -> Optional[TodoEntity]:
        if not _storable_id(todo_id):
            return None
        changes = changed_fields(data)
        assignments = [f"{name} = ?" for name in _UPDATABLE if name in changes]
        params: list = []
        for name in _UPDATABLE:
            if name not in changes:
                continue
            value = changes[name]
            if name == "completed":
                value = 1 if value else 0
            elif name == "due_date":
                value = _dt_to_text(value)  # type: ignore[arg-type]
            params.append(value)

        assignments.append(f"{_COLS.updated_at} = ?")
        params.extend([_dt_to_text(utcnow()), todo_id])
        with self._conn() as conn:
            cur = conn.execute(
                f"UPDATE {_COLS.table} SET {', '.join(assignments)} WHERE {_COLS.id} = ?",
                params,
            )
            if cur.rowcount == 0:
                return None
            return self._fetch(conn, todo_id)

    def toggle(self, todo_id: int) -> Optional[TodoEntity]:
        if not _storable_id(todo_id):
            return None
        with self._conn() as conn:
            cur = conn.execute(
                f"""
                UPDATE {_COLS.table}
                SET {_COLS.completed} = 1 - {_COLS.completed}, {_COLS.updated_at} = ?
                WHERE {_COLS.id} = ?
                """,
                (_dt_to_text(utcnow()), todo_id),
            )
            if cur.rowcount == 0:
                return None
            return self._fetch(conn, todo_id)

    def delete(self, todo_id: int) -> bool:
        if not _storable_id(todo_id):
            return False
        with self._conn() as conn:
            cur = conn.execute(f"DELETE FROM {_COLS.table} WHERE {_COLS.id} = ?", (todo_id,))
            return cur.rowcount > 0

    def list(self, owner_id: str, query: Optional[ListQuery] = None) -> Tuple[List[TodoEntity], int]:
        q = query or ListQuery()
        clauses = [f"{_COLS.owner_id} = ?"]
        params: list = [owner_id]

        if q.completed is not None:
            clauses.append(f"{_COLS.completed} = ?")
            params.append(1 if q.completed else 0)

        if q.search:
            # Literal substring match: instr has no wildcard characters, unlike LIKE
            clauses.append(
                f"(instr(py_lower({_COLS.title}), ?) > 0 OR instr(py_lower({_COLS.description}), ?) > 0)"
            )
            needle = q.search.lower()
            params.extend([needle, needle])

        where_sql = f"WHERE {' AND '.join(clauses)}"

        field, descending = parse_sort(q.sort)
        direction = "DESC" if descending else "ASC"
        order_sql = f"ORDER BY {field} {direction}, {_COLS.id} {direction}"

        # LIMIT -1 means no limit in SQLite
        limit = -1 if q.limit is None else max(q.limit, 0)
        offset = max(q.offset, 0)

        with self._conn() as conn:
            count_row = conn.execute(
                f"SELECT COUNT(*) AS cnt FROM {_COLS.table} {where_sql}", params
            ).fetchone()
            total = int(count_row["cnt"]) if count_row else 0

            rows = conn.execute(
                f"""
                SELECT * FROM {_COLS.table}
                {where_sql}
                {order_sql}
                LIMIT ? OFFSET ?
                """,
                [*params, limit, offset],
            ).fetchall()
            return [self._row_to_entity(r) for r in rows], total

    def counts(self, owner_id: str) -> Tuple[int, int]:
        with self._conn() as conn:
            row = conn.execute(
                f"""
                SELECT COUNT(*) AS total, COALESCE(SUM({_COLS.completed}), 0) AS done
                FROM {_COLS.table} WHERE {_COLS.owner_id} = ?
                """,
                (owner_id,),
            ).fetchone()
            return int(row["total"]), int(row["done"])
