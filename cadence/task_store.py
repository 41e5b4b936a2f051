from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

from cadence.errors import StoreFailure
from cadence.models import (
    TaskRecord,
    membership_from_columns,
    membership_to_columns,
    utc_now,
)
from cadence.recurrence import normalize_recurrence

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = (
    "title",
    "description",
    "status",
    "due_date",
    "start_time",
    "end_time",
    "membership",
    "recurrence",
)
DATETIME_COLUMNS = {"due_date", "start_time", "end_time"}


def _to_epoch(value: datetime | None) -> float | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def _from_epoch(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def _new_task_id() -> str:
    return uuid.uuid4().hex


class TaskStore:
    """SQLite interval store. Every query is scoped to one owner."""

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._active_conn: sqlite3.Connection | None = None
        self._init_schema()
        logger.info("TaskStore ready db=%s", self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            owner TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'pending',
            due_date REAL,
            start_time REAL,
            end_time REAL,
            is_recurring INTEGER NOT NULL DEFAULT 0,
            series_id TEXT,
            recurrence_json TEXT NOT NULL DEFAULT '{}',
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_tasks_owner_start ON tasks(owner, start_time);
        CREATE INDEX IF NOT EXISTS idx_tasks_owner_end ON tasks(owner, end_time);
        CREATE INDEX IF NOT EXISTS idx_tasks_owner_series ON tasks(owner, series_id);
        """
        with self._session() as conn:
            conn.executescript(schema_sql)

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._active_conn is not None:
                try:
                    yield self._active_conn
                except sqlite3.Error as exc:
                    raise StoreFailure(str(exc)) from exc
                return
            try:
                conn = self._connect()
            except sqlite3.Error as exc:
                raise StoreFailure(str(exc)) from exc
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise StoreFailure(str(exc)) from exc
            finally:
                conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group several store calls into one SQLite transaction.

        Any exception raised inside the block rolls every write back.
        Nested use joins the outer transaction.
        """
        with self._lock:
            if self._active_conn is not None:
                yield
                return
            try:
                conn = self._connect()
            except sqlite3.Error as exc:
                raise StoreFailure(str(exc)) from exc
            self._active_conn = conn
            try:
                yield
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._active_conn = None
                conn.close()

    def _row_to_task(self, row: sqlite3.Row) -> TaskRecord:
        try:
            recurrence_raw = json.loads(row["recurrence_json"] or "{}")
        except ValueError:
            recurrence_raw = {}
        return TaskRecord(
            id=str(row["id"]),
            owner=str(row["owner"]),
            title=str(row["title"] or ""),
            description=str(row["description"] or ""),
            status=str(row["status"] or "pending"),
            due_date=_from_epoch(row["due_date"]),
            start_time=_from_epoch(row["start_time"]),
            end_time=_from_epoch(row["end_time"]),
            membership=membership_from_columns(bool(row["is_recurring"]), row["series_id"]),
            recurrence=normalize_recurrence(recurrence_raw),
            created_at=_from_epoch(row["created_at"]),
            updated_at=_from_epoch(row["updated_at"]),
        )

    @staticmethod
    def _column_value(field: str, value: Any) -> Any:
        if field in DATETIME_COLUMNS:
            return _to_epoch(value)
        if field == "recurrence":
            return json.dumps(value.to_dict(), ensure_ascii=False)
        return value

    def _insert(self, conn: sqlite3.Connection, record: TaskRecord) -> TaskRecord:
        now = utc_now()
        stored = record.with_updates(id=record.id or _new_task_id(), created_at=now, updated_at=now)
        is_recurring, series_id = membership_to_columns(stored.membership)
        conn.execute(
            """
            INSERT INTO tasks(
                id, owner, title, description, status, due_date, start_time, end_time,
                is_recurring, series_id, recurrence_json, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                stored.id,
                stored.owner,
                stored.title,
                stored.description,
                stored.status,
                _to_epoch(stored.due_date),
                _to_epoch(stored.start_time),
                _to_epoch(stored.end_time),
                int(is_recurring),
                series_id,
                self._column_value("recurrence", stored.recurrence),
                _to_epoch(now),
                _to_epoch(now),
            ),
        )
        return stored

    def _overlap_query(
        self,
        conn: sqlite3.Connection,
        owner: str,
        start_before: datetime,
        end_after: datetime,
        exclude_id: str | None,
    ) -> sqlite3.Row | None:
        sql = """
            SELECT *
            FROM tasks
            WHERE owner = ?
              AND start_time IS NOT NULL
              AND end_time IS NOT NULL
              AND start_time < ?
              AND end_time > ?
        """
        params: list[Any] = [owner, _to_epoch(start_before), _to_epoch(end_after)]
        if exclude_id:
            sql += " AND id != ?"
            params.append(exclude_id)
        sql += " ORDER BY start_time ASC LIMIT 1"
        return conn.execute(sql, params).fetchone()

    def exists(
        self,
        owner: str,
        *,
        start_before: datetime,
        end_after: datetime,
        exclude_id: str | None = None,
    ) -> bool:
        with self._session() as conn:
            return self._overlap_query(conn, owner, start_before, end_after, exclude_id) is not None

    def find_overlapping(
        self,
        owner: str,
        *,
        start_before: datetime,
        end_after: datetime,
        exclude_id: str | None = None,
    ) -> TaskRecord | None:
        with self._session() as conn:
            row = self._overlap_query(conn, owner, start_before, end_after, exclude_id)
            return self._row_to_task(row) if row else None

    def insert_one(self, record: TaskRecord) -> TaskRecord:
        with self._session() as conn:
            stored = self._insert(conn, record)
        logger.debug("Task inserted id=%s owner=%s", stored.id, stored.owner)
        return stored

    def insert_many(self, owner: str, records: Iterable[TaskRecord]) -> list[TaskRecord]:
        inserted: list[TaskRecord] = []
        with self._session() as conn:
            for record in records:
                inserted.append(self._insert(conn, record.with_updates(owner=owner)))
        logger.debug("Tasks inserted owner=%s count=%s", owner, len(inserted))
        return inserted

    def get(self, owner: str, task_id: str) -> TaskRecord | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE owner = ? AND id = ?",
                (owner, str(task_id)),
            ).fetchone()
        return self._row_to_task(row) if row else None

    def list_for_owner(self, owner: str, title: str | None = None) -> list[TaskRecord]:
        sql = "SELECT * FROM tasks WHERE owner = ?"
        params: list[Any] = [owner]
        if title:
            sql += " AND instr(lower(title), lower(?)) > 0"
            params.append(title)
        sql += " ORDER BY start_time ASC, created_at DESC"
        with self._session() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_task(row) for row in rows]

    def update_one(self, owner: str, task_id: str, patch: dict[str, Any]) -> TaskRecord | None:
        fields: list[str] = []
        params: list[Any] = []
        for field in PATCHABLE_FIELDS:
            if field not in patch:
                continue
            value = patch[field]
            if field == "membership":
                is_recurring, series_id = membership_to_columns(value)
                fields.extend(["is_recurring = ?", "series_id = ?"])
                params.extend([int(is_recurring), series_id])
                continue
            fields.append(f"{field if field != 'recurrence' else 'recurrence_json'} = ?")
            params.append(self._column_value(field, value))

        with self._session() as conn:
            if fields:
                fields.append("updated_at = ?")
                params.append(_to_epoch(utc_now()))
                params.extend([owner, str(task_id)])
                cursor = conn.execute(
                    f"UPDATE tasks SET {', '.join(fields)} WHERE owner = ? AND id = ?",
                    params,
                )
                if cursor.rowcount == 0:
                    return None
            row = conn.execute(
                "SELECT * FROM tasks WHERE owner = ? AND id = ?",
                (owner, str(task_id)),
            ).fetchone()
        return self._row_to_task(row) if row else None

    def delete_many(self, owner: str, series_id: str) -> int:
        with self._session() as conn:
            cursor = conn.execute(
                "DELETE FROM tasks WHERE owner = ? AND series_id = ?",
                (owner, series_id),
            )
            deleted = int(cursor.rowcount)
        logger.debug("Series deleted owner=%s series_id=%s count=%s", owner, series_id, deleted)
        return deleted

    def delete_one(self, owner: str, task_id: str) -> TaskRecord | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM tasks WHERE owner = ? AND id = ?",
                (owner, str(task_id)),
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM tasks WHERE owner = ? AND id = ?", (owner, str(task_id)))
        return self._row_to_task(row)

    def count_tasks(self, owner: str | None = None) -> int:
        with self._session() as conn:
            if owner is None:
                (total,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            else:
                (total,) = conn.execute("SELECT COUNT(*) FROM tasks WHERE owner = ?", (owner,)).fetchone()
        return int(total)
