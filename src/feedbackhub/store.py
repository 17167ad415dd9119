from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
import sqlite3
import threading
from typing import Protocol, cast
import uuid

from feedbackhub.models import FeedbackPage, FeedbackRecord, FeedbackType


_FEEDBACK_COLUMNS = (
    "feedback_id, summary, description, tag, feedback_type, project_id, created_by, "
    "url, user_agent, created_at, updated_at, ticket_url"
)


class FeedbackStoreError(RuntimeError):
    """Persisting a feedback record failed."""


class FeedbackStore(Protocol):
    async def update_feedback(self, record: FeedbackRecord) -> None: ...


class SqliteFeedbackStore:
    def __init__(self, db_path: Path) -> None:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._lock = threading.Lock()
        self._init_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.create_function("casefold", 1, _casefold, deterministic=True)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS feedback (
                    feedback_id TEXT PRIMARY KEY,
                    summary TEXT NOT NULL,
                    description TEXT NOT NULL,
                    tag TEXT NOT NULL,
                    feedback_type TEXT NOT NULL,
                    project_id TEXT NOT NULL,
                    created_by TEXT NOT NULL,
                    url TEXT NOT NULL DEFAULT '',
                    user_agent TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    ticket_url TEXT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS feedback_project_idx ON feedback (project_id, created_at)"
            )

    async def store_feedback(self, record: FeedbackRecord) -> FeedbackRecord:
        return await asyncio.to_thread(self._store_feedback, record)

    async def get_feedback(self, feedback_id: str) -> FeedbackRecord | None:
        return await asyncio.to_thread(self._get_feedback, feedback_id)

    async def update_feedback(self, record: FeedbackRecord) -> None:
        await asyncio.to_thread(self._update_feedback, record)

    async def delete_feedback(self, feedback_id: str) -> bool:
        return await asyncio.to_thread(self._delete_feedback, feedback_id)

    async def list_feedback(
        self,
        *,
        page: int,
        page_size: int,
        project_id: str | None = None,
        query: str | None = None,
    ) -> FeedbackPage:
        return await asyncio.to_thread(
            self._list_feedback,
            page=page,
            page_size=page_size,
            project_id=project_id,
            query=query,
        )

    def _store_feedback(self, record: FeedbackRecord) -> FeedbackRecord:
        now = _utc_now()
        stored = replace(
            record,
            feedback_id=record.feedback_id or str(uuid.uuid4()),
            created_at=record.created_at or now,
            updated_at=now,
        )
        try:
            with self._lock, self._connect() as conn:
                conn.execute(
                    f"INSERT INTO feedback ({_FEEDBACK_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    _record_values(stored),
                )
        except sqlite3.Error as exc:
            raise FeedbackStoreError(f"Failed to store feedback: {exc}") from exc
        return stored

    def _get_feedback(self, feedback_id: str) -> FeedbackRecord | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                f"SELECT {_FEEDBACK_COLUMNS} FROM feedback WHERE feedback_id = ?",
                (feedback_id,),
            ).fetchone()
        if row is None:
            return None
        return _parse_feedback_row(row)

    def _update_feedback(self, record: FeedbackRecord) -> None:
        updated_at = _utc_now()
        try:
            with self._lock, self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE feedback
                    SET summary = ?,
                        description = ?,
                        tag = ?,
                        feedback_type = ?,
                        url = ?,
                        user_agent = ?,
                        updated_at = ?,
                        ticket_url = ?
                    WHERE feedback_id = ?
                    """,
                    (
                        record.summary,
                        record.description,
                        record.tag,
                        record.feedback_type,
                        record.url,
                        record.user_agent,
                        updated_at,
                        record.ticket_url,
                        record.feedback_id,
                    ),
                )
                updated = cursor.rowcount
        except sqlite3.Error as exc:
            raise FeedbackStoreError(
                f"Failed to update feedback {record.feedback_id}: {exc}"
            ) from exc
        if updated == 0:
            raise FeedbackStoreError(f"No feedback found for id {record.feedback_id}")
        record.updated_at = updated_at

    def _delete_feedback(self, feedback_id: str) -> bool:
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM feedback WHERE feedback_id = ?", (feedback_id,))
            return cursor.rowcount > 0

    def _list_feedback(
        self,
        *,
        page: int,
        page_size: int,
        project_id: str | None,
        query: str | None,
    ) -> FeedbackPage:
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")

        clauses: list[str] = []
        params: list[object] = []
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(project_id)
        if query and query.strip():
            needle = _casefold(query.strip())
            clauses.append(
                "(instr(casefold(summary), ?) > 0 OR instr(casefold(description), ?) > 0)"
            )
            params.extend([needle, needle])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._lock, self._connect() as conn:
            count_row = conn.execute(f"SELECT COUNT(*) FROM feedback {where}", params).fetchone()
            rows = conn.execute(
                f"""
                SELECT {_FEEDBACK_COLUMNS}
                FROM feedback
                {where}
                ORDER BY created_at DESC, feedback_id ASC
                LIMIT ? OFFSET ?
                """,
                [*params, page_size, (page - 1) * page_size],
            ).fetchall()

        total_count = int(count_row[0]) if count_row is not None else 0
        return FeedbackPage(
            items=tuple(_parse_feedback_row(row) for row in rows),
            total_count=total_count,
            current_page=page,
            page_size=page_size,
        )


def _record_values(record: FeedbackRecord) -> tuple[object, ...]:
    return (
        record.feedback_id,
        record.summary,
        record.description,
        record.tag,
        record.feedback_type,
        record.project_id,
        record.created_by,
        record.url,
        record.user_agent,
        record.created_at,
        record.updated_at,
        record.ticket_url,
    )


def _parse_feedback_row(row: tuple[object, ...]) -> FeedbackRecord:
    (
        feedback_id,
        summary,
        description,
        tag,
        feedback_type,
        project_id,
        created_by,
        url,
        user_agent,
        created_at,
        updated_at,
        ticket_url,
    ) = row
    return FeedbackRecord(
        feedback_id=str(feedback_id),
        summary=str(summary),
        description=str(description),
        tag=str(tag),
        feedback_type=_parse_feedback_type(feedback_type),
        project_id=str(project_id),
        created_by=str(created_by),
        url=str(url),
        user_agent=str(user_agent),
        created_at=str(created_at),
        updated_at=str(updated_at),
        ticket_url=ticket_url if isinstance(ticket_url, str) and ticket_url else None,
    )


def _parse_feedback_type(value: object) -> FeedbackType:
    if value not in {"BUG", "FEEDBACK"}:
        raise RuntimeError(f"Invalid feedback_type in state DB: {value!r}")
    return cast(FeedbackType, value)


def _casefold(value: object) -> str | None:
    # SQLite lower() only folds ASCII.
    return value.casefold() if isinstance(value, str) else None


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
