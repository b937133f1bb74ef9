"""SQLite implementation of the run repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Optional

from ..contracts import Run
from .models import RUN_COLUMNS, row_to_run, run_to_row
from .repository import RunRepository

_SELECT = f"SELECT {', '.join(RUN_COLUMNS)} FROM workflow_runs"


class SQLiteRunRepository(RunRepository):
    """Persist runs using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                duration INTEGER,
                output TEXT,
                error TEXT,
                error_step TEXT
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflow_runs_workflow ON workflow_runs (workflow_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _iso(value: Any) -> Any:
        return value.isoformat() if value is not None else None

    # ------------------------------------------------------------------
    # Repository API
    async def create_run(self, run: Run) -> None:
        row = run_to_row(run)
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO workflow_runs ({', '.join(RUN_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in RUN_COLUMNS)})",
            *(
                self._iso(row[c]) if c in ("started_at", "completed_at") else row[c]
                for c in RUN_COLUMNS
            ),
        )

    async def complete_run(self, run: Run) -> None:
        row = run_to_row(run)
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_runs
            SET status = ?, completed_at = ?, duration = ?, output = ?, error = ?, error_step = ?
            WHERE id = ? AND status = 'running'
            """,
            row["status"],
            self._iso(row["completed_at"]),
            row["duration"],
            row["output"],
            row["error"],
            row["error_step"],
            run.id,
        )

    async def get_run(self, run_id: str) -> Run | None:
        row = await asyncio.to_thread(self._fetchone, f"{_SELECT} WHERE id = ?", run_id)
        if not row:
            return None
        return row_to_run(row)

    async def list_runs(
        self,
        workflow_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Run]:
        clauses: list[str] = []
        params: list[Any] = []
        if workflow_id is not None:
            clauses.append("workflow_id = ?")
            params.append(workflow_id)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        query = _SELECT
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY started_at DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        return [row_to_run(r) for r in rows]

    def close(self) -> None:
        self._conn.close()
