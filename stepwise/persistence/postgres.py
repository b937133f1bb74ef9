"""PostgreSQL implementation of the run repository."""

from __future__ import annotations

from typing import Any, Optional

import asyncpg

from ..contracts import Run
from .models import RUN_COLUMNS, row_to_run, run_to_row
from .repository import RunRepository

_SELECT = f"SELECT {', '.join(RUN_COLUMNS)} FROM workflow_runs"


class PostgresRunRepository(RunRepository):
    """Persist runs using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ,
                duration INTEGER,
                output JSONB,
                error TEXT,
                error_step TEXT
            )
            """
        )

    # ------------------------------------------------------------------
    async def create_run(self, run: Run) -> None:
        row = run_to_row(run)
        placeholders = ", ".join(f"${i}" for i in range(1, len(RUN_COLUMNS) + 1))
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO workflow_runs ({', '.join(RUN_COLUMNS)}) VALUES ({placeholders})",
                *(row[c] for c in RUN_COLUMNS),
            )
        finally:
            await conn.close()

    async def complete_run(self, run: Run) -> None:
        row = run_to_row(run)
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE workflow_runs
                SET status = $1, completed_at = $2, duration = $3, output = $4,
                    error = $5, error_step = $6
                WHERE id = $7 AND status = 'running'
                """,
                row["status"],
                row["completed_at"],
                row["duration"],
                row["output"],
                row["error"],
                row["error_step"],
                run.id,
            )
        finally:
            await conn.close()

    async def get_run(self, run_id: str) -> Run | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(f"{_SELECT} WHERE id = $1", run_id)
        finally:
            await conn.close()
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
            params.append(workflow_id)
            clauses.append(f"workflow_id = ${len(params)}")
        if user_id is not None:
            params.append(user_id)
            clauses.append(f"user_id = ${len(params)}")
        query = _SELECT
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY started_at DESC"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        return [row_to_run(r) for r in rows]
