"""SQLite-backed storage for agent records and telemetry."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from agent_conductor.errors import MonitorError
from agent_conductor.monitoring.models import AgentRecord, AgentStatus, AgentTelemetry

MEMORY_DB = ":memory:"


def _parse_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class AgentRepository:
    """Agent registry store.

    Ids come from an AUTOINCREMENT key, so an id is never handed out twice
    even after its record is deleted. Pass ``":memory:"`` for an isolated
    in-process store.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = db_path
        self._shared: sqlite3.Connection | None = None
        if str(db_path) == MEMORY_DB:
            self._shared = self._open(MEMORY_DB)
        else:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _open(self, target: str | Path) -> sqlite3.Connection:
        conn = sqlite3.connect(target, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _connect(self) -> sqlite3.Connection:
        return self._shared or self._open(self.db_path)

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise MonitorError(f"Agent registry error: {e}") from e
        finally:
            if conn is not self._shared:
                conn.close()

    def _init_db(self) -> None:
        with self._session() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    engine TEXT,
                    status TEXT NOT NULL CHECK (status IN ('running', 'completed', 'failed')),
                    parent_id INTEGER,
                    pid INTEGER,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    duration INTEGER,
                    prompt TEXT NOT NULL,
                    log_path TEXT NOT NULL,
                    error TEXT,
                    engine_provider TEXT,
                    model_name TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS telemetry (
                    agent_id INTEGER PRIMARY KEY REFERENCES agents(id) ON DELETE CASCADE,
                    tokens_in INTEGER NOT NULL DEFAULT 0,
                    tokens_out INTEGER NOT NULL DEFAULT 0,
                    cached_tokens INTEGER NOT NULL DEFAULT 0,
                    cost REAL,
                    cache_creation_tokens INTEGER,
                    cache_read_tokens INTEGER
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_agents_parent ON agents(parent_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_agents_status ON agents(status)")

    # =========================================================================
    # Writes
    # =========================================================================

    def create_agent(
        self,
        *,
        name: str,
        prompt: str,
        start_time: datetime,
        log_path: str | Callable[[int], str],
        engine: str | None = None,
        parent_id: int | None = None,
        pid: int | None = None,
        engine_provider: str | None = None,
        model_name: str | None = None,
    ) -> int:
        """Insert a running record and return its new id.

        ``log_path`` may be a callable receiving the allocated id; the path
        is written in the same transaction as the insert.
        """
        with self._session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO agents(name, engine, status, parent_id, pid, start_time,
                                   prompt, log_path, engine_provider, model_name)
                VALUES(?, ?, 'running', ?, ?, ?, ?, '', ?, ?)
                """,
                (
                    name,
                    engine,
                    parent_id,
                    pid,
                    start_time.isoformat(),
                    prompt,
                    engine_provider,
                    model_name,
                ),
            )
            agent_id = int(cursor.lastrowid)
            path = log_path(agent_id) if callable(log_path) else log_path
            conn.execute("UPDATE agents SET log_path = ? WHERE id = ?", (path, agent_id))
        return agent_id

    def set_pid(self, agent_id: int, pid: int) -> bool:
        with self._session() as conn:
            cursor = conn.execute("UPDATE agents SET pid = ? WHERE id = ?", (pid, agent_id))
            return cursor.rowcount > 0

    def finish(
        self,
        agent_id: int,
        *,
        status: AgentStatus,
        end_time: datetime,
        duration: int,
        error: str | None = None,
    ) -> bool:
        """Apply a terminal transition; returns False unless the record was running."""
        with self._session() as conn:
            cursor = conn.execute(
                """
                UPDATE agents SET status = ?, end_time = ?, duration = ?, error = ?
                WHERE id = ? AND status = 'running'
                """,
                (str(status), end_time.isoformat(), duration, error, agent_id),
            )
            return cursor.rowcount > 0

    def save_telemetry(self, agent_id: int, telemetry: AgentTelemetry) -> None:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO telemetry(agent_id, tokens_in, tokens_out, cached_tokens, cost,
                                      cache_creation_tokens, cache_read_tokens)
                VALUES(?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(agent_id) DO UPDATE SET
                    tokens_in = excluded.tokens_in,
                    tokens_out = excluded.tokens_out,
                    cached_tokens = excluded.cached_tokens,
                    cost = excluded.cost,
                    cache_creation_tokens = excluded.cache_creation_tokens,
                    cache_read_tokens = excluded.cache_read_tokens
                """,
                (
                    agent_id,
                    telemetry.tokens_in,
                    telemetry.tokens_out,
                    telemetry.cached,
                    telemetry.cost,
                    telemetry.cache_creation_tokens,
                    telemetry.cache_read_tokens,
                ),
            )

    def delete(self, agent_ids: Sequence[int]) -> int:
        if not agent_ids:
            return 0
        marks = ", ".join("?" for _ in agent_ids)
        with self._session() as conn:
            conn.execute(f"DELETE FROM telemetry WHERE agent_id IN ({marks})", tuple(agent_ids))
            cursor = conn.execute(f"DELETE FROM agents WHERE id IN ({marks})", tuple(agent_ids))
            return cursor.rowcount

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, agent_id: int) -> AgentRecord | None:
        records = self.find(ids=[agent_id])
        return records[0] if records else None

    def find(
        self,
        *,
        ids: Sequence[int] | None = None,
        statuses: Sequence[str] | None = None,
        parent_id: int | None = None,
        name: str | None = None,
        roots_only: bool = False,
    ) -> list[AgentRecord]:
        clauses: list[str] = []
        params: list[Any] = []
        if ids is not None:
            clauses.append(f"a.id IN ({', '.join('?' for _ in ids)})" if ids else "0")
            params.extend(ids)
        if statuses:
            clauses.append(f"a.status IN ({', '.join('?' for _ in statuses)})")
            params.extend(str(s) for s in statuses)
        if parent_id is not None:
            clauses.append("a.parent_id = ?")
            params.append(parent_id)
        if name is not None:
            clauses.append("a.name = ?")
            params.append(name)
        if roots_only:
            clauses.append("a.parent_id IS NULL")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._session() as conn:
            rows = conn.execute(
                f"""
                SELECT a.*, t.tokens_in, t.tokens_out, t.cached_tokens, t.cost,
                       t.cache_creation_tokens, t.cache_read_tokens,
                       t.agent_id AS telemetry_agent_id
                FROM agents a LEFT JOIN telemetry t ON t.agent_id = a.id
                {where}
                ORDER BY a.id ASC
                """,
                params,
            ).fetchall()
            links = conn.execute(
                "SELECT id, parent_id FROM agents WHERE parent_id IS NOT NULL ORDER BY id ASC"
            ).fetchall()

        children: dict[int, list[int]] = {}
        for link in links:
            children.setdefault(int(link["parent_id"]), []).append(int(link["id"]))
        return [self._row_to_record(row, children.get(int(row["id"]), [])) for row in rows]

    def edges(self) -> list[tuple[int, int | None]]:
        """All (id, parent_id) pairs, ordered by id."""
        with self._session() as conn:
            rows = conn.execute("SELECT id, parent_id FROM agents ORDER BY id ASC").fetchall()
        return [(int(r["id"]), r["parent_id"]) for r in rows]

    @staticmethod
    def _row_to_record(row: sqlite3.Row, children: list[int]) -> AgentRecord:
        telemetry = None
        if row["telemetry_agent_id"] is not None:
            telemetry = AgentTelemetry(
                tokens_in=row["tokens_in"],
                tokens_out=row["tokens_out"],
                cached=row["cached_tokens"],
                cost=row["cost"],
                cache_creation_tokens=row["cache_creation_tokens"],
                cache_read_tokens=row["cache_read_tokens"],
            )
        start_time = _parse_time(row["start_time"])
        assert start_time is not None
        return AgentRecord(
            id=int(row["id"]),
            name=row["name"],
            status=AgentStatus(row["status"]),
            start_time=start_time,
            prompt=row["prompt"],
            log_path=row["log_path"],
            engine=row["engine"],
            parent_id=row["parent_id"],
            pid=row["pid"],
            end_time=_parse_time(row["end_time"]),
            duration=row["duration"],
            telemetry=telemetry,
            children=children,
            error=row["error"],
            engine_provider=row["engine_provider"],
            model_name=row["model_name"],
        )

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None


__all__ = ["AgentRepository", "MEMORY_DB"]
