from __future__ import annotations

from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from .models import BUSY_STATES, JobCounts, JobState, RunnerInventory

# Exact, case-sensitive prefix comparison; LIKE folds ASCII case on SQLite.
PREFIX_MATCH = 'substr({column}, 1, CAST(:prefix_length AS INTEGER)) = :prefix'

SQL_COUNT_JOBS = text('SELECT count(id) FROM "runnerJob" WHERE state = :state')

SQL_RUNNER_NAMES = text(
    f"""
    SELECT name FROM "runner"
    WHERE {PREFIX_MATCH.format(column="name")}
    ORDER BY name
    """
)

SQL_IDLE_RUNNER = text(
    f"""
    SELECT r.name FROM "runner" r
    WHERE {PREFIX_MATCH.format(column="r.name")}
      AND NOT EXISTS (
        SELECT 1 FROM "runnerJob" j
        WHERE j."runnerId" = r.id AND j.state IN :busy_states
      )
    ORDER BY r.name
    LIMIT 1
    """
).bindparams(bindparam("busy_states", expanding=True))


class StartupError(RuntimeError):
    pass


class QueryError(RuntimeError):
    def __init__(self, query: str, error: Exception) -> None:
        super().__init__(f"{query} query failed: {error}")
        self.query = query


def prefix_params(prefix: str) -> dict[str, object]:
    return {"prefix": prefix, "prefix_length": len(prefix)}


class Store:
    """Read-only view of the runner job queue."""

    def __init__(self, url: URL | str, engine: Engine | None = None) -> None:
        self.url = url
        self.engine = engine or create_engine(url, pool_pre_ping=True)

    def close(self) -> None:
        self.engine.dispose()

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StartupError(f"Couldn't establish database connection: {exc}") from exc

    def count_jobs(self, state: JobState) -> int:
        try:
            with self.engine.connect() as conn:
                value = conn.execute(SQL_COUNT_JOBS, {"state": int(state)}).scalar_one()
        except SQLAlchemyError as exc:
            raise QueryError(f"count_{state.label}_jobs", exc) from exc
        return int(value)

    def job_counts(self) -> JobCounts:
        return JobCounts(**{state.label: self.count_jobs(state) for state in JobState})

    def list_runner_names(self, prefix: str) -> list[str]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(SQL_RUNNER_NAMES, prefix_params(prefix)).fetchall()
        except SQLAlchemyError as exc:
            raise QueryError("list_runners", exc) from exc
        return [str(row.name) for row in rows]

    def find_idle_runner(self, prefix: str) -> str | None:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    SQL_IDLE_RUNNER,
                    {
                        **prefix_params(prefix),
                        "busy_states": [int(state) for state in BUSY_STATES],
                    },
                ).first()
        except SQLAlchemyError as exc:
            raise QueryError("find_idle_runner", exc) from exc
        if row is None:
            return None
        return str(row.name)

    def runner_inventory(self, prefix: str) -> RunnerInventory:
        names = self.list_runner_names(prefix)
        idle = self.find_idle_runner(prefix)
        # A runner registered between the two reads is left for the next cycle.
        if idle is not None and idle not in names:
            idle = None
        return RunnerInventory(names=tuple(names), idle_runner=idle)
