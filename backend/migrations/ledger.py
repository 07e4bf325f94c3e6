"""
Migration run ledger, persisted in the relational backend.

A run is created once per backfill or parity pass and only moves forward:
processed_users and discovered_users never decrease, processed_users never
exceeds total_users once the total is known, and rows are never deleted.
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from errors import LedgerError
from models import MigrationRunRow
from schemas import MigrationRun, RunKind, RunStatus, now_ms


def _to_run(row: MigrationRunRow) -> MigrationRun:
    return MigrationRun(
        run_id=row.run_id,
        kind=row.kind,
        started_at=row.started_at,
        finished_at=row.finished_at,
        status=row.status,
        cursor=row.cursor,
        total_users=row.total_users,
        discovered_users=row.discovered_users,
        processed_users=row.processed_users,
        mismatched_users=row.mismatched_users,
        notes=row.notes,
        retry_users=list(row.retry_users or []),
    )


class MigrationLedger:
    def __init__(self, engine: Engine):
        self.engine = engine

    def ensure(self, run_id: str, kind: RunKind = "backfill") -> MigrationRun:
        """Return the run, creating it in the running state if it is new."""
        with Session(self.engine) as session:
            row = session.get(MigrationRunRow, run_id)
            if row is None:
                row = MigrationRunRow(run_id=run_id, kind=kind, started_at=now_ms(), status="running")
                session.add(row)
                session.commit()
                session.refresh(row)
            return _to_run(row)

    def get(self, run_id: str) -> Optional[MigrationRun]:
        with Session(self.engine) as session:
            row = session.get(MigrationRunRow, run_id)
            return _to_run(row) if row else None

    def latest(self, kind: Optional[RunKind] = None, status: Optional[RunStatus] = None) -> Optional[MigrationRun]:
        statement = select(MigrationRunRow)
        if kind is not None:
            statement = statement.where(MigrationRunRow.kind == kind)
        if status is not None:
            statement = statement.where(MigrationRunRow.status == status)
        statement = statement.order_by(MigrationRunRow.started_at.desc(), MigrationRunRow.run_id.desc())
        with Session(self.engine) as session:
            row = session.exec(statement).first()
            return _to_run(row) if row else None

    def record(
        self,
        run_id: str,
        *,
        status: Optional[RunStatus] = None,
        cursor: Optional[str] = None,
        total_users: Optional[int] = None,
        discovered_delta: int = 0,
        processed_delta: int = 0,
        mismatched_delta: int = 0,
        notes: Optional[str] = None,
        retry_users: Optional[list[str]] = None,
        finished: bool = False,
    ) -> MigrationRun:
        if processed_delta < 0 or discovered_delta < 0 or mismatched_delta < 0:
            raise LedgerError("Run counters only move forward")

        with Session(self.engine) as session:
            row = session.get(MigrationRunRow, run_id)
            if row is None:
                raise LedgerError(f"Unknown migration run {run_id}")

            if total_users is not None:
                if row.total_users is not None and total_users < row.processed_users:
                    raise LedgerError(f"Total {total_users} is below processed count {row.processed_users}")
                row.total_users = total_users
            processed = row.processed_users + processed_delta
            if row.total_users is not None and processed > row.total_users:
                raise LedgerError(f"Processed count {processed} would exceed total {row.total_users}")

            row.processed_users = processed
            row.discovered_users += discovered_delta
            row.mismatched_users += mismatched_delta
            if status is not None:
                row.status = status
            if cursor is not None:
                row.cursor = cursor
            if notes is not None:
                row.notes = notes
            if retry_users is not None:
                row.retry_users = list(retry_users)
            if finished:
                row.finished_at = now_ms()

            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_run(row)
