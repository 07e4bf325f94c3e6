"""
Resumable copy of legacy key-blob data into the relational backend.

Each call to run_batch() processes one bounded slice of the discovered users
and returns; an external scheduler (or an operator) calls it again to make
progress. Every entity category is written with full-value replacement, so
replaying a batch leaves the relational backend unchanged.
"""
from __future__ import annotations

from typing import Optional

import structlog

from config import clamp_batch
from errors import DiscoveryError, LedgerError
from migrations.discovery import UserDiscovery
from migrations.ledger import MigrationLedger
from schemas import Entity, MigrationRun, RunStatus, new_id
from storage.kv import KeyBlobAdapter
from storage.legacy_timer import migrate_legacy_timer
from storage.relational import RelationalAdapter

logger = structlog.get_logger(__name__)

MAX_NOTES_LENGTH = 2000


class UserFailure(Entity):
    user: str
    error: str


class BackfillResult(Entity):
    run_id: str
    status: RunStatus
    processed_users: int
    total_users: Optional[int] = None
    failed_users: list[UserFailure] = []
    scan_complete: bool
    cursor: Optional[str] = None
    run: Optional[MigrationRun] = None


def _failure_notes(failures: list[UserFailure]) -> str:
    notes = "failed users: " + "; ".join(f"{f.user}: {f.error}" for f in failures)
    return notes[:MAX_NOTES_LENGTH]


class BackfillEngine:
    def __init__(
        self,
        legacy: KeyBlobAdapter,
        new: RelationalAdapter,
        ledger: MigrationLedger,
        discovery: UserDiscovery,
        default_batch: int = 50,
    ):
        self.legacy = legacy
        self.new = new
        self.ledger = ledger
        self.discovery = discovery
        self.default_batch = default_batch

    def backfill_user(self, user_id: str) -> None:
        """Copy one user's full entity set, replacing whatever the relational
        backend already holds for them."""
        todos = self.legacy.get_todos(user_id)
        projects = self.legacy.get_projects(user_id)
        sessions = self.legacy.get_sessions(user_id)
        pomodoro_logs = self.legacy.get_pomodoro_logs(user_id)
        settings = self.legacy.get_settings(user_id)
        focus = migrate_legacy_timer(self.legacy, user_id, self.legacy.get_focus(user_id))

        self.new.save_todos(user_id, todos)
        self.new.save_projects(user_id, projects)
        self.new.save_sessions(user_id, sessions)
        self.new.replace_pomodoro_logs(user_id, pomodoro_logs)
        self.new.save_settings(user_id, settings)
        self.new.save_focus(user_id, focus)

    def _resolve_run(self, run_id: Optional[str]) -> MigrationRun:
        if run_id:
            run = self.ledger.ensure(run_id, "backfill")
        else:
            run = self.ledger.latest("backfill", status="running") or self.ledger.ensure(new_id(), "backfill")
        if run.kind != "backfill":
            raise LedgerError(f"Run {run.run_id} is a {run.kind} run")
        return run

    def run_batch(self, run_id: Optional[str] = None, batch_size: Optional[int] = None) -> BackfillResult:
        """Copy the run's pending retries plus the next page of discovered users.

        Users that fail stay on the run's retry list, so resuming the run by id
        revisits them; the run only reaches ``completed`` once the scan is done
        and nobody is left to retry.
        """
        run = self._resolve_run(run_id)
        limit = clamp_batch(batch_size, self.default_batch)

        try:
            page = self.discovery.page(run.cursor, limit, run.run_id)
        except DiscoveryError as exc:
            logger.error("backfill.scan_failed", run_id=run.run_id, cursor=run.cursor, error=str(exc))
            self.ledger.record(run.run_id, status="failed", notes=f"discovery failed: {exc}", finished=True)
            raise

        pending = run.retry_users + [u for u in page.users if u not in run.retry_users]
        failures: list[UserFailure] = []
        processed = 0
        for user_id in pending:
            try:
                self.backfill_user(user_id)
                processed += 1
            except Exception as exc:
                logger.warning("backfill.user_failed", run_id=run.run_id, user=user_id, error=str(exc))
                failures.append(UserFailure(user=user_id, error=str(exc)))

        discovered = run.discovered_users + len(page.users)
        if page.total is not None:
            total = max(page.total, run.processed_users + processed)
        elif page.complete:
            total = max(discovered, run.processed_users + processed)
        else:
            total = None

        if failures:
            status: RunStatus = "failed"
        elif page.complete:
            status = "completed"
        else:
            status = "running"

        updated = self.ledger.record(
            run.run_id,
            status=status,
            cursor=page.next_cursor,
            total_users=total,
            discovered_delta=len(page.users),
            processed_delta=processed,
            notes=_failure_notes(failures) if failures else None,
            retry_users=[f.user for f in failures],
            finished=page.complete,
        )
        self.discovery.mark_seen(run.run_id, page.users, page.complete)
        logger.info(
            "backfill.batch_done",
            run_id=run.run_id,
            discovery=self.discovery.name,
            processed=processed,
            retried=len(run.retry_users),
            failed=len(failures),
            cursor=page.next_cursor,
            complete=page.complete,
        )
        return BackfillResult(
            run_id=run.run_id,
            status=status,
            processed_users=processed,
            total_users=updated.total_users,
            failed_users=failures,
            scan_complete=page.complete,
            cursor=page.next_cursor,
            run=updated,
        )

    def backfill_single_user(self, user_id: str) -> BackfillResult:
        """Copy exactly one user right now, tracked as its own run."""
        run = self.ledger.ensure(new_id(), "backfill")
        failures: list[UserFailure] = []
        try:
            self.backfill_user(user_id)
        except Exception as exc:
            logger.warning("backfill.user_failed", run_id=run.run_id, user=user_id, error=str(exc))
            failures.append(UserFailure(user=user_id, error=str(exc)))

        status: RunStatus = "failed" if failures else "completed"
        updated = self.ledger.record(
            run.run_id,
            status=status,
            total_users=1,
            discovered_delta=1,
            processed_delta=0 if failures else 1,
            notes=_failure_notes(failures) if failures else f"single user: {user_id}",
            finished=True,
        )
        return BackfillResult(
            run_id=run.run_id,
            status=status,
            processed_users=updated.processed_users,
            total_users=1,
            failed_users=failures,
            scan_complete=True,
            run=updated,
        )
