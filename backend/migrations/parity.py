"""
Read-only comparison of a user's data in both backends.

Mismatches are results, not errors: check_user() only raises if a backend
cannot be read at all.
"""
from __future__ import annotations

from typing import Optional, Sequence

import structlog

from migrations import normalize
from migrations.ledger import MigrationLedger
from schemas import Entity, MigrationRun, new_id
from storage.kv import KeyBlobAdapter
from storage.relational import RelationalAdapter

logger = structlog.get_logger(__name__)

CATEGORIES = ("todos", "projects", "sessions", "pomodoroLogs", "focusState", "settings")


class ParityCounts(Entity):
    todos: int = 0
    task_logs: int = 0
    projects: int = 0
    resources: int = 0
    attachments: int = 0
    sessions: int = 0
    pomodoro_logs: int = 0
    total_focus_ms: int = 0


class UserParityResult(Entity):
    user: str
    matches: bool
    mismatches: list[str]
    counts: ParityCounts


class ParityReport(Entity):
    run_id: Optional[str] = None
    checked_users: int
    mismatched_users: int
    results: list[UserParityResult]
    run: Optional[MigrationRun] = None


class ParityChecker:
    def __init__(self, legacy: KeyBlobAdapter, new: RelationalAdapter, ledger: Optional[MigrationLedger] = None):
        self.legacy = legacy
        self.new = new
        self.ledger = ledger

    def check_user(self, user_id: str) -> UserParityResult:
        legacy_todos = self.legacy.get_todos(user_id)
        new_todos = self.new.get_todos(user_id)
        new_projects = self.new.get_projects(user_id)
        new_sessions = self.new.get_sessions(user_id)
        new_logs = self.new.get_pomodoro_logs(user_id)

        pairs = {
            "todos": (normalize.canonical_todos(legacy_todos), normalize.canonical_todos(new_todos)),
            "projects": (
                normalize.canonical_projects(self.legacy.get_projects(user_id)),
                normalize.canonical_projects(new_projects),
            ),
            "sessions": (
                normalize.canonical_sessions(self.legacy.get_sessions(user_id)),
                normalize.canonical_sessions(new_sessions),
            ),
            "pomodoroLogs": (
                normalize.canonical_pomodoro_logs(self.legacy.get_pomodoro_logs(user_id)),
                normalize.canonical_pomodoro_logs(new_logs),
            ),
            "focusState": (
                normalize.canonical_focus(self.legacy.get_focus(user_id)),
                normalize.canonical_focus(self.new.get_focus(user_id)),
            ),
            "settings": (
                normalize.canonical_settings(self.legacy.get_settings(user_id)),
                normalize.canonical_settings(self.new.get_settings(user_id)),
            ),
        }
        mismatches = [category for category in CATEGORIES if pairs[category][0] != pairs[category][1]]

        counts = ParityCounts(
            todos=len(new_todos),
            task_logs=sum(len(todo.logs or []) for todo in new_todos),
            projects=len(new_projects),
            resources=sum(len(project.resources or []) for project in new_projects),
            attachments=sum(len(project.attachments or []) for project in new_projects),
            sessions=len(new_sessions),
            pomodoro_logs=len(new_logs),
            total_focus_ms=normalize.total_focus_ms(new_todos),
        )
        if normalize.total_focus_ms(legacy_todos) != counts.total_focus_ms:
            mismatches.append("totalFocusMs")

        result = UserParityResult(user=user_id, matches=not mismatches, mismatches=mismatches, counts=counts)
        logger.info("parity.user_checked", user=user_id, matches=result.matches, mismatches=mismatches)
        return result

    def check_users(self, users: Sequence[str], run_id: Optional[str] = None) -> ParityReport:
        """Check each user; when a ledger is attached, record the outcome.

        A new run id (or an existing parity run) gets its processed and
        mismatched counters bumped and is closed. Pointing at an existing
        backfill run only adds to its mismatched counter.
        """
        results = [self.check_user(user_id) for user_id in users]
        mismatched = sum(1 for result in results if not result.matches)
        report = ParityReport(run_id=run_id, checked_users=len(results), mismatched_users=mismatched, results=results)
        if self.ledger is None:
            return report

        run = self.ledger.ensure(run_id or new_id(), "parity")
        notes = None
        if mismatched:
            notes = "parity mismatches: " + ", ".join(r.user for r in results if not r.matches)
        if run.kind == "parity":
            updated = self.ledger.record(
                run.run_id,
                status="failed" if mismatched else "completed",
                total_users=run.processed_users + len(results),
                discovered_delta=len(results),
                processed_delta=len(results),
                mismatched_delta=mismatched,
                notes=notes,
                finished=True,
            )
        else:
            updated = self.ledger.record(run.run_id, mismatched_delta=mismatched, notes=notes)
        report.run_id = run.run_id
        report.run = updated
        return report
