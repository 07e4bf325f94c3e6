"""
Read/write routing between the legacy key-blob backend and the relational
backend.

The read source for a user is a pure function of the configuration and the
user id. Writes go to that source first; with dual-write enabled they are
replayed on the other backend and a failure there is logged and reported, but
never changes the outcome the caller sees.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence, TypeVar

import structlog

from config import ReadSource, StorageConfig
from errors import EntityNotFound, StorageUnavailable
from schemas import (
    Attachment,
    CycleType,
    EndReason,
    FocusSession,
    FocusState,
    PomodoroLog,
    Project,
    RepoInfo,
    Resource,
    TaskLog,
    Todo,
    UserSettings,
    new_id,
    now_ms,
)
from storage import composite
from storage.base import ProjectPatch, StorageBackend, TodoPatch
from storage.kv import KeyBlobAdapter
from storage.legacy_timer import migrate_legacy_timer
from storage.relational import RelationalAdapter

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DualWriteFailure:
    op: str
    user_id: str
    primary: str
    secondary: str
    error: str


def effective_read_source(config: StorageConfig, user_id: str, new_configured: bool) -> ReadSource:
    """Which backend is authoritative for this user's reads."""
    if config.read_source == "new" and new_configured:
        return "new"
    if new_configured and config.is_canary(user_id):
        return "new"
    return "legacy"


class StorageRouter:
    def __init__(
        self,
        config: StorageConfig,
        legacy: Optional[KeyBlobAdapter] = None,
        new: Optional[RelationalAdapter] = None,
        on_dual_write_failure: Optional[Callable[[DualWriteFailure], None]] = None,
    ):
        self.config = config
        self.legacy = legacy
        self.new = new
        self.on_dual_write_failure = on_dual_write_failure

    def has_any_storage(self) -> bool:
        return self.legacy is not None or self.new is not None

    def read_source(self, user_id: str) -> ReadSource:
        return effective_read_source(self.config, user_id, self.new is not None)

    def _backend(self, source: ReadSource) -> Optional[StorageBackend]:
        return self.new if source == "new" else self.legacy

    def _primary_and_secondary(self, user_id: str, op: str) -> tuple[StorageBackend, Optional[StorageBackend]]:
        source = self.read_source(user_id)
        other: ReadSource = "legacy" if source == "new" else "new"
        primary = self._backend(source) or self._backend(other)
        if primary is None:
            raise StorageUnavailable(op)
        secondary = self.legacy if primary is self.new else self.new
        return primary, secondary

    def read(self, user_id: str, op: str, fn: Callable[[StorageBackend], T]) -> T:
        primary, _ = self._primary_and_secondary(user_id, op)
        return fn(primary)

    def write(self, user_id: str, op: str, fn: Callable[[StorageBackend], T]) -> T:
        primary, secondary = self._primary_and_secondary(user_id, op)
        result = fn(primary)
        if self.config.dual_write and secondary is not None:
            self._mirror(op, user_id, primary, secondary, fn)
        return result

    def _mirror(
        self,
        op: str,
        user_id: str,
        primary: StorageBackend,
        secondary: StorageBackend,
        fn: Callable[[StorageBackend], object],
    ) -> None:
        try:
            fn(secondary)
        except Exception as exc:
            failure = DualWriteFailure(
                op=op, user_id=user_id, primary=primary.name, secondary=secondary.name, error=str(exc)
            )
            logger.error(
                "storage.dual_write_failure",
                op=op,
                user=user_id,
                primary=primary.name,
                secondary=secondary.name,
                error=str(exc),
            )
            if self.on_dual_write_failure is not None:
                self.on_dual_write_failure(failure)

    def legacy_only(self, op: str) -> KeyBlobAdapter:
        if self.legacy is None:
            raise StorageUnavailable(op)
        return self.legacy

    # --- Todos ---

    def get_todos(self, user_id: str) -> list[Todo]:
        return self.read(user_id, "get_todos", lambda b: b.get_todos(user_id))

    def save_todos(self, user_id: str, todos: Sequence[Todo]) -> None:
        self.write(user_id, "save_todos", lambda b: b.save_todos(user_id, todos))

    def create_todo(
        self,
        user_id: str,
        title: str,
        detail: Optional[str] = None,
        deadline: Optional[int] = None,
        project_id: Optional[str] = None,
    ) -> Todo:
        if project_id and not any(p.id == project_id for p in self.get_projects(user_id)):
            raise EntityNotFound(f"Project {project_id} not found")
        todo = Todo(
            id=new_id(),
            title=title,
            done=False,
            created_at=now_ms(),
            detail=detail or None,
            deadline=deadline or None,
            project_id=project_id or None,
        )
        self.write(user_id, "create_todo", lambda b: b.insert_todo(user_id, todo))
        return todo

    def update_todo(self, user_id: str, todo_id: str, patch: TodoPatch) -> None:
        self.write(user_id, "update_todo", lambda b: b.update_todo(user_id, todo_id, patch))

    def toggle_todo(self, user_id: str, todo_id: str) -> Optional[bool]:
        now = now_ms()
        return self.write(
            user_id, "toggle_todo", lambda b: composite.toggle_todo_with_focus(b, user_id, todo_id, now=now)
        )

    def delete_todo(self, user_id: str, todo_id: str) -> None:
        now = now_ms()
        self.write(user_id, "delete_todo", lambda b: composite.delete_todo_with_focus(b, user_id, todo_id, now=now))

    def archive_todo(self, user_id: str, todo_id: str) -> None:
        now = now_ms()
        self.write(user_id, "archive_todo", lambda b: b.archive_todo(user_id, todo_id, now))

    def unarchive_todo(self, user_id: str, todo_id: str) -> None:
        self.write(user_id, "unarchive_todo", lambda b: b.unarchive_todo(user_id, todo_id))

    def set_todo_project(self, user_id: str, todo_id: str, project_id: Optional[str]) -> None:
        if project_id and not any(p.id == project_id for p in self.get_projects(user_id)):
            raise EntityNotFound(f"Project {project_id} not found")
        self.write(user_id, "set_todo_project", lambda b: b.set_todo_project(user_id, todo_id, project_id))

    def add_task_log(self, user_id: str, todo_id: str, text: str) -> TaskLog:
        log = TaskLog(id=new_id(), text=text, created_at=now_ms())
        if not self.write(user_id, "add_task_log", lambda b: b.add_task_log(user_id, todo_id, log)):
            raise EntityNotFound(f"Todo {todo_id} not found")
        return log

    def delete_task_log(self, user_id: str, todo_id: str, log_id: str) -> None:
        self.write(user_id, "delete_task_log", lambda b: b.delete_task_log(user_id, todo_id, log_id))

    # --- Projects ---

    def get_projects(self, user_id: str) -> list[Project]:
        return self.read(user_id, "get_projects", lambda b: b.get_projects(user_id))

    def save_projects(self, user_id: str, projects: Sequence[Project]) -> None:
        self.write(user_id, "save_projects", lambda b: b.save_projects(user_id, projects))

    def create_project(
        self,
        user_id: str,
        name: str,
        detail: Optional[str] = None,
        github_repo: Optional[str] = None,
    ) -> Project:
        project = Project(
            id=new_id(), name=name, created_at=now_ms(), detail=detail or None, github_repo=github_repo or None
        )
        self.write(user_id, "create_project", lambda b: b.insert_project(user_id, project))
        return project

    def update_project(self, user_id: str, project_id: str, patch: ProjectPatch) -> None:
        self.write(user_id, "update_project", lambda b: b.update_project(user_id, project_id, patch))

    def archive_project(self, user_id: str, project_id: str) -> None:
        now = now_ms()
        self.write(user_id, "archive_project", lambda b: b.archive_project(user_id, project_id, now))

    def unarchive_project(self, user_id: str, project_id: str) -> None:
        self.write(user_id, "unarchive_project", lambda b: b.unarchive_project(user_id, project_id))

    def add_project_resource(self, user_id: str, project_id: str, url: str, label: Optional[str] = None) -> Resource:
        resource = Resource(id=new_id(), url=url, label=label or None, created_at=now_ms())
        if not self.write(
            user_id, "add_project_resource", lambda b: b.add_project_resource(user_id, project_id, resource)
        ):
            raise EntityNotFound(f"Project {project_id} not found")
        return resource

    def delete_project_resource(self, user_id: str, project_id: str, resource_id: str) -> None:
        self.write(
            user_id,
            "delete_project_resource",
            lambda b: b.delete_project_resource(user_id, project_id, resource_id),
        )

    def add_project_attachment(
        self,
        user_id: str,
        project_id: str,
        name: str,
        url: str,
        key: Optional[str] = None,
        content_type: Optional[str] = None,
        size: Optional[int] = None,
        attachment_id: Optional[str] = None,
    ) -> Attachment:
        attachment = Attachment(
            id=attachment_id or new_id(),
            name=name,
            url=url,
            key=key or None,
            content_type=content_type or None,
            size=size,
            created_at=now_ms(),
        )
        added = self.write(
            user_id, "add_project_attachment", lambda b: b.add_project_attachment(user_id, project_id, attachment)
        )
        if added is None:
            raise EntityNotFound(f"Project {project_id} not found")
        return added

    def delete_project_attachment(self, user_id: str, project_id: str, attachment_id: str) -> Optional[Attachment]:
        return self.write(
            user_id,
            "delete_project_attachment",
            lambda b: b.delete_project_attachment(user_id, project_id, attachment_id),
        )

    def delete_project(self, user_id: str, project_id: str) -> list[str]:
        """Cascade delete; returns attachment storage keys to release."""
        return self.write(
            user_id, "delete_project", lambda b: composite.delete_project_cascade(b, user_id, project_id)
        )

    # --- Focus ---

    def get_focus(self, user_id: str) -> Optional[FocusState]:
        focus = self.read(user_id, "get_focus", lambda b: b.get_focus(user_id))
        if focus is not None or self.legacy is None:
            return focus
        migrated = migrate_legacy_timer(self.legacy, user_id, None)
        if migrated is None or self.new is None:
            return migrated
        if self.read_source(user_id) == "new":
            self.new.save_focus(user_id, migrated)
        elif self.config.dual_write:
            self._mirror("migrate_legacy_timer", user_id, self.legacy, self.new, lambda b: b.save_focus(user_id, migrated))
        return migrated

    def save_focus(self, user_id: str, focus: Optional[FocusState]) -> None:
        self.write(user_id, "save_focus", lambda b: b.save_focus(user_id, focus))

    def focus_task(self, user_id: str, task_id: str) -> None:
        now = now_ms()
        session_id = new_id()
        self.write(
            user_id,
            "focus_task",
            lambda b: composite.focus_task(b, user_id, task_id, now=now, session_id=session_id),
        )

    def unfocus(self, user_id: str, reason: EndReason = "manual") -> None:
        now = now_ms()
        self.write(user_id, "unfocus", lambda b: composite.unfocus(b, user_id, reason, now=now))

    def end_active_session(self, user_id: str, reason: EndReason) -> None:
        now = now_ms()
        self.write(
            user_id, "end_active_session", lambda b: composite.end_active_session(b, user_id, reason, now=now)
        )

    def get_sessions(self, user_id: str) -> list[FocusSession]:
        return self.read(user_id, "get_sessions", lambda b: b.get_sessions(user_id))

    def save_sessions(self, user_id: str, sessions: Sequence[FocusSession]) -> None:
        self.write(user_id, "save_sessions", lambda b: b.save_sessions(user_id, sessions))

    # --- Pomodoro ---

    def get_pomodoro_logs(self, user_id: str) -> list[PomodoroLog]:
        return self.read(user_id, "get_pomodoro_logs", lambda b: b.get_pomodoro_logs(user_id))

    def log_pomodoro(self, user_id: str, task_id: str, cycle_type: CycleType, duration: int) -> PomodoroLog:
        entry = PomodoroLog(task_id=task_id, type=cycle_type, duration=duration, completed_at=now_ms())
        self.write(user_id, "log_pomodoro", lambda b: b.log_pomodoro(user_id, entry))
        return entry

    # --- Settings ---

    def get_settings(self, user_id: str) -> UserSettings:
        return self.read(user_id, "get_settings", lambda b: b.get_settings(user_id))

    def save_settings(self, user_id: str, settings: UserSettings) -> None:
        self.write(user_id, "save_settings", lambda b: b.save_settings(user_id, settings))

    # --- Repo info cache ---

    def get_repo_info(self, user_id: str, project_id: str) -> Optional[RepoInfo]:
        if self.legacy is None:
            return None
        return self.legacy.get_repo_info(user_id, project_id)

    def save_repo_info(self, user_id: str, project_id: str, info: RepoInfo) -> None:
        self.legacy_only("save_repo_info").save_repo_info(user_id, project_id, info)

    def delete_repo_info(self, user_id: str, project_id: str) -> None:
        self.legacy_only("delete_repo_info").delete_repo_info(user_id, project_id)
