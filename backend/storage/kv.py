"""
Legacy backend: one JSON blob per (collection, user) in Redis.

Keys look like ``todos:<user>``, ``projects:<user>``, ``focus:<user>`` and so
on. Every mutator is a read-modify-write of a single blob. There is no
cross-key atomicity, so apply() runs composite steps one after another: a crash
between steps leaves the earlier steps applied (for example a session closed
while FocusState still points at it). The relational backend does not have
this gap; the legacy store is being retired rather than patched.
"""
from __future__ import annotations

import json
from typing import Any, Optional, Sequence

import structlog

from schemas import (
    DEFAULT_SETTINGS,
    Attachment,
    FocusSession,
    FocusState,
    PomodoroLog,
    Project,
    RepoInfo,
    Resource,
    TaskLog,
    TimerState,
    Todo,
    UserSettings,
)
from storage.base import (
    AddFocusTime,
    CloseSession,
    DetachProject,
    OpenSession,
    ProjectPatch,
    PutFocus,
    RemoveProject,
    RemoveTodo,
    SetTodoDone,
    Step,
    StorageBackend,
    TodoPatch,
)

logger = structlog.get_logger(__name__)

# Collections whose keys are ``<prefix><user>``; used for user discovery.
USER_PREFIXES: tuple[str, ...] = (
    "todos:",
    "pomodoros:",
    "focus:",
    "sessions:",
    "projects:",
    "settings:",
    "timer:",
)

REPO_INFO_TTL_SECONDS = 900


def _key(collection: str, user_id: str) -> str:
    return f"{collection}:{user_id}"


class KeyBlobAdapter(StorageBackend):
    name = "legacy"
    atomic = False

    def __init__(self, client: Any):
        # A redis.Redis created with decode_responses=True.
        self.client = client

    # --- raw blob helpers ---

    def _load(self, key: str) -> Any:
        raw = self.client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def _store(self, key: str, value: Any) -> None:
        self.client.set(key, json.dumps(value, ensure_ascii=False))

    # --- Todos ---

    def get_todos(self, user_id: str) -> list[Todo]:
        data = self._load(_key("todos", user_id)) or []
        return [Todo.model_validate(item) for item in data]

    def save_todos(self, user_id: str, todos: Sequence[Todo]) -> None:
        self._store(_key("todos", user_id), [t.to_blob() for t in todos])

    def _mutate_todo(self, user_id: str, todo_id: str, fn) -> bool:
        todos = self.get_todos(user_id)
        for todo in todos:
            if todo.id == todo_id:
                fn(todo)
                self.save_todos(user_id, todos)
                return True
        return False

    def insert_todo(self, user_id: str, todo: Todo) -> None:
        todos = self.get_todos(user_id)
        todos.insert(0, todo)
        self.save_todos(user_id, todos)

    def update_todo(self, user_id: str, todo_id: str, patch: TodoPatch) -> None:
        def _apply(todo: Todo) -> None:
            if patch.applies("title") and patch.title:
                todo.title = patch.title
            if patch.applies("detail"):
                todo.detail = patch.detail or None
            if patch.applies("deadline"):
                todo.deadline = patch.deadline or None

        self._mutate_todo(user_id, todo_id, _apply)

    def toggle_todo(self, user_id: str, todo_id: str) -> None:
        def _apply(todo: Todo) -> None:
            todo.done = not todo.done

        self._mutate_todo(user_id, todo_id, _apply)

    def delete_todo(self, user_id: str, todo_id: str) -> None:
        todos = self.get_todos(user_id)
        self.save_todos(user_id, [t for t in todos if t.id != todo_id])

    def archive_todo(self, user_id: str, todo_id: str, archived_at: int) -> None:
        def _apply(todo: Todo) -> None:
            todo.archived = True
            todo.archived_at = archived_at

        self._mutate_todo(user_id, todo_id, _apply)

    def unarchive_todo(self, user_id: str, todo_id: str) -> None:
        def _apply(todo: Todo) -> None:
            todo.archived = None
            todo.archived_at = None
            todo.done = False

        self._mutate_todo(user_id, todo_id, _apply)

    def set_todo_project(self, user_id: str, todo_id: str, project_id: Optional[str]) -> None:
        def _apply(todo: Todo) -> None:
            todo.project_id = project_id or None

        self._mutate_todo(user_id, todo_id, _apply)

    def add_task_log(self, user_id: str, todo_id: str, log: TaskLog) -> bool:
        def _apply(todo: Todo) -> None:
            todo.logs = [*(todo.logs or []), log]

        return self._mutate_todo(user_id, todo_id, _apply)

    def delete_task_log(self, user_id: str, todo_id: str, log_id: str) -> None:
        def _apply(todo: Todo) -> None:
            remaining = [entry for entry in (todo.logs or []) if entry.id != log_id]
            todo.logs = remaining or None

        self._mutate_todo(user_id, todo_id, _apply)

    # --- Projects ---

    def get_projects(self, user_id: str) -> list[Project]:
        data = self._load(_key("projects", user_id)) or []
        return [Project.model_validate(item).compact() for item in data]

    def save_projects(self, user_id: str, projects: Sequence[Project]) -> None:
        self._store(_key("projects", user_id), [p.compact().to_blob() for p in projects])

    def _mutate_project(self, user_id: str, project_id: str, fn) -> Any:
        projects = self.get_projects(user_id)
        for project in projects:
            if project.id == project_id:
                result = fn(project)
                self.save_projects(user_id, projects)
                return result if result is not None else True
        return None

    def insert_project(self, user_id: str, project: Project) -> None:
        projects = self.get_projects(user_id)
        projects.append(project)
        self.save_projects(user_id, projects)

    def update_project(self, user_id: str, project_id: str, patch: ProjectPatch) -> None:
        def _apply(project: Project) -> None:
            if patch.applies("name") and patch.name:
                project.name = patch.name
            if patch.applies("detail"):
                project.detail = patch.detail or None
            if patch.applies("github_repo"):
                project.github_repo = patch.github_repo or None

        self._mutate_project(user_id, project_id, _apply)

    def archive_project(self, user_id: str, project_id: str, archived_at: int) -> None:
        def _apply(project: Project) -> None:
            project.archived = True
            project.archived_at = archived_at

        self._mutate_project(user_id, project_id, _apply)

    def unarchive_project(self, user_id: str, project_id: str) -> None:
        def _apply(project: Project) -> None:
            project.archived = None
            project.archived_at = None

        self._mutate_project(user_id, project_id, _apply)

    def add_project_resource(self, user_id: str, project_id: str, resource: Resource) -> bool:
        def _apply(project: Project) -> None:
            project.resources = [*(project.resources or []), resource]

        return bool(self._mutate_project(user_id, project_id, _apply))

    def delete_project_resource(self, user_id: str, project_id: str, resource_id: str) -> None:
        def _apply(project: Project) -> None:
            project.resources = [r for r in (project.resources or []) if r.id != resource_id] or None

        self._mutate_project(user_id, project_id, _apply)

    def add_project_attachment(self, user_id: str, project_id: str, attachment: Attachment) -> Optional[Attachment]:
        def _apply(project: Project) -> Attachment:
            project.attachments = [*(project.attachments or []), attachment]
            return attachment

        return self._mutate_project(user_id, project_id, _apply)

    def delete_project_attachment(self, user_id: str, project_id: str, attachment_id: str) -> Optional[Attachment]:
        projects = self.get_projects(user_id)
        project = next((p for p in projects if p.id == project_id), None)
        if project is None or not project.attachments:
            return None
        removed = next((a for a in project.attachments if a.id == attachment_id), None)
        project.attachments = [a for a in project.attachments if a.id != attachment_id] or None
        self.save_projects(user_id, projects)
        return removed

    # --- Focus ---

    def get_focus(self, user_id: str) -> Optional[FocusState]:
        data = self._load(_key("focus", user_id))
        return FocusState.model_validate(data) if data else None

    def save_focus(self, user_id: str, focus: Optional[FocusState]) -> None:
        if focus is None:
            self.client.delete(_key("focus", user_id))
        else:
            self._store(_key("focus", user_id), focus.to_blob())

    def get_sessions(self, user_id: str) -> list[FocusSession]:
        data = self._load(_key("sessions", user_id)) or []
        return [FocusSession.model_validate(item) for item in data]

    def save_sessions(self, user_id: str, sessions: Sequence[FocusSession]) -> None:
        self._store(_key("sessions", user_id), [s.to_blob() for s in sessions])

    def start_session(self, user_id: str, session: FocusSession) -> None:
        sessions = self.get_sessions(user_id)
        sessions.append(session)
        self.save_sessions(user_id, sessions)

    # --- Pomodoro ---

    def get_pomodoro_logs(self, user_id: str) -> list[PomodoroLog]:
        data = self._load(_key("pomodoros", user_id)) or []
        return [PomodoroLog.model_validate(item) for item in data]

    def log_pomodoro(self, user_id: str, entry: PomodoroLog) -> None:
        logs = self.get_pomodoro_logs(user_id)
        logs.append(entry)
        self.replace_pomodoro_logs(user_id, logs)

    def replace_pomodoro_logs(self, user_id: str, logs: Sequence[PomodoroLog]) -> None:
        self._store(_key("pomodoros", user_id), [entry.to_blob() for entry in logs])

    # --- Settings ---

    def get_settings(self, user_id: str) -> UserSettings:
        data = self._load(_key("settings", user_id)) or {}
        merged = {**DEFAULT_SETTINGS.to_blob(), **data}
        return UserSettings.model_validate(merged)

    def save_settings(self, user_id: str, settings: UserSettings) -> None:
        self._store(_key("settings", user_id), settings.to_blob())

    # --- Legacy timer ---

    def get_timer(self, user_id: str) -> Optional[TimerState]:
        data = self._load(_key("timer", user_id))
        return TimerState.model_validate(data) if data else None

    def save_timer(self, user_id: str, timer: Optional[TimerState]) -> None:
        if timer is None:
            self.client.delete(_key("timer", user_id))
        else:
            self._store(_key("timer", user_id), timer.to_blob())

    # --- Repo info cache (key-blob only, never migrated) ---

    def get_repo_info(self, user_id: str, project_id: str) -> Optional[RepoInfo]:
        data = self._load(f"github:{user_id}:{project_id}")
        return RepoInfo.model_validate(data) if data else None

    def save_repo_info(self, user_id: str, project_id: str, info: RepoInfo) -> None:
        self.client.setex(
            f"github:{user_id}:{project_id}",
            REPO_INFO_TTL_SECONDS,
            json.dumps(info.to_blob(), ensure_ascii=False),
        )

    def delete_repo_info(self, user_id: str, project_id: str) -> None:
        self.client.delete(f"github:{user_id}:{project_id}")

    # --- Composite execution ---

    def apply(self, user_id: str, steps: Sequence[Step]) -> None:
        for step in steps:
            self._apply_step(user_id, step)

    def _apply_step(self, user_id: str, step: Step) -> None:
        if isinstance(step, CloseSession):
            sessions = self.get_sessions(user_id)
            for session in sessions:
                if session.id == step.session_id:
                    session.ended_at = step.ended_at
                    session.end_reason = step.reason
            self.save_sessions(user_id, sessions)
        elif isinstance(step, AddFocusTime):
            def _add(todo: Todo) -> None:
                todo.total_focus_ms = (todo.total_focus_ms or 0) + step.duration_ms

            self._mutate_todo(user_id, step.task_id, _add)
        elif isinstance(step, OpenSession):
            self.start_session(user_id, step.session)
        elif isinstance(step, PutFocus):
            self.save_focus(user_id, step.focus)
        elif isinstance(step, SetTodoDone):
            def _set(todo: Todo) -> None:
                todo.done = step.done

            self._mutate_todo(user_id, step.todo_id, _set)
        elif isinstance(step, RemoveTodo):
            self.delete_todo(user_id, step.todo_id)
        elif isinstance(step, RemoveProject):
            projects = self.get_projects(user_id)
            self.save_projects(user_id, [p for p in projects if p.id != step.project_id])
        elif isinstance(step, DetachProject):
            todos = self.get_todos(user_id)
            changed = False
            for todo in todos:
                if todo.project_id == step.project_id:
                    todo.project_id = None
                    changed = True
            if changed:
                self.save_todos(user_id, todos)
        else:
            raise TypeError(f"Unsupported step {step!r}")
