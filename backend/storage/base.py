"""
Entity-level contract shared by the legacy key-blob backend and the relational
backend, plus the primitive steps that composite operations are built from.

Collection writes (save_todos, save_projects, save_sessions,
replace_pomodoro_logs) are full-value replacements. Reads return an empty value
(empty list, None, default settings) when nothing is stored; they never raise
for missing data.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from pydantic import BaseModel

from schemas import (
    Attachment,
    EndReason,
    FocusSession,
    FocusState,
    PomodoroLog,
    Project,
    Resource,
    TaskLog,
    TimerState,
    Todo,
    UserSettings,
)


class TodoPatch(BaseModel):
    """Only fields explicitly set are applied. An empty title is ignored; an
    empty detail or a missing deadline clears the stored value."""

    title: Optional[str] = None
    detail: Optional[str] = None
    deadline: Optional[int] = None

    def applies(self, field: str) -> bool:
        return field in self.model_fields_set


class ProjectPatch(BaseModel):
    name: Optional[str] = None
    detail: Optional[str] = None
    github_repo: Optional[str] = None

    def applies(self, field: str) -> bool:
        return field in self.model_fields_set


# --- Composite steps ---


@dataclass(frozen=True)
class CloseSession:
    session_id: str
    ended_at: int
    reason: EndReason


@dataclass(frozen=True)
class AddFocusTime:
    task_id: str
    duration_ms: int


@dataclass(frozen=True)
class OpenSession:
    session: FocusSession


@dataclass(frozen=True)
class PutFocus:
    focus: Optional[FocusState]


@dataclass(frozen=True)
class SetTodoDone:
    todo_id: str
    done: bool


@dataclass(frozen=True)
class RemoveTodo:
    todo_id: str


@dataclass(frozen=True)
class RemoveProject:
    """Delete a project together with its resources and attachments."""

    project_id: str


@dataclass(frozen=True)
class DetachProject:
    """Clear project_id on every todo that references the project."""

    project_id: str


Step = Union[CloseSession, AddFocusTime, OpenSession, PutFocus, SetTodoDone, RemoveTodo, RemoveProject, DetachProject]


class StorageBackend(ABC):
    name: str = ""
    # True when apply() is all-or-nothing.
    atomic: bool = False

    # --- Todos ---

    @abstractmethod
    def get_todos(self, user_id: str) -> list[Todo]: ...

    @abstractmethod
    def save_todos(self, user_id: str, todos: Sequence[Todo]) -> None: ...

    @abstractmethod
    def insert_todo(self, user_id: str, todo: Todo) -> None: ...

    @abstractmethod
    def update_todo(self, user_id: str, todo_id: str, patch: TodoPatch) -> None: ...

    @abstractmethod
    def toggle_todo(self, user_id: str, todo_id: str) -> None: ...

    @abstractmethod
    def delete_todo(self, user_id: str, todo_id: str) -> None: ...

    @abstractmethod
    def archive_todo(self, user_id: str, todo_id: str, archived_at: int) -> None: ...

    @abstractmethod
    def unarchive_todo(self, user_id: str, todo_id: str) -> None: ...

    @abstractmethod
    def set_todo_project(self, user_id: str, todo_id: str, project_id: Optional[str]) -> None: ...

    @abstractmethod
    def add_task_log(self, user_id: str, todo_id: str, log: TaskLog) -> bool: ...

    @abstractmethod
    def delete_task_log(self, user_id: str, todo_id: str, log_id: str) -> None: ...

    # --- Projects ---

    @abstractmethod
    def get_projects(self, user_id: str) -> list[Project]: ...

    @abstractmethod
    def save_projects(self, user_id: str, projects: Sequence[Project]) -> None: ...

    @abstractmethod
    def insert_project(self, user_id: str, project: Project) -> None: ...

    @abstractmethod
    def update_project(self, user_id: str, project_id: str, patch: ProjectPatch) -> None: ...

    @abstractmethod
    def archive_project(self, user_id: str, project_id: str, archived_at: int) -> None: ...

    @abstractmethod
    def unarchive_project(self, user_id: str, project_id: str) -> None: ...

    @abstractmethod
    def add_project_resource(self, user_id: str, project_id: str, resource: Resource) -> bool: ...

    @abstractmethod
    def delete_project_resource(self, user_id: str, project_id: str, resource_id: str) -> None: ...

    @abstractmethod
    def add_project_attachment(self, user_id: str, project_id: str, attachment: Attachment) -> Optional[Attachment]: ...

    @abstractmethod
    def delete_project_attachment(self, user_id: str, project_id: str, attachment_id: str) -> Optional[Attachment]: ...

    # --- Focus ---

    @abstractmethod
    def get_focus(self, user_id: str) -> Optional[FocusState]: ...

    @abstractmethod
    def save_focus(self, user_id: str, focus: Optional[FocusState]) -> None: ...

    @abstractmethod
    def get_sessions(self, user_id: str) -> list[FocusSession]: ...

    @abstractmethod
    def save_sessions(self, user_id: str, sessions: Sequence[FocusSession]) -> None: ...

    @abstractmethod
    def start_session(self, user_id: str, session: FocusSession) -> None: ...

    def get_active_session(self, user_id: str) -> Optional[FocusSession]:
        open_sessions = [s for s in self.get_sessions(user_id) if s.is_open]
        if not open_sessions:
            return None
        return min(open_sessions, key=lambda s: (s.started_at, s.id))

    # --- Pomodoro ---

    @abstractmethod
    def get_pomodoro_logs(self, user_id: str) -> list[PomodoroLog]: ...

    @abstractmethod
    def log_pomodoro(self, user_id: str, entry: PomodoroLog) -> None: ...

    @abstractmethod
    def replace_pomodoro_logs(self, user_id: str, logs: Sequence[PomodoroLog]) -> None: ...

    # --- Settings ---

    @abstractmethod
    def get_settings(self, user_id: str) -> UserSettings: ...

    @abstractmethod
    def save_settings(self, user_id: str, settings: UserSettings) -> None: ...

    # --- Legacy timer (only the key-blob store ever held one) ---

    def get_timer(self, user_id: str) -> Optional[TimerState]:
        return None

    def save_timer(self, user_id: str, timer: Optional[TimerState]) -> None:
        return None

    # --- Composite execution ---

    @abstractmethod
    def apply(self, user_id: str, steps: Sequence[Step]) -> None:
        """Execute an ordered list of steps produced by the composite planners."""
