from __future__ import annotations

from typing import Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

# Collection rows carry ``position`` so lists read back in the order they were written.


class TodoRow(SQLModel, table=True):
    __tablename__ = "todos"

    user_id: str = Field(primary_key=True)
    id: str = Field(primary_key=True)
    position: int = 0
    title: str
    done: bool = False
    created_at: int = Field(index=True)
    detail: Optional[str] = None
    deadline: Optional[int] = None
    archived: bool = False
    archived_at: Optional[int] = None
    project_id: Optional[str] = Field(default=None, index=True)
    total_focus_ms: Optional[int] = None


class TaskLogRow(SQLModel, table=True):
    __tablename__ = "task_logs"

    user_id: str = Field(primary_key=True)
    id: str = Field(primary_key=True)
    todo_id: str = Field(index=True)
    position: int = 0
    text: str
    created_at: int


class ProjectRow(SQLModel, table=True):
    __tablename__ = "projects"

    user_id: str = Field(primary_key=True)
    id: str = Field(primary_key=True)
    position: int = 0
    name: str
    created_at: int
    detail: Optional[str] = None
    github_repo: Optional[str] = None
    archived: bool = False
    archived_at: Optional[int] = None


class ResourceRow(SQLModel, table=True):
    __tablename__ = "project_resources"

    user_id: str = Field(primary_key=True)
    id: str = Field(primary_key=True)
    project_id: str = Field(index=True)
    position: int = 0
    url: str
    label: Optional[str] = None
    created_at: int


class AttachmentRow(SQLModel, table=True):
    __tablename__ = "project_attachments"

    user_id: str = Field(primary_key=True)
    id: str = Field(primary_key=True)
    project_id: str = Field(index=True)
    position: int = 0
    name: str
    url: str
    key: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = None
    created_at: int


class FocusStateRow(SQLModel, table=True):
    __tablename__ = "focus_state"

    user_id: str = Field(primary_key=True)
    active_task_id: str
    focused_at: int
    session_paused: Optional[bool] = None
    paused_at: Optional[int] = None
    accumulated_pause_ms: Optional[int] = None
    pomo_started_at: Optional[int] = None
    pomo_duration: Optional[int] = None
    pomo_type: Optional[str] = None
    pomo_completed_pomodoros: Optional[int] = None
    pomo_paused: Optional[bool] = None
    pomo_paused_remaining: Optional[int] = None


class FocusSessionRow(SQLModel, table=True):
    __tablename__ = "focus_sessions"

    user_id: str = Field(primary_key=True)
    id: str = Field(primary_key=True)
    position: int = 0
    task_id: str
    started_at: int = Field(index=True)
    ended_at: Optional[int] = None
    end_reason: Optional[str] = None


class PomodoroLogRow(SQLModel, table=True):
    __tablename__ = "pomodoro_logs"

    user_id: str = Field(primary_key=True)
    id: str = Field(primary_key=True)
    position: int = 0
    task_id: str
    type: str
    duration: int
    completed_at: int = Field(index=True)


class UserSettingsRow(SQLModel, table=True):
    __tablename__ = "user_settings"

    user_id: str = Field(primary_key=True)
    work_ms: int
    short_break_ms: int
    long_break_ms: int
    theme: str


class MigrationRunRow(SQLModel, table=True):
    __tablename__ = "migration_runs"

    run_id: str = Field(primary_key=True)
    kind: str = "backfill"
    started_at: int = Field(index=True)
    finished_at: Optional[int] = None
    status: str = "running"
    cursor: Optional[str] = None
    total_users: Optional[int] = None
    discovered_users: int = 0
    processed_users: int = 0
    mismatched_users: int = 0
    notes: Optional[str] = None
    # Users that failed in the last batch; the next batch of the run retries them.
    retry_users: Optional[list[str]] = Field(default=None, sa_column=Column(JSON, nullable=True))
