"""
Domain entities shared by both storage backends.

Timestamps and durations are integer milliseconds since the epoch. Field names
serialize in camelCase because that is the shape already stored in the legacy
key-blob store; optional fields that are unset are omitted when dumped.
"""
from __future__ import annotations

import time
import uuid
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CycleType = Literal["work", "short-break", "long-break"]
EndReason = Literal["switch", "done", "manual"]
Theme = Literal["signal", "paper", "nothing"]
RunStatus = Literal["running", "completed", "failed"]
RunKind = Literal["backfill", "parity"]

THEMES: tuple[str, ...] = ("signal", "paper", "nothing")


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


class Entity(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_blob(self) -> dict[str, Any]:
        """JSON-ready dict in the legacy wire shape."""
        return self.model_dump(by_alias=True, exclude_none=True)


class TaskLog(Entity):
    id: str
    text: str
    created_at: int


class Todo(Entity):
    id: str
    title: str
    done: bool = False
    created_at: int
    detail: Optional[str] = None
    deadline: Optional[int] = None
    archived: Optional[bool] = None
    archived_at: Optional[int] = None
    logs: Optional[list[TaskLog]] = None
    project_id: Optional[str] = None
    total_focus_ms: Optional[int] = None


class Resource(Entity):
    id: str
    url: str
    label: Optional[str] = None
    created_at: int


class Attachment(Entity):
    id: str
    name: str
    url: str
    key: Optional[str] = None
    content_type: Optional[str] = None
    size: Optional[int] = None
    created_at: int


class Project(Entity):
    id: str
    name: str
    created_at: int
    detail: Optional[str] = None
    resources: Optional[list[Resource]] = None
    attachments: Optional[list[Attachment]] = None
    github_repo: Optional[str] = None
    archived: Optional[bool] = None
    archived_at: Optional[int] = None

    def compact(self) -> "Project":
        """Drop empty/falsy optional fields, the way projects are persisted."""
        return Project(
            id=self.id,
            name=self.name,
            created_at=self.created_at,
            detail=self.detail or None,
            resources=self.resources or None,
            attachments=self.attachments or None,
            github_repo=self.github_repo or None,
            archived=self.archived or None,
            archived_at=self.archived_at or None,
        )


class PomodoroCycle(Entity):
    started_at: int
    duration: int
    type: CycleType
    completed_pomodoros: int = 0
    paused: bool = False
    paused_remaining: Optional[int] = None


class FocusState(Entity):
    active_task_id: str
    focused_at: int
    session_paused: Optional[bool] = None
    paused_at: Optional[int] = None
    accumulated_pause_ms: Optional[int] = None
    pomodoro: Optional[PomodoroCycle] = None


class FocusSession(Entity):
    id: str
    task_id: str
    started_at: int
    ended_at: Optional[int] = None
    end_reason: Optional[EndReason] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class PomodoroLog(Entity):
    task_id: str
    type: CycleType
    duration: int
    completed_at: int


class UserSettings(Entity):
    work_ms: int = 25 * 60 * 1000
    short_break_ms: int = 5 * 60 * 1000
    long_break_ms: int = 15 * 60 * 1000
    theme: Theme = "signal"


DEFAULT_SETTINGS = UserSettings()


class TimerState(Entity):
    """Single-timer representation that predates FocusState."""

    active_task_id: str
    started_at: int
    duration: int
    type: CycleType
    completed_pomodoros: int = 0
    paused: bool = False
    paused_remaining: Optional[int] = None


class RepoInfo(Entity):
    """Cached metadata about a project's linked external repository."""

    full_name: str
    description: Optional[str] = None
    default_branch: str = "main"
    last_pushed_at: Optional[str] = None
    stars: int = 0
    open_issue_count: int = 0
    fetched_at: int = Field(default_factory=now_ms)
    error: Optional[str] = None
    readme_content: Optional[str] = None


class MigrationRun(Entity):
    run_id: str
    kind: RunKind = "backfill"
    started_at: int
    finished_at: Optional[int] = None
    status: RunStatus = "running"
    cursor: Optional[str] = None
    total_users: Optional[int] = None
    discovered_users: int = 0
    processed_users: int = 0
    mismatched_users: int = 0
    notes: Optional[str] = None
    retry_users: list[str] = []
