"""
Relational backend on SQLModel/SQLAlchemy.

Reads go through a Session with select(); writes are compiled to SQL
statements and submitted through execute_batch(), which runs them inside a
single transaction so a batch either fully applies or not at all. Composite
steps are compiled the same way, which gives the relational side all-or-nothing
focus switches and cascade deletes.
"""
from __future__ import annotations

import uuid
from typing import Any, Optional, Sequence

from sqlalchemy import delete, func, insert, not_, update
from sqlalchemy import select as sa_select
from sqlalchemy.engine import Engine
from sqlalchemy.sql.base import Executable
from sqlmodel import Session, select

from models import (
    AttachmentRow,
    FocusSessionRow,
    FocusStateRow,
    PomodoroLogRow,
    ProjectRow,
    ResourceRow,
    TaskLogRow,
    TodoRow,
    UserSettingsRow,
)
from schemas import (
    DEFAULT_SETTINGS,
    Attachment,
    FocusSession,
    FocusState,
    PomodoroCycle,
    PomodoroLog,
    Project,
    Resource,
    TaskLog,
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


def _todo_values(user_id: str, todo: Todo, position: Any) -> dict:
    return {
        "user_id": user_id,
        "id": todo.id,
        "position": position,
        "title": todo.title,
        "done": bool(todo.done),
        "created_at": todo.created_at,
        "detail": todo.detail or None,
        "deadline": todo.deadline or None,
        "archived": bool(todo.archived),
        "archived_at": todo.archived_at,
        "project_id": todo.project_id or None,
        "total_focus_ms": todo.total_focus_ms,
    }


def _log_values(user_id: str, todo_id: str, log: TaskLog, position: Any) -> dict:
    return {
        "user_id": user_id,
        "id": log.id,
        "todo_id": todo_id,
        "position": position,
        "text": log.text,
        "created_at": log.created_at,
    }


def _resource_values(user_id: str, project_id: str, resource: Resource, position: Any) -> dict:
    return {
        "user_id": user_id,
        "id": resource.id,
        "project_id": project_id,
        "position": position,
        "url": resource.url,
        "label": resource.label or None,
        "created_at": resource.created_at,
    }


def _attachment_values(user_id: str, project_id: str, attachment: Attachment, position: Any) -> dict:
    return {
        "user_id": user_id,
        "id": attachment.id,
        "project_id": project_id,
        "position": position,
        "name": attachment.name,
        "url": attachment.url,
        "key": attachment.key or None,
        "content_type": attachment.content_type or None,
        "size": attachment.size,
        "created_at": attachment.created_at,
    }


def _session_values(user_id: str, session: FocusSession, position: Any) -> dict:
    return {
        "user_id": user_id,
        "id": session.id,
        "position": position,
        "task_id": session.task_id,
        "started_at": session.started_at,
        "ended_at": session.ended_at,
        "end_reason": session.end_reason,
    }


def _focus_values(user_id: str, focus: FocusState) -> dict:
    pomo = focus.pomodoro
    return {
        "user_id": user_id,
        "active_task_id": focus.active_task_id,
        "focused_at": focus.focused_at,
        "session_paused": focus.session_paused,
        "paused_at": focus.paused_at,
        "accumulated_pause_ms": focus.accumulated_pause_ms,
        "pomo_started_at": pomo.started_at if pomo else None,
        "pomo_duration": pomo.duration if pomo else None,
        "pomo_type": pomo.type if pomo else None,
        "pomo_completed_pomodoros": pomo.completed_pomodoros if pomo else None,
        "pomo_paused": pomo.paused if pomo else None,
        "pomo_paused_remaining": pomo.paused_remaining if pomo else None,
    }


def _position_after(column, where):
    """Scalar subquery for one past the highest position matching ``where``."""
    return sa_select(func.coalesce(func.max(column), -1) + 1).where(where).scalar_subquery()


def _position_before(column, where):
    """Scalar subquery for one below the lowest position matching ``where``."""
    return sa_select(func.coalesce(func.min(column), 0) - 1).where(where).scalar_subquery()


def _attachment_from_row(row: AttachmentRow) -> Attachment:
    return Attachment(
        id=row.id,
        name=row.name,
        url=row.url,
        key=row.key or None,
        content_type=row.content_type or None,
        size=row.size,
        created_at=row.created_at,
    )


class RelationalAdapter(StorageBackend):
    name = "new"
    atomic = True

    def __init__(self, engine: Engine):
        self.engine = engine

    def execute_batch(self, statements: Sequence[Executable]) -> None:
        """Run every statement in one transaction; any failure rolls back all."""
        if not statements:
            return
        with self.engine.begin() as conn:
            for statement in statements:
                conn.execute(statement)

    # --- Todos ---

    def get_todos(self, user_id: str) -> list[Todo]:
        with Session(self.engine) as session:
            todo_rows = session.exec(
                select(TodoRow).where(TodoRow.user_id == user_id).order_by(TodoRow.position, TodoRow.id)
            ).all()
            log_rows = session.exec(
                select(TaskLogRow).where(TaskLogRow.user_id == user_id).order_by(TaskLogRow.position, TaskLogRow.id)
            ).all()

        logs_by_todo: dict[str, list[TaskLog]] = {}
        for row in log_rows:
            logs_by_todo.setdefault(row.todo_id, []).append(
                TaskLog(id=row.id, text=row.text, created_at=row.created_at)
            )

        return [
            Todo(
                id=row.id,
                title=row.title,
                done=bool(row.done),
                created_at=row.created_at,
                detail=row.detail or None,
                deadline=row.deadline or None,
                archived=True if row.archived else None,
                archived_at=row.archived_at or None,
                logs=logs_by_todo.get(row.id) or None,
                project_id=row.project_id or None,
                total_focus_ms=row.total_focus_ms,
            )
            for row in todo_rows
        ]

    def save_todos(self, user_id: str, todos: Sequence[Todo]) -> None:
        statements: list[Executable] = [
            delete(TaskLogRow).where(TaskLogRow.user_id == user_id),
            delete(TodoRow).where(TodoRow.user_id == user_id),
        ]
        for position, todo in enumerate(todos):
            statements.append(insert(TodoRow).values(**_todo_values(user_id, todo, position)))
            for log_position, log in enumerate(todo.logs or []):
                statements.append(insert(TaskLogRow).values(**_log_values(user_id, todo.id, log, log_position)))
        self.execute_batch(statements)

    def _todo_where(self, user_id: str, todo_id: str):
        return (TodoRow.user_id == user_id) & (TodoRow.id == todo_id)

    def _todo_exists(self, user_id: str, todo_id: str) -> bool:
        with Session(self.engine) as session:
            return session.exec(select(TodoRow.id).where(self._todo_where(user_id, todo_id))).first() is not None

    def insert_todo(self, user_id: str, todo: Todo) -> None:
        # New todos go to the front of the list.
        position = _position_before(TodoRow.position, TodoRow.user_id == user_id)
        self.execute_batch([insert(TodoRow).values(**_todo_values(user_id, todo, position))])

    def update_todo(self, user_id: str, todo_id: str, patch: TodoPatch) -> None:
        values: dict = {}
        if patch.applies("title") and patch.title:
            values["title"] = patch.title
        if patch.applies("detail"):
            values["detail"] = patch.detail or None
        if patch.applies("deadline"):
            values["deadline"] = patch.deadline or None
        if not values:
            return
        self.execute_batch([update(TodoRow).where(self._todo_where(user_id, todo_id)).values(**values)])

    def toggle_todo(self, user_id: str, todo_id: str) -> None:
        self.execute_batch(
            [update(TodoRow).where(self._todo_where(user_id, todo_id)).values(done=not_(TodoRow.done))]
        )

    def delete_todo(self, user_id: str, todo_id: str) -> None:
        self.execute_batch(self._remove_todo_statements(user_id, todo_id))

    def _remove_todo_statements(self, user_id: str, todo_id: str) -> list[Executable]:
        return [
            delete(TaskLogRow).where((TaskLogRow.user_id == user_id) & (TaskLogRow.todo_id == todo_id)),
            delete(TodoRow).where(self._todo_where(user_id, todo_id)),
        ]

    def archive_todo(self, user_id: str, todo_id: str, archived_at: int) -> None:
        self.execute_batch(
            [update(TodoRow).where(self._todo_where(user_id, todo_id)).values(archived=True, archived_at=archived_at)]
        )

    def unarchive_todo(self, user_id: str, todo_id: str) -> None:
        self.execute_batch(
            [
                update(TodoRow)
                .where(self._todo_where(user_id, todo_id))
                .values(archived=False, archived_at=None, done=False)
            ]
        )

    def set_todo_project(self, user_id: str, todo_id: str, project_id: Optional[str]) -> None:
        self.execute_batch(
            [update(TodoRow).where(self._todo_where(user_id, todo_id)).values(project_id=project_id or None)]
        )

    def add_task_log(self, user_id: str, todo_id: str, log: TaskLog) -> bool:
        if not self._todo_exists(user_id, todo_id):
            return False
        position = _position_after(
            TaskLogRow.position, (TaskLogRow.user_id == user_id) & (TaskLogRow.todo_id == todo_id)
        )
        self.execute_batch([insert(TaskLogRow).values(**_log_values(user_id, todo_id, log, position))])
        return True

    def delete_task_log(self, user_id: str, todo_id: str, log_id: str) -> None:
        self.execute_batch(
            [
                delete(TaskLogRow).where(
                    (TaskLogRow.user_id == user_id) & (TaskLogRow.todo_id == todo_id) & (TaskLogRow.id == log_id)
                )
            ]
        )

    # --- Projects ---

    def get_projects(self, user_id: str) -> list[Project]:
        with Session(self.engine) as session:
            project_rows = session.exec(
                select(ProjectRow).where(ProjectRow.user_id == user_id).order_by(ProjectRow.position, ProjectRow.id)
            ).all()
            resource_rows = session.exec(
                select(ResourceRow)
                .where(ResourceRow.user_id == user_id)
                .order_by(ResourceRow.position, ResourceRow.id)
            ).all()
            attachment_rows = session.exec(
                select(AttachmentRow)
                .where(AttachmentRow.user_id == user_id)
                .order_by(AttachmentRow.position, AttachmentRow.id)
            ).all()

        resources: dict[str, list[Resource]] = {}
        for row in resource_rows:
            resources.setdefault(row.project_id, []).append(
                Resource(id=row.id, url=row.url, label=row.label or None, created_at=row.created_at)
            )
        attachments: dict[str, list[Attachment]] = {}
        for row in attachment_rows:
            attachments.setdefault(row.project_id, []).append(_attachment_from_row(row))

        return [
            Project(
                id=row.id,
                name=row.name,
                created_at=row.created_at,
                detail=row.detail,
                github_repo=row.github_repo,
                archived=row.archived,
                archived_at=row.archived_at,
                resources=resources.get(row.id),
                attachments=attachments.get(row.id),
            ).compact()
            for row in project_rows
        ]

    def save_projects(self, user_id: str, projects: Sequence[Project]) -> None:
        statements: list[Executable] = [
            delete(ResourceRow).where(ResourceRow.user_id == user_id),
            delete(AttachmentRow).where(AttachmentRow.user_id == user_id),
            delete(ProjectRow).where(ProjectRow.user_id == user_id),
        ]
        for position, project in enumerate(projects):
            statements.extend(self._insert_project_statements(user_id, project.compact(), position))
        self.execute_batch(statements)

    def _insert_project_statements(self, user_id: str, project: Project, position: Any) -> list[Executable]:
        statements: list[Executable] = [
            insert(ProjectRow).values(
                user_id=user_id,
                id=project.id,
                position=position,
                name=project.name,
                created_at=project.created_at,
                detail=project.detail or None,
                github_repo=project.github_repo or None,
                archived=bool(project.archived),
                archived_at=project.archived_at,
            )
        ]
        for index, resource in enumerate(project.resources or []):
            statements.append(insert(ResourceRow).values(**_resource_values(user_id, project.id, resource, index)))
        for index, attachment in enumerate(project.attachments or []):
            statements.append(
                insert(AttachmentRow).values(**_attachment_values(user_id, project.id, attachment, index))
            )
        return statements

    def _project_where(self, user_id: str, project_id: str):
        return (ProjectRow.user_id == user_id) & (ProjectRow.id == project_id)

    def _project_exists(self, user_id: str, project_id: str) -> bool:
        with Session(self.engine) as session:
            return (
                session.exec(select(ProjectRow.id).where(self._project_where(user_id, project_id))).first()
                is not None
            )

    def insert_project(self, user_id: str, project: Project) -> None:
        position = _position_after(ProjectRow.position, ProjectRow.user_id == user_id)
        self.execute_batch(self._insert_project_statements(user_id, project.compact(), position))

    def update_project(self, user_id: str, project_id: str, patch: ProjectPatch) -> None:
        values: dict = {}
        if patch.applies("name") and patch.name:
            values["name"] = patch.name
        if patch.applies("detail"):
            values["detail"] = patch.detail or None
        if patch.applies("github_repo"):
            values["github_repo"] = patch.github_repo or None
        if not values:
            return
        self.execute_batch([update(ProjectRow).where(self._project_where(user_id, project_id)).values(**values)])

    def archive_project(self, user_id: str, project_id: str, archived_at: int) -> None:
        self.execute_batch(
            [
                update(ProjectRow)
                .where(self._project_where(user_id, project_id))
                .values(archived=True, archived_at=archived_at)
            ]
        )

    def unarchive_project(self, user_id: str, project_id: str) -> None:
        self.execute_batch(
            [
                update(ProjectRow)
                .where(self._project_where(user_id, project_id))
                .values(archived=False, archived_at=None)
            ]
        )

    def add_project_resource(self, user_id: str, project_id: str, resource: Resource) -> bool:
        if not self._project_exists(user_id, project_id):
            return False
        position = _position_after(
            ResourceRow.position, (ResourceRow.user_id == user_id) & (ResourceRow.project_id == project_id)
        )
        self.execute_batch([insert(ResourceRow).values(**_resource_values(user_id, project_id, resource, position))])
        return True

    def delete_project_resource(self, user_id: str, project_id: str, resource_id: str) -> None:
        self.execute_batch(
            [
                delete(ResourceRow).where(
                    (ResourceRow.user_id == user_id)
                    & (ResourceRow.project_id == project_id)
                    & (ResourceRow.id == resource_id)
                )
            ]
        )

    def add_project_attachment(self, user_id: str, project_id: str, attachment: Attachment) -> Optional[Attachment]:
        if not self._project_exists(user_id, project_id):
            return None
        position = _position_after(
            AttachmentRow.position, (AttachmentRow.user_id == user_id) & (AttachmentRow.project_id == project_id)
        )
        self.execute_batch(
            [insert(AttachmentRow).values(**_attachment_values(user_id, project_id, attachment, position))]
        )
        return attachment

    def delete_project_attachment(self, user_id: str, project_id: str, attachment_id: str) -> Optional[Attachment]:
        where = (
            (AttachmentRow.user_id == user_id)
            & (AttachmentRow.project_id == project_id)
            & (AttachmentRow.id == attachment_id)
        )
        with Session(self.engine) as session:
            row = session.exec(select(AttachmentRow).where(where)).first()
            removed = _attachment_from_row(row) if row else None
        if removed is None:
            return None
        self.execute_batch([delete(AttachmentRow).where(where)])
        return removed

    # --- Focus ---

    def get_focus(self, user_id: str) -> Optional[FocusState]:
        with Session(self.engine) as session:
            row = session.get(FocusStateRow, user_id)
        if row is None:
            return None
        pomodoro = None
        if row.pomo_started_at is not None and row.pomo_duration is not None and row.pomo_type is not None:
            pomodoro = PomodoroCycle(
                started_at=row.pomo_started_at,
                duration=row.pomo_duration,
                type=row.pomo_type,
                completed_pomodoros=row.pomo_completed_pomodoros or 0,
                paused=bool(row.pomo_paused),
                paused_remaining=row.pomo_paused_remaining,
            )
        return FocusState(
            active_task_id=row.active_task_id,
            focused_at=row.focused_at,
            session_paused=row.session_paused,
            paused_at=row.paused_at,
            accumulated_pause_ms=row.accumulated_pause_ms,
            pomodoro=pomodoro,
        )

    def _put_focus_statements(self, user_id: str, focus: Optional[FocusState]) -> list[Executable]:
        statements: list[Executable] = [delete(FocusStateRow).where(FocusStateRow.user_id == user_id)]
        if focus is not None:
            statements.append(insert(FocusStateRow).values(**_focus_values(user_id, focus)))
        return statements

    def save_focus(self, user_id: str, focus: Optional[FocusState]) -> None:
        self.execute_batch(self._put_focus_statements(user_id, focus))

    def get_sessions(self, user_id: str) -> list[FocusSession]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(FocusSessionRow)
                .where(FocusSessionRow.user_id == user_id)
                .order_by(FocusSessionRow.position, FocusSessionRow.id)
            ).all()
        return [
            FocusSession(
                id=row.id,
                task_id=row.task_id,
                started_at=row.started_at,
                ended_at=row.ended_at,
                end_reason=row.end_reason or None,
            )
            for row in rows
        ]

    def get_active_session(self, user_id: str) -> Optional[FocusSession]:
        with Session(self.engine) as session:
            row = session.exec(
                select(FocusSessionRow)
                .where((FocusSessionRow.user_id == user_id) & (FocusSessionRow.ended_at.is_(None)))
                .order_by(FocusSessionRow.started_at, FocusSessionRow.id)
            ).first()
        if row is None:
            return None
        return FocusSession(id=row.id, task_id=row.task_id, started_at=row.started_at)

    def save_sessions(self, user_id: str, sessions: Sequence[FocusSession]) -> None:
        statements: list[Executable] = [delete(FocusSessionRow).where(FocusSessionRow.user_id == user_id)]
        for position, focus_session in enumerate(sessions):
            statements.append(insert(FocusSessionRow).values(**_session_values(user_id, focus_session, position)))
        self.execute_batch(statements)

    def _open_session_statement(self, user_id: str, session: FocusSession) -> Executable:
        position = _position_after(FocusSessionRow.position, FocusSessionRow.user_id == user_id)
        return insert(FocusSessionRow).values(**_session_values(user_id, session, position))

    def start_session(self, user_id: str, session: FocusSession) -> None:
        self.execute_batch([self._open_session_statement(user_id, session)])

    # --- Pomodoro ---

    def get_pomodoro_logs(self, user_id: str) -> list[PomodoroLog]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(PomodoroLogRow)
                .where(PomodoroLogRow.user_id == user_id)
                .order_by(PomodoroLogRow.position, PomodoroLogRow.id)
            ).all()
        return [
            PomodoroLog(task_id=row.task_id, type=row.type, duration=row.duration, completed_at=row.completed_at)
            for row in rows
        ]

    def _log_row_values(self, user_id: str, entry: PomodoroLog, row_id: str, position: Any) -> dict:
        return {
            "user_id": user_id,
            "id": row_id,
            "position": position,
            "task_id": entry.task_id,
            "type": entry.type,
            "duration": entry.duration,
            "completed_at": entry.completed_at,
        }

    def log_pomodoro(self, user_id: str, entry: PomodoroLog) -> None:
        position = _position_after(PomodoroLogRow.position, PomodoroLogRow.user_id == user_id)
        row = self._log_row_values(user_id, entry, str(uuid.uuid4()), position)
        self.execute_batch([insert(PomodoroLogRow).values(**row)])

    def replace_pomodoro_logs(self, user_id: str, logs: Sequence[PomodoroLog]) -> None:
        # Row ids are positional so a replayed backfill produces identical rows.
        statements: list[Executable] = [delete(PomodoroLogRow).where(PomodoroLogRow.user_id == user_id)]
        for index, entry in enumerate(logs):
            row_id = f"{entry.task_id}:{entry.completed_at}:{index}"
            statements.append(insert(PomodoroLogRow).values(**self._log_row_values(user_id, entry, row_id, index)))
        self.execute_batch(statements)

    # --- Settings ---

    def get_settings(self, user_id: str) -> UserSettings:
        with Session(self.engine) as session:
            row = session.get(UserSettingsRow, user_id)
        if row is None:
            return DEFAULT_SETTINGS.model_copy()
        return UserSettings(
            work_ms=row.work_ms,
            short_break_ms=row.short_break_ms,
            long_break_ms=row.long_break_ms,
            theme=row.theme,
        )

    def save_settings(self, user_id: str, settings: UserSettings) -> None:
        self.execute_batch(
            [
                delete(UserSettingsRow).where(UserSettingsRow.user_id == user_id),
                insert(UserSettingsRow).values(
                    user_id=user_id,
                    work_ms=settings.work_ms,
                    short_break_ms=settings.short_break_ms,
                    long_break_ms=settings.long_break_ms,
                    theme=settings.theme,
                ),
            ]
        )

    # --- Composite execution ---

    def apply(self, user_id: str, steps: Sequence[Step]) -> None:
        statements: list[Executable] = []
        for step in steps:
            statements.extend(self._compile(user_id, step))
        self.execute_batch(statements)

    def _compile(self, user_id: str, step: Step) -> list[Executable]:
        if isinstance(step, CloseSession):
            return [
                update(FocusSessionRow)
                .where((FocusSessionRow.user_id == user_id) & (FocusSessionRow.id == step.session_id))
                .values(ended_at=step.ended_at, end_reason=step.reason)
            ]
        if isinstance(step, AddFocusTime):
            return [
                update(TodoRow)
                .where(self._todo_where(user_id, step.task_id))
                .values(total_focus_ms=func.coalesce(TodoRow.total_focus_ms, 0) + step.duration_ms)
            ]
        if isinstance(step, OpenSession):
            return [self._open_session_statement(user_id, step.session)]
        if isinstance(step, PutFocus):
            return self._put_focus_statements(user_id, step.focus)
        if isinstance(step, SetTodoDone):
            return [update(TodoRow).where(self._todo_where(user_id, step.todo_id)).values(done=step.done)]
        if isinstance(step, RemoveTodo):
            return self._remove_todo_statements(user_id, step.todo_id)
        if isinstance(step, RemoveProject):
            return [
                delete(ResourceRow).where(
                    (ResourceRow.user_id == user_id) & (ResourceRow.project_id == step.project_id)
                ),
                delete(AttachmentRow).where(
                    (AttachmentRow.user_id == user_id) & (AttachmentRow.project_id == step.project_id)
                ),
                delete(ProjectRow).where(self._project_where(user_id, step.project_id)),
            ]
        if isinstance(step, DetachProject):
            return [
                update(TodoRow)
                .where((TodoRow.user_id == user_id) & (TodoRow.project_id == step.project_id))
                .values(project_id=None)
            ]
        raise TypeError(f"Unsupported step {step!r}")
