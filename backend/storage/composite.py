"""
Multi-entity state transitions, written once against the StorageBackend
contract.

Each planner reads what it needs from the backend, builds an ordered list of
steps and hands it to backend.apply(). On the relational backend that list runs
as one transaction. On the key-blob backend the steps run one by one with no
rollback, so an interrupted focus switch can leave a closed session without a
new one, or a closed session while FocusState still names its task. That is a
known limitation of the legacy store.

Timestamps and new ids are passed in by the caller so that a dual-written
operation produces identical records on both backends.
"""
from __future__ import annotations

from typing import Optional

from schemas import EndReason, FocusSession, FocusState
from storage.base import (
    AddFocusTime,
    CloseSession,
    DetachProject,
    OpenSession,
    PutFocus,
    RemoveProject,
    RemoveTodo,
    SetTodoDone,
    Step,
    StorageBackend,
)


def close_active_steps(backend: StorageBackend, user_id: str, reason: EndReason, now: int) -> list[Step]:
    """Close the open session (if any) and credit its duration to its task."""
    active = backend.get_active_session(user_id)
    if active is None:
        return []
    return [
        CloseSession(session_id=active.id, ended_at=now, reason=reason),
        AddFocusTime(task_id=active.task_id, duration_ms=max(0, now - active.started_at)),
    ]


def end_active_session(backend: StorageBackend, user_id: str, reason: EndReason, *, now: int) -> None:
    backend.apply(user_id, close_active_steps(backend, user_id, reason, now))


def focus_task(backend: StorageBackend, user_id: str, task_id: str, *, now: int, session_id: str) -> None:
    """Switch focus to task_id: close the current session, open a new one and
    point FocusState at it."""
    steps = close_active_steps(backend, user_id, "switch", now)
    steps.append(OpenSession(FocusSession(id=session_id, task_id=task_id, started_at=now)))
    steps.append(PutFocus(FocusState(active_task_id=task_id, focused_at=now)))
    backend.apply(user_id, steps)


def unfocus(backend: StorageBackend, user_id: str, reason: EndReason, *, now: int) -> None:
    steps = close_active_steps(backend, user_id, reason, now)
    steps.append(PutFocus(None))
    backend.apply(user_id, steps)


def toggle_todo_with_focus(backend: StorageBackend, user_id: str, todo_id: str, *, now: int) -> Optional[bool]:
    """Flip the done flag; completing the focused task also unfocuses it.

    Returns the new done value, or None when the todo does not exist.
    """
    todo = next((t for t in backend.get_todos(user_id) if t.id == todo_id), None)
    if todo is None:
        return None
    done = not todo.done
    steps: list[Step] = [SetTodoDone(todo_id=todo_id, done=done)]
    if done:
        focus = backend.get_focus(user_id)
        if focus is not None and focus.active_task_id == todo_id:
            steps.extend(close_active_steps(backend, user_id, "done", now))
            steps.append(PutFocus(None))
    backend.apply(user_id, steps)
    return done


def delete_todo_with_focus(backend: StorageBackend, user_id: str, todo_id: str, *, now: int) -> None:
    steps: list[Step] = []
    focus = backend.get_focus(user_id)
    if focus is not None and focus.active_task_id == todo_id:
        steps.extend(close_active_steps(backend, user_id, "manual", now))
        steps.append(PutFocus(None))
    steps.append(RemoveTodo(todo_id=todo_id))
    backend.apply(user_id, steps)


def delete_project_cascade(backend: StorageBackend, user_id: str, project_id: str) -> list[str]:
    """Delete a project with its resources and attachments and unlink its
    todos. Returns the attachment storage keys the caller must release."""
    project = next((p for p in backend.get_projects(user_id) if p.id == project_id), None)
    keys = [a.key for a in (project.attachments or []) if a.key] if project else []
    backend.apply(user_id, [RemoveProject(project_id=project_id), DetachProject(project_id=project_id)])
    return keys
