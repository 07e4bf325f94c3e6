"""
Canonical forms used to compare the same user's data across backends.

Each side is canonicalized on its own and the results are compared with plain
equality. Canonicalization sorts collections deterministically, coerces
boolean-like values, and drops empty optional fields so that "absent", None,
False, 0 and "" (or []) all compare equal for optional fields.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

from schemas import (
    DEFAULT_SETTINGS,
    FocusSession,
    FocusState,
    PomodoroLog,
    Project,
    Todo,
    UserSettings,
)

# Optional fields where a falsy value means "not set".
_OPTIONAL_TODO_FIELDS = ("detail", "deadline", "archived", "archivedAt", "logs", "projectId", "totalFocusMs")
_OPTIONAL_PROJECT_FIELDS = ("detail", "resources", "attachments", "githubRepo", "archived", "archivedAt")


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value == "1" or value.lower() == "true"
    return False


def _drop_empty(data: dict[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    for field in fields:
        if field in data and not data[field]:
            del data[field]
    return data


def _by_created(items: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(items, key=lambda item: (item.get("createdAt", 0), item.get("id", "")))


def canonical_todos(todos: Sequence[Todo]) -> list[dict[str, Any]]:
    result = []
    for todo in todos:
        data = todo.to_blob()
        data["done"] = parse_bool(data.get("done"))
        if "archived" in data:
            data["archived"] = parse_bool(data["archived"])
        if data.get("logs"):
            data["logs"] = _by_created(data["logs"])
        result.append(_drop_empty(data, _OPTIONAL_TODO_FIELDS))
    return _by_created(result)


def canonical_projects(projects: Sequence[Project]) -> list[dict[str, Any]]:
    result = []
    for project in projects:
        data = project.to_blob()
        if "archived" in data:
            data["archived"] = parse_bool(data["archived"])
        for child in ("resources", "attachments"):
            if data.get(child):
                data[child] = _by_created(data[child])
        result.append(_drop_empty(data, _OPTIONAL_PROJECT_FIELDS))
    return _by_created(result)


def canonical_sessions(sessions: Sequence[FocusSession]) -> list[dict[str, Any]]:
    return sorted(
        (session.to_blob() for session in sessions),
        key=lambda s: (s["startedAt"], s["id"]),
    )


def canonical_pomodoro_logs(logs: Sequence[PomodoroLog]) -> list[dict[str, Any]]:
    # Relational row ids are storage-internal and never part of the comparison.
    return sorted(
        (entry.to_blob() for entry in logs),
        key=lambda e: (e["completedAt"], e["taskId"], e["type"], e["duration"]),
    )


def canonical_focus(focus: Optional[FocusState]) -> Optional[dict[str, Any]]:
    if focus is None:
        return None
    data = focus.to_blob()
    if "sessionPaused" in data:
        data["sessionPaused"] = parse_bool(data["sessionPaused"])
    pomodoro = data.get("pomodoro")
    if pomodoro:
        pomodoro["paused"] = parse_bool(pomodoro.get("paused"))
    return data


def canonical_settings(settings: Optional[UserSettings]) -> dict[str, Any]:
    return (settings or DEFAULT_SETTINGS).to_blob()


def total_focus_ms(todos: Sequence[Todo]) -> int:
    return sum(todo.total_focus_ms or 0 for todo in todos)
