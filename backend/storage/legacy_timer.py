"""Conversion of the pre-FocusState single timer into a FocusState."""
from __future__ import annotations

from typing import Optional

import structlog

from schemas import FocusState, PomodoroCycle, TimerState
from storage.kv import KeyBlobAdapter

logger = structlog.get_logger(__name__)


def focus_from_timer(timer: TimerState) -> FocusState:
    return FocusState(
        active_task_id=timer.active_task_id,
        focused_at=timer.started_at,
        pomodoro=PomodoroCycle(
            started_at=timer.started_at,
            duration=timer.duration,
            type=timer.type,
            completed_pomodoros=timer.completed_pomodoros,
            paused=timer.paused,
            paused_remaining=timer.paused_remaining,
        ),
    )


def migrate_legacy_timer(legacy: KeyBlobAdapter, user_id: str, focus: Optional[FocusState]) -> Optional[FocusState]:
    """Return focus unchanged if present; otherwise build one from the legacy
    timer, store it in the key-blob store and delete the timer.

    Safe to call repeatedly: once the timer is gone this is a no-op.
    """
    if focus is not None:
        return focus
    timer = legacy.get_timer(user_id)
    if timer is None:
        return None
    migrated = focus_from_timer(timer)
    legacy.save_focus(user_id, migrated)
    legacy.save_timer(user_id, None)
    logger.info("storage.legacy_timer_migrated", user=user_id, task_id=timer.active_task_id)
    return migrated
