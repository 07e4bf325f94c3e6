"""Pomodoro interval sequencing."""
from typing import Optional

from schemas import DEFAULT_SETTINGS, CycleType, UserSettings

POMODOROS_BEFORE_LONG_BREAK = 4


def next_interval(completed_pomodoros: int, settings: Optional[UserSettings] = None) -> tuple[CycleType, int]:
    """Break that follows a finished work cycle: long after every 4th, else short.

    completed_pomodoros counts work cycles including the one just finished.
    """
    settings = settings or DEFAULT_SETTINGS
    if completed_pomodoros > 0 and completed_pomodoros % POMODOROS_BEFORE_LONG_BREAK == 0:
        return "long-break", settings.long_break_ms
    return "short-break", settings.short_break_ms


def interval_duration(cycle_type: CycleType, settings: Optional[UserSettings] = None) -> int:
    settings = settings or DEFAULT_SETTINGS
    if cycle_type == "work":
        return settings.work_ms
    if cycle_type == "long-break":
        return settings.long_break_ms
    return settings.short_break_ms
