"""User settings: interval lengths (minutes in the API, ms in storage) and theme."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from auth import require_user_id
from deps import get_router
from schemas import THEMES, Entity, UserSettings
from storage import StorageRouter

router = APIRouter(prefix="/api", tags=["settings"])

MIN_MINUTES = 1
MAX_MINUTES = 120


class SettingsRequest(Entity):
    work_minutes: Optional[int] = None
    short_break_minutes: Optional[int] = None
    long_break_minutes: Optional[int] = None
    theme: Optional[str] = None


def _clamp_minutes(value: int) -> int:
    return max(MIN_MINUTES, min(MAX_MINUTES, value))


def _to_response(settings: UserSettings) -> dict:
    body = settings.to_blob()
    body.update(
        workMinutes=settings.work_ms // 60000,
        shortBreakMinutes=settings.short_break_ms // 60000,
        longBreakMinutes=settings.long_break_ms // 60000,
    )
    return body


@router.get("/settings")
def get_settings(storage: StorageRouter = Depends(get_router), uid: str = Depends(require_user_id)):
    return _to_response(storage.get_settings(uid))


@router.put("/settings")
def save_settings(
    req: SettingsRequest,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    """Partial update; minutes are clamped to 1..120."""
    current = storage.get_settings(uid)
    if req.theme is not None and req.theme not in THEMES:
        raise HTTPException(status_code=400, detail=f"Unknown theme {req.theme!r}")

    updated = UserSettings(
        work_ms=_clamp_minutes(req.work_minutes) * 60000 if req.work_minutes is not None else current.work_ms,
        short_break_ms=(
            _clamp_minutes(req.short_break_minutes) * 60000
            if req.short_break_minutes is not None
            else current.short_break_ms
        ),
        long_break_ms=(
            _clamp_minutes(req.long_break_minutes) * 60000
            if req.long_break_minutes is not None
            else current.long_break_ms
        ),
        theme=req.theme or current.theme,
    )
    storage.save_settings(uid, updated)
    return _to_response(updated)
