"""
Focus: pick the task being worked on (opening a focus session), sync pause
and pomodoro state, stop focusing, list recent sessions and basic stats.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from auth import require_user_id
from deps import get_router
from schemas import EndReason, Entity, FocusState
from storage import StorageRouter

router = APIRouter(prefix="/api", tags=["sessions"])


class FocusRequest(Entity):
    task_id: str


@router.get("/focus")
def get_focus(storage: StorageRouter = Depends(get_router), uid: str = Depends(require_user_id)):
    """Current focus state, or null. Migrates a legacy timer on first read."""
    focus = storage.get_focus(uid)
    return focus.to_blob() if focus else None


@router.post("/focus")
def focus_task(
    req: FocusRequest,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    """Focus a task: ends the open session (reason "switch") and starts a new one."""
    if not any(t.id == req.task_id for t in storage.get_todos(uid)):
        raise HTTPException(status_code=404, detail="Todo not found")
    storage.focus_task(uid, req.task_id)
    focus = storage.get_focus(uid)
    return focus.to_blob() if focus else None


@router.put("/focus")
def sync_focus(
    focus: FocusState,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    """Replace the focus state wholesale (pause bookkeeping, pomodoro cycle)."""
    current = storage.get_focus(uid)
    if current is None or current.active_task_id != focus.active_task_id:
        raise HTTPException(status_code=409, detail="Task is not focused; use POST /api/focus")
    storage.save_focus(uid, focus)
    return focus.to_blob()


@router.delete("/focus")
def unfocus(
    reason: EndReason = "manual",
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    storage.unfocus(uid, reason)
    return {"focus": None}


@router.get("/sessions")
def list_sessions(
    limit: int = 20,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    """List recent sessions (newest first) for this user."""
    sessions = sorted(storage.get_sessions(uid), key=lambda s: (s.started_at, s.id), reverse=True)
    return [s.to_blob() for s in sessions[:limit]]


@router.get("/sessions/active")
def get_active_session(storage: StorageRouter = Depends(get_router), uid: str = Depends(require_user_id)):
    active = next((s for s in storage.get_sessions(uid) if s.is_open), None)
    return active.to_blob() if active else None


# --- Stats ---


@router.get("/stats")
def get_stats(storage: StorageRouter = Depends(get_router), uid: str = Depends(require_user_id)):
    """Basic focus stats for this user: today and all-time."""
    sessions = storage.get_sessions(uid)
    today = datetime.now(timezone.utc).date()

    total_sessions = len(sessions)
    total_minutes = 0
    today_sessions = 0
    today_minutes = 0

    for s in sessions:
        if s.ended_at is None:
            continue
        duration_min = max(0, (s.ended_at - s.started_at) // 60000)
        total_minutes += duration_min
        if datetime.fromtimestamp(s.started_at / 1000, tz=timezone.utc).date() == today:
            today_sessions += 1
            today_minutes += duration_min

    return {
        "total_sessions": total_sessions,
        "total_minutes": total_minutes,
        "today_sessions": today_sessions,
        "today_minutes": today_minutes,
    }
