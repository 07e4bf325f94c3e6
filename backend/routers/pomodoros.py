"""Pomodoro log: record finished cycles and suggest the next interval."""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field

from auth import require_user_id
from deps import get_router
from pomodoro import next_interval
from schemas import CycleType, Entity
from storage import StorageRouter

router = APIRouter(prefix="/api", tags=["pomodoros"])


class LogPomodoroRequest(Entity):
    task_id: str
    type: CycleType
    duration: int = Field(gt=0)
    completed_pomodoros: int = 0


@router.get("/pomodoros")
def list_pomodoros(storage: StorageRouter = Depends(get_router), uid: str = Depends(require_user_id)):
    return [entry.to_blob() for entry in storage.get_pomodoro_logs(uid)]


@router.post("/pomodoros")
def log_pomodoro(
    req: LogPomodoroRequest,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    """Append a finished cycle. For work cycles the response also carries the
    break that should follow."""
    if not req.task_id.strip():
        raise HTTPException(status_code=400, detail="taskId is required")
    entry = storage.log_pomodoro(uid, req.task_id, req.type, req.duration)
    response = {"log": entry.to_blob()}
    if req.type == "work":
        cycle_type, duration = next_interval(req.completed_pomodoros, storage.get_settings(uid))
        response["next"] = {"type": cycle_type, "duration": duration}
    return response
