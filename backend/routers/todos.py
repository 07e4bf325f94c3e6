"""
Todos: create, edit, toggle, archive, task logs and project links.

Completing or deleting the focused todo also ends its focus session; those
go through the router's composite operations.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from auth import require_user_id
from deps import get_router
from errors import EntityNotFound
from schemas import Entity, Todo
from storage import StorageRouter, TodoPatch

router = APIRouter(prefix="/api", tags=["todos"])


class CreateTodoRequest(Entity):
    title: str
    detail: Optional[str] = None
    deadline: Optional[int] = None
    project_id: Optional[str] = None


class UpdateTodoRequest(Entity):
    title: Optional[str] = None
    detail: Optional[str] = None
    deadline: Optional[int] = None


class SetProjectRequest(Entity):
    project_id: Optional[str] = None


class AddLogRequest(Entity):
    text: str


def _find_todo(storage: StorageRouter, uid: str, todo_id: str) -> Todo:
    todo = next((t for t in storage.get_todos(uid) if t.id == todo_id), None)
    if todo is None:
        raise HTTPException(status_code=404, detail="Todo not found")
    return todo


@router.get("/todos")
def list_todos(
    include_archived: bool = True,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    todos = storage.get_todos(uid)
    if not include_archived:
        todos = [t for t in todos if not t.archived]
    return [t.to_blob() for t in todos]


@router.post("/todos")
def create_todo(
    req: CreateTodoRequest,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    title = req.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    try:
        todo = storage.create_todo(uid, title, req.detail, req.deadline, req.project_id)
    except EntityNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return todo.to_blob()


@router.patch("/todos/{todo_id}")
def update_todo(
    todo_id: str,
    req: UpdateTodoRequest,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    _find_todo(storage, uid, todo_id)
    patch = TodoPatch(**req.model_dump(exclude_unset=True))
    if patch.title is not None:
        patch.title = patch.title.strip()
    storage.update_todo(uid, todo_id, patch)
    return _find_todo(storage, uid, todo_id).to_blob()


@router.post("/todos/{todo_id}/toggle")
def toggle_todo(
    todo_id: str,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    done = storage.toggle_todo(uid, todo_id)
    if done is None:
        raise HTTPException(status_code=404, detail="Todo not found")
    return {"id": todo_id, "done": done}


@router.delete("/todos/{todo_id}")
def delete_todo(
    todo_id: str,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    _find_todo(storage, uid, todo_id)
    storage.delete_todo(uid, todo_id)
    return {"deleted": todo_id}


@router.post("/todos/{todo_id}/archive")
def archive_todo(
    todo_id: str,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    _find_todo(storage, uid, todo_id)
    storage.archive_todo(uid, todo_id)
    return _find_todo(storage, uid, todo_id).to_blob()


@router.post("/todos/{todo_id}/unarchive")
def unarchive_todo(
    todo_id: str,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    _find_todo(storage, uid, todo_id)
    storage.unarchive_todo(uid, todo_id)
    return _find_todo(storage, uid, todo_id).to_blob()


@router.put("/todos/{todo_id}/project")
def set_todo_project(
    todo_id: str,
    req: SetProjectRequest,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    """Link the todo to a project, or unlink it with an empty projectId."""
    _find_todo(storage, uid, todo_id)
    try:
        storage.set_todo_project(uid, todo_id, req.project_id or None)
    except EntityNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _find_todo(storage, uid, todo_id).to_blob()


@router.post("/todos/{todo_id}/logs")
def add_task_log(
    todo_id: str,
    req: AddLogRequest,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    text = req.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Log text is required")
    try:
        log = storage.add_task_log(uid, todo_id, text)
    except EntityNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return log.to_blob()


@router.delete("/todos/{todo_id}/logs/{log_id}")
def delete_task_log(
    todo_id: str,
    log_id: str,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    _find_todo(storage, uid, todo_id)
    storage.delete_task_log(uid, todo_id, log_id)
    return {"deleted": log_id}
