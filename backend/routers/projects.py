"""
Projects with their resources (links) and attachments (uploaded files).

Attachment bytes go to the object store; only their metadata is stored with
the project. Deleting a project releases its attachment keys and drops the
cached repo info.
"""
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile

from auth import require_user_id
from deps import get_object_store, get_router
from errors import EntityNotFound
from object_store import ObjectStore, attachment_key
from schemas import Entity, Project, RepoInfo, new_id
from storage import ProjectPatch, StorageRouter

router = APIRouter(prefix="/api", tags=["projects"])

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


class CreateProjectRequest(Entity):
    name: str
    detail: Optional[str] = None
    github_repo: Optional[str] = None


class UpdateProjectRequest(Entity):
    name: Optional[str] = None
    detail: Optional[str] = None
    github_repo: Optional[str] = None


class AddResourceRequest(Entity):
    url: str
    label: Optional[str] = None


def _find_project(storage: StorageRouter, uid: str, project_id: str) -> Project:
    project = next((p for p in storage.get_projects(uid) if p.id == project_id), None)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.get("/projects")
def list_projects(storage: StorageRouter = Depends(get_router), uid: str = Depends(require_user_id)):
    return [p.to_blob() for p in storage.get_projects(uid)]


@router.post("/projects")
def create_project(
    req: CreateProjectRequest,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    name = req.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    project = storage.create_project(uid, name, req.detail, (req.github_repo or "").strip() or None)
    return project.to_blob()


@router.patch("/projects/{project_id}")
def update_project(
    project_id: str,
    req: UpdateProjectRequest,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    """Edit name/detail, or link (or unlink with "") an external repo."""
    previous = _find_project(storage, uid, project_id)
    patch = ProjectPatch(**req.model_dump(exclude_unset=True))
    if patch.name is not None:
        patch.name = patch.name.strip()
    storage.update_project(uid, project_id, patch)
    updated = _find_project(storage, uid, project_id)
    if updated.github_repo != previous.github_repo and storage.legacy is not None:
        storage.delete_repo_info(uid, project_id)
    return updated.to_blob()


@router.post("/projects/{project_id}/archive")
def archive_project(
    project_id: str,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    _find_project(storage, uid, project_id)
    storage.archive_project(uid, project_id)
    return _find_project(storage, uid, project_id).to_blob()


@router.post("/projects/{project_id}/unarchive")
def unarchive_project(
    project_id: str,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    _find_project(storage, uid, project_id)
    storage.unarchive_project(uid, project_id)
    return _find_project(storage, uid, project_id).to_blob()


@router.delete("/projects/{project_id}")
def delete_project(
    project_id: str,
    storage: StorageRouter = Depends(get_router),
    objects: ObjectStore = Depends(get_object_store),
    uid: str = Depends(require_user_id),
):
    _find_project(storage, uid, project_id)
    keys = storage.delete_project(uid, project_id)
    objects.delete(keys)
    if storage.legacy is not None:
        storage.delete_repo_info(uid, project_id)
    return {"deleted": project_id, "releasedKeys": keys}


# --- Resources ---


@router.post("/projects/{project_id}/resources")
def add_resource(
    project_id: str,
    req: AddResourceRequest,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    url = req.url.strip()
    if not url:
        raise HTTPException(status_code=400, detail="URL is required")
    try:
        resource = storage.add_project_resource(uid, project_id, url, (req.label or "").strip() or None)
    except EntityNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return resource.to_blob()


@router.delete("/projects/{project_id}/resources/{resource_id}")
def delete_resource(
    project_id: str,
    resource_id: str,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    _find_project(storage, uid, project_id)
    storage.delete_project_resource(uid, project_id, resource_id)
    return {"deleted": resource_id}


# --- Attachments ---


@router.post("/projects/{project_id}/attachments")
async def upload_attachment(
    project_id: str,
    file: UploadFile = File(...),
    storage: StorageRouter = Depends(get_router),
    objects: ObjectStore = Depends(get_object_store),
    uid: str = Depends(require_user_id),
):
    _find_project(storage, uid, project_id)
    content = await file.read()
    if len(content) > MAX_ATTACHMENT_BYTES:
        raise HTTPException(status_code=413, detail="Attachment too large")

    attachment_id = new_id()
    name = file.filename or "file"
    key = attachment_key(uid, project_id, attachment_id, name)
    objects.put(key, content)
    try:
        attachment = storage.add_project_attachment(
            uid,
            project_id,
            name=name,
            url=f"/api/projects/{project_id}/attachments/{attachment_id}",
            key=key,
            content_type=file.content_type,
            size=len(content),
            attachment_id=attachment_id,
        )
    except EntityNotFound as e:
        objects.delete([key])
        raise HTTPException(status_code=404, detail=str(e))
    return attachment.to_blob()


@router.get("/projects/{project_id}/attachments/{attachment_id}")
def download_attachment(
    project_id: str,
    attachment_id: str,
    storage: StorageRouter = Depends(get_router),
    objects: ObjectStore = Depends(get_object_store),
    uid: str = Depends(require_user_id),
):
    project = _find_project(storage, uid, project_id)
    attachment = next((a for a in project.attachments or [] if a.id == attachment_id), None)
    if attachment is None or not attachment.key:
        raise HTTPException(status_code=404, detail="Attachment not found")
    content = objects.get(attachment.key)
    if content is None:
        raise HTTPException(status_code=404, detail="Attachment content missing")
    return Response(
        content=content,
        media_type=attachment.content_type or "application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{attachment.name}"'},
    )


@router.delete("/projects/{project_id}/attachments/{attachment_id}")
def delete_attachment(
    project_id: str,
    attachment_id: str,
    storage: StorageRouter = Depends(get_router),
    objects: ObjectStore = Depends(get_object_store),
    uid: str = Depends(require_user_id),
):
    _find_project(storage, uid, project_id)
    removed = storage.delete_project_attachment(uid, project_id, attachment_id)
    if removed is None:
        raise HTTPException(status_code=404, detail="Attachment not found")
    if removed.key:
        objects.delete([removed.key])
    return {"deleted": attachment_id}


# --- Repo info cache ---


@router.get("/projects/{project_id}/repo")
def get_repo_info(
    project_id: str,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    """Cached repo metadata for the linked repo, or null if nothing is cached."""
    project = _find_project(storage, uid, project_id)
    if not project.github_repo:
        return None
    info = storage.get_repo_info(uid, project_id)
    return info.to_blob() if info else None


@router.put("/projects/{project_id}/repo")
def put_repo_info(
    project_id: str,
    info: RepoInfo,
    storage: StorageRouter = Depends(get_router),
    uid: str = Depends(require_user_id),
):
    project = _find_project(storage, uid, project_id)
    if not project.github_repo:
        raise HTTPException(status_code=400, detail="Project has no linked repo")
    storage.save_repo_info(uid, project_id, info)
    return info.to_blob()
