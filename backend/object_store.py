"""
Binary storage for project attachments.

The storage engine only keeps attachment metadata; the bytes live behind this
small interface. FileObjectStore keeps them on local disk under one root.
"""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)


class ObjectStore(Protocol):
    def put(self, key: str, data: bytes) -> None: ...

    def get(self, key: str) -> Optional[bytes]: ...

    def delete(self, keys: Iterable[str]) -> None: ...


class FileObjectStore:
    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Invalid object key {key!r}")
        return path

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def delete(self, keys: Iterable[str]) -> None:
        for key in keys:
            path = self._path(key)
            if path.is_file():
                path.unlink()
            else:
                logger.debug("object_store.missing_key", key=key)


def attachment_key(user_id: str, project_id: str, attachment_id: str, filename: str) -> str:
    safe_name = Path(filename).name or "file"
    safe_user = "".join(c if c.isalnum() or c in "-_.@" else "_" for c in user_id)
    return f"{safe_user}/{project_id}/{attachment_id}/{safe_name}"
