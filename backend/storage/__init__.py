"""Storage backends and the routing layer that sits in front of them."""
from storage.base import ProjectPatch, StorageBackend, TodoPatch
from storage.kv import KeyBlobAdapter
from storage.relational import RelationalAdapter
from storage.routing import DualWriteFailure, StorageRouter, effective_read_source

__all__ = [
    "DualWriteFailure",
    "KeyBlobAdapter",
    "ProjectPatch",
    "RelationalAdapter",
    "StorageBackend",
    "StorageRouter",
    "TodoPatch",
    "effective_read_source",
]
