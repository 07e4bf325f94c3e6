"""
Runtime configuration for storage routing, the migration tooling and logging.

Values come from the environment (a local .env is loaded first). The resulting
StorageConfig is passed explicitly to the router and the migration jobs so a
routing decision never depends on process-wide state.
"""
from __future__ import annotations

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

ReadSource = Literal["legacy", "new"]
DiscoveryMode = Literal["offset", "cursor"]

MIN_BATCH_USERS = 1
MAX_BATCH_USERS = 500


def _env_flag(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() == "true"


def _env_list(name: str) -> frozenset[str]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return frozenset()
    return frozenset(v.strip().lower() for v in raw.split(",") if v.strip())


def clamp_batch(value: int | None, default: int = 50) -> int:
    if not value:
        value = default
    return max(MIN_BATCH_USERS, min(MAX_BATCH_USERS, int(value)))


class StorageConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    read_source: ReadSource = "legacy"
    canary_users: frozenset[str] = Field(default_factory=frozenset)
    dual_write: bool = False
    redis_url: Optional[str] = None
    database_url: Optional[str] = None
    migration_token: Optional[str] = None
    default_batch: int = 50
    discovery: DiscoveryMode = "offset"
    attachments_dir: str = "attachments"
    log_level: str = "INFO"
    log_json: bool = False

    def is_canary(self, user_id: str) -> bool:
        return user_id.strip().lower() in self.canary_users


def load_config() -> StorageConfig:
    """Build the configuration from environment variables (and .env)."""
    load_dotenv()
    read_source = (os.getenv("STORAGE_READ_SOURCE") or "legacy").strip().lower()
    discovery = (os.getenv("BACKFILL_DISCOVERY") or "offset").strip().lower()
    return StorageConfig(
        read_source="new" if read_source == "new" else "legacy",
        canary_users=_env_list("STORAGE_CANARY_USERS"),
        dual_write=_env_flag("STORAGE_DUAL_WRITE"),
        redis_url=(os.getenv("REDIS_URL") or "").strip() or None,
        database_url=(os.getenv("DATABASE_URL") or "").strip() or None,
        migration_token=(os.getenv("MIGRATION_ADMIN_TOKEN") or "").strip() or None,
        default_batch=clamp_batch(int(os.getenv("BACKFILL_DEFAULT_BATCH") or 50)),
        discovery="cursor" if discovery == "cursor" else "offset",
        attachments_dir=os.getenv("ATTACHMENTS_DIR") or "attachments",
        log_level=os.getenv("LOG_LEVEL") or "INFO",
        log_json=_env_flag("LOG_JSON"),
    )
