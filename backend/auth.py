"""
Request identity.

Application routes trust the X-User-Id header set by the fronting proxy.
The migration control surface requires the shared admin token as a bearer
credential.
"""
import secrets

import structlog
from fastapi import Depends, Header, HTTPException

from config import StorageConfig
from deps import get_config
from errors import ConfigurationError, MigrationAuthError

logger = structlog.get_logger(__name__)


def require_user_id(user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    uid = (user_id or "").strip()
    if not uid:
        raise HTTPException(status_code=400, detail="Missing X-User-Id header")
    return uid


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[7:].strip() or None


def check_migration_token(config: StorageConfig, authorization: str | None) -> None:
    """Raise unless authorization carries the configured admin token."""
    if not config.migration_token:
        raise ConfigurationError("MIGRATION_ADMIN_TOKEN is not configured")
    token = _bearer_token(authorization)
    if token is None:
        raise MigrationAuthError("Missing bearer token", status_code=401)
    if not secrets.compare_digest(token.encode(), config.migration_token.encode()):
        raise MigrationAuthError("Invalid bearer token", status_code=403)


def require_migration_token(
    authorization: str | None = Header(default=None),
    config: StorageConfig = Depends(get_config),
) -> None:
    try:
        check_migration_token(config, authorization)
    except MigrationAuthError as e:
        logger.warning("migration.auth_rejected", status=e.status_code, reason=str(e))
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))
