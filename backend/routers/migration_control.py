"""
Operator endpoints for the legacy-to-relational migration.

Every route requires the admin bearer token. Each backfill call processes one
batch and returns; call it again (same runId, or none to resume the latest
running run) until scanComplete is true.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from auth import require_migration_token
from config import StorageConfig
from deps import get_backfill_engine, get_config, get_ledger, get_parity_checker
from errors import DiscoveryError, LedgerError
from migrations import BackfillEngine, MigrationLedger, ParityChecker
from schemas import Entity

router = APIRouter(
    prefix="/internal/migrations",
    tags=["migrations"],
    dependencies=[Depends(require_migration_token)],
)


class BackfillRequest(Entity):
    run_id: Optional[str] = None
    batch_users: Optional[int] = None
    user: Optional[str] = None


class ParityRequest(Entity):
    run_id: Optional[str] = None
    users: Optional[list[str]] = None


@router.post("/backfill")
def run_backfill(
    req: Optional[BackfillRequest] = None,
    engine: BackfillEngine = Depends(get_backfill_engine),
):
    req = req or BackfillRequest()
    try:
        if req.user and req.user.strip():
            result = engine.backfill_single_user(req.user.strip())
        else:
            result = engine.run_batch(run_id=req.run_id, batch_size=req.batch_users)
    except DiscoveryError as e:
        raise HTTPException(status_code=502, detail=f"User discovery failed: {e}")
    except LedgerError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": not result.failed_users, **result.model_dump(by_alias=True)}


@router.post("/parity-check")
def run_parity_check(
    req: Optional[ParityRequest] = None,
    checker: ParityChecker = Depends(get_parity_checker),
    config: StorageConfig = Depends(get_config),
):
    """Compare both backends for the given users (default: the canary list)."""
    req = req or ParityRequest()
    users = req.users if req.users is not None else sorted(config.canary_users)
    users = [u.strip() for u in users if u and u.strip()]
    if not users:
        raise HTTPException(status_code=400, detail="No users to check")
    try:
        report = checker.check_users(users, run_id=req.run_id)
    except LedgerError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": report.mismatched_users == 0, **report.model_dump(by_alias=True)}


@router.get("/runs/latest")
def get_latest_run(kind: Optional[str] = None, ledger: MigrationLedger = Depends(get_ledger)):
    if kind is not None and kind not in ("backfill", "parity"):
        raise HTTPException(status_code=400, detail="kind must be backfill or parity")
    run = ledger.latest(kind)
    if run is None:
        raise HTTPException(status_code=404, detail="No migration runs yet")
    return run.model_dump(by_alias=True)


@router.get("/runs/{run_id}")
def get_run(run_id: str, ledger: MigrationLedger = Depends(get_ledger)):
    run = ledger.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run.model_dump(by_alias=True)
