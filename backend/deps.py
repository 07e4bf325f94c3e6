"""FastAPI dependencies that hand out the objects built at start-up."""
from fastapi import HTTPException, Request

from config import StorageConfig
from migrations import BackfillEngine, MigrationLedger, ParityChecker
from object_store import ObjectStore
from storage import StorageRouter


def get_config(request: Request) -> StorageConfig:
    return request.app.state.config


def get_router(request: Request) -> StorageRouter:
    return request.app.state.storage


def get_object_store(request: Request) -> ObjectStore:
    return request.app.state.object_store


def get_ledger(request: Request) -> MigrationLedger:
    ledger = request.app.state.ledger
    if ledger is None:
        raise HTTPException(status_code=503, detail="Relational backend is not configured")
    return ledger


def get_backfill_engine(request: Request) -> BackfillEngine:
    engine = request.app.state.backfill
    if engine is None:
        raise HTTPException(status_code=503, detail="Backfill needs both the legacy and relational backends")
    return engine


def get_parity_checker(request: Request) -> ParityChecker:
    checker = request.app.state.parity
    if checker is None:
        raise HTTPException(status_code=503, detail="Parity check needs both the legacy and relational backends")
    return checker
