"""
Focus Store – Backend API
Start with: uvicorn main:app --reload

Serves the productivity data API over two storage backends (legacy Redis
key-blobs and the relational store) and the operator endpoints that migrate
data between them.
"""
from typing import Any, Callable, Optional

import redis
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine

from config import StorageConfig, load_config
from db import init_db, make_engine
from errors import ConfigurationError, EntityNotFound, FocusStoreError, StorageUnavailable
from logging_config import setup_logging
from migrations import BackfillEngine, MigrationLedger, ParityChecker, make_discovery
from object_store import FileObjectStore, ObjectStore
from routers import migration_control, pomodoros, projects, sessions, settings, todos
from storage import DualWriteFailure, KeyBlobAdapter, RelationalAdapter, StorageRouter

logger = structlog.get_logger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorageUnavailable)
    def storage_unavailable(_request: Request, exc: StorageUnavailable):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.exception_handler(ConfigurationError)
    def configuration_error(_request: Request, exc: ConfigurationError):
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(EntityNotFound)
    def not_found(_request: Request, exc: EntityNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(FocusStoreError)
    def store_error(_request: Request, exc: FocusStoreError):
        logger.error("request_failed", error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(status_code=500, content={"detail": str(exc)})


def create_app(
    config: Optional[StorageConfig] = None,
    *,
    redis_client: Any = None,
    engine: Optional[Engine] = None,
    object_store: Optional[ObjectStore] = None,
    on_dual_write_failure: Optional[Callable[[DualWriteFailure], None]] = None,
) -> FastAPI:
    """Build the app. Backends come from config unless passed in directly."""
    config = config or load_config()
    setup_logging(config.log_level, config.log_json)

    if redis_client is None and config.redis_url:
        redis_client = redis.from_url(config.redis_url, decode_responses=True)
    if engine is None and config.database_url:
        engine = make_engine(config.database_url)
    if engine is not None:
        init_db(engine)

    legacy = KeyBlobAdapter(redis_client) if redis_client is not None else None
    new = RelationalAdapter(engine) if engine is not None else None
    ledger = MigrationLedger(engine) if engine is not None else None

    app = FastAPI(
        title="Focus Store API",
        description="Focus Flow productivity data with a live legacy-to-relational migration",
        version="0.2.0",
    )

    # Allow frontend (Next.js) to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.storage = StorageRouter(config, legacy=legacy, new=new, on_dual_write_failure=on_dual_write_failure)
    app.state.object_store = object_store or FileObjectStore(config.attachments_dir)
    app.state.ledger = ledger
    app.state.backfill = None
    app.state.parity = None
    if legacy is not None and new is not None:
        app.state.backfill = BackfillEngine(
            legacy, new, ledger, make_discovery(config.discovery, redis_client), default_batch=config.default_batch
        )
        app.state.parity = ParityChecker(legacy, new, ledger)

    _register_error_handlers(app)
    app.include_router(todos.router)
    app.include_router(projects.router)
    app.include_router(sessions.router)
    app.include_router(pomodoros.router)
    app.include_router(settings.router)
    app.include_router(migration_control.router)

    @app.get("/health")
    def health():
        """Check that the API is running. Frontend can call this first."""
        storage = app.state.storage
        return {
            "status": "ok" if storage.has_any_storage() else "degraded",
            "legacy": storage.legacy is not None,
            "relational": storage.new is not None,
            "dualWrite": config.dual_write,
            "readSource": config.read_source,
        }

    @app.get("/")
    def root():
        """Root welcome."""
        return {"app": "Focus Store", "docs": "/docs"}

    logger.info(
        "app_started",
        legacy=legacy is not None,
        relational=new is not None,
        read_source=config.read_source,
        dual_write=config.dual_write,
        canaries=len(config.canary_users),
    )
    return app


app = create_app()
