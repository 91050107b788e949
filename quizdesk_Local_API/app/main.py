# main.py
# Description: FastAPI application exposing the local-first quiz store and its sync engine to the desktop UI.
#
# Imports
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional
#
# 3rd-party Libraries
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
#
# Local Imports
from quizdesk_Local_API.app.api.v1.endpoints.local_db import router as local_db_router
from quizdesk_Local_API.app.api.v1.endpoints.session import router as session_router
from quizdesk_Local_API.app.api.v1.endpoints.sync import router as sync_router
from quizdesk_Local_API.app.core.AuthNZ.Session_Service import SessionService
from quizdesk_Local_API.app.core.config import settings
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import open_local_store
from quizdesk_Local_API.app.core.Sync.core import SyncEngine
from quizdesk_Local_API.app.core.Sync.exceptions import SyncError
from quizdesk_Local_API.app.core.Sync.models import SyncTrigger
from quizdesk_Local_API.app.core.Sync.operation_queue import OperationQueue
from quizdesk_Local_API.app.core.Sync.scheduler import SyncScheduler
from quizdesk_Local_API.app.core.Sync.transport import HttpRemoteClient, OfflineRemoteClient, RemoteClient
#
########################################################################################################################
#
# Functions:


# --- Loguru Configuration with Intercept Handler ---

class InterceptHandler(logging.Handler):
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


logger.remove()
logger.add(
    sys.stderr,
    level=settings["LOG_LEVEL"],
    format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    colorize=True,
)

for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
    mod_logger = logging.getLogger(logger_name)
    mod_logger.handlers = [InterceptHandler()]
    mod_logger.propagate = False


def build_remote_client() -> RemoteClient:
    if settings["REMOTE_API_URL"]:
        return HttpRemoteClient(settings["REMOTE_API_URL"], settings["REMOTE_API_KEY"],
                                timeout=settings["REMOTE_TIMEOUT_SECONDS"])
    logger.warning("No remote store configured; running offline. Local writes stay queued.")
    return OfflineRemoteClient()


async def _startup_sync(engine: SyncEngine):
    try:
        result = await engine.run_sync(SyncTrigger.STARTUP)
        logger.info(f"Startup sync done: pushed={result.pushed} pulled={result.pulled} errors={len(result.errors)}")
    except SyncError as e:
        logger.warning(f"Startup sync did not run: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Migrations run before anything else can reach the store; a failure aborts startup.
    store = open_local_store(settings["LOCAL_DB_PATH"], settings["CLIENT_ID"])

    if settings["INTEGRITY_CHECK_ON_STARTUP"]:
        report = store.check_integrity()
        app.state.integrity_report = report
        if not report.ok:
            logger.error(f"Local store failed its integrity check: {report.messages}")

    queue = OperationQueue(store)
    queue.recover_interrupted()
    remote = build_remote_client()
    session_service = SessionService()
    engine = SyncEngine(
        store, queue, remote, session_service,
        batch_size=settings["SYNC_BATCH_SIZE"],
        committed_retention_days=settings["COMMITTED_RETENTION_DAYS"],
    )

    app.state.local_store = store
    app.state.operation_queue = queue
    app.state.session_service = session_service
    app.state.sync_engine = engine

    startup_task: Optional[asyncio.Task] = None
    if settings["SYNC_ON_STARTUP"]:
        startup_task = asyncio.create_task(_startup_sync(engine))

    scheduler: Optional[SyncScheduler] = None
    if settings["SCHEDULED_SYNC_INTERVAL_SECONDS"] > 0:
        scheduler = SyncScheduler(engine, settings["SCHEDULED_SYNC_INTERVAL_SECONDS"])
        scheduler.start()

    yield

    if scheduler is not None:
        await scheduler.stop()
    if startup_task is not None and not startup_task.done():
        # A pass runs to the end of its batch; wait for it rather than cutting it off
        await startup_task
    # Last push of quiz attempts; bounded so a dead network cannot hold up shutdown
    await engine.flush_on_close(settings["APP_CLOSE_SYNC_TIMEOUT_SECONDS"])
    if isinstance(remote, HttpRemoteClient):
        remote.close()
    logger.info("App Shutdown: Closing local store connections")
    store.close_all_connections()


app = FastAPI(
    title="quizdesk local API",
    version="0.1.0",
    description="Local-first data layer for the quizdesk desktop app: migrations, operation queue and sync.",
    lifespan=lifespan,
)

origins = settings["ALLOWED_ORIGINS"] if settings["ALLOWED_ORIGINS"] else ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    return {"message": "quizdesk local API is running."}


# Router for sync commands
app.include_router(sync_router, prefix="/api/v1/sync", tags=["sync"])

# Router for local store maintenance commands
app.include_router(local_db_router, prefix="/api/v1/db", tags=["local-db"])

# Router for the signed-in session
app.include_router(session_router, prefix="/api/v1/session", tags=["session"])


@app.get("/health")
async def health():
    return {"status": "healthy"}

#
# End of main.py
########################################################################################################################
