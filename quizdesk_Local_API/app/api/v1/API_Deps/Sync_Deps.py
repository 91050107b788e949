# Sync_Deps.py
# Description: FastAPI dependencies handing out the store, queue, engine and session created at startup.
#
# Imports
from typing import Any
#
# 3rd-party Libraries
from fastapi import HTTPException, Request, status
from loguru import logger
#
# Local Imports
from quizdesk_Local_API.app.core.AuthNZ.Session_Service import SessionService
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import LocalStoreDB
from quizdesk_Local_API.app.core.Sync.core import SyncEngine
from quizdesk_Local_API.app.core.Sync.operation_queue import OperationQueue
#
#######################################################################################################################
#
# Functions:


def _from_app_state(request: Request, attribute: str) -> Any:
    instance = getattr(request.app.state, attribute, None)
    if instance is None:
        # Lifespan has not finished (or failed): migrations must succeed before the store is used.
        logger.error(f"Dependency '{attribute}' requested before the local store was opened.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                            detail="Local store is not ready.")
    return instance


async def get_local_store(request: Request) -> LocalStoreDB:
    return _from_app_state(request, "local_store")


async def get_operation_queue(request: Request) -> OperationQueue:
    return _from_app_state(request, "operation_queue")


async def get_sync_engine(request: Request) -> SyncEngine:
    return _from_app_state(request, "sync_engine")


async def get_session_service(request: Request) -> SessionService:
    return _from_app_state(request, "session_service")

#
# End of Sync_Deps.py
#######################################################################################################################
