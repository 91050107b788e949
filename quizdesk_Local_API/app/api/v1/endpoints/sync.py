# sync.py
# Description: Command endpoints for triggering and inspecting sync, and for queueing local writes.
#
# Imports
import asyncio
from typing import Iterable, Optional, Set
#
# 3rd-party imports
from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
#
# Local Imports
from quizdesk_Local_API.app.api.v1.API_Deps.Sync_Deps import get_operation_queue, get_sync_engine
from quizdesk_Local_API.app.api.v1.schemas.sync_schemas import (
    QueueOperationRequest,
    QueueOperationResponse,
    ScopedSyncRequest,
    SyncResultResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
)
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import ConflictError, InputError, LocalStoreError
from quizdesk_Local_API.app.core.Sync.core import SyncEngine
from quizdesk_Local_API.app.core.Sync.exceptions import SyncInProgressError, SyncNotAuthorizedError
from quizdesk_Local_API.app.core.Sync.models import SyncOptions, SyncTrigger
from quizdesk_Local_API.app.core.Sync.operation_queue import OperationQueue
#
#######################################################################################################################
#
# Functions:

router = APIRouter()

QUESTION_TABLES = frozenset({"subjects", "questions"})
USER_TABLES = frozenset({"users"})


async def _run_sync(engine: SyncEngine, trigger: SyncTrigger, options: SyncOptions) -> SyncResultResponse:
    try:
        # Nothing arriving over HTTP counts as a system trigger, whatever kind it reports
        result = await engine.run_sync(trigger, options, external=True)
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except SyncNotAuthorizedError as e:
        logger.warning(f"Sync trigger refused: {e}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except InputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return SyncResultResponse.from_result(result)


def _scope_within(family: Set[str], requested: Optional[Iterable[str]]) -> frozenset:
    if requested is None:
        return frozenset(family)
    requested = frozenset(requested)
    outside = sorted(requested - family)
    if outside or not requested:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Scope must be a non-empty subset of {sorted(family)}; got extra {outside}")
    return requested


@router.post("/trigger",
             response_model=SyncResultResponse,
             summary="Run one sync pass over every syncable table")
async def trigger_sync(payload: Optional[SyncTriggerRequest] = None,
                       engine: SyncEngine = Depends(get_sync_engine)):
    trigger = payload.trigger if payload else SyncTrigger.MANUAL
    return await _run_sync(engine, trigger, SyncOptions())


@router.get("/status",
            response_model=SyncStatusResponse,
            summary="Last sync result, lock state and queue backlog")
async def get_sync_status(engine: SyncEngine = Depends(get_sync_engine)):
    try:
        sync_status = await asyncio.to_thread(engine.get_status)
    except LocalStoreError as e:
        logger.error(f"Could not read sync status: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Could not read sync status.")
    return SyncStatusResponse.from_status(sync_status)


@router.post("/queue-operation",
             response_model=QueueOperationResponse,
             status_code=status.HTTP_202_ACCEPTED,
             summary="Write a record locally and queue it for the remote store")
async def queue_operation(payload: QueueOperationRequest,
                          queue: OperationQueue = Depends(get_operation_queue)):
    try:
        op = await asyncio.to_thread(
            queue.record_local_change, payload.type, payload.table_name, payload.record_id, payload.data
        )
    except InputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except LocalStoreError as e:
        logger.error(f"Local write for {payload.table_name}/{payload.record_id} failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Local write failed: {e}")
    return QueueOperationResponse(accepted=True, operation_id=op.id, status=op.status.value)


@router.post("/questions",
             response_model=SyncResultResponse,
             summary="Sync subjects and questions")
async def sync_questions(payload: Optional[ScopedSyncRequest] = None,
                         engine: SyncEngine = Depends(get_sync_engine)):
    payload = payload or ScopedSyncRequest()
    options = SyncOptions(replace_existing=payload.replace_existing,
                          scope=_scope_within(QUESTION_TABLES, payload.scope))
    return await _run_sync(engine, SyncTrigger.MANUAL, options)


@router.post("/users",
             response_model=SyncResultResponse,
             summary="Sync user accounts")
async def sync_users(payload: Optional[ScopedSyncRequest] = None,
                     engine: SyncEngine = Depends(get_sync_engine)):
    payload = payload or ScopedSyncRequest()
    options = SyncOptions(replace_existing=payload.replace_existing,
                          scope=_scope_within(USER_TABLES, payload.scope))
    return await _run_sync(engine, SyncTrigger.MANUAL, options)

#
# End of sync.py
#######################################################################################################################
