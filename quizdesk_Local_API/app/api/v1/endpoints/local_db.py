# local_db.py
# Description: Command endpoints for local store maintenance (emptiness, integrity, backup).
#
# Imports
import asyncio
#
# 3rd-party imports
from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger
#
# Local Imports
from quizdesk_Local_API.app.api.v1.API_Deps.Sync_Deps import get_local_store
from quizdesk_Local_API.app.api.v1.schemas.sync_schemas import (
    BackupRequest,
    BackupResponse,
    IntegrityCheckResponse,
    LocalDBEmptyResponse,
)
from quizdesk_Local_API.app.core.DB_Management.Local_Store_DB import LocalStoreDB, LocalStoreError
#
#######################################################################################################################
#
# Functions:

router = APIRouter()


@router.get("/is-local-db-empty", response_model=LocalDBEmptyResponse)
async def is_local_db_empty(store: LocalStoreDB = Depends(get_local_store)):
    try:
        is_empty = await asyncio.to_thread(store.is_local_db_empty)
    except LocalStoreError as e:
        logger.error(f"Emptiness check failed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return LocalDBEmptyResponse(is_empty=is_empty)


@router.get("/integrity-check", response_model=IntegrityCheckResponse)
async def integrity_check(store: LocalStoreDB = Depends(get_local_store)):
    """Reports the result of SQLite's integrity and foreign key checks. Nothing is repaired."""
    report = await asyncio.to_thread(store.check_integrity)
    return IntegrityCheckResponse.from_report(report)


@router.post("/backup", response_model=BackupResponse)
async def backup(payload: BackupRequest, store: LocalStoreDB = Depends(get_local_store)):
    result = await asyncio.to_thread(store.backup_database, payload.destination)
    return BackupResponse.from_result(result)

#
# End of local_db.py
#######################################################################################################################
