# session.py
# Description: Records who is signed in to the desktop app, for sync authorization.
#
# Imports
#
# 3rd-party imports
from fastapi import APIRouter, Depends, status
#
# Local Imports
from quizdesk_Local_API.app.api.v1.API_Deps.Sync_Deps import get_session_service
from quizdesk_Local_API.app.api.v1.schemas.sync_schemas import SessionResponse, SessionStartRequest
from quizdesk_Local_API.app.core.AuthNZ.Session_Service import SessionService
#
#######################################################################################################################
#
# Functions:

router = APIRouter()


@router.post("/start", response_model=SessionResponse, status_code=status.HTTP_201_CREATED,
             summary="Record a signed-in user (credentials are verified by the caller)")
async def start_session(payload: SessionStartRequest,
                        sessions: SessionService = Depends(get_session_service)):
    session = sessions.start_session(payload.user_id, payload.role, payload.ttl_minutes)
    return SessionResponse(authenticated=True, session=session)


@router.post("/end", response_model=SessionResponse)
async def end_session(sessions: SessionService = Depends(get_session_service)):
    sessions.end_session()
    return SessionResponse(authenticated=False)


@router.get("", response_model=SessionResponse)
async def current_session(sessions: SessionService = Depends(get_session_service)):
    session = sessions.current_session()
    return SessionResponse(authenticated=session is not None, session=session)

#
# End of session.py
#######################################################################################################################
