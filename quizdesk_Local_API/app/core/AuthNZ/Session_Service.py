# Session_Service.py
# Description: Holds the signed-in user of the desktop app. Passed explicitly to whoever needs it.
#
# Imports
import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
#
# 3rd-Party Libraries
from loguru import logger
from pydantic import BaseModel, Field
#
# Local Imports
#
#######################################################################################################################
#
# Functions:


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    STUDENT = "STUDENT"


class SessionData(BaseModel):
    user_id: str = Field(..., min_length=1, description="Id of the signed-in user (users.id).")
    role: UserRole = Field(UserRole.STUDENT, description="Role the user signed in with.")
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = Field(None, description="UTC expiry; None means the session lasts until sign-out.")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or datetime.now(timezone.utc)) >= self.expires_at


class SessionService:
    """
    Tracks the current session for one running app instance.

    Credential checks happen before `start_session` is called; this service only records
    who is signed in and answers questions about it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._session: Optional[SessionData] = None

    def start_session(self, user_id: str, role: UserRole = UserRole.STUDENT,
                      ttl_minutes: Optional[int] = None) -> SessionData:
        expires_at = None
        if ttl_minutes is not None:
            expires_at = datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)
        session = SessionData(user_id=user_id, role=UserRole(role), expires_at=expires_at)
        with self._lock:
            self._session = session
        logger.info(f"Session started for user {user_id} ({session.role.value})")
        return session

    def end_session(self):
        with self._lock:
            ended, self._session = self._session, None
        if ended:
            logger.info(f"Session ended for user {ended.user_id}")

    def current_session(self) -> Optional[SessionData]:
        with self._lock:
            session = self._session
            if session is None or not session.is_expired():
                return session
            # Expiry check and clear share one lock hold
            self._session = None
        logger.info(f"Session for user {session.user_id} expired")
        return None

    def is_authenticated(self) -> bool:
        return self.current_session() is not None

    def has_role(self, role: UserRole) -> bool:
        session = self.current_session()
        return session is not None and session.role == role

#
# End of Session_Service.py
#######################################################################################################################
