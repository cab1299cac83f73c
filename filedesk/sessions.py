"""
Server-side session management for FileDesk.
Sessions live in the database, are addressed by an opaque id passed on every
request and carry the CSRF token bound to them.
"""
import logging
import re
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from filedesk.models import User, UserSession, utcnow
from filedesk.repositories import SessionRepository
from filedesk.utils import fingerprint, get_session_lifetime_hours

logger = logging.getLogger("filedesk.sessions")

TOKEN_BYTES = 32
SESSION_ID_PATTERN = re.compile(r'^[0-9a-f]{64}$')


def new_token() -> str:
    return secrets.token_hex(TOKEN_BYTES)


def is_well_formed(session_id) -> bool:
    return isinstance(session_id, str) and bool(SESSION_ID_PATTERN.match(session_id))


class SessionManager:
    """Creates, validates and destroys sessions."""

    def __init__(self, db: Session, lifetime: Optional[timedelta] = None):
        self.sessions = SessionRepository(db)
        self.lifetime = lifetime or timedelta(hours=get_session_lifetime_hours())

    def create(self, identity: User, previous_session_id: Optional[str] = None) -> UserSession:
        """
        Start a session for a verified identity.
        A session the client already holds is destroyed first, so a login never
        keeps using an identifier issued before authentication.
        """
        if previous_session_id:
            self.destroy(previous_session_id)

        now = utcnow()
        user_session = UserSession(
            session_id=new_token(),
            username=identity.username,
            role=identity.role,
            csrf_token=new_token(),
            created_at=now,
            expires_at=now + self.lifetime,
        )
        self.sessions.insert(user_session)
        logger.info(
            "session_created username=%s role=%s session=%s replaced=%s",
            identity.username,
            identity.role.value,
            fingerprint(user_session.session_id),
            fingerprint(previous_session_id),
        )
        return user_session

    def validate(self, session_id) -> Optional[UserSession]:
        """Return the live session for *session_id*, or None. Fails closed."""
        if not is_well_formed(session_id):
            return None

        user_session = self.sessions.get(session_id)
        if user_session is None:
            return None

        if user_session.is_expired():
            logger.info("session_expired username=%s session=%s", user_session.username, fingerprint(session_id))
            self.sessions.delete(session_id)
            return None

        return user_session

    def destroy(self, session_id) -> None:
        """Remove a session. Destroying an unknown session is a no-op."""
        if not is_well_formed(session_id):
            return
        if self.sessions.delete(session_id):
            logger.info("session_destroyed session=%s", fingerprint(session_id))

    def destroy_all(self, username: str, commit: bool = True) -> int:
        """Revoke every session belonging to *username*."""
        revoked = self.sessions.delete_by_username(username, commit=commit)
        if revoked:
            logger.info("sessions_revoked username=%s count=%d", username, revoked)
        return revoked
