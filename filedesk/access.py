"""
Access control for FileDesk.
A single guard decides every request from the session's role and, for
state-changing requests, the CSRF token bound to that session.
"""
import enum
import hmac
import logging
from typing import Optional

from filedesk.errors import AuthenticationFailure, AuthorizationFailure
from filedesk.models import Role, UserSession

logger = logging.getLogger("filedesk.access")


class AccessDecision(enum.Enum):
    ALLOWED = "allowed"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"

    @property
    def allowed(self) -> bool:
        return self is AccessDecision.ALLOWED


def csrf_matches(user_session: UserSession, csrf_token: Optional[str]) -> bool:
    if not isinstance(csrf_token, str) or not csrf_token:
        return False
    return hmac.compare_digest(user_session.csrf_token.encode('utf-8'), csrf_token.encode('utf-8'))


def authorize(user_session: Optional[UserSession], required_role: Optional[Role],
              csrf_token: Optional[str] = None, mutating: bool = False) -> AccessDecision:
    """
    Decide whether a request may proceed.

    required_role=None admits any authenticated role. A mutating request is
    forbidden unless csrf_token equals the session's token, whatever the role.
    """
    if user_session is None:
        return AccessDecision.UNAUTHENTICATED

    if required_role is not None and user_session.role != required_role:
        return AccessDecision.FORBIDDEN

    if mutating and not csrf_matches(user_session, csrf_token):
        return AccessDecision.FORBIDDEN

    return AccessDecision.ALLOWED


def require(user_session: Optional[UserSession], required_role: Optional[Role],
            csrf_token: Optional[str] = None, mutating: bool = False) -> UserSession:
    """Like authorize(), but raises on denial and returns the session otherwise."""
    decision = authorize(user_session, required_role, csrf_token=csrf_token, mutating=mutating)

    if decision is AccessDecision.UNAUTHENTICATED:
        raise AuthenticationFailure()

    if decision is AccessDecision.FORBIDDEN:
        logger.warning(
            "access_denied username=%s role=%s required=%s mutating=%s",
            user_session.username,
            user_session.role.value,
            required_role.value if required_role else "any",
            mutating,
        )
        raise AuthorizationFailure()

    return user_session
