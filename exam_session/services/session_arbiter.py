"""
Single-active-session arbitration.

The newest Start always wins: issuing a session overwrites the stored token,
and any client still holding the previous token finds out on its next
heartbeat. Clients poll; there is no push channel.
"""
import logging
import secrets

from sqlalchemy.orm import Session

from exam_session.core.errors import SessionReplaced
from exam_session.models.orm import Attempt
from exam_session.services.attempt_store import get_attempt

logger = logging.getLogger(__name__)

SESSION_REPLACED_MESSAGE = "Another session is active for this exam"


def new_token() -> str:
    return secrets.token_urlsafe(32)


def issue_session(attempt: Attempt) -> str:
    """Overwrite the attempt's session token. The caller commits."""
    replaced = attempt.session_token is not None
    attempt.session_token = new_token()
    if replaced:
        logger.info(f"Session replaced for attempt {attempt.id}")
    return attempt.session_token


def require_current(attempt: Attempt, presented_token: str) -> None:
    if attempt.session_token is not None and not secrets.compare_digest(attempt.session_token, presented_token or ""):
        raise SessionReplaced()


def heartbeat(db: Session, attempt_id: str, presented_token: str, student_id: str | None = None) -> dict:
    attempt = get_attempt(db, attempt_id, student_id)
    if attempt.is_frozen:
        return {"kicked": False, "reason": "already_submitted"}
    if attempt.session_token and not secrets.compare_digest(attempt.session_token, presented_token or ""):
        return {"kicked": True, "reason": "session_replaced", "message": SESSION_REPLACED_MESSAGE}
    return {"kicked": False}
