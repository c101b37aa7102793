"""Draft -> finalized transition checks, run before any recompute or write."""
import logging

from session_attendance.errors import AlreadyFinalized, SessionFinalized
from session_attendance.models.attendance import AttendanceSession

logger = logging.getLogger(__name__)


def ensure_mutable(session: AttendanceSession) -> None:
    if session.is_finalized:
        logger.warning(f"Rejected edit of finalized attendance session {session.id}")
        raise SessionFinalized(session.id)


def ensure_finalizable(session: AttendanceSession) -> None:
    if session.is_finalized:
        raise AlreadyFinalized(session.id)
