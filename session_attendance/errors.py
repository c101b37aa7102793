"""Typed failures raised by the attendance store and statistics engine."""
from typing import Any


class AttendanceError(Exception):
    """Base class; ``status_code`` is the hint the web layer maps it to."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SessionNotFound(AttendanceError):
    status_code = 404

    def __init__(self, session_ref: Any):
        super().__init__(f"Attendance session not found: {session_ref}")
        self.session_ref = session_ref


class DuplicateSession(AttendanceError):
    status_code = 409

    def __init__(self, batch_id: str, instructor_id: str, session_date, session_type: str):
        super().__init__(
            f"Attendance already marked for batch {batch_id} on {session_date} "
            f"({session_type}) by instructor {instructor_id}"
        )
        self.batch_id = batch_id
        self.instructor_id = instructor_id
        self.session_date = session_date
        self.session_type = session_type


class AttendanceValidationError(AttendanceError):
    status_code = 422

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []


class SessionFinalized(AttendanceError):
    status_code = 409

    def __init__(self, session_id):
        super().__init__(f"Cannot update finalized attendance session {session_id}")
        self.session_id = session_id


class AlreadyFinalized(AttendanceError):
    status_code = 409

    def __init__(self, session_id):
        super().__init__(f"Attendance session {session_id} is already finalized")
        self.session_id = session_id


class ConcurrentModification(AttendanceError):
    status_code = 409

    def __init__(self, session_id, attempts: int):
        super().__init__(
            f"Attendance session {session_id} kept changing underneath the update "
            f"(gave up after {attempts} attempts)"
        )
        self.session_id = session_id
        self.attempts = attempts
