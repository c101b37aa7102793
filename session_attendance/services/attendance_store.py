"""Attendance session store: create, per-record upserts, finalize and lookups.

Every mutation is a full read-modify-write of the session document:
load, guard, apply, recompute derived counters, then save. Saves are
conditioned on the revision that was read (``use_revision``), so a
concurrent writer makes the save fail instead of silently losing its
update; the store then retries the whole cycle from a fresh read.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable, Iterable, Mapping, Optional

from beanie import PydanticObjectId
from beanie.exceptions import RevisionIdWasChanged
from pydantic import BaseModel, ValidationError
from pymongo.errors import DuplicateKeyError

from session_attendance.config import settings
from session_attendance.errors import (
    AttendanceValidationError,
    ConcurrentModification,
    DuplicateSession,
    SessionNotFound,
)
from session_attendance.models.attendance import (
    AttendanceRecord,
    AttendanceSession,
    SessionDetailsUpdate,
    SessionType,
    SharedMaterial,
)
from session_attendance.services.lifecycle import ensure_finalizable, ensure_mutable
from session_attendance.services.summary import compute_summary, records_by_student

logger = logging.getLogger(__name__)

RecordInput = AttendanceRecord | Mapping[str, Any]


def safe_object_id(value: Any) -> PydanticObjectId | None:
    if isinstance(value, PydanticObjectId):
        return value
    if not value:
        return None
    try:
        return PydanticObjectId(str(value))
    except Exception:
        return None


def _as_date(value: date | str | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise AttendanceValidationError(f"Invalid date format (YYYY-MM-DD): {value}")


def _as_session_type(value: SessionType | str) -> SessionType:
    try:
        return SessionType(value)
    except ValueError:
        raise AttendanceValidationError(f"Invalid session type: {value}")


def _error_list(exc: ValidationError, prefix: tuple = ()) -> list[dict]:
    return [
        {**err, "loc": (*prefix, *err["loc"])}
        for err in exc.errors(include_url=False, include_context=False)
    ]


def validate_records(records: Iterable[RecordInput]) -> list[AttendanceRecord]:
    """Validate every record up front; one bad record rejects the whole list."""
    validated: list[AttendanceRecord] = []
    errors: list[dict] = []
    for index, raw in enumerate(records):
        data = raw.model_dump() if isinstance(raw, BaseModel) else raw
        try:
            validated.append(AttendanceRecord.model_validate(data))
        except ValidationError as exc:
            errors.extend(_error_list(exc, ("records", index)))
    if errors:
        raise AttendanceValidationError(f"{len(errors)} invalid attendance record field(s)", errors)
    return validated


def session_filter(
    *,
    batch_id: Optional[str] = None,
    instructor_id: Optional[str] = None,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
    session_type: SessionType | str | None = None,
) -> dict:
    """Mongo filter for a session scope; both date bounds are inclusive and optional."""
    query: dict[str, Any] = {}
    if batch_id:
        query["batch_id"] = batch_id
    if instructor_id:
        query["instructor_id"] = instructor_id
    date_range = {}
    if start_date:
        date_range["$gte"] = _as_date(start_date)
    if end_date:
        date_range["$lte"] = _as_date(end_date)
    if date_range:
        query["session_date"] = date_range
    if session_type:
        query["session_type"] = _as_session_type(session_type).value
    return query


def apply_summary(session: AttendanceSession) -> None:
    summary = compute_summary(session.records)
    for field, value in summary._asdict().items():
        setattr(session, field, value)


async def get_session(session_id: Any) -> AttendanceSession:
    oid = safe_object_id(session_id)
    session = await AttendanceSession.get(oid) if oid else None
    if not session:
        raise SessionNotFound(session_id)
    return session


async def _find_by_key(
    batch_id: str,
    instructor_id: str,
    session_date: date,
    session_type: SessionType | None = None,
) -> AttendanceSession | None:
    query: dict[str, Any] = {
        "batch_id": batch_id,
        "instructor_id": instructor_id,
        "session_date": session_date,
    }
    if session_type:
        query["session_type"] = session_type.value
    return await AttendanceSession.find(query).sort("marked_at").first_or_none()


async def get_session_by_key(
    batch_id: str,
    instructor_id: str,
    session_date: date | str,
    session_type: SessionType | str | None = None,
) -> AttendanceSession:
    """Look up by natural key; without a session type the earliest-marked match wins."""
    d = _as_date(session_date)
    st = _as_session_type(session_type) if session_type else None
    session = await _find_by_key(batch_id, instructor_id, d, st)
    if not session:
        raise SessionNotFound(f"{batch_id}/{instructor_id}/{d}" + (f"/{st.value}" if st else ""))
    return session


async def list_sessions(
    *,
    batch_id: Optional[str] = None,
    instructor_id: Optional[str] = None,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
    session_type: SessionType | str | None = None,
) -> list[AttendanceSession]:
    query = session_filter(
        batch_id=batch_id,
        instructor_id=instructor_id,
        start_date=start_date,
        end_date=end_date,
        session_type=session_type,
    )
    return await AttendanceSession.find(query).sort("-session_date", "-marked_at").to_list()


async def create_session(
    batch_id: str,
    instructor_id: str,
    session_date: date | str,
    session_title: str,
    *,
    marked_by: str,
    session_type: SessionType | str = SessionType.LIVE_CLASS,
    session_duration_minutes: int = 60,
    records: Iterable[RecordInput] = (),
    session_notes: str = "",
    meeting_link: Optional[str] = None,
    recording_link: Optional[str] = None,
    materials_shared: Iterable[SharedMaterial | Mapping[str, Any]] = (),
) -> AttendanceSession:
    """Create a session for (batch, instructor, date, type); raises DuplicateSession if taken.

    The natural key is checked before the records and other fields are validated.
    """
    session_date = _as_date(session_date)
    session_type = _as_session_type(session_type)
    duplicate = DuplicateSession(batch_id, instructor_id, session_date, session_type.value)
    if await _find_by_key(batch_id, instructor_id, session_date, session_type):
        raise duplicate

    validated = list(records_by_student(validate_records(records)).values())
    now = datetime.utcnow()
    try:
        session = AttendanceSession(
            batch_id=batch_id,
            instructor_id=instructor_id,
            session_date=session_date,
            session_type=session_type,
            session_title=session_title,
            session_duration_minutes=session_duration_minutes,
            records=validated,
            session_notes=session_notes,
            meeting_link=meeting_link,
            recording_link=recording_link,
            materials_shared=list(materials_shared),
            marked_by=marked_by,
            marked_at=now,
            last_updated_by=marked_by,
            last_updated_at=now,
        )
    except ValidationError as exc:
        raise AttendanceValidationError("Invalid attendance session", _error_list(exc))

    apply_summary(session)
    try:
        await session.insert()
    except DuplicateKeyError:
        # lost a race against another create for the same key
        raise duplicate
    logger.info(
        f"Attendance session {session.id} created for batch {batch_id} on "
        f"{session.session_date} by {marked_by}"
    )
    return session


async def open_session(
    batch_id: str,
    instructor_id: str,
    session_date: date | str,
    session_title: str,
    *,
    marked_by: str,
    session_type: SessionType | str = SessionType.LIVE_CLASS,
    records: Iterable[RecordInput] = (),
    **extra: Any,
) -> AttendanceSession:
    """Create-or-fetch by natural key.

    Session details in ``extra`` only apply when the session is created. Records
    given for an existing session are upserted into it, so they are guarded and
    validated like any other record write.
    """
    records = list(records)
    try:
        existing = await get_session_by_key(batch_id, instructor_id, session_date, session_type)
    except SessionNotFound:
        try:
            return await create_session(
                batch_id,
                instructor_id,
                session_date,
                session_title,
                marked_by=marked_by,
                session_type=session_type,
                records=records,
                **extra,
            )
        except DuplicateSession:
            existing = await get_session_by_key(batch_id, instructor_id, session_date, session_type)
    if not records:
        return existing
    return await bulk_upsert_records(existing.id, records, marked_by)


async def _mutate(
    session_id: Any,
    actor_id: str,
    apply: Callable[[AttendanceSession], None],
    guard: Callable[[AttendanceSession], None] = ensure_mutable,
) -> AttendanceSession:
    """Load, guard, apply, recompute and save; ``apply`` may raise to abort with nothing written."""
    attempts = settings.attendance_write_retries
    for attempt in range(1, attempts + 1):
        session = await get_session(session_id)
        guard(session)
        apply(session)
        apply_summary(session)
        session.last_updated_by = actor_id
        session.last_updated_at = datetime.utcnow()
        try:
            await session.save()
        except RevisionIdWasChanged:
            logger.warning(
                f"Attendance session {session_id} changed during update "
                f"(attempt {attempt}/{attempts}), retrying"
            )
            continue
        return session
    raise ConcurrentModification(session_id, attempts)


async def upsert_record(session_id: Any, record: RecordInput, actor_id: str) -> AttendanceSession:
    """Replace the student's record in place, or append it if the student has none."""
    return await bulk_upsert_records(session_id, [record], actor_id)


async def bulk_upsert_records(
    session_id: Any,
    records: Iterable[RecordInput],
    actor_id: str,
) -> AttendanceSession:
    """Upsert many records in one write; nothing is written if any record is invalid.

    The session is loaded and guarded before the records are validated, so a
    missing or finalized session wins over a bad record.
    """
    records = list(records)

    def apply(session: AttendanceSession) -> None:
        keyed = records_by_student(session.records)
        keyed.update(records_by_student(validate_records(records)))
        session.records = list(keyed.values())

    return await _mutate(session_id, actor_id, apply)


async def replace_records(
    session_id: Any,
    records: Iterable[RecordInput],
    actor_id: str,
) -> AttendanceSession:
    """Swap the whole record list (deduped by student_id, last one wins)."""
    records = list(records)

    def apply(session: AttendanceSession) -> None:
        session.records = list(records_by_student(validate_records(records)).values())

    return await _mutate(session_id, actor_id, apply)


def _details_update(changes: SessionDetailsUpdate | Mapping[str, Any]) -> dict[str, Any]:
    if not isinstance(changes, SessionDetailsUpdate):
        try:
            changes = SessionDetailsUpdate.model_validate(changes)
        except ValidationError as exc:
            raise AttendanceValidationError("Invalid session details", _error_list(exc))
    update_data = changes.model_dump(exclude_unset=True)
    for required in ("session_title", "session_duration_minutes"):
        if update_data.get(required, 0) is None:
            del update_data[required]
    if "materials_shared" in update_data:
        update_data["materials_shared"] = changes.materials_shared
    return update_data


async def update_session_details(
    session_id: Any,
    actor_id: str,
    changes: SessionDetailsUpdate | Mapping[str, Any],
) -> AttendanceSession:
    def apply(session: AttendanceSession) -> None:
        for key, value in _details_update(changes).items():
            setattr(session, key, value)

    return await _mutate(session_id, actor_id, apply)


async def finalize_session(session_id: Any, actor_id: str) -> AttendanceSession:
    """Lock the session; a second finalize raises AlreadyFinalized."""

    def apply(session: AttendanceSession) -> None:
        session.is_finalized = True
        session.finalized_at = datetime.utcnow()

    session = await _mutate(session_id, actor_id, apply, guard=ensure_finalizable)
    logger.info(f"Attendance session {session.id} finalized by {actor_id}")
    return session
