from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from session_attendance.api.deps import CurrentActor, InstructorOrAdmin
from session_attendance.models.attendance import (
    AttendanceRecord,
    AttendanceSession,
    RecordsPayload,
    SessionCreate,
    SessionDetailsUpdate,
    SessionType,
)
from session_attendance.models.statistics import (
    AttendanceAnalytics,
    BatchBreakdown,
    BatchStats,
    InstructorStats,
    StudentStats,
)
from session_attendance.rbac import MARKING_ROLES, can_view_instructor_data, has_any_role
from session_attendance.services import attendance_store, statistics
from session_attendance.services.export import export_sessions

router = APIRouter()


def _session_out(session: AttendanceSession) -> dict:
    return {
        **session.model_dump(mode="json", exclude={"id", "revision_id"}),
        "id": str(session.id),
    }


def _check_instructor_scope(actor, instructor_id: str) -> None:
    if not can_view_instructor_data(actor.id, actor.roles, instructor_id):
        raise HTTPException(
            status_code=403, detail="Access denied. You can only view your own reports."
        )


def _resolve_instructor(actor, instructor_id: Optional[str]) -> str:
    if not instructor_id or instructor_id == actor.id:
        return actor.id
    if not actor.is_admin:
        raise HTTPException(
            status_code=403, detail="Only admins can mark attendance for another instructor"
        )
    return instructor_id


@router.post("/sessions", status_code=status.HTTP_201_CREATED)
async def create_session(data: SessionCreate, actor: InstructorOrAdmin):
    """Create a session; 409 if the batch/instructor/date/type key is taken."""
    session = await attendance_store.create_session(
        data.batch_id,
        _resolve_instructor(actor, data.instructor_id),
        data.session_date,
        data.session_title,
        marked_by=actor.id,
        session_type=data.session_type,
        session_duration_minutes=data.session_duration_minutes,
        records=data.records,
        session_notes=data.session_notes,
        meeting_link=data.meeting_link,
        recording_link=data.recording_link,
        materials_shared=data.materials_shared,
    )
    return _session_out(session)


@router.post("/sessions/open")
async def open_session(data: SessionCreate, actor: InstructorOrAdmin):
    """Fetch the session for the key, creating it if needed."""
    session = await attendance_store.open_session(
        data.batch_id,
        _resolve_instructor(actor, data.instructor_id),
        data.session_date,
        data.session_title,
        marked_by=actor.id,
        session_type=data.session_type,
        session_duration_minutes=data.session_duration_minutes,
        records=data.records,
        session_notes=data.session_notes,
        meeting_link=data.meeting_link,
        recording_link=data.recording_link,
        materials_shared=data.materials_shared,
    )
    return _session_out(session)


@router.get("/sessions")
async def list_sessions(
    actor: InstructorOrAdmin,
    batch_id: Optional[str] = None,
    instructor_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    session_type: Optional[SessionType] = None,
):
    if not batch_id and not instructor_id:
        raise HTTPException(status_code=400, detail="batch_id or instructor_id is required")
    if instructor_id:
        _check_instructor_scope(actor, instructor_id)
    sessions = await attendance_store.list_sessions(
        batch_id=batch_id,
        instructor_id=instructor_id,
        start_date=start_date,
        end_date=end_date,
        session_type=session_type,
    )
    return [_session_out(s) for s in sessions]


@router.get("/sessions/lookup")
async def get_session_by_key(
    actor: InstructorOrAdmin,
    batch_id: str,
    instructor_id: str,
    session_date: date,
    session_type: Optional[SessionType] = None,
):
    session = await attendance_store.get_session_by_key(
        batch_id, instructor_id, session_date, session_type
    )
    return _session_out(session)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, actor: InstructorOrAdmin):
    return _session_out(await attendance_store.get_session(session_id))


@router.patch("/sessions/{session_id}")
async def update_session_details(session_id: str, data: SessionDetailsUpdate, actor: InstructorOrAdmin):
    """Edit title, duration, notes, links or materials of a draft session."""
    session = await attendance_store.update_session_details(session_id, actor.id, data)
    return _session_out(session)


@router.put("/sessions/{session_id}/records")
async def upsert_record(session_id: str, record: AttendanceRecord, actor: InstructorOrAdmin):
    """Mark (or re-mark) a single student."""
    session = await attendance_store.upsert_record(session_id, record, actor.id)
    return _session_out(session)


@router.post("/sessions/{session_id}/records/bulk")
async def bulk_upsert_records(session_id: str, data: RecordsPayload, actor: InstructorOrAdmin):
    """Mark many students at once; one invalid record rejects the whole batch."""
    session = await attendance_store.bulk_upsert_records(session_id, data.records, actor.id)
    return _session_out(session)


@router.put("/sessions/{session_id}/records/replace")
async def replace_records(session_id: str, data: RecordsPayload, actor: InstructorOrAdmin):
    session = await attendance_store.replace_records(session_id, data.records, actor.id)
    return _session_out(session)


@router.post("/sessions/{session_id}/finalize")
async def finalize_session(session_id: str, actor: InstructorOrAdmin):
    """Finalize/lock attendance for a session."""
    session = await attendance_store.finalize_session(session_id, actor.id)
    return _session_out(session)


@router.get("/stats/batch/{batch_id}", response_model=BatchStats)
async def get_batch_stats(
    batch_id: str,
    actor: InstructorOrAdmin,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    session_type: Optional[SessionType] = None,
):
    return await statistics.batch_stats(batch_id, start_date, end_date, session_type)


@router.get("/stats/batch/{batch_id}/students", response_model=list[StudentStats])
async def get_batch_student_summary(
    batch_id: str,
    actor: InstructorOrAdmin,
    student_ids: list[str] = Query(..., description="Roster of the batch"),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    return await statistics.batch_student_summary(batch_id, student_ids, start_date, end_date)


@router.get("/stats/student/{student_id}/batch/{batch_id}", response_model=StudentStats)
async def get_student_stats(
    student_id: str,
    batch_id: str,
    actor: CurrentActor,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    if actor.id != student_id and not has_any_role(actor.roles, MARKING_ROLES):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return await statistics.student_stats(student_id, batch_id, start_date, end_date)


@router.get("/stats/instructor/{instructor_id}", response_model=InstructorStats)
async def get_instructor_stats(
    instructor_id: str,
    actor: InstructorOrAdmin,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    _check_instructor_scope(actor, instructor_id)
    return await statistics.instructor_stats(instructor_id, start_date, end_date)


@router.get("/reports/instructor/{instructor_id}", response_model=list[BatchBreakdown])
async def get_instructor_report(
    instructor_id: str,
    actor: InstructorOrAdmin,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    """Per-batch session counts and mean attendance for an instructor."""
    _check_instructor_scope(actor, instructor_id)
    return await statistics.instructor_batch_breakdown(instructor_id, start_date, end_date)


@router.get("/analytics/instructor/{instructor_id}", response_model=AttendanceAnalytics)
async def get_attendance_analytics(
    instructor_id: str,
    actor: InstructorOrAdmin,
    period: str = Query("month", description="week, month or quarter"),
):
    _check_instructor_scope(actor, instructor_id)
    return await statistics.attendance_analytics(instructor_id, period)


@router.get("/export")
async def export_attendance(
    actor: InstructorOrAdmin,
    instructor_id: Optional[str] = None,
    batch_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    """Structured session rows for the export service; non-admins get their own sessions."""
    if instructor_id:
        _check_instructor_scope(actor, instructor_id)
    elif not actor.is_admin:
        instructor_id = actor.id
    rows = await export_sessions(
        instructor_id=instructor_id,
        batch_id=batch_id,
        start_date=start_date,
        end_date=end_date,
    )
    return {"total_records": len(rows), "data": rows}
