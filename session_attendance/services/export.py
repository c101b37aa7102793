"""Plain-data rows for the export service (CSV/Excel rendering happens there)."""
from datetime import date
from typing import Any, Optional

from session_attendance.services.attendance_store import list_sessions


async def export_sessions(
    *,
    instructor_id: Optional[str] = None,
    batch_id: Optional[str] = None,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
) -> list[dict[str, Any]]:
    """One dict per session, newest first, with the per-student rows nested under ``students``."""
    sessions = await list_sessions(
        instructor_id=instructor_id,
        batch_id=batch_id,
        start_date=start_date,
        end_date=end_date,
    )
    return [
        {
            "session_id": str(s.id),
            "session_date": s.session_date.isoformat(),
            "batch_id": s.batch_id,
            "instructor_id": s.instructor_id,
            "session_type": s.session_type.value,
            "session_title": s.session_title,
            "is_finalized": s.is_finalized,
            "total_students": s.total_students,
            "present_count": s.present_count,
            "absent_count": s.absent_count,
            "late_count": s.late_count,
            "excused_count": s.excused_count,
            "attendance_percentage": s.attendance_percentage,
            "students": [
                {
                    "student_id": r.student_id,
                    "status": r.status.value,
                    "join_time": r.join_time,
                    "leave_time": r.leave_time,
                    "duration_minutes": r.duration_minutes,
                }
                for r in s.records
            ],
        }
        for s in sessions
    ]
