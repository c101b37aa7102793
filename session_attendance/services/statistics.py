"""Read-only attendance rollups computed with aggregation pipelines.

Batch and instructor rollups average per-session figures (every session
weighs the same regardless of size). Student rollups tally the student's
own records and compute one percentage from that tally. An empty scope
yields zeroed stats rather than an error.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from session_attendance.models.attendance import AttendanceSession, AttendanceStatus, SessionType
from session_attendance.models.statistics import (
    AnalyticsSummary,
    AttendanceAnalytics,
    BatchBreakdown,
    BatchStats,
    DailyStats,
    InstructorStats,
    SessionTypeStats,
    StudentStats,
)
from session_attendance.services.attendance_store import session_filter
from session_attendance.services.summary import attendance_percentage

logger = logging.getLogger(__name__)

ANALYTICS_PERIODS = {"week": 7, "month": 30, "quarter": 90}

_COUNTER_TOTALS = {
    "total_present": {"$sum": "$present_count"},
    "total_absent": {"$sum": "$absent_count"},
    "total_late": {"$sum": "$late_count"},
    "total_excused": {"$sum": "$excused_count"},
}


def _mean(value: Optional[float]) -> float:
    return round(value or 0, 2)


async def _aggregate(query: dict, pipeline: list[dict]) -> list[dict]:
    return await AttendanceSession.find(query).aggregate(pipeline).to_list()


async def batch_stats(
    batch_id: str,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
    session_type: SessionType | str | None = None,
) -> BatchStats:
    query = session_filter(
        batch_id=batch_id, start_date=start_date, end_date=end_date, session_type=session_type
    )
    rows = await _aggregate(
        query,
        [
            {
                "$group": {
                    "_id": None,
                    "session_count": {"$sum": 1},
                    "avg_attendance_percentage": {"$avg": "$attendance_percentage"},
                    "avg_total_students": {"$avg": "$total_students"},
                    **_COUNTER_TOTALS,
                }
            }
        ],
    )
    if not rows:
        return BatchStats(batch_id=batch_id)
    row = rows[0]
    return BatchStats(
        batch_id=batch_id,
        session_count=row["session_count"],
        avg_attendance_percentage=_mean(row["avg_attendance_percentage"]),
        avg_total_students=_mean(row["avg_total_students"]),
        total_present=row["total_present"],
        total_absent=row["total_absent"],
        total_late=row["total_late"],
        total_excused=row["total_excused"],
    )


async def student_stats(
    student_id: str,
    batch_id: str,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
) -> StudentStats:
    """Tally one student's records across a batch.

    Sessions without a record for the student are left out entirely, so an
    unmarked session is not an absence.
    """
    query = session_filter(batch_id=batch_id, start_date=start_date, end_date=end_date)
    query["records.student_id"] = student_id
    rows = await _aggregate(
        query,
        [
            {"$unwind": "$records"},
            {"$match": {"records.student_id": student_id}},
            {"$group": {"_id": "$records.status", "count": {"$sum": 1}}},
        ],
    )
    tally = {AttendanceStatus(row["_id"]): row["count"] for row in rows}
    present = tally.get(AttendanceStatus.PRESENT, 0)
    absent = tally.get(AttendanceStatus.ABSENT, 0)
    late = tally.get(AttendanceStatus.LATE, 0)
    excused = tally.get(AttendanceStatus.EXCUSED, 0)
    total = present + absent + late + excused
    return StudentStats(
        student_id=student_id,
        batch_id=batch_id,
        total_sessions=total,
        present_count=present,
        absent_count=absent,
        late_count=late,
        excused_count=excused,
        attendance_percentage=attendance_percentage(present + late + excused, total),
    )


async def instructor_stats(
    instructor_id: str,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
) -> InstructorStats:
    query = session_filter(instructor_id=instructor_id, start_date=start_date, end_date=end_date)
    rows = await _aggregate(
        query,
        [
            {
                "$group": {
                    "_id": None,
                    "session_count": {"$sum": 1},
                    "avg_attendance_percentage": {"$avg": "$attendance_percentage"},
                    "total_students_across_sessions": {"$sum": "$total_students"},
                    **_COUNTER_TOTALS,
                }
            }
        ],
    )
    if not rows:
        return InstructorStats(instructor_id=instructor_id)
    row = rows[0]
    return InstructorStats(
        instructor_id=instructor_id,
        session_count=row["session_count"],
        avg_attendance_percentage=_mean(row["avg_attendance_percentage"]),
        total_students_across_sessions=row["total_students_across_sessions"],
        total_present=row["total_present"],
        total_absent=row["total_absent"],
        total_late=row["total_late"],
        total_excused=row["total_excused"],
    )


async def batch_student_summary(
    batch_id: str,
    student_ids: Iterable[str],
    start_date: date | str | None = None,
    end_date: date | str | None = None,
) -> list[StudentStats]:
    """Per-student stats for a roster supplied by the caller (order kept, duplicates dropped)."""
    summary = []
    for student_id in dict.fromkeys(student_ids):
        summary.append(await student_stats(student_id, batch_id, start_date, end_date))
    return summary


async def instructor_batch_breakdown(
    instructor_id: str,
    start_date: date | str | None = None,
    end_date: date | str | None = None,
) -> list[BatchBreakdown]:
    query = session_filter(instructor_id=instructor_id, start_date=start_date, end_date=end_date)
    rows = await _aggregate(
        query,
        [
            {
                "$group": {
                    "_id": "$batch_id",
                    "session_count": {"$sum": 1},
                    "avg_attendance_percentage": {"$avg": "$attendance_percentage"},
                }
            },
            {"$sort": {"_id": 1}},
        ],
    )
    return [
        BatchBreakdown(
            batch_id=row["_id"],
            session_count=row["session_count"],
            avg_attendance_percentage=_mean(row["avg_attendance_percentage"]),
        )
        for row in rows
    ]


def _as_plain_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


async def attendance_analytics(
    instructor_id: str,
    period: str = "month",
    today: Optional[date] = None,
) -> AttendanceAnalytics:
    """Daily and per-session-type rollups over the trailing week, month or quarter."""
    days = ANALYTICS_PERIODS.get(period)
    if days is None:
        logger.warning(f"Unknown analytics period {period!r}, falling back to month")
        period, days = "month", ANALYTICS_PERIODS["month"]
    end = today or date.today()
    start = end - timedelta(days=days)
    query = session_filter(instructor_id=instructor_id, start_date=start, end_date=end)

    daily_rows = await _aggregate(
        query,
        [
            {
                "$group": {
                    "_id": "$session_date",
                    "session_count": {"$sum": 1},
                    "avg_attendance_percentage": {"$avg": "$attendance_percentage"},
                    "total_students": {"$sum": "$total_students"},
                    "total_present": {"$sum": "$present_count"},
                }
            },
            {"$sort": {"_id": 1}},
        ],
    )
    type_rows = await _aggregate(
        query,
        [
            {
                "$group": {
                    "_id": "$session_type",
                    "session_count": {"$sum": 1},
                    "avg_attendance_percentage": {"$avg": "$attendance_percentage"},
                }
            },
            {"$sort": {"_id": 1}},
        ],
    )

    daily = [
        DailyStats(
            session_date=_as_plain_date(row["_id"]),
            session_count=row["session_count"],
            avg_attendance_percentage=_mean(row["avg_attendance_percentage"]),
            total_students=row["total_students"],
            total_present=row["total_present"],
        )
        for row in daily_rows
    ]
    by_type = [
        SessionTypeStats(
            session_type=row["_id"],
            session_count=row["session_count"],
            avg_attendance_percentage=_mean(row["avg_attendance_percentage"]),
        )
        for row in type_rows
    ]
    summary = AnalyticsSummary()
    if daily:
        summary = AnalyticsSummary(
            total_sessions=sum(d.session_count for d in daily),
            avg_attendance_percentage=_mean(
                sum(d.avg_attendance_percentage for d in daily) / len(daily)
            ),
        )
    return AttendanceAnalytics(
        instructor_id=instructor_id,
        period=period,
        start_date=start,
        end_date=end,
        daily=daily,
        by_session_type=by_type,
        summary=summary,
    )
