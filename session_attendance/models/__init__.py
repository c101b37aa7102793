"""Beanie document models and Pydantic schemas."""
from session_attendance.models.attendance import (
    ATTENDED_STATUSES,
    AttendanceRecord,
    AttendanceSession,
    AttendanceStatus,
    RecordsPayload,
    SessionCreate,
    SessionDetailsUpdate,
    SessionType,
    SharedMaterial,
)
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

__all__ = [
    "ATTENDED_STATUSES",
    "AttendanceRecord",
    "AttendanceSession",
    "AttendanceStatus",
    "RecordsPayload",
    "SessionCreate",
    "SessionDetailsUpdate",
    "SessionType",
    "SharedMaterial",
    "AnalyticsSummary",
    "AttendanceAnalytics",
    "BatchBreakdown",
    "BatchStats",
    "DailyStats",
    "InstructorStats",
    "SessionTypeStats",
    "StudentStats",
]
