"""Read models returned by the statistics engine."""
from datetime import date

from pydantic import BaseModel, Field


class BatchStats(BaseModel):
    batch_id: str
    session_count: int = 0
    avg_attendance_percentage: float = 0
    avg_total_students: float = 0
    total_present: int = 0
    total_absent: int = 0
    total_late: int = 0
    total_excused: int = 0


class StudentStats(BaseModel):
    student_id: str
    batch_id: str
    total_sessions: int = 0
    present_count: int = 0
    absent_count: int = 0
    late_count: int = 0
    excused_count: int = 0
    attendance_percentage: int = 0


class InstructorStats(BaseModel):
    instructor_id: str
    session_count: int = 0
    avg_attendance_percentage: float = 0
    total_students_across_sessions: int = 0
    total_present: int = 0
    total_absent: int = 0
    total_late: int = 0
    total_excused: int = 0


class BatchBreakdown(BaseModel):
    batch_id: str
    session_count: int
    avg_attendance_percentage: float


class DailyStats(BaseModel):
    session_date: date
    session_count: int
    avg_attendance_percentage: float
    total_students: int
    total_present: int


class SessionTypeStats(BaseModel):
    session_type: str
    session_count: int
    avg_attendance_percentage: float


class AnalyticsSummary(BaseModel):
    total_sessions: int = 0
    avg_attendance_percentage: float = 0


class AttendanceAnalytics(BaseModel):
    instructor_id: str
    period: str
    start_date: date
    end_date: date
    daily: list[DailyStats] = Field(default_factory=list)
    by_session_type: list[SessionTypeStats] = Field(default_factory=list)
    summary: AnalyticsSummary = Field(default_factory=AnalyticsSummary)
