"""Attendance session document with embedded per-student records."""
from datetime import date, datetime
from enum import Enum
from typing import Optional

import pymongo
from beanie import Document, Indexed
from pydantic import BaseModel, ConfigDict, Field
from pymongo import IndexModel


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


# Statuses that count towards attendance_percentage.
ATTENDED_STATUSES = frozenset(
    {AttendanceStatus.PRESENT, AttendanceStatus.LATE, AttendanceStatus.EXCUSED}
)


class SessionType(str, Enum):
    LIVE_CLASS = "live_class"
    DEMO = "demo"
    WORKSHOP = "workshop"
    LAB = "lab"
    EXAM = "exam"
    PRESENTATION = "presentation"


class AttendanceRecord(BaseModel):
    """One student's outcome within a session."""
    model_config = ConfigDict(extra="ignore")

    student_id: str = Field(min_length=1)
    status: AttendanceStatus
    join_time: Optional[str] = None  # session-local wall clock, kept as given
    leave_time: Optional[str] = None
    duration_minutes: int = Field(default=0, ge=0)
    notes: str = ""
    ip_address: Optional[str] = None
    device_info: Optional[str] = None


class SharedMaterial(BaseModel):
    name: str
    url: str
    type: Optional[str] = None


class AttendanceSession(Document):
    """One instructor-led meeting of a batch on a date.

    The count fields and attendance_percentage are derived from ``records``
    and rewritten by the store before every save.
    """

    batch_id: Indexed(str)
    instructor_id: Indexed(str)
    session_date: Indexed(date)
    session_type: SessionType = SessionType.LIVE_CLASS
    session_title: str = Field(min_length=1)
    session_duration_minutes: int = Field(default=60, gt=0)

    records: list[AttendanceRecord] = Field(default_factory=list)

    total_students: int = 0
    present_count: int = 0
    absent_count: int = 0
    late_count: int = 0
    excused_count: int = 0
    attendance_percentage: int = 0

    is_finalized: bool = False
    finalized_at: Optional[datetime] = None

    marked_by: str  # actor_id
    marked_at: datetime = Field(default_factory=datetime.utcnow)
    last_updated_by: Optional[str] = None
    last_updated_at: datetime = Field(default_factory=datetime.utcnow)

    session_notes: str = ""
    meeting_link: Optional[str] = None
    recording_link: Optional[str] = None
    materials_shared: list[SharedMaterial] = Field(default_factory=list)

    class Settings:
        name = "attendance_sessions"
        use_state_management = True
        use_revision = True
        indexes = [
            IndexModel(
                [
                    ("batch_id", pymongo.ASCENDING),
                    ("instructor_id", pymongo.ASCENDING),
                    ("session_date", pymongo.ASCENDING),
                    ("session_type", pymongo.ASCENDING),
                ],
                name="session_natural_key",
                unique=True,
            ),
            IndexModel(
                [("batch_id", pymongo.ASCENDING), ("session_date", pymongo.ASCENDING)],
                name="batch_date",
            ),
            IndexModel(
                [("instructor_id", pymongo.ASCENDING), ("session_date", pymongo.ASCENDING)],
                name="instructor_date",
            ),
            IndexModel([("records.student_id", pymongo.ASCENDING)], name="record_student"),
        ]


class SessionCreate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    batch_id: str = Field(min_length=1)
    instructor_id: Optional[str] = None  # defaults to the acting instructor
    session_date: date
    session_type: SessionType = SessionType.LIVE_CLASS
    session_title: str = Field(min_length=1)
    session_duration_minutes: int = Field(default=60, gt=0)
    records: list[AttendanceRecord] = Field(default_factory=list)
    session_notes: str = ""
    meeting_link: Optional[str] = None
    recording_link: Optional[str] = None
    materials_shared: list[SharedMaterial] = Field(default_factory=list)


class SessionDetailsUpdate(BaseModel):
    """All fields optional for PATCH; records and counts are not editable here."""
    model_config = ConfigDict(extra="ignore")

    session_title: Optional[str] = Field(default=None, min_length=1)
    session_duration_minutes: Optional[int] = Field(default=None, gt=0)
    session_notes: Optional[str] = None
    meeting_link: Optional[str] = None
    recording_link: Optional[str] = None
    materials_shared: Optional[list[SharedMaterial]] = None


class RecordsPayload(BaseModel):
    records: list[dict]
