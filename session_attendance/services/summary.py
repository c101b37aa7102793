"""Derived attendance counters, recomputed from the record list."""
from __future__ import annotations

from collections import Counter
from typing import Iterable, NamedTuple

from session_attendance.models.attendance import (
    ATTENDED_STATUSES,
    AttendanceRecord,
    AttendanceStatus,
)


class AttendanceSummary(NamedTuple):
    total_students: int
    present_count: int
    absent_count: int
    late_count: int
    excused_count: int
    attendance_percentage: int


def attendance_percentage(attended: int, total: int) -> int:
    """Whole-number share of ``attended`` in ``total``, halves rounded up; 0 when empty."""
    if total <= 0:
        return 0
    return (200 * attended + total) // (2 * total)


def compute_summary(records: Iterable[AttendanceRecord]) -> AttendanceSummary:
    counts = Counter(AttendanceStatus(r.status) for r in records)
    present = counts[AttendanceStatus.PRESENT]
    absent = counts[AttendanceStatus.ABSENT]
    late = counts[AttendanceStatus.LATE]
    excused = counts[AttendanceStatus.EXCUSED]
    total = present + absent + late + excused
    attended = sum(counts[s] for s in ATTENDED_STATUSES)
    return AttendanceSummary(
        total_students=total,
        present_count=present,
        absent_count=absent,
        late_count=late,
        excused_count=excused,
        attendance_percentage=attendance_percentage(attended, total),
    )


def records_by_student(records: Iterable[AttendanceRecord]) -> dict[str, AttendanceRecord]:
    """Key records by student_id; a later record for the same student replaces the earlier
    one but keeps its position."""
    keyed: dict[str, AttendanceRecord] = {}
    for record in records:
        keyed[record.student_id] = record
    return keyed
