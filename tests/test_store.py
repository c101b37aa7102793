"""Attendance store: upserts, invariants, finalize lock and lookups."""
from datetime import date

import pytest
from beanie import PydanticObjectId
from beanie.exceptions import RevisionIdWasChanged

from session_attendance.config import settings
from session_attendance.errors import (
    AlreadyFinalized,
    AttendanceValidationError,
    ConcurrentModification,
    DuplicateSession,
    SessionFinalized,
    SessionNotFound,
)
from session_attendance.models.attendance import AttendanceSession, SessionType
from session_attendance.services import attendance_store

pytestmark = pytest.mark.usefixtures("database")


def assert_reconciled(session: AttendanceSession):
    assert session.total_students == len(session.records)
    assert (
        session.present_count + session.absent_count + session.late_count + session.excused_count
        == session.total_students
    )
    assert len({r.student_id for r in session.records}) == len(session.records)


async def test_mark_then_finalize_scenario(make_session):
    session = await make_session()
    assert session.total_students == 0
    assert session.attendance_percentage == 0
    assert session.is_finalized is False

    for student_id, status in [("S1", "present"), ("S2", "absent"), ("S3", "late")]:
        session = await attendance_store.upsert_record(
            session.id, {"student_id": student_id, "status": status}, "I1"
        )

    assert session.total_students == 3
    assert session.present_count == 1
    assert session.absent_count == 1
    assert session.late_count == 1
    assert session.attendance_percentage == 67

    finalized = await attendance_store.finalize_session(session.id, "I1")
    assert finalized.is_finalized is True
    assert finalized.finalized_at is not None
    assert finalized.last_updated_by == "I1"

    with pytest.raises(SessionFinalized):
        await attendance_store.upsert_record(session.id, {"student_id": "S4", "status": "present"}, "I1")

    stored = await attendance_store.get_session(session.id)
    assert stored.total_students == 3
    assert [r.student_id for r in stored.records] == ["S1", "S2", "S3"]


async def test_upsert_same_student_replaces_record(make_session):
    session = await make_session()
    await attendance_store.upsert_record(session.id, {"student_id": "S1", "status": "absent"}, "I1")
    await attendance_store.upsert_record(session.id, {"student_id": "S2", "status": "present"}, "I1")
    session = await attendance_store.upsert_record(
        session.id, {"student_id": "S1", "status": "late", "notes": "traffic"}, "I1"
    )

    assert session.total_students == 2
    assert [r.student_id for r in session.records] == ["S1", "S2"]
    assert session.records[0].status == "late"
    assert session.records[0].notes == "traffic"
    assert session.absent_count == 0
    assert session.attendance_percentage == 100


async def test_invariants_hold_after_every_mutation(make_session):
    session = await make_session()
    steps = [
        ("one", [{"student_id": "S1", "status": "present"}]),
        ("bulk", [{"student_id": "S2", "status": "absent"}, {"student_id": "S3", "status": "excused"}]),
        ("one", [{"student_id": "S2", "status": "late"}]),
        ("bulk", [{"student_id": "S1", "status": "absent"}, {"student_id": "S4", "status": "absent"}]),
    ]
    for kind, records in steps:
        if kind == "one":
            session = await attendance_store.upsert_record(session.id, records[0], "I1")
        else:
            session = await attendance_store.bulk_upsert_records(session.id, records, "I1")
        assert_reconciled(session)
        assert_reconciled(await attendance_store.get_session(session.id))

    assert session.total_students == 4
    assert session.attendance_percentage == 50


async def test_mutation_stamps_last_updated(make_session):
    session = await make_session(marked_by="I1")
    assert session.marked_by == "I1"
    updated = await attendance_store.upsert_record(
        session.id, {"student_id": "S1", "status": "present"}, "admin-7"
    )
    assert updated.marked_by == "I1"
    assert updated.last_updated_by == "admin-7"


async def test_bulk_upsert_with_invalid_record_writes_nothing(make_session):
    session = await make_session()
    session = await attendance_store.upsert_record(session.id, {"student_id": "S1", "status": "present"}, "I1")
    before = session.model_dump()["records"]

    with pytest.raises(AttendanceValidationError) as exc_info:
        await attendance_store.bulk_upsert_records(
            session.id,
            [
                {"student_id": "S1", "status": "absent"},
                {"student_id": "S2", "status": "asleep"},
                {"student_id": "S3", "status": "present", "duration_minutes": -5},
            ],
            "I1",
        )

    locs = [tuple(e["loc"]) for e in exc_info.value.errors]
    assert ("records", 1, "status") in locs
    assert ("records", 2, "duration_minutes") in locs
    stored = await attendance_store.get_session(session.id)
    assert stored.model_dump()["records"] == before
    assert stored.total_students == 1


async def test_record_requires_student_id(make_session):
    session = await make_session()
    with pytest.raises(AttendanceValidationError):
        await attendance_store.upsert_record(session.id, {"status": "present"}, "I1")
    with pytest.raises(AttendanceValidationError):
        await attendance_store.upsert_record(session.id, {"student_id": "", "status": "present"}, "I1")


async def test_bulk_upsert_duplicate_students_last_wins(make_session):
    session = await make_session()
    session = await attendance_store.bulk_upsert_records(
        session.id,
        [
            {"student_id": "S1", "status": "absent"},
            {"student_id": "S2", "status": "present"},
            {"student_id": "S1", "status": "present"},
        ],
        "I1",
    )
    assert session.total_students == 2
    assert session.present_count == 2


async def test_replace_records_swaps_the_list(make_session):
    session = await make_session(
        records=[{"student_id": "S1", "status": "present"}, {"student_id": "S2", "status": "present"}]
    )
    assert session.total_students == 2

    session = await attendance_store.replace_records(
        session.id, [{"student_id": "S3", "status": "absent"}], "I1"
    )
    assert [r.student_id for r in session.records] == ["S3"]
    assert session.total_students == 1
    assert session.attendance_percentage == 0


async def test_finalize_twice_fails(make_session):
    session = await make_session()
    await attendance_store.finalize_session(session.id, "I1")
    with pytest.raises(AlreadyFinalized):
        await attendance_store.finalize_session(session.id, "I1")


async def test_finalized_session_rejects_every_mutation(make_session):
    session = await make_session(records=[{"student_id": "S1", "status": "present"}])
    await attendance_store.finalize_session(session.id, "I1")

    with pytest.raises(SessionFinalized):
        await attendance_store.bulk_upsert_records(session.id, [{"student_id": "S2", "status": "late"}], "I1")
    with pytest.raises(SessionFinalized):
        await attendance_store.replace_records(session.id, [], "I1")
    with pytest.raises(SessionFinalized):
        await attendance_store.update_session_details(session.id, "I1", {"session_notes": "late edit"})

    stored = await attendance_store.get_session(session.id)
    assert stored.session_notes == ""
    assert stored.total_students == 1


async def test_update_session_details(make_session):
    session = await make_session()
    session = await attendance_store.update_session_details(
        session.id,
        "I1",
        {
            "session_title": "Intro, part 2",
            "recording_link": "https://video.example/rec/1",
            "materials_shared": [{"name": "Slides", "url": "https://files.example/1.pdf", "type": "pdf"}],
        },
    )
    stored = await attendance_store.get_session(session.id)
    assert stored.session_title == "Intro, part 2"
    assert stored.recording_link == "https://video.example/rec/1"
    assert stored.materials_shared[0].name == "Slides"

    with pytest.raises(AttendanceValidationError):
        await attendance_store.update_session_details(session.id, "I1", {"session_duration_minutes": 0})


async def test_unknown_session_is_not_found():
    with pytest.raises(SessionNotFound):
        await attendance_store.get_session(PydanticObjectId())
    with pytest.raises(SessionNotFound):
        await attendance_store.get_session("not-an-object-id")
    with pytest.raises(SessionNotFound):
        await attendance_store.upsert_record(PydanticObjectId(), {"student_id": "S1", "status": "present"}, "I1")
    with pytest.raises(SessionNotFound):
        await attendance_store.finalize_session(PydanticObjectId(), "I1")


async def test_duplicate_natural_key_is_rejected(make_session):
    await make_session()
    with pytest.raises(DuplicateSession):
        await make_session(session_title="Intro again")

    other_type = await make_session(session_type="lab")
    assert other_type.session_type == SessionType.LAB
    other_instructor = await make_session(instructor_id="I2")
    assert other_instructor.instructor_id == "I2"


async def test_create_rejects_bad_session_fields(make_session):
    with pytest.raises(AttendanceValidationError):
        await make_session(session_title="")
    with pytest.raises(AttendanceValidationError):
        await make_session(session_type="seminar")
    with pytest.raises(AttendanceValidationError):
        await make_session(records=[{"student_id": "S1", "status": "gone"}])


async def test_lookup_by_natural_key(make_session):
    live = await make_session()
    lab = await make_session(session_type=SessionType.LAB, session_title="Lab")

    found = await attendance_store.get_session_by_key("B1", "I1", date(2024, 3, 1), "lab")
    assert found.id == lab.id
    found = await attendance_store.get_session_by_key("B1", "I1", "2024-03-01")
    assert found.id == live.id

    with pytest.raises(SessionNotFound):
        await attendance_store.get_session_by_key("B1", "I1", "2024-03-02")


async def test_open_session_creates_once(make_session):
    first = await attendance_store.open_session("B1", "I1", "2024-03-01", "Intro", marked_by="I1")
    second = await attendance_store.open_session("B1", "I1", "2024-03-01", "Ignored", marked_by="I1")
    assert first.id == second.id
    assert second.session_title == "Intro"
    assert await AttendanceSession.find({"batch_id": "B1"}).count() == 1


async def test_list_sessions_filters_and_orders(make_session):
    await make_session(session_date="2024-03-01")
    await make_session(session_date="2024-03-05")
    await make_session(session_date="2024-04-01")
    await make_session(batch_id="B2", session_date="2024-03-02")

    sessions = await attendance_store.list_sessions(
        batch_id="B1", start_date="2024-03-01", end_date="2024-03-31"
    )
    assert [s.session_date for s in sessions] == [date(2024, 3, 5), date(2024, 3, 1)]


async def test_racing_upserts_for_different_students_both_land(make_session, monkeypatch):
    session = await make_session()
    original_get = attendance_store.get_session
    raced = False

    async def get_then_race(session_id):
        nonlocal raced
        loaded = await original_get(session_id)
        if not raced:
            raced = True
            # another writer commits between our read and our write
            await attendance_store.upsert_record(session_id, {"student_id": "S2", "status": "absent"}, "I2")
        return loaded

    monkeypatch.setattr(attendance_store, "get_session", get_then_race)

    result = await attendance_store.upsert_record(session.id, {"student_id": "S1", "status": "present"}, "I1")

    assert {r.student_id for r in result.records} == {"S1", "S2"}
    stored = await original_get(session.id)
    assert stored.total_students == 2
    assert stored.present_count == 1
    assert stored.absent_count == 1


async def test_finalized_session_is_reported_before_bad_records(make_session):
    session = await make_session(records=[{"student_id": "S1", "status": "present"}])
    await attendance_store.finalize_session(session.id, "I1")

    with pytest.raises(SessionFinalized):
        await attendance_store.upsert_record(session.id, {"student_id": "S2", "status": "asleep"}, "I1")
    with pytest.raises(SessionFinalized):
        await attendance_store.bulk_upsert_records(session.id, [{"status": "present"}], "I1")
    with pytest.raises(SessionFinalized):
        await attendance_store.replace_records(session.id, [{"student_id": ""}], "I1")
    with pytest.raises(SessionFinalized):
        await attendance_store.update_session_details(session.id, "I1", {"session_duration_minutes": 0})


async def test_missing_session_is_reported_before_bad_records():
    with pytest.raises(SessionNotFound):
        await attendance_store.upsert_record(PydanticObjectId(), {"status": "present"}, "I1")
    with pytest.raises(SessionNotFound):
        await attendance_store.replace_records("not-an-object-id", [{"student_id": "S1", "status": "gone"}], "I1")


async def test_duplicate_key_is_reported_before_bad_records(make_session):
    await make_session()
    with pytest.raises(DuplicateSession):
        await make_session(records=[{"student_id": "S1", "status": "gone"}])


async def test_open_existing_session_upserts_supplied_records():
    first = await attendance_store.open_session(
        "B1", "I1", "2024-03-01", "Intro", marked_by="I1",
        records=[{"student_id": "S1", "status": "present"}],
    )
    second = await attendance_store.open_session(
        "B1", "I1", "2024-03-01", "Intro", marked_by="I1",
        records=[{"student_id": "S2", "status": "absent"}],
    )
    assert second.id == first.id
    assert [r.student_id for r in second.records] == ["S1", "S2"]
    assert second.total_students == 2
    assert second.attendance_percentage == 50

    await attendance_store.finalize_session(first.id, "I1")
    with pytest.raises(SessionFinalized):
        await attendance_store.open_session(
            "B1", "I1", "2024-03-01", "Intro", marked_by="I1",
            records=[{"student_id": "S3", "status": "present"}],
        )
    reopened = await attendance_store.open_session("B1", "I1", "2024-03-01", "Intro", marked_by="I1")
    assert reopened.total_students == 2


async def test_conflicts_on_every_save_give_up_after_retry_budget(make_session, monkeypatch):
    session = await make_session(records=[{"student_id": "S1", "status": "present"}])
    monkeypatch.setattr(settings, "attendance_write_retries", 3)
    saves = 0

    async def always_conflict(self, *args, **kwargs):
        nonlocal saves
        saves += 1
        raise RevisionIdWasChanged

    monkeypatch.setattr(AttendanceSession, "save", always_conflict)

    with pytest.raises(ConcurrentModification):
        await attendance_store.upsert_record(session.id, {"student_id": "S2", "status": "absent"}, "I9")
    assert saves == 3

    monkeypatch.undo()
    stored = await attendance_store.get_session(session.id)
    assert [r.student_id for r in stored.records] == ["S1"]
    assert stored.total_students == 1
    assert stored.last_updated_by == "I1"
