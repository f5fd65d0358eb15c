import pytest
from sqlalchemy import select
from sqlalchemy.exc import DisconnectionError

from app.core.exceptions import CapacityExceededError, ValidationError
from app.models import ClassModel, Enrollment, EnrollmentStatus, Student, StudentStatus
from app.services.auto_assignment_service import (
    AUTO_ASSIGN_NOTE,
    MAX_NEW_CLASSES_PER_STUDENT,
    AutoAssignmentService,
)
from app.services.batch_report import ABORTED, COMPLETED, PARTIAL
from app.services.enrollment_service import EnrollmentService

from .conftest import YEAR

pytestmark = pytest.mark.anyio


async def occupancy(db, grade_level=10):
    rows = await db.execute(
        select(ClassModel.code, ClassModel.current_students)
        .where(ClassModel.grade_level == grade_level, ClassModel.academic_year == YEAR)
        .execution_options(populate_existing=True)
        .order_by(ClassModel.code)
    )
    return dict(rows.all())


async def pointers(db):
    rows = await db.execute(select(Student.full_name, Student.class_id).order_by(Student.full_name))
    return dict(rows.all())


async def test_overflow_creates_classes_in_order(db, make_student, make_class):
    await make_class(code="10A1", maximum_students=30)
    for _ in range(5):
        await make_student()

    outcome = await AutoAssignmentService(db).auto_assign(10, YEAR, max_students_per_class=2)

    assert outcome["status"] == COMPLETED
    assert outcome["total_assigned"] == 5
    assert [c["code"] for c in outcome["created_classes"]] == ["10A2", "10A3"]
    assert [a["class_name"] for a in outcome["assignments"]] == [
        "Class 10A1", "Class 10A1", "Class 10A2", "Class 10A2", "Class 10A3",
    ]
    assert await occupancy(db) == {"10A1": 2, "10A2": 2, "10A3": 1}

    enrollments = (await db.execute(select(Enrollment))).scalars().all()
    assert len(enrollments) == 5
    assert {e.status for e in enrollments} == {EnrollmentStatus.APPROVED}
    assert {e.notes for e in enrollments} == {AUTO_ASSIGN_NOTE}
    assert None not in (await pointers(db)).values()


async def test_creates_first_class_when_grade_has_none(db, make_student):
    await make_student()

    outcome = await AutoAssignmentService(db).auto_assign(10, YEAR)

    assert outcome["created_classes"][0]["code"] == "10A1"
    created = (await db.execute(select(ClassModel))).scalar_one()
    assert created.maximum_students == 30
    assert created.current_students == 1


async def test_rerun_assigns_nobody_and_changes_nothing(db, make_student, make_class):
    await make_class(code="10A1", maximum_students=3)
    for _ in range(4):
        await make_student()
    service = AutoAssignmentService(db)
    await service.auto_assign(10, YEAR, max_students_per_class=3)
    before = await occupancy(db)

    again = await service.auto_assign(10, YEAR, max_students_per_class=3)

    assert again["status"] == COMPLETED
    assert again["total_assigned"] == 0
    assert again["created_classes"] == []
    assert await occupancy(db) == before


async def test_only_active_unassigned_students_of_the_grade(db, make_student, make_class):
    await make_class(code="10A1")
    await make_student(full_name="A eligible")
    await make_student(full_name="B other grade", grade_level=9)
    await make_student(full_name="C inactive", status=StudentStatus.INACTIVE)

    outcome = await AutoAssignmentService(db).auto_assign(10, YEAR)

    assert [a["student_name"] for a in outcome["assignments"]] == ["A eligible"]


async def test_existing_counter_reduces_room(db, make_student, make_class):
    class_obj = await make_class(code="10A1", maximum_students=3)
    seated = await make_student(full_name="Already seated")
    await EnrollmentService(db).create_enrollment(seated.id, class_obj.id, YEAR, status="APPROVED")
    for _ in range(3):
        await make_student()

    outcome = await AutoAssignmentService(db).auto_assign(10, YEAR, max_students_per_class=3)

    assert outcome["total_assigned"] == 3
    assert [c["code"] for c in outcome["created_classes"]] == ["10A2"]
    assert await occupancy(db) == {"10A1": 3, "10A2": 1}


async def test_student_with_pending_enrollment_is_reported_and_batch_continues(db, make_student, make_class):
    class_obj = await make_class(code="10A1")
    waiting = await make_student(full_name="A waiting")
    await make_student(full_name="B free")
    await EnrollmentService(db).create_enrollment(waiting.id, class_obj.id, YEAR)
    waiting_id = str(waiting.id)

    outcome = await AutoAssignmentService(db).auto_assign(10, YEAR)

    assert outcome["status"] == PARTIAL
    assert [a["student_name"] for a in outcome["assignments"]] == ["B free"]
    assert outcome["failures"][0]["student_id"] == waiting_id
    assert outcome["failures"][0]["error"] == "Conflict"
    # The failed unit gave its seat back
    assert await occupancy(db) == {"10A1": 1}


async def test_lost_connection_aborts_and_rerun_resumes(db, make_student, make_class, monkeypatch):
    await make_class(code="10A1")
    for _ in range(5):
        await make_student()

    original_admit = EnrollmentService.admit
    calls = {"n": 0}

    async def flaky_admit(self, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 3:
            raise DisconnectionError("server closed the connection unexpectedly")
        return await original_admit(self, *args, **kwargs)

    monkeypatch.setattr(EnrollmentService, "admit", flaky_admit)
    service = AutoAssignmentService(db)

    aborted = await service.auto_assign(10, YEAR)

    assert aborted["status"] == ABORTED
    assert aborted["total_assigned"] == 2
    assert aborted["aborted_at"] is not None
    assert "server closed" in aborted["error"]
    assert await occupancy(db) == {"10A1": 2}

    monkeypatch.setattr(EnrollmentService, "admit", original_admit)
    resumed = await service.auto_assign(10, YEAR)

    assert resumed["status"] == COMPLETED
    assert resumed["total_assigned"] == 3
    assert await occupancy(db) == {"10A1": 5}


async def test_gives_up_on_a_student_after_a_few_new_classes(db, make_student, monkeypatch):
    student = await make_student()
    student_id = student.id

    async def always_full(self, student_id, class_id, *args, **kwargs):
        raise CapacityExceededError(class_id, 1)

    monkeypatch.setattr(EnrollmentService, "admit", always_full)

    outcome = await AutoAssignmentService(db).auto_assign(10, YEAR, max_students_per_class=1)

    assert outcome["status"] == PARTIAL
    assert outcome["total_assigned"] == 0
    assert [c["code"] for c in outcome["created_classes"]] == [
        f"10A{n}" for n in range(1, MAX_NEW_CLASSES_PER_STUDENT + 1)
    ]
    assert [(f["student_id"], f["error"]) for f in outcome["failures"]] == [(str(student_id), "Conflict")]


async def test_rejects_bad_input(db):
    with pytest.raises(ValidationError):
        await AutoAssignmentService(db).auto_assign(0, YEAR)
    with pytest.raises(ValidationError):
        await AutoAssignmentService(db).auto_assign(10, "2024")
