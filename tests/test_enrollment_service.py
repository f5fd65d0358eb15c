import uuid

import pytest
from sqlalchemy import select, update

from app.core.exceptions import (
    CapacityExceededError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models import ClassModel, Enrollment, EnrollmentStatus
from app.services.enrollment_service import EnrollmentService

from .conftest import NEXT_YEAR, PREV_YEAR, YEAR

pytestmark = pytest.mark.anyio


async def test_create_pending_leaves_counter_and_pointer_alone(db, make_student, make_class):
    student = await make_student()
    class_obj = await make_class()
    service = EnrollmentService(db)

    enrollment = await service.create_enrollment(student.id, class_obj.id, YEAR, notes="walk-in")

    assert enrollment.status == EnrollmentStatus.PENDING
    assert enrollment.notes == "walk-in"
    await db.refresh(class_obj)
    await db.refresh(student)
    assert class_obj.current_students == 0
    assert student.class_id is None


async def test_create_approved_takes_a_seat_and_points_student(db, make_student, make_class):
    student = await make_student()
    class_obj = await make_class()
    service = EnrollmentService(db)

    enrollment = await service.create_enrollment(student.id, class_obj.id, YEAR, status="APPROVED")

    assert enrollment.status == EnrollmentStatus.APPROVED
    await db.refresh(class_obj)
    await db.refresh(student)
    assert class_obj.current_students == 1
    assert student.class_id == class_obj.id


async def test_create_rejected_is_not_a_starting_state(db, make_student, make_class):
    student = await make_student()
    class_obj = await make_class()

    with pytest.raises(ValidationError):
        await EnrollmentService(db).create_enrollment(student.id, class_obj.id, YEAR, status="REJECTED")


async def test_create_rejects_year_other_than_the_class_year(db, make_student, make_class):
    student = await make_student()
    class_obj = await make_class()

    with pytest.raises(ValidationError) as exc_info:
        await EnrollmentService(db).create_enrollment(student.id, class_obj.id, NEXT_YEAR)
    assert exc_info.value.detail["field"] == "academic_year"


async def test_create_unknown_student_or_class(db, make_student, make_class):
    student = await make_student()
    class_obj = await make_class()
    service = EnrollmentService(db)

    with pytest.raises(NotFoundError):
        await service.create_enrollment(uuid.uuid4(), class_obj.id, YEAR)
    with pytest.raises(NotFoundError):
        await service.create_enrollment(student.id, uuid.uuid4(), YEAR)


async def test_second_live_enrollment_for_the_year_conflicts(db, make_student, make_class):
    student = await make_student()
    first = await make_class(code="10A1")
    second = await make_class(code="10A2")
    service = EnrollmentService(db)

    await service.create_enrollment(student.id, first.id, YEAR)
    with pytest.raises(ConflictError):
        await service.create_enrollment(student.id, second.id, YEAR)


async def test_rejected_enrollment_frees_the_year(db, make_student, make_class):
    student = await make_student()
    class_obj = await make_class()
    service = EnrollmentService(db)

    enrollment = await service.create_enrollment(student.id, class_obj.id, YEAR)
    await service.update_enrollment_status(enrollment.id, "REJECTED", notes="missing documents")

    again = await service.create_enrollment(student.id, class_obj.id, YEAR)
    assert again.status == EnrollmentStatus.PENDING


async def test_approve_moves_counter_and_pointer_together(db, make_student, make_class):
    student = await make_student()
    class_obj = await make_class()
    service = EnrollmentService(db)
    enrollment = await service.create_enrollment(student.id, class_obj.id, YEAR)

    approved = await service.update_enrollment_status(enrollment.id, EnrollmentStatus.APPROVED, notes="ok")

    assert approved.status == EnrollmentStatus.APPROVED
    assert approved.notes == "ok"
    await db.refresh(class_obj)
    await db.refresh(student)
    assert class_obj.current_students == 1
    assert student.class_id == class_obj.id


@pytest.mark.parametrize("first, second", [
    ("APPROVED", "REJECTED"),
    ("APPROVED", "APPROVED"),
    ("REJECTED", "APPROVED"),
    ("REJECTED", "REJECTED"),
])
async def test_terminal_states_refuse_further_transitions(db, make_student, make_class, first, second):
    student = await make_student()
    class_obj = await make_class()
    service = EnrollmentService(db)
    enrollment = await service.create_enrollment(student.id, class_obj.id, YEAR)
    await service.update_enrollment_status(enrollment.id, first)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await service.update_enrollment_status(enrollment.id, second)
    assert exc_info.value.status_code == 409

    await db.refresh(enrollment)
    await db.refresh(class_obj)
    assert enrollment.status == EnrollmentStatus(first)
    assert class_obj.current_students == (1 if first == "APPROVED" else 0)


async def test_moving_back_to_pending_is_invalid(db, make_student, make_class):
    student = await make_student()
    class_obj = await make_class()
    service = EnrollmentService(db)
    enrollment = await service.create_enrollment(student.id, class_obj.id, YEAR)

    with pytest.raises(InvalidTransitionError):
        await service.update_enrollment_status(enrollment.id, "PENDING")


async def test_unknown_status_value(db):
    with pytest.raises(ValidationError):
        await EnrollmentService(db).update_enrollment_status(uuid.uuid4(), "ENROLLED")


async def test_full_class_refuses_approval_and_changes_nothing(db, make_student, make_class):
    class_obj = await make_class(code="10A1", maximum_students=30)
    service = EnrollmentService(db)
    seated_ids = []
    for _ in range(30):
        student = await make_student()
        enrollment = await service.create_enrollment(student.id, class_obj.id, YEAR, status="APPROVED")
        seated_ids.append(enrollment.id)

    latecomer = await make_student()
    pending = await service.create_enrollment(latecomer.id, class_obj.id, YEAR)
    pending_id = pending.id

    with pytest.raises(CapacityExceededError) as exc_info:
        await service.approve(pending_id)
    assert exc_info.value.detail["maximum_students"] == 30

    await db.refresh(class_obj)
    await db.refresh(pending)
    await db.refresh(latecomer)
    assert class_obj.current_students == 30
    assert pending.status == EnrollmentStatus.PENDING
    assert latecomer.class_id is None

    # A freed seat lets the same approval through
    await service.delete_enrollment(seated_ids[0])
    approved = await service.approve(pending_id)

    assert approved.status == EnrollmentStatus.APPROVED
    await db.refresh(class_obj)
    await db.refresh(latecomer)
    assert class_obj.current_students == 30
    assert latecomer.class_id == class_obj.id


async def test_full_class_refuses_approved_creation(db, make_student, make_class):
    class_obj = await make_class(maximum_students=1)
    service = EnrollmentService(db)
    first = await make_student()
    second = await make_student()
    second_id = second.id
    await service.create_enrollment(first.id, class_obj.id, YEAR, status="APPROVED")

    with pytest.raises(CapacityExceededError):
        await service.create_enrollment(second_id, class_obj.id, YEAR, status="APPROVED")

    rows = (await db.execute(
        select(Enrollment).where(Enrollment.student_id == second_id)
    )).scalars().all()
    assert rows == []


async def test_delete_approved_releases_seat_and_pointer(db, make_student, make_class):
    student = await make_student()
    class_obj = await make_class()
    service = EnrollmentService(db)
    enrollment = await service.create_enrollment(student.id, class_obj.id, YEAR, status="APPROVED")

    await service.delete_enrollment(enrollment.id)

    await db.refresh(class_obj)
    await db.refresh(student)
    assert class_obj.current_students == 0
    assert student.class_id is None
    with pytest.raises(NotFoundError):
        await service.get_or_404(enrollment.id)


async def test_approving_an_earlier_year_leaves_the_pointer_on_the_later_class(db, make_student, make_class):
    student = await make_student()
    current = await make_class(code="10A1", academic_year=YEAR)
    earlier = await make_class(code="9A1", grade_level=9, academic_year=PREV_YEAR)
    service = EnrollmentService(db)
    await service.create_enrollment(student.id, current.id, YEAR, status="APPROVED")
    backfill = await service.create_enrollment(student.id, earlier.id, PREV_YEAR)

    approved = await service.approve(backfill.id)

    assert approved.status == EnrollmentStatus.APPROVED
    await db.refresh(student)
    await db.refresh(earlier)
    assert student.class_id == current.id
    assert earlier.current_students == 1


async def test_approved_creation_for_an_earlier_year_leaves_the_pointer(db, make_student, make_class):
    student = await make_student()
    current = await make_class(code="10A1", academic_year=YEAR)
    earlier = await make_class(code="9A1", grade_level=9, academic_year=PREV_YEAR)
    service = EnrollmentService(db)
    await service.create_enrollment(student.id, current.id, YEAR, status="APPROVED")

    await service.create_enrollment(student.id, earlier.id, PREV_YEAR, status="APPROVED")

    await db.refresh(student)
    assert student.class_id == current.id


async def test_approving_a_later_year_moves_the_pointer(db, make_student, make_class):
    student = await make_student()
    earlier = await make_class(code="9A1", grade_level=9, academic_year=PREV_YEAR)
    current = await make_class(code="10A1", academic_year=YEAR)
    service = EnrollmentService(db)
    await service.create_enrollment(student.id, earlier.id, PREV_YEAR, status="APPROVED")
    pending = await service.create_enrollment(student.id, current.id, YEAR)

    await service.approve(pending.id)

    await db.refresh(student)
    assert student.class_id == current.id


async def test_delete_falls_back_to_the_previous_placement(db, make_student, make_class):
    student = await make_student()
    earlier = await make_class(code="9A1", grade_level=9, academic_year=PREV_YEAR)
    current = await make_class(code="10A1", academic_year=YEAR)
    service = EnrollmentService(db)
    await service.create_enrollment(student.id, earlier.id, PREV_YEAR, status="APPROVED")
    latest = await service.create_enrollment(student.id, current.id, YEAR, status="APPROVED")

    await service.delete_enrollment(latest.id)

    await db.refresh(student)
    await db.refresh(current)
    assert student.class_id == earlier.id
    # Not a promotion row, so the grade stays as it was
    assert student.grade_level == 10
    assert current.current_students == 0


async def test_delete_pending_touches_nothing_else(db, make_student, make_class):
    seated = await make_student()
    waiting = await make_student()
    class_obj = await make_class()
    service = EnrollmentService(db)
    await service.create_enrollment(seated.id, class_obj.id, YEAR, status="APPROVED")
    pending = await service.create_enrollment(waiting.id, class_obj.id, YEAR)

    await service.delete_enrollment(pending.id)

    await db.refresh(class_obj)
    await db.refresh(seated)
    assert class_obj.current_students == 1
    assert seated.class_id == class_obj.id


async def test_delete_missing_enrollment(db):
    with pytest.raises(NotFoundError):
        await EnrollmentService(db).delete_enrollment(uuid.uuid4())


async def test_reconcile_repairs_drifted_counter(db, make_student, make_class):
    class_obj = await make_class()
    service = EnrollmentService(db)
    for _ in range(2):
        student = await make_student()
        await service.create_enrollment(student.id, class_obj.id, YEAR, status="APPROVED")
    await db.execute(update(ClassModel).where(ClassModel.id == class_obj.id).values(current_students=0))
    await db.commit()

    reconciled = await service.reconcile_class(class_obj.id)

    assert reconciled.current_students == 2


async def test_history_lists_newest_year_first(db, make_student, make_class):
    student = await make_student()
    this_year = await make_class(code="10A1", academic_year=YEAR)
    next_year = await make_class(code="11A1", grade_level=11, academic_year=NEXT_YEAR)
    service = EnrollmentService(db)
    await service.create_enrollment(student.id, this_year.id, YEAR, status="APPROVED")
    await service.create_enrollment(student.id, next_year.id, NEXT_YEAR)

    history = await service.get_student_enrollment_history(student.id)

    assert [entry["class_code"] for entry in history] == ["11A1", "10A1"]
    assert history[0]["enrollment"].status == EnrollmentStatus.PENDING
    assert history[1]["grade_level"] == 10


async def test_statistics_counts_by_status_grade_and_class(db, make_student, make_class):
    ten = await make_class(code="10A1", grade_level=10)
    eleven = await make_class(code="11A1", grade_level=11)
    service = EnrollmentService(db)
    a, b, c = await make_student(), await make_student(), await make_student(grade_level=11)
    await service.create_enrollment(a.id, ten.id, YEAR, status="APPROVED")
    rejected = await service.create_enrollment(b.id, ten.id, YEAR)
    await service.reject(rejected.id)
    await service.create_enrollment(c.id, eleven.id, YEAR)

    stats = await service.get_enrollment_statistics(academic_year=YEAR)

    assert stats["overview"] == {"total": 3, "pending": 1, "approved": 1, "rejected": 1}
    assert stats["by_grade"] == {10: 2, 11: 1}
    by_code = {row["class_code"]: row for row in stats["by_class"]}
    assert by_code["10A1"]["enrollments"] == 2
    assert by_code["10A1"]["current_students"] == 1

    grade_only = await service.get_enrollment_statistics(grade_level=11)
    assert grade_only["overview"]["total"] == 1


async def test_paginated_search_and_filters(db, make_student, make_class):
    class_obj = await make_class()
    service = EnrollmentService(db)
    alice = await make_student(full_name="Alice Moreau")
    bob = await make_student(full_name="Bob Njoroge")
    await service.create_enrollment(alice.id, class_obj.id, YEAR, status="APPROVED")
    await service.create_enrollment(bob.id, class_obj.id, YEAR)

    by_name = await service.get_enrollments_paginated(search="moreau")
    assert [e.student_id for e in by_name["items"]] == [alice.id]

    pending = await service.get_enrollments_paginated(status=EnrollmentStatus.PENDING, grade_level=10)
    assert pending["total"] == 1
    assert pending["items"][0].student_id == bob.id

    with pytest.raises(ValidationError):
        await service.get_enrollments_paginated(sort_by="notes")
