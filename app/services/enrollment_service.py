# app/services/enrollment_service.py
"""Enrollment lifecycle: registration, approval, rejection and deletion.

PENDING is the only state with outgoing transitions; APPROVED and REJECTED are
terminal, and only `delete_enrollment` can undo an approval. Every write runs
in one unit of work that also covers the class occupancy counter and the
student's class pointer.
"""
import logging
from datetime import datetime
from typing import Any, List, Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError
from .base_service import BaseService
from .capacity_allocator import CapacityAllocator
from .consistency_coordinator import ConsistencyCoordinator
from ..core.exceptions import (
    CapacityExceededError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ..models.base import utcnow
from ..models.tenant_specific.class_model import ClassModel
from ..models.tenant_specific.enrollment import Enrollment, EnrollmentStatus, LIVE_STATUSES
from ..models.tenant_specific.student import Student
from ..utils.validators import validate_academic_year, validate_uuid

logger = logging.getLogger(__name__)

# Sentinel for "overwrite the student's class pointer whatever it holds"
ANY_POINTER = object()

SORTABLE_FIELDS = {"created_at", "enrollment_date", "academic_year", "status"}

PROMOTION_NOTE_PREFIX = "Promoted from grade "


def promotion_note(grade_level: int, academic_year: str) -> str:
    return f"{PROMOTION_NOTE_PREFIX}{grade_level} ({academic_year})"


def is_promotion_note(notes: Optional[str]) -> bool:
    return bool(notes) and notes.startswith(PROMOTION_NOTE_PREFIX)


def coerce_status(value: Union[str, EnrollmentStatus]) -> EnrollmentStatus:
    if isinstance(value, EnrollmentStatus):
        return value
    try:
        return EnrollmentStatus(str(value).upper())
    except ValueError:
        raise ValidationError(f"Unknown enrollment status '{value}'", field="status")


class EnrollmentService(BaseService[Enrollment]):
    resource_name = "Enrollment"

    def __init__(
        self,
        db: AsyncSession,
        coordinator: Optional[ConsistencyCoordinator] = None,
        actor_id: Optional[str] = None
    ):
        super().__init__(Enrollment, db)
        self.coordinator = coordinator or ConsistencyCoordinator(db, actor_id=actor_id)
        self.capacity = CapacityAllocator(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_live_enrollment(self, student_id: Any, academic_year: str) -> Optional[Enrollment]:
        """The PENDING or APPROVED enrollment of a student for a year, if any"""
        stmt = select(self.model).where(
            self.model.student_id == student_id,
            self.model.academic_year == academic_year,
            self.model.status.in_(sorted(LIVE_STATUSES))
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def get_enrollments_paginated(
        self,
        page: int = 1,
        size: int = 20,
        student_id: Any = None,
        class_id: Any = None,
        academic_year: Optional[str] = None,
        status: Optional[EnrollmentStatus] = None,
        grade_level: Optional[int] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc"
    ) -> dict:
        """Get paginated enrollments"""
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by '{sort_by}'", field="sort_by")

        stmt = select(self.model)
        if grade_level is not None or search:
            stmt = stmt.join(ClassModel, ClassModel.id == self.model.class_id)
        if grade_level is not None:
            stmt = stmt.where(ClassModel.grade_level == grade_level)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.join(Student, Student.id == self.model.student_id).where(or_(
                Student.full_name.ilike(pattern),
                Student.student_code.ilike(pattern),
                ClassModel.name.ilike(pattern),
                ClassModel.code.ilike(pattern)
            ))

        return await self.get_paginated(
            page=page,
            size=size,
            order_by=sort_by,
            sort=sort_order,
            base_stmt=stmt,
            student_id=student_id,
            class_id=class_id,
            academic_year=academic_year,
            status=status
        )

    async def get_student_enrollment_history(self, student_id: Any) -> List[dict]:
        """All enrollments of a student, newest academic year first"""
        student_id = validate_uuid(student_id, "student_id")
        if await self.db.get(Student, student_id) is None:
            raise NotFoundError("Student", student_id)

        stmt = (
            select(self.model, ClassModel)
            .join(ClassModel, ClassModel.id == self.model.class_id)
            .where(self.model.student_id == student_id)
            .order_by(self.model.academic_year.desc(), self.model.created_at.desc())
        )
        result = await self.db.execute(stmt)
        return [
            {
                "enrollment": enrollment,
                "class_name": class_obj.name,
                "class_code": class_obj.code,
                "grade_level": class_obj.grade_level,
            }
            for enrollment, class_obj in result.all()
        ]

    async def get_enrollment_statistics(
        self,
        academic_year: Optional[str] = None,
        grade_level: Optional[int] = None
    ) -> dict:
        """Counts by status, by grade and by class"""
        criteria = []
        if academic_year:
            criteria.append(self.model.academic_year == validate_academic_year(academic_year))
        if grade_level is not None:
            criteria.append(ClassModel.grade_level == grade_level)

        base = select(self.model.status, func.count()).select_from(self.model).join(
            ClassModel, ClassModel.id == self.model.class_id
        ).where(*criteria).group_by(self.model.status)
        status_rows = (await self.db.execute(base)).all()
        by_status = {EnrollmentStatus(status).value: count for status, count in status_rows}

        grade_stmt = select(ClassModel.grade_level, func.count()).select_from(self.model).join(
            ClassModel, ClassModel.id == self.model.class_id
        ).where(*criteria).group_by(ClassModel.grade_level).order_by(ClassModel.grade_level)
        grade_rows = (await self.db.execute(grade_stmt)).all()

        class_stmt = select(
            ClassModel.id,
            ClassModel.name,
            ClassModel.code,
            ClassModel.maximum_students,
            ClassModel.current_students,
            func.count(self.model.id)
        ).select_from(self.model).join(
            ClassModel, ClassModel.id == self.model.class_id
        ).where(*criteria).group_by(
            ClassModel.id, ClassModel.name, ClassModel.code,
            ClassModel.maximum_students, ClassModel.current_students
        ).order_by(ClassModel.name)
        class_rows = (await self.db.execute(class_stmt)).all()

        return {
            "overview": {
                "total": sum(by_status.values()),
                "pending": by_status.get(EnrollmentStatus.PENDING.value, 0),
                "approved": by_status.get(EnrollmentStatus.APPROVED.value, 0),
                "rejected": by_status.get(EnrollmentStatus.REJECTED.value, 0),
            },
            "by_grade": {grade: count for grade, count in grade_rows},
            "by_class": [
                {
                    "class_id": str(class_id),
                    "class_name": name,
                    "class_code": code,
                    "maximum_students": maximum,
                    "current_students": current,
                    "enrollments": count,
                }
                for class_id, name, code, maximum, current, count in class_rows
            ],
            "academic_year": academic_year,
            "grade_level": grade_level,
        }

    # ------------------------------------------------------------------
    # Single-record operations
    # ------------------------------------------------------------------

    async def create_enrollment(
        self,
        student_id: Any,
        class_id: Any,
        academic_year: str,
        notes: Optional[str] = None,
        status: Union[str, EnrollmentStatus] = EnrollmentStatus.PENDING,
        enrollment_date: Optional[datetime] = None
    ) -> Enrollment:
        """Register a student in a class; APPROVED skips the manual approval step"""
        status = coerce_status(status)
        if status is EnrollmentStatus.REJECTED:
            raise ValidationError("Enrollments start as PENDING or APPROVED", field="status")
        student_id = validate_uuid(student_id, "student_id")
        class_id = validate_uuid(class_id, "class_id")
        academic_year = validate_academic_year(academic_year)

        if await self.db.get(Student, student_id) is None:
            raise NotFoundError("Student", student_id)
        class_obj = await self.db.get(ClassModel, class_id)
        if class_obj is None:
            raise NotFoundError("Class", class_id)
        if class_obj.academic_year != academic_year:
            raise ValidationError(
                f"Class {class_obj.code} belongs to academic year {class_obj.academic_year}, not {academic_year}",
                field="academic_year"
            )
        if await self.get_live_enrollment(student_id, academic_year):
            raise ConflictError(
                f"Student already has a live enrollment for {academic_year}",
                student_id=str(student_id),
                academic_year=academic_year
            )

        async with self.coordinator.atomic():
            if status is EnrollmentStatus.APPROVED:
                enrollment = await self.admit(
                    student_id, class_obj.id, academic_year, notes=notes, enrollment_date=enrollment_date
                )
            else:
                enrollment = Enrollment(
                    student_id=student_id,
                    class_id=class_obj.id,
                    academic_year=academic_year,
                    enrollment_date=enrollment_date or utcnow(),
                    status=EnrollmentStatus.PENDING,
                    notes=notes
                )
                self.db.add(enrollment)
                await self._flush_new_enrollment(student_id, academic_year)
            self.coordinator.audit("CREATE", "enrollment", enrollment.id, {
                "student_id": str(student_id),
                "class_id": str(class_obj.id),
                "academic_year": academic_year,
                "status": status.value
            })

        logger.info(f"Enrollment {enrollment.id} created as {status.value} for student {student_id}")
        return enrollment

    async def update_enrollment_status(
        self,
        enrollment_id: Any,
        status: Union[str, EnrollmentStatus],
        notes: Optional[str] = None
    ) -> Enrollment:
        """Move a PENDING enrollment to APPROVED or REJECTED"""
        status = coerce_status(status)
        if status is EnrollmentStatus.APPROVED:
            return await self.approve(enrollment_id, notes)
        if status is EnrollmentStatus.REJECTED:
            return await self.reject(enrollment_id, notes)

        enrollment = await self.get_or_404(validate_uuid(enrollment_id, "enrollment_id"))
        raise InvalidTransitionError(EnrollmentStatus(enrollment.status).value, status.value)

    async def approve(self, enrollment_id: Any, notes: Optional[str] = None) -> Enrollment:
        enrollment_id = validate_uuid(enrollment_id, "enrollment_id")

        async with self.coordinator.atomic():
            enrollment = await self._lock_enrollment(enrollment_id)
            self._check_transition(enrollment, EnrollmentStatus.APPROVED)

            if not await self.capacity.reserve_seat(enrollment.class_id, enrollment.academic_year):
                class_obj = await self.db.get(ClassModel, enrollment.class_id)
                raise CapacityExceededError(enrollment.class_id, class_obj.maximum_students if class_obj else None)

            enrollment.status = EnrollmentStatus.APPROVED
            if notes:
                enrollment.notes = notes
            await self.db.flush()
            await self.point_student(
                enrollment.student_id, enrollment.class_id, academic_year=enrollment.academic_year
            )

            self.coordinator.invalidate("enrollment", enrollment.id)
            self.coordinator.invalidate("class", enrollment.class_id)
            self.coordinator.audit("UPDATE", "enrollment", enrollment.id, {
                "status": EnrollmentStatus.APPROVED.value,
                "notes": notes
            })

        logger.info(f"Enrollment {enrollment_id} approved")
        return enrollment

    async def reject(self, enrollment_id: Any, notes: Optional[str] = None) -> Enrollment:
        enrollment_id = validate_uuid(enrollment_id, "enrollment_id")

        async with self.coordinator.atomic():
            enrollment = await self._lock_enrollment(enrollment_id)
            self._check_transition(enrollment, EnrollmentStatus.REJECTED)

            # A PENDING enrollment never held the class pointer or a seat
            enrollment.status = EnrollmentStatus.REJECTED
            if notes:
                enrollment.notes = notes
            await self.db.flush()

            self.coordinator.invalidate("enrollment", enrollment.id)
            self.coordinator.audit("UPDATE", "enrollment", enrollment.id, {
                "status": EnrollmentStatus.REJECTED.value,
                "notes": notes
            })

        logger.info(f"Enrollment {enrollment_id} rejected")
        return enrollment

    async def delete_enrollment(self, enrollment_id: Any) -> None:
        """Remove an enrollment; an APPROVED one also gives back its seat and pointer.

        A pointer held by the deleted row falls back to the student's latest
        earlier APPROVED placement, or is cleared when there is none. Deleting a
        promotion row also takes `grade_level` back to that placement's grade.
        """
        enrollment_id = validate_uuid(enrollment_id, "enrollment_id")

        async with self.coordinator.atomic():
            enrollment = await self._lock_enrollment(enrollment_id)
            student_id, class_id = enrollment.student_id, enrollment.class_id
            academic_year, notes = enrollment.academic_year, enrollment.notes
            was_approved = enrollment.status == EnrollmentStatus.APPROVED

            await self.db.execute(
                delete(self.model)
                .where(self.model.id == enrollment_id)
                .execution_options(synchronize_session=False)
            )

            if was_approved:
                await self.capacity.release_seat(class_id)
                previous = await self._previous_placement(student_id, academic_year)
                values = {"class_id": previous[0] if previous else None}
                if previous and is_promotion_note(notes):
                    values["grade_level"] = previous[1]
                await self.db.execute(
                    update(Student)
                    .where(Student.id == student_id, Student.class_id == class_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                await self._refresh_student(student_id)
                self.coordinator.invalidate("class", class_id)
                self.coordinator.invalidate("student", student_id)

            self.coordinator.invalidate("enrollment", enrollment_id)
            self.coordinator.audit("DELETE", "enrollment", enrollment_id, {
                "student_id": str(student_id),
                "class_id": str(class_id),
                "was_approved": was_approved
            })

        self.db.expunge(enrollment)
        logger.info(f"Enrollment {enrollment_id} deleted")

    async def reconcile_class(self, class_id: Any) -> ClassModel:
        """Recompute a class's occupancy counter from its APPROVED enrollments"""
        class_id = validate_uuid(class_id, "class_id")

        async with self.coordinator.atomic():
            class_obj = await self.capacity.reconcile(class_id)
            if class_obj is None:
                raise NotFoundError("Class", class_id)
            await self.db.flush()
            self.coordinator.invalidate("class", class_id)
            self.coordinator.audit("RECONCILE", "class", class_id, {
                "current_students": class_obj.current_students
            })

        return class_obj

    # ------------------------------------------------------------------
    # Building blocks shared with the batch engines; callers hold the unit
    # ------------------------------------------------------------------

    async def admit(
        self,
        student_id: Any,
        class_id: Any,
        academic_year: str,
        notes: Optional[str] = None,
        expected_class_id: Any = ANY_POINTER,
        enrollment_date: Optional[datetime] = None,
        student_values: Optional[dict] = None
    ) -> Enrollment:
        """Seat a student: reserve a seat, add an APPROVED enrollment, move the pointer.

        Must run inside `coordinator.atomic()`. Raises CapacityExceededError or
        ConflictError; the enclosing unit then rolls everything back.
        """
        if not await self.capacity.reserve_seat(class_id, academic_year):
            class_obj = await self.db.get(ClassModel, class_id)
            raise CapacityExceededError(class_id, class_obj.maximum_students if class_obj else None)

        enrollment = Enrollment(
            student_id=student_id,
            class_id=class_id,
            academic_year=academic_year,
            enrollment_date=enrollment_date or utcnow(),
            status=EnrollmentStatus.APPROVED,
            notes=notes
        )
        self.db.add(enrollment)
        await self._flush_new_enrollment(student_id, academic_year)
        await self.point_student(
            student_id, class_id, expected_class_id, academic_year=academic_year, **(student_values or {})
        )

        self.coordinator.invalidate("enrollment", enrollment.id)
        self.coordinator.invalidate("class", class_id)
        return enrollment

    async def point_student(
        self,
        student_id: Any,
        class_id: Any,
        expected_class_id: Any = ANY_POINTER,
        academic_year: Optional[str] = None,
        **extra_values: Any
    ) -> bool:
        """Set the student's class pointer, optionally only if it still holds `expected_class_id`.

        With ANY_POINTER and an `academic_year`, a pointer already on a class of a
        later year is left alone and False is returned.
        """
        stmt = update(Student).where(Student.id == student_id)
        if expected_class_id is None:
            stmt = stmt.where(Student.class_id.is_(None))
        elif expected_class_id is not ANY_POINTER:
            stmt = stmt.where(Student.class_id == expected_class_id)
        elif academic_year is not None:
            stmt = stmt.where(or_(
                Student.class_id.is_(None),
                Student.class_id.in_(
                    select(ClassModel.id).where(ClassModel.academic_year <= academic_year)
                )
            ))

        result = await self.db.execute(
            stmt.values(class_id=class_id, **extra_values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if expected_class_id is ANY_POINTER and academic_year is not None:
                logger.info(f"Student {student_id} stays on a later-year class; {academic_year} does not move the pointer")
                return False
            raise ConflictError(
                "Student's class placement changed concurrently",
                student_id=str(student_id)
            )
        await self._refresh_student(student_id)
        self.coordinator.invalidate("student", student_id)
        return True

    async def _flush_new_enrollment(self, student_id: Any, academic_year: str) -> None:
        try:
            await self.db.flush()
        except IntegrityError:
            raise ConflictError(
                f"Student already has a live enrollment for {academic_year}",
                student_id=str(student_id),
                academic_year=academic_year
            )

    async def _lock_enrollment(self, enrollment_id: Any) -> Enrollment:
        stmt = (
            select(self.model)
            .where(self.model.id == enrollment_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        enrollment = (await self.db.execute(stmt)).scalar_one_or_none()
        if enrollment is None:
            raise NotFoundError("Enrollment", enrollment_id)
        return enrollment

    @staticmethod
    def _check_transition(enrollment: Enrollment, target: EnrollmentStatus) -> None:
        current = EnrollmentStatus(enrollment.status)
        if not current.can_transition_to(target):
            raise InvalidTransitionError(current.value, target.value)

    async def _refresh_student(self, student_id: Any) -> None:
        student = await self.db.get(Student, student_id)
        if student is not None:
            await self.db.refresh(student)

    async def _previous_placement(self, student_id: Any, before_year: str) -> Optional[tuple]:
        """(class_id, grade_level) of the latest APPROVED enrollment older than `before_year`"""
        stmt = (
            select(self.model.class_id, ClassModel.grade_level)
            .join(ClassModel, ClassModel.id == self.model.class_id)
            .where(
                self.model.student_id == student_id,
                self.model.status == EnrollmentStatus.APPROVED,
                self.model.academic_year < before_year
            )
            .order_by(self.model.academic_year.desc())
            .limit(1)
        )
        row = (await self.db.execute(stmt)).first()
        return tuple(row) if row else None
