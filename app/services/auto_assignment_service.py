# app/services/auto_assignment_service.py
"""Distribute unassigned students of a grade into capacity-bounded classes.

Students are taken in name order and poured into the grade's classes in name
order; when every class is full a new `{grade}A{n}` class is created. Each
student is committed on its own, and only students without a class are
selected, so rerunning after an interruption picks up where it stopped.
"""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Optional
from uuid import UUID
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .batch_report import BatchReport
from .class_service import ClassService
from .consistency_coordinator import ConsistencyCoordinator
from .enrollment_service import EnrollmentService
from .student_service import StudentService
from ..core.config import settings
from ..core.database import is_connection_lost
from ..core.exceptions import CapacityExceededError, ConflictError, EduAssistException, ValidationError
from ..utils.validators import validate_academic_year, validate_grade_level

logger = logging.getLogger(__name__)

AUTO_ASSIGN_NOTE = "Auto-assigned by system"

# Fresh classes tried for one student before giving up; each creation already
# walks past taken codes on its own
MAX_NEW_CLASSES_PER_STUDENT = 3


@dataclass
class OpenClass:
    id: UUID
    name: str
    remaining: int


class AutoAssignmentService:
    def __init__(
        self,
        db: AsyncSession,
        coordinator: Optional[ConsistencyCoordinator] = None,
        actor_id: Optional[str] = None
    ):
        self.db = db
        self.coordinator = coordinator or ConsistencyCoordinator(db, actor_id=actor_id)
        self.enrollments = EnrollmentService(db, coordinator=self.coordinator)
        self.classes = ClassService(db)
        self.students = StudentService(db)

    async def auto_assign(
        self,
        grade_level: int,
        academic_year: str,
        max_students_per_class: Optional[int] = None
    ) -> dict:
        grade_level = validate_grade_level(grade_level)
        academic_year = validate_academic_year(academic_year)
        max_per_class = max_students_per_class or settings.default_max_students_per_class
        if max_per_class < 1:
            raise ValidationError("Max students per class must be at least 1", field="max_students_per_class")

        # Plain snapshots: a rolled back unit expires every ORM instance in the session
        students = [(s.id, s.full_name) for s in await self.students.get_unassigned(grade_level)]
        open_classes: Deque[OpenClass] = deque()
        for class_obj in await self.classes.get_for_grade(grade_level, academic_year):
            remaining = min(max_per_class, class_obj.maximum_students) - class_obj.current_students
            if remaining > 0:
                open_classes.append(OpenClass(class_obj.id, class_obj.name, remaining))

        logger.info(
            f"Auto-assigning {len(students)} students of grade {grade_level} for {academic_year} "
            f"into {len(open_classes)} open classes"
        )

        report = BatchReport("auto_assign")
        created_classes = []

        for student_id, student_name in students:
            try:
                target, enrollment = await self._place(
                    student_id, grade_level, academic_year, max_per_class, open_classes, created_classes
                )
            except EduAssistException as e:
                report.fail(student_id, student_name, e)
                continue
            except SQLAlchemyError as e:
                if is_connection_lost(e):
                    report.abort(student_id, e)
                    break
                report.fail(student_id, student_name, e)
                continue

            report.succeed({
                "student_id": str(student_id),
                "student_name": student_name,
                "class_id": str(target.id),
                "class_name": target.name,
                "enrollment_id": str(enrollment.id),
            })

        await self.coordinator.record_batch("AUTO_ASSIGN", "enrollment", {
            "grade_level": grade_level,
            "academic_year": academic_year,
            "total_assigned": len(report.items),
            "created_classes": [c["code"] for c in created_classes],
            **report.summary()
        })

        return {
            "status": report.status,
            "grade_level": grade_level,
            "academic_year": academic_year,
            "total_assigned": len(report.items),
            "assignments": report.items,
            "created_classes": created_classes,
            "failures": report.failures,
            "aborted_at": report.aborted_at,
            "error": report.error,
        }

    async def _place(
        self,
        student_id: Any,
        grade_level: int,
        academic_year: str,
        max_per_class: int,
        open_classes: Deque[OpenClass],
        created_classes: list
    ):
        """Seat one student in the first class with room, creating classes as needed"""
        for _ in range(len(open_classes) + MAX_NEW_CLASSES_PER_STUDENT):
            if not open_classes:
                class_obj = await self.classes.create_overflow_class(
                    self.coordinator, grade_level, academic_year, max_per_class
                )
                created_classes.append({
                    "class_id": str(class_obj.id),
                    "code": class_obj.code,
                    "name": class_obj.name,
                })
                open_classes.append(OpenClass(class_obj.id, class_obj.name, max_per_class))

            target = open_classes[0]
            try:
                async with self.coordinator.atomic():
                    enrollment = await self.enrollments.admit(
                        student_id,
                        target.id,
                        academic_year,
                        notes=AUTO_ASSIGN_NOTE,
                        expected_class_id=None
                    )
                    self.coordinator.audit("CREATE", "enrollment", enrollment.id, {
                        "student_id": str(student_id),
                        "class_id": str(target.id),
                        "academic_year": academic_year,
                        "status": "APPROVED",
                        "source": "auto_assign"
                    })
            except CapacityExceededError:
                # Filled by another caller since the snapshot
                logger.info(f"Class {target.name} filled concurrently, moving on")
                open_classes.popleft()
                continue

            target.remaining -= 1
            if target.remaining <= 0:
                open_classes.popleft()
            return target, enrollment

        raise ConflictError(
            f"Could not find or create a class with room for grade {grade_level}",
            grade_level=grade_level
        )
