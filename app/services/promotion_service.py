# app/services/promotion_service.py
"""Move a grade cohort into the next grade for a new academic year.

The prior-year enrollment is left as it is; each student gets a new APPROVED
enrollment in a grade+1 class of the new year and their class pointer moves
with it, in one unit per student.
"""
import logging
from typing import Optional
from sqlalchemy import select, exists
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from .batch_report import BatchReport
from .class_service import ClassService
from .consistency_coordinator import ConsistencyCoordinator
from .enrollment_service import EnrollmentService, promotion_note
from ..core.config import settings
from ..core.database import is_connection_lost
from ..core.exceptions import EduAssistException, ValidationError
from ..models.tenant_specific.class_model import ClassModel
from ..models.tenant_specific.enrollment import Enrollment, EnrollmentStatus, LIVE_STATUSES
from ..models.tenant_specific.student import Student, StudentStatus
from ..utils.validators import validate_academic_year, validate_grade_level

logger = logging.getLogger(__name__)


class PromotionService:
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

    async def get_cohort(self, grade_level: int, academic_year: str, new_academic_year: str) -> list:
        """Active students still seated in a grade/year class and not yet placed in the new year"""
        upcoming = aliased(Enrollment)
        already_placed = exists().where(
            upcoming.student_id == Student.id,
            upcoming.academic_year == new_academic_year,
            upcoming.status.in_(sorted(LIVE_STATUSES))
        )
        stmt = (
            select(Student.id, Student.full_name, ClassModel.id, ClassModel.name)
            .join(Enrollment, Enrollment.student_id == Student.id)
            .join(ClassModel, ClassModel.id == Enrollment.class_id)
            .where(
                ClassModel.grade_level == grade_level,
                ClassModel.academic_year == academic_year,
                Enrollment.academic_year == academic_year,
                Enrollment.status == EnrollmentStatus.APPROVED,
                Student.status == StudentStatus.ACTIVE,
                Student.class_id == Enrollment.class_id,
                ~already_placed
            )
            .order_by(Student.full_name.asc(), Student.student_code.asc())
        )
        result = await self.db.execute(stmt)
        return [tuple(row) for row in result.all()]

    async def find_destination(self, grade_level: int, academic_year: str, max_per_class: int) -> Optional[ClassModel]:
        stmt = (
            select(ClassModel)
            .where(
                ClassModel.grade_level == grade_level,
                ClassModel.academic_year == academic_year,
                ClassModel.current_students < ClassModel.maximum_students,
                ClassModel.current_students < max_per_class
            )
            .order_by(ClassModel.name.asc(), ClassModel.code.asc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def promote(
        self,
        current_grade_level: int,
        current_academic_year: str,
        new_academic_year: str,
        max_students_per_class: Optional[int] = None
    ) -> dict:
        current_grade_level = validate_grade_level(current_grade_level, "current_grade_level")
        current_academic_year = validate_academic_year(current_academic_year, "current_academic_year")
        new_academic_year = validate_academic_year(new_academic_year, "new_academic_year")
        if new_academic_year == current_academic_year:
            raise ValidationError("New academic year must differ from the current one", field="new_academic_year")
        max_per_class = max_students_per_class or settings.default_max_students_per_class
        if max_per_class < 1:
            raise ValidationError("Max students per class must be at least 1", field="max_students_per_class")

        new_grade_level = current_grade_level + 1
        cohort = await self.get_cohort(current_grade_level, current_academic_year, new_academic_year)
        logger.info(
            f"Promoting {len(cohort)} students from grade {current_grade_level} ({current_academic_year}) "
            f"to grade {new_grade_level} ({new_academic_year})"
        )

        report = BatchReport("promote")
        note = promotion_note(current_grade_level, current_academic_year)

        for student_id, student_name, old_class_id, old_class_name in cohort:
            try:
                destination = await self.find_destination(new_grade_level, new_academic_year, max_per_class)
                if destination is None:
                    destination = await self.classes.create_overflow_class(
                        self.coordinator, new_grade_level, new_academic_year, max_per_class
                    )
                destination_id, destination_name = destination.id, destination.name

                async with self.coordinator.atomic():
                    enrollment = await self.enrollments.admit(
                        student_id,
                        destination_id,
                        new_academic_year,
                        notes=note,
                        expected_class_id=old_class_id,
                        student_values={"grade_level": new_grade_level}
                    )
                    self.coordinator.audit("CREATE", "enrollment", enrollment.id, {
                        "student_id": str(student_id),
                        "class_id": str(destination_id),
                        "academic_year": new_academic_year,
                        "status": "APPROVED",
                        "source": "promotion",
                        "from_class_id": str(old_class_id)
                    })
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
                "old_class_id": str(old_class_id),
                "old_class": old_class_name,
                "new_class_id": str(destination_id),
                "new_class": destination_name,
                "old_grade": current_grade_level,
                "new_grade": new_grade_level,
                "enrollment_id": str(enrollment.id),
            })

        await self.coordinator.record_batch("PROMOTE", "enrollment", {
            "current_grade_level": current_grade_level,
            "current_academic_year": current_academic_year,
            "new_academic_year": new_academic_year,
            "total_promoted": len(report.items),
            **report.summary()
        })

        return {
            "status": report.status,
            "current_grade_level": current_grade_level,
            "new_grade_level": new_grade_level,
            "current_academic_year": current_academic_year,
            "new_academic_year": new_academic_year,
            "total_promoted": len(report.items),
            "promotions": report.items,
            "failures": report.failures,
            "aborted_at": report.aborted_at,
            "error": report.error,
        }
