# app/services/capacity_allocator.py
"""Class capacity gate.

Capacity checks must run inside the same unit of work as the write they gate:
`reserve_seat` locks the class row and increments the occupancy counter with a
conditional UPDATE, so two concurrent approvals can never both take the last
seat.
"""
import logging
from typing import Any, Optional
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.tenant_specific.class_model import ClassModel
from ..models.tenant_specific.enrollment import Enrollment, EnrollmentStatus

logger = logging.getLogger(__name__)


class CapacityAllocator:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def approved_count(self, class_id: Any, academic_year: str) -> int:
        stmt = select(func.count()).select_from(Enrollment).where(
            Enrollment.class_id == class_id,
            Enrollment.academic_year == academic_year,
            Enrollment.status == EnrollmentStatus.APPROVED
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def lock_class(self, class_id: Any) -> Optional[ClassModel]:
        """Take a row lock on the class for the rest of the current transaction"""
        stmt = (
            select(ClassModel)
            .where(ClassModel.id == class_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def can_accept(self, class_id: Any, academic_year: str) -> bool:
        """Can the class take one more APPROVED member for `academic_year`?"""
        class_obj = await self.db.get(ClassModel, class_id)
        if class_obj is None:
            return False
        return await self.approved_count(class_id, academic_year) < class_obj.maximum_students

    async def reserve_seat(self, class_id: Any, academic_year: str) -> bool:
        """Claim one seat inside the caller's transaction.

        Returns False when the class is full; nothing is written in that case.
        """
        class_obj = await self.lock_class(class_id)
        if class_obj is None:
            return False
        if await self.approved_count(class_id, academic_year) >= class_obj.maximum_students:
            return False

        stmt = (
            update(ClassModel)
            .where(
                ClassModel.id == class_id,
                ClassModel.current_students < ClassModel.maximum_students
            )
            .values(current_students=ClassModel.current_students + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            logger.info(f"Seat reservation lost race on class {class_id}")
            return False

        await self.db.refresh(class_obj, attribute_names=["current_students", "updated_at"])
        return True

    async def release_seat(self, class_id: Any) -> None:
        stmt = (
            update(ClassModel)
            .where(ClassModel.id == class_id, ClassModel.current_students > 0)
            .values(current_students=ClassModel.current_students - 1)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)
        class_obj = await self.db.get(ClassModel, class_id)
        if class_obj is not None:
            await self.db.refresh(class_obj, attribute_names=["current_students", "updated_at"])

    async def reconcile(self, class_id: Any) -> Optional[ClassModel]:
        """Reset the occupancy counter to the APPROVED enrollment count"""
        class_obj = await self.lock_class(class_id)
        if class_obj is None:
            return None
        actual = await self.approved_count(class_id, class_obj.academic_year)
        if actual != class_obj.current_students:
            logger.warning(
                f"Class {class_obj.code} occupancy drifted: counter={class_obj.current_students} actual={actual}"
            )
            class_obj.current_students = actual
        return class_obj
