# app/services/student_service.py
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from .base_service import BaseService
from ..core.exceptions import ConflictError
from ..models.tenant_specific.student import Student, StudentStatus
from ..utils.validators import validate_grade_level


class StudentService(BaseService[Student]):
    resource_name = "Student"

    def __init__(self, db: AsyncSession):
        super().__init__(Student, db)

    async def get_by_student_code(self, student_code: str) -> Optional[Student]:
        """Get student by their school code"""
        stmt = select(self.model).where(self.model.student_code == student_code)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_unassigned(self, grade_level: int) -> List[Student]:
        """Active students of a grade without a class, in assignment order"""
        stmt = select(self.model).where(
            self.model.grade_level == grade_level,
            self.model.status == StudentStatus.ACTIVE,
            self.model.class_id.is_(None)
        ).order_by(self.model.full_name.asc(), self.model.student_code.asc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def create(self, obj_in: dict) -> Student:
        """Create new student; class placement only ever happens through enrollments"""
        obj_in = {k: v for k, v in obj_in.items() if k != "class_id"}
        validate_grade_level(obj_in.get("grade_level"))

        if await self.get_by_student_code(obj_in.get("student_code")):
            raise ConflictError(
                f"Student with code {obj_in.get('student_code')} already exists",
                student_code=obj_in.get("student_code")
            )

        try:
            return await super().create(obj_in)
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Student already exists", student_code=obj_in.get("student_code"))

    async def get_students_paginated(
        self,
        page: int = 1,
        size: int = 20,
        grade_level: Optional[int] = None,
        status: Optional[StudentStatus] = None,
        class_id=None,
        unassigned_only: bool = False
    ) -> dict:
        """Get paginated students"""
        stmt = select(self.model)
        if unassigned_only:
            stmt = stmt.where(self.model.class_id.is_(None))

        return await self.get_paginated(
            page=page,
            size=size,
            order_by="full_name",
            base_stmt=stmt,
            grade_level=grade_level,
            status=status,
            class_id=class_id
        )
