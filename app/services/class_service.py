# app/services/class_service.py
import logging
from typing import List, Optional, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from .base_service import BaseService
from .consistency_coordinator import ConsistencyCoordinator
from ..core.exceptions import ConflictError, ValidationError
from ..models.tenant_specific.class_model import ClassModel
from ..utils.validators import validate_academic_year, validate_grade_level

logger = logging.getLogger(__name__)

# Overflow codes tried before giving up on a grade/year
MAX_OVERFLOW_ATTEMPTS = 50


def overflow_class_code(grade_level: int, index: int) -> str:
    return f"{grade_level}A{index}"


class ClassService(BaseService[ClassModel]):
    resource_name = "Class"

    def __init__(self, db: AsyncSession):
        super().__init__(ClassModel, db)

    async def get_by_code(self, code: str, academic_year: str) -> Optional[ClassModel]:
        """Get class by code within an academic year"""
        stmt = select(self.model).where(
            self.model.code == code,
            self.model.academic_year == academic_year
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_grade(self, grade_level: int, academic_year: str) -> List[ClassModel]:
        """Classes of one grade and year in assignment order"""
        stmt = select(self.model).where(
            self.model.grade_level == grade_level,
            self.model.academic_year == academic_year
        ).order_by(self.model.name.asc(), self.model.code.asc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_for_grade(self, grade_level: int, academic_year: str) -> int:
        stmt = select(func.count()).select_from(self.model).where(
            self.model.grade_level == grade_level,
            self.model.academic_year == academic_year
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def create(self, obj_in: dict) -> ClassModel:
        """Create new class with validation"""
        obj_in = dict(obj_in)
        obj_in["academic_year"] = validate_academic_year(obj_in.get("academic_year"))
        validate_grade_level(obj_in.get("grade_level"))
        if obj_in.get("maximum_students", 1) < 1:
            raise ValidationError("Maximum students must be at least 1", field="maximum_students")
        obj_in["current_students"] = 0

        existing = await self.get_by_code(obj_in.get("code"), obj_in["academic_year"])
        if existing:
            raise ConflictError(
                f"Class {obj_in.get('code')} already exists for academic year {obj_in['academic_year']}",
                code=obj_in.get("code")
            )

        try:
            return await super().create(obj_in)
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(f"Class {obj_in.get('code')} already exists", code=obj_in.get("code"))

    async def create_overflow_class(
        self,
        coordinator: ConsistencyCoordinator,
        grade_level: int,
        academic_year: str,
        maximum_students: int,
        start_index: Optional[int] = None
    ) -> ClassModel:
        """Create the next `{grade}A{n}` class for a grade and year.

        `n` starts after the classes that already exist and moves past codes
        taken by other callers, so the same inputs always yield the same code.
        """
        index = start_index or (await self.count_for_grade(grade_level, academic_year) + 1)

        for _ in range(MAX_OVERFLOW_ATTEMPTS):
            code = overflow_class_code(grade_level, index)
            if await self.get_by_code(code, academic_year) is None:
                try:
                    async with coordinator.atomic():
                        class_obj = ClassModel(
                            code=code,
                            name=f"Class {code}",
                            grade_level=grade_level,
                            academic_year=academic_year,
                            maximum_students=maximum_students,
                            current_students=0
                        )
                        self.db.add(class_obj)
                        await self.db.flush()
                        coordinator.invalidate("class", class_obj.id)
                        coordinator.audit("CREATE", "class", class_obj.id, {
                            "code": code,
                            "grade_level": grade_level,
                            "academic_year": academic_year,
                            "reason": "overflow"
                        })
                    logger.info(f"Created overflow class {code} for {academic_year}")
                    return class_obj
                except IntegrityError:
                    logger.info(f"Class code {code} taken concurrently, trying next index")
            index += 1

        raise ConflictError(
            f"No free class code for grade {grade_level} in {academic_year}",
            grade_level=grade_level
        )

    async def get_class_statistics(self, class_id: Any) -> dict:
        """Get statistics for a specific class"""
        class_obj = await self.get_or_404(class_id)
        return self.describe(class_obj)

    @staticmethod
    def describe(class_obj: ClassModel) -> dict:
        return {
            "id": str(class_obj.id),
            "code": class_obj.code,
            "name": class_obj.name,
            "grade_level": class_obj.grade_level,
            "academic_year": class_obj.academic_year,
            "maximum_students": class_obj.maximum_students,
            "current_students": class_obj.current_students,
            "available_spots": class_obj.available_spots,
            "occupancy_rate": round((class_obj.current_students / class_obj.maximum_students * 100), 2) if class_obj.maximum_students > 0 else 0,
        }

    async def get_classes_paginated(
        self,
        page: int = 1,
        size: int = 20,
        grade_level: Optional[int] = None,
        academic_year: Optional[str] = None
    ) -> dict:
        """Get paginated classes"""
        filters = {}
        if grade_level:
            filters["grade_level"] = grade_level
        if academic_year:
            filters["academic_year"] = academic_year

        return await self.get_paginated(page=page, size=size, order_by="name", **filters)
