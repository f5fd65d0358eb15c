# app/services/base_service.py
"""Base service with the lookups and paging shared by every record type."""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.sql import Select
from typing import Type, Any, Dict, Optional, TypeVar, Generic

from ..core.exceptions import NotFoundError

# Define generic type
T = TypeVar('T')

class BaseService(Generic[T]):
    resource_name = "Record"

    def __init__(self, model: Type[T], db: AsyncSession):
        self.model = model
        self.db = db

    async def get(self, id: Any) -> Optional[T]:
        return await self.db.get(self.model, id)

    async def get_or_404(self, id: Any) -> T:
        obj = await self.get(id)
        if obj is None:
            raise NotFoundError(self.resource_name, id)
        return obj

    def _filtered(self, stmt: Select, filters: Dict[str, Any]) -> Select:
        """Equality filters on model columns; None means "any" """
        for key, value in filters.items():
            if value is not None and hasattr(self.model, key):
                stmt = stmt.where(getattr(self.model, key) == value)
        return stmt

    async def get_paginated(
        self,
        page: int = 1,
        size: int = 20,
        order_by: Optional[str] = None,
        sort: str = "asc",
        base_stmt: Optional[Select] = None,
        **filters
    ) -> dict:
        """One page of records; `base_stmt` may carry joins and extra criteria"""
        stmt = self._filtered(base_stmt if base_stmt is not None else select(self.model), filters)

        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        total = (await self.db.execute(count_stmt)).scalar() or 0

        if order_by and hasattr(self.model, order_by):
            column = getattr(self.model, order_by)
            stmt = stmt.order_by(column.desc() if sort.lower() == "desc" else column.asc())
        # Stable paging when the sort column ties
        stmt = stmt.order_by(self.model.id)

        result = await self.db.execute(stmt.offset((page - 1) * size).limit(size))
        items = result.scalars().all()

        return {
            "items": items,
            "total": total,
            "page": page,
            "size": size,
            "total_pages": (total + size - 1) // size,
            "has_next": page * size < total,
            "has_previous": page > 1,
        }

    async def create(self, obj_in: Dict) -> T:
        """Insert and commit a plain record with no side effects on other rows"""
        obj = self.model(**obj_in)
        self.db.add(obj)
        await self.db.commit()
        await self.db.refresh(obj)
        return obj
