# app/routers/school_authority/classes.py
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.cache import CacheManager, get_cache
from ...core.database import get_db
from ...core.permissions import Actor, ENROLLMENT_READ, ENROLLMENT_WRITE, require_permission
from ...schemas.class_schemas import ClassCreate, ClassResponse, ClassStatistics
from ...services.class_service import ClassService

router = APIRouter(prefix="/api/v1/school_authority/classes", tags=["School Authority - Class Management"])


@router.get("/", response_model=dict)
async def get_classes(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    grade_level: Optional[int] = Query(None, ge=1),
    academic_year: Optional[str] = Query(None),
    actor: Actor = Depends(require_permission(ENROLLMENT_READ)),
    db: AsyncSession = Depends(get_db)
):
    """Get paginated classes with occupancy"""
    service = ClassService(db)

    result = await service.get_classes_paginated(
        page=page,
        size=size,
        grade_level=grade_level,
        academic_year=academic_year
    )

    return {
        "items": [ClassService.describe(class_obj) for class_obj in result["items"]],
        "total": result["total"],
        "page": result["page"],
        "size": result["size"],
        "has_next": result["has_next"],
        "has_previous": result["has_previous"],
        "total_pages": result["total_pages"]
    }


@router.post("/", response_model=ClassResponse, status_code=201)
async def create_class(
    class_data: ClassCreate,
    actor: Actor = Depends(require_permission(ENROLLMENT_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Create new class; occupancy always starts at zero"""
    service = ClassService(db)
    return await service.create(class_data.model_dump())


@router.get("/{class_id}", response_model=ClassStatistics)
async def get_class(
    class_id: UUID,
    actor: Actor = Depends(require_permission(ENROLLMENT_READ)),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache)
):
    """Get class by ID with occupancy statistics"""
    cache_key = cache.make_key("class", class_id)
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    service = ClassService(db)
    statistics = await service.get_class_statistics(class_id)
    await cache.set(cache_key, statistics)
    return statistics
