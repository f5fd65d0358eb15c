# app/routers/school_authority/students.py
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.cache import CacheManager, get_cache
from ...core.database import get_db
from ...core.permissions import Actor, ENROLLMENT_READ, ENROLLMENT_WRITE, require_permission
from ...models.tenant_specific.student import StudentStatus
from ...schemas.student_schemas import StudentCreate, StudentResponse
from ...services.student_service import StudentService

router = APIRouter(prefix="/api/v1/school_authority/students", tags=["School Authority - Student Management"])


@router.get("/", response_model=dict)
async def get_students(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    grade_level: Optional[int] = Query(None, ge=1),
    status: Optional[StudentStatus] = Query(None),
    class_id: Optional[UUID] = Query(None),
    unassigned_only: bool = Query(False),
    actor: Actor = Depends(require_permission(ENROLLMENT_READ)),
    db: AsyncSession = Depends(get_db)
):
    """Get paginated students with filtering options"""
    service = StudentService(db)

    result = await service.get_students_paginated(
        page=page,
        size=size,
        grade_level=grade_level,
        status=status,
        class_id=class_id,
        unassigned_only=unassigned_only
    )

    return {
        "items": [StudentResponse.model_validate(s).model_dump(mode="json") for s in result["items"]],
        "total": result["total"],
        "page": result["page"],
        "size": result["size"],
        "has_next": result["has_next"],
        "has_previous": result["has_previous"],
        "total_pages": result["total_pages"]
    }


@router.post("/", response_model=StudentResponse, status_code=201)
async def create_student(
    student_data: StudentCreate,
    actor: Actor = Depends(require_permission(ENROLLMENT_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Create new student"""
    service = StudentService(db)
    return await service.create(student_data.model_dump())


@router.get("/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: UUID,
    actor: Actor = Depends(require_permission(ENROLLMENT_READ)),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache)
):
    """Get student by ID"""
    cache_key = cache.make_key("student", student_id)
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    service = StudentService(db)
    student = await service.get_or_404(student_id)
    payload = StudentResponse.model_validate(student).model_dump(mode="json")
    await cache.set(cache_key, payload)
    return payload
