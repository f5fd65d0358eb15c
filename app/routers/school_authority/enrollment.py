# app/routers/school_authority/enrollment.py
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.cache import CacheManager, get_cache
from ...core.database import get_db
from ...core.permissions import Actor, ENROLLMENT_READ, ENROLLMENT_WRITE, require_permission
from ...models.tenant_specific.enrollment import Enrollment, EnrollmentStatus
from ...schemas.class_schemas import ClassStatistics
from ...schemas.enrollment_schemas import (
    AutoAssignOutcome,
    AutoAssignRequest,
    EnrollmentCreate,
    EnrollmentHistoryItem,
    EnrollmentResponse,
    EnrollmentStatistics,
    PromotionOutcome,
    PromotionRequest,
    StatusUpdate,
)
from ...services.auto_assignment_service import AutoAssignmentService
from ...services.batch_report import ABORTED
from ...services.class_service import ClassService
from ...services.enrollment_service import EnrollmentService
from ...services.promotion_service import PromotionService

router = APIRouter(prefix="/api/v1/school_authority/enrollments", tags=["School Authority - Enrollment Management"])


def format_enrollment(enrollment: Enrollment) -> dict:
    return EnrollmentResponse.model_validate(enrollment).model_dump(mode="json")


def batch_response(outcome: dict, schema) -> JSONResponse:
    """Aborted batches report 503 with the full outcome so callers can resume"""
    body = schema.model_validate(outcome).model_dump(mode="json")
    return JSONResponse(status_code=503 if outcome["status"] == ABORTED else 200, content=body)


@router.get("/", response_model=dict)
async def get_enrollments(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    student_id: Optional[UUID] = Query(None),
    class_id: Optional[UUID] = Query(None),
    academic_year: Optional[str] = Query(None),
    status: Optional[EnrollmentStatus] = Query(None),
    grade_level: Optional[int] = Query(None, ge=1),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    actor: Actor = Depends(require_permission(ENROLLMENT_READ)),
    db: AsyncSession = Depends(get_db)
):
    """Get paginated enrollments with filtering"""
    service = EnrollmentService(db, actor_id=actor.id)

    result = await service.get_enrollments_paginated(
        page=page,
        size=size,
        student_id=student_id,
        class_id=class_id,
        academic_year=academic_year,
        status=status,
        grade_level=grade_level,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order
    )

    return {
        "items": [format_enrollment(enrollment) for enrollment in result["items"]],
        "total": result["total"],
        "page": result["page"],
        "size": result["size"],
        "has_next": result["has_next"],
        "has_previous": result["has_previous"],
        "total_pages": result["total_pages"]
    }


@router.post("/", response_model=EnrollmentResponse, status_code=201)
async def create_enrollment(
    enrollment_data: EnrollmentCreate,
    actor: Actor = Depends(require_permission(ENROLLMENT_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Create new enrollment, PENDING unless APPROVED is requested"""
    service = EnrollmentService(db, actor_id=actor.id)

    return await service.create_enrollment(**enrollment_data.model_dump())


@router.get("/statistics", response_model=EnrollmentStatistics)
async def get_enrollment_statistics(
    academic_year: Optional[str] = Query(None),
    grade_level: Optional[int] = Query(None, ge=1),
    actor: Actor = Depends(require_permission(ENROLLMENT_READ)),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache)
):
    """Enrollment counts by status, grade and class"""
    cache_key = cache.make_key("enrollment_statistics", academic_year or "all", grade_level or "all")
    cached = await cache.get(cache_key)
    if cached is not None:
        return cached

    service = EnrollmentService(db, actor_id=actor.id)
    statistics = await service.get_enrollment_statistics(academic_year=academic_year, grade_level=grade_level)
    await cache.set(cache_key, statistics)
    return statistics


@router.post("/auto-assign", response_model=AutoAssignOutcome)
async def auto_assign_students(
    request: AutoAssignRequest,
    actor: Actor = Depends(require_permission(ENROLLMENT_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Place every unassigned student of a grade, creating classes when all are full"""
    service = AutoAssignmentService(db, actor_id=actor.id)

    outcome = await service.auto_assign(
        grade_level=request.grade_level,
        academic_year=request.academic_year,
        max_students_per_class=request.max_students_per_class
    )
    return batch_response(outcome, AutoAssignOutcome)


@router.post("/promote", response_model=PromotionOutcome)
async def promote_students(
    request: PromotionRequest,
    actor: Actor = Depends(require_permission(ENROLLMENT_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Move a grade's students into the next grade for a new academic year"""
    service = PromotionService(db, actor_id=actor.id)

    outcome = await service.promote(
        current_grade_level=request.current_grade_level,
        current_academic_year=request.current_academic_year,
        new_academic_year=request.new_academic_year,
        max_students_per_class=request.max_students_per_class
    )
    return batch_response(outcome, PromotionOutcome)


@router.get("/students/{student_id}/history", response_model=dict)
async def get_student_enrollment_history(
    student_id: UUID,
    actor: Actor = Depends(require_permission(ENROLLMENT_READ)),
    db: AsyncSession = Depends(get_db)
):
    """All enrollments of a student, newest academic year first"""
    service = EnrollmentService(db, actor_id=actor.id)

    history = await service.get_student_enrollment_history(student_id)
    items = [
        EnrollmentHistoryItem.model_validate({
            **format_enrollment(entry["enrollment"]),
            "class_name": entry["class_name"],
            "class_code": entry["class_code"],
            "grade_level": entry["grade_level"],
        }).model_dump(mode="json")
        for entry in history
    ]

    return {
        "student_id": str(student_id),
        "total": len(items),
        "enrollments": items
    }


@router.post("/classes/{class_id}/reconcile", response_model=ClassStatistics)
async def reconcile_class_occupancy(
    class_id: UUID,
    actor: Actor = Depends(require_permission(ENROLLMENT_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Recompute a class's occupancy counter from its APPROVED enrollments"""
    service = EnrollmentService(db, actor_id=actor.id)

    class_obj = await service.reconcile_class(class_id)
    return ClassService.describe(class_obj)


@router.get("/{enrollment_id}", response_model=EnrollmentResponse)
async def get_enrollment(
    enrollment_id: UUID,
    actor: Actor = Depends(require_permission(ENROLLMENT_READ)),
    db: AsyncSession = Depends(get_db)
):
    """Get enrollment by ID"""
    service = EnrollmentService(db, actor_id=actor.id)
    return await service.get_or_404(enrollment_id)


@router.patch("/{enrollment_id}/status", response_model=EnrollmentResponse)
async def update_enrollment_status(
    enrollment_id: UUID,
    status_data: StatusUpdate,
    actor: Actor = Depends(require_permission(ENROLLMENT_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Approve or reject a PENDING enrollment"""
    service = EnrollmentService(db, actor_id=actor.id)

    return await service.update_enrollment_status(enrollment_id, status_data.status, notes=status_data.notes)


@router.delete("/{enrollment_id}", response_model=dict)
async def delete_enrollment(
    enrollment_id: UUID,
    actor: Actor = Depends(require_permission(ENROLLMENT_WRITE)),
    db: AsyncSession = Depends(get_db)
):
    """Delete enrollment; an APPROVED one releases its seat and the student's class"""
    service = EnrollmentService(db, actor_id=actor.id)

    await service.delete_enrollment(enrollment_id)
    return {"id": str(enrollment_id), "deleted": True}
