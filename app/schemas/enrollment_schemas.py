# app/schemas/enrollment_schemas.py
"""Pydantic schemas for enrollment requests and outcomes."""
from typing import Dict, List, Optional
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, Field, field_validator

from ..models.tenant_specific.enrollment import EnrollmentStatus

ACADEMIC_YEAR_REGEX = r"^\d{4}-\d{4}$"


class EnrollmentCreate(BaseModel):
    student_id: UUID
    class_id: UUID
    academic_year: str = Field(..., pattern=ACADEMIC_YEAR_REGEX, description="Academic year, e.g. 2024-2025")
    enrollment_date: Optional[datetime] = None
    status: EnrollmentStatus = Field(default=EnrollmentStatus.PENDING, description="PENDING or APPROVED")
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator('status')
    @classmethod
    def validate_initial_status(cls, v):
        if v == EnrollmentStatus.REJECTED:
            raise ValueError('Enrollments start as PENDING or APPROVED')
        return v


class StatusUpdate(BaseModel):
    status: EnrollmentStatus
    notes: Optional[str] = Field(default=None, max_length=1000)


class AutoAssignRequest(BaseModel):
    grade_level: int = Field(..., gt=0)
    academic_year: str = Field(..., pattern=ACADEMIC_YEAR_REGEX)
    max_students_per_class: Optional[int] = Field(default=None, gt=0)


class PromotionRequest(BaseModel):
    current_grade_level: int = Field(..., gt=0)
    current_academic_year: str = Field(..., pattern=ACADEMIC_YEAR_REGEX)
    new_academic_year: str = Field(..., pattern=ACADEMIC_YEAR_REGEX)
    max_students_per_class: Optional[int] = Field(default=None, gt=0)


class EnrollmentResponse(BaseModel):
    id: UUID
    student_id: UUID
    class_id: UUID
    academic_year: str
    enrollment_date: datetime
    status: EnrollmentStatus
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EnrollmentHistoryItem(EnrollmentResponse):
    class_name: str
    class_code: str
    grade_level: int


class BatchFailure(BaseModel):
    student_id: str
    student_name: Optional[str] = None
    error: str
    message: str


class Assignment(BaseModel):
    student_id: str
    student_name: str
    class_id: str
    class_name: str
    enrollment_id: str


class CreatedClass(BaseModel):
    class_id: str
    code: str
    name: str


class AutoAssignOutcome(BaseModel):
    status: str
    grade_level: int
    academic_year: str
    total_assigned: int
    assignments: List[Assignment]
    created_classes: List[CreatedClass]
    failures: List[BatchFailure]
    aborted_at: Optional[str] = None
    error: Optional[str] = None


class Promotion(BaseModel):
    student_id: str
    student_name: str
    old_class_id: str
    old_class: str
    new_class_id: str
    new_class: str
    old_grade: int
    new_grade: int
    enrollment_id: str


class PromotionOutcome(BaseModel):
    status: str
    current_grade_level: int
    new_grade_level: int
    current_academic_year: str
    new_academic_year: str
    total_promoted: int
    promotions: List[Promotion]
    failures: List[BatchFailure]
    aborted_at: Optional[str] = None
    error: Optional[str] = None


class StatusOverview(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int


class ClassEnrollmentCount(BaseModel):
    class_id: str
    class_name: str
    class_code: str
    maximum_students: int
    current_students: int
    enrollments: int


class EnrollmentStatistics(BaseModel):
    overview: StatusOverview
    by_grade: Dict[int, int]
    by_class: List[ClassEnrollmentCount]
    academic_year: Optional[str] = None
    grade_level: Optional[int] = None
