# app/schemas/student_schemas.py
from typing import Optional
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, EmailStr, Field

from ..models.tenant_specific.student import StudentStatus


class StudentCreate(BaseModel):
    student_code: str = Field(..., min_length=1, max_length=20, description="School-issued student code")
    full_name: str = Field(..., min_length=1, max_length=120)
    email: Optional[EmailStr] = None
    grade_level: int = Field(..., gt=0)
    status: StudentStatus = StudentStatus.ACTIVE


class StudentResponse(BaseModel):
    id: UUID
    student_code: str
    full_name: str
    email: Optional[str] = None
    grade_level: int
    status: StudentStatus
    # Read-only: moved by enrollment approval, auto-assignment and promotion
    class_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
