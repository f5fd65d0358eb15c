# app/schemas/class_schemas.py
from typing import Optional
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, Field

from .enrollment_schemas import ACADEMIC_YEAR_REGEX


class ClassCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20, description="Class code, unique within a year")
    name: str = Field(..., min_length=1, max_length=100)
    grade_level: int = Field(..., gt=0)
    academic_year: str = Field(..., pattern=ACADEMIC_YEAR_REGEX)
    maximum_students: int = Field(default=30, gt=0)


class ClassResponse(BaseModel):
    id: UUID
    code: str
    name: str
    grade_level: int
    academic_year: str
    maximum_students: int
    current_students: int
    available_spots: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ClassStatistics(BaseModel):
    id: str
    code: str
    name: str
    grade_level: int
    academic_year: str
    maximum_students: int
    current_students: int
    available_spots: int
    occupancy_rate: float
