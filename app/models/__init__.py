# app/models/__init__.py
"""Import all models here, if needed for Alembic migration."""
from .base import Base

from .tenant_specific.student import Student, StudentStatus
from .tenant_specific.class_model import ClassModel
from .tenant_specific.enrollment import Enrollment, EnrollmentStatus

__all__ = [
    "Base",
    "Student",
    "StudentStatus",
    "ClassModel",
    "Enrollment",
    "EnrollmentStatus",
]
