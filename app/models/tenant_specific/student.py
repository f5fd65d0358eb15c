# app/models/tenant_specific/student.py
import enum
from sqlalchemy import Column, String, Integer, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship
from ..base import Base


class StudentStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    GRADUATED = "GRADUATED"


class Student(Base):
    __tablename__ = "students"

    # Basic Information
    student_code = Column(String(20), nullable=False, unique=True, index=True)
    full_name = Column(String(120), nullable=False, index=True)
    email = Column(String(100), index=True)

    # Academic Information
    grade_level = Column(Integer, nullable=False, index=True)
    status = Column(
        Enum(StudentStatus, native_enum=False, length=20, validate_strings=True),
        default=StudentStatus.ACTIVE,
        nullable=False
    )

    # Mirrors the student's single APPROVED enrollment for the current year.
    # Written only through the consistency coordinator.
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id", ondelete="SET NULL"), nullable=True, index=True)

    # Relationships
    current_class = relationship("ClassModel", foreign_keys=[class_id], lazy="raise")
    enrollments = relationship("Enrollment", back_populates="student", lazy="raise")
