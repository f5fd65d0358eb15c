# app/models/tenant_specific/enrollment.py
import enum
from sqlalchemy import Column, String, DateTime, ForeignKey, Enum, Index, Text, Uuid, text
from sqlalchemy.orm import relationship
from ..base import Base, utcnow


class EnrollmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_live(self) -> bool:
        """Live enrollments block a second registration for the same student and year"""
        return self in LIVE_STATUSES

    def can_transition_to(self, target: "EnrollmentStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


TERMINAL_STATUSES = frozenset({EnrollmentStatus.APPROVED, EnrollmentStatus.REJECTED})
LIVE_STATUSES = frozenset({EnrollmentStatus.PENDING, EnrollmentStatus.APPROVED})

ALLOWED_TRANSITIONS = {
    EnrollmentStatus.PENDING: frozenset({EnrollmentStatus.APPROVED, EnrollmentStatus.REJECTED}),
    EnrollmentStatus.APPROVED: frozenset(),
    EnrollmentStatus.REJECTED: frozenset(),
}


class Enrollment(Base):
    __tablename__ = "enrollments"

    # Foreign Keys
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)

    # Enrollment Details
    enrollment_date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    academic_year = Column(String(9), nullable=False, index=True)
    status = Column(
        Enum(EnrollmentStatus, native_enum=False, length=20, validate_strings=True),
        default=EnrollmentStatus.PENDING,
        nullable=False,
        index=True
    )
    notes = Column(Text)

    __table_args__ = (
        # One PENDING or APPROVED enrollment per student and academic year
        Index(
            "uq_enrollment_live_student_year",
            "student_id",
            "academic_year",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'APPROVED')"),
            sqlite_where=text("status IN ('PENDING', 'APPROVED')"),
        ),
        Index("ix_enrollment_class_year_status", "class_id", "academic_year", "status"),
    )

    # Relationships
    student = relationship("Student", back_populates="enrollments", lazy="raise")
    class_ref = relationship("ClassModel", back_populates="enrollments", lazy="raise")
