# app/models/tenant_specific/class_model.py
from sqlalchemy import Column, String, Integer, CheckConstraint
from sqlalchemy.orm import relationship
from ..base import Base
from sqlalchemy import UniqueConstraint


class ClassModel(Base):
    __tablename__ = "classes"

    # Class Information
    code = Column(String(20), nullable=False, index=True)
    name = Column(String(100), nullable=False, index=True)
    grade_level = Column(Integer, nullable=False, index=True)
    academic_year = Column(String(9), nullable=False, index=True)
    maximum_students = Column(Integer, default=30, nullable=False)
    # Occupancy counter: equals the APPROVED enrollments for this class and year
    current_students = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("code", "academic_year", name="uq_class_code_year"),
        CheckConstraint("current_students >= 0", name="ck_class_occupancy_non_negative"),
        CheckConstraint("current_students <= maximum_students", name="ck_class_occupancy_capacity"),
    )

    # Relationships
    enrollments = relationship("Enrollment", back_populates="class_ref", lazy="raise")

    @property
    def available_spots(self) -> int:
        return max(self.maximum_students - self.current_students, 0)
