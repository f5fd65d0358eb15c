"""create students, classes and enrollments

Revision ID: a1c4e7d2b9f0
Revises:
Create Date: 2026-10-19 09:12:40.518203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c4e7d2b9f0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

LIVE_PREDICATE = sa.text("status IN ('PENDING', 'APPROVED')")


def upgrade() -> None:
    op.create_table(
        'classes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('grade_level', sa.Integer(), nullable=False),
        sa.Column('academic_year', sa.String(length=9), nullable=False),
        sa.Column('maximum_students', sa.Integer(), nullable=False),
        sa.Column('current_students', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', 'academic_year', name='uq_class_code_year'),
        sa.CheckConstraint('current_students >= 0', name='ck_class_occupancy_non_negative'),
        sa.CheckConstraint('current_students <= maximum_students', name='ck_class_occupancy_capacity'),
    )
    op.create_index('ix_classes_id', 'classes', ['id'])
    op.create_index('ix_classes_created_at', 'classes', ['created_at'])
    op.create_index('ix_classes_code', 'classes', ['code'])
    op.create_index('ix_classes_name', 'classes', ['name'])
    op.create_index('ix_classes_grade_level', 'classes', ['grade_level'])
    op.create_index('ix_classes_academic_year', 'classes', ['academic_year'])

    op.create_table(
        'students',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('student_code', sa.String(length=20), nullable=False),
        sa.Column('full_name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=100), nullable=True),
        sa.Column('grade_level', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('class_id', sa.Uuid(), nullable=True),
        sa.ForeignKeyConstraint(['class_id'], ['classes.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_students_id', 'students', ['id'])
    op.create_index('ix_students_created_at', 'students', ['created_at'])
    op.create_index('ix_students_student_code', 'students', ['student_code'], unique=True)
    op.create_index('ix_students_full_name', 'students', ['full_name'])
    op.create_index('ix_students_email', 'students', ['email'])
    op.create_index('ix_students_grade_level', 'students', ['grade_level'])
    op.create_index('ix_students_class_id', 'students', ['class_id'])

    op.create_table(
        'enrollments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('student_id', sa.Uuid(), nullable=False),
        sa.Column('class_id', sa.Uuid(), nullable=False),
        sa.Column('enrollment_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('academic_year', sa.String(length=9), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['student_id'], ['students.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['class_id'], ['classes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_enrollments_id', 'enrollments', ['id'])
    op.create_index('ix_enrollments_created_at', 'enrollments', ['created_at'])
    op.create_index('ix_enrollments_student_id', 'enrollments', ['student_id'])
    op.create_index('ix_enrollments_class_id', 'enrollments', ['class_id'])
    op.create_index('ix_enrollments_academic_year', 'enrollments', ['academic_year'])
    op.create_index('ix_enrollments_status', 'enrollments', ['status'])
    op.create_index('ix_enrollment_class_year_status', 'enrollments', ['class_id', 'academic_year', 'status'])
    op.create_index(
        'uq_enrollment_live_student_year',
        'enrollments',
        ['student_id', 'academic_year'],
        unique=True,
        postgresql_where=LIVE_PREDICATE,
        sqlite_where=LIVE_PREDICATE,
    )


def downgrade() -> None:
    op.drop_index('uq_enrollment_live_student_year', table_name='enrollments')
    op.drop_table('enrollments')
    op.drop_table('students')
    op.drop_table('classes')
