"""
Enrollment and EducatorStudent models
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index, UniqueConstraint, Uuid, text
from scrolls.database import Base
from scrolls.utils.timeutils import utcnow
import uuid


class Enrollment(Base):
    """
    Enrollments table - a student's registration to attempt one quiz

    A (student, quiz) pair may have many rows: the original plus any
    reassignments, each linked to its predecessor by parent_enrollment_id.
    At most one of them is not completed at any time; the partial unique
    index below backs that up at the database level.
    """
    __tablename__ = "enrollments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id = Column(Uuid, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(String(255), nullable=False)
    enrolled_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    status = Column(String(20), nullable=False, default="enrolled")
    started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    is_reassignment = Column(Boolean, nullable=False, default=False)
    reassignment_reason = Column(Text)
    parent_enrollment_id = Column(Uuid, ForeignKey("enrollments.id"), nullable=True)
    reassigned_at = Column(DateTime(timezone=True))
    reassigned_by = Column(String(255))

    __table_args__ = (
        Index("ix_enrollments_student_quiz", "student_id", "quiz_id", "enrolled_at"),
        Index(
            "uq_enrollments_active_student_quiz",
            "quiz_id",
            "student_id",
            unique=True,
            postgresql_where=text("status <> 'completed'"),
            sqlite_where=text("status <> 'completed'"),
        ),
    )

    def __repr__(self):
        return (
            f"<Enrollment(id={self.id}, student_id={self.student_id}, "
            f"status={self.status}, reassignment={self.is_reassignment})>"
        )


class EducatorStudent(Base):
    """Educator-student relationship, auto-created on first quiz access"""
    __tablename__ = "educator_students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    educator_id = Column(String(255), nullable=False)
    student_id = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    enrolled_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("educator_id", "student_id", name="uq_educator_students_pair"),
    )
