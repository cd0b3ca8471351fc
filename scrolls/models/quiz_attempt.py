"""
QuizAttempt model - one run through a quiz, bound to exactly one enrollment
"""
from sqlalchemy import Boolean, Column, String, Integer, DateTime, ForeignKey, Index, Uuid, text
from scrolls.database import Base
from scrolls.models.types import JSONType
from scrolls.utils.timeutils import utcnow
import uuid


class QuizAttempt(Base):
    """
    Quiz attempts table - lifecycle in_progress -> completed | abandoned

    One attempt per enrollment: a closed attempt is never followed by a
    fresh one on the same enrollment.

    Only one in_progress attempt may exist per (quiz, student, enrollment);
    concurrent start requests that both miss the lookup collide on the
    partial unique index instead of producing two rows.
    """
    __tablename__ = "quiz_attempts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id = Column(Uuid, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(String(255), nullable=False, index=True)
    enrollment_id = Column(Uuid, ForeignKey("enrollments.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    end_time = Column(DateTime(timezone=True))
    status = Column(String(20), nullable=False, default="in_progress")
    answers = Column(JSONType, nullable=False, default=list)  # autosaved while in progress, evaluated once completed
    current_question_index = Column(Integer, nullable=False, default=0)
    last_saved_at = Column(DateTime(timezone=True))
    question_order = Column(JSONType)  # question ids in the order first shown
    total_questions = Column(Integer, nullable=False, default=0)
    total_correct = Column(Integer)
    score = Column(Integer)  # percentage 0-100
    time_spent = Column(Integer)  # seconds
    submitted_late = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_quiz_attempts_lookup", "quiz_id", "student_id", "enrollment_id"),
        Index(
            "uq_quiz_attempts_active_enrollment",
            "quiz_id",
            "student_id",
            "enrollment_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
    )

    def __repr__(self):
        return f"<QuizAttempt(id={self.id}, student_id={self.student_id}, status={self.status})>"
