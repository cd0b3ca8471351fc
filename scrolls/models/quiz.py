"""
Quiz and Question models
"""
from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, ForeignKey, Index, Uuid
from scrolls.database import Base
from scrolls.models.types import JSONType
from scrolls.utils.timeutils import utcnow
import uuid


class Quiz(Base):
    """
    Quizzes table - one educator owns each quiz

    start_time is nullable: deferred-scheduling quizzes are published first
    and given a start time later, so the time window is always read live.
    """
    __tablename__ = "quizzes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    educator_id = Column(String(255), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    duration = Column(Integer, nullable=False)  # minutes
    total_questions = Column(Integer, nullable=False, default=0)
    start_time = Column(DateTime(timezone=True), nullable=True)
    timezone = Column(String(64), default="UTC")
    shuffle_questions = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="draft")
    scheduling_status = Column(String(20), default="scheduled")
    # Generation parameters: topics, books, chapters, difficulty, bloomsLevels
    configuration = Column(JSONType, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Quiz(id={self.id}, title={self.title!r}, status={self.status})>"


class Question(Base):
    """
    Questions table - order_index defines the canonical (unshuffled) order

    correct_answer and explanation never leave the service through the
    student read path.
    """
    __tablename__ = "questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id = Column(Uuid, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)
    question_text = Column(Text, nullable=False)
    options = Column(JSONType, nullable=False, default=list)  # [{id, text}, ...]
    correct_answer = Column(String(10), nullable=False)
    explanation = Column(Text)
    difficulty = Column(String(20), default="intermediate")
    blooms_level = Column(String(20), default="knowledge")
    topic = Column(String(255))
    book = Column(String(100))
    chapter = Column(String(100))
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_questions_quiz_order", "quiz_id", "order_index"),
    )

    def __repr__(self):
        return f"<Question(id={self.id}, quiz_id={self.quiz_id}, order={self.order_index})>"
