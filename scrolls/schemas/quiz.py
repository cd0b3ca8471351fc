"""
Pydantic schemas for quiz-taking and reassignment requests and responses
"""
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import List, Any, Optional
from uuid import UUID


class CamelModel(BaseModel):
    """Wire format is camelCase; Python attributes stay snake_case"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class QuestionOption(BaseModel):
    id: str
    text: str


class StudentQuestion(CamelModel):
    """Question as shown during an attempt (no answer, no explanation)"""
    id: str
    question_text: str
    options: List[QuestionOption]
    order_index: int = 0
    book: Optional[str] = None
    chapter: Optional[str] = None
    topic: Optional[str] = None
    blooms_level: Optional[str] = None


class StudentQuiz(CamelModel):
    id: str
    title: str
    duration: int  # minutes
    total_questions: int
    questions: List[StudentQuestion]


class SubmittedAnswer(CamelModel):
    question_id: str
    answer: Optional[Any] = None
    marked_for_review: bool = False
    time_spent: Optional[int] = Field(None, ge=0)


class StartQuizResponse(CamelModel):
    """Response for starting or resuming an attempt"""
    quiz: StudentQuiz
    attempt_id: str
    remaining_time: int  # seconds
    resumed: bool = False
    is_reassignment: bool = False
    reassignment_reason: Optional[str] = None
    saved_answers: List[SubmittedAnswer] = Field(default_factory=list)
    current_question_index: int = 0


class QuizSubmission(CamelModel):
    """Schema for quiz submission"""
    attempt_id: UUID
    answers: List[SubmittedAnswer] = Field(default_factory=list)
    time_spent: Optional[int] = Field(None, ge=0, description="Seconds reported by the client")


class SubmitResponse(CamelModel):
    success: bool
    attempt_id: str
    message: str


class AutosaveRequest(CamelModel):
    """In-progress answers; remaining time is always computed server-side"""
    attempt_id: UUID
    answers: List[SubmittedAnswer] = Field(default_factory=list)
    current_question_index: int = Field(0, ge=0)


class AutosaveResponse(CamelModel):
    success: bool
    attempt_id: str
    saved_at: str


class AutosaveData(CamelModel):
    attempt_id: str
    answers: List[SubmittedAnswer]
    current_question_index: int
    remaining_time: int  # seconds
    last_saved: str


class AutosaveStatus(CamelModel):
    has_auto_save: bool
    auto_save_data: Optional[AutosaveData] = None


class ReassignRequest(CamelModel):
    """Educator request to issue retakes"""
    student_ids: List[str] = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=1000)


class ReassignedStudent(CamelModel):
    student_id: str
    enrollment_id: str
    parent_enrollment_id: str


class SkippedStudent(CamelModel):
    student_id: str
    reason: str  # not_enrolled | already_reassigned


class ReassignResponse(CamelModel):
    success: bool
    message: str
    reassigned_count: int
    already_reassigned_count: int
    not_enrolled_count: int
    reassigned: List[ReassignedStudent]
    skipped: List[SkippedStudent]
