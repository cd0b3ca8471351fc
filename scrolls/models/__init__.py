"""
Database models package
"""
from scrolls.models.quiz import Quiz, Question
from scrolls.models.enrollment import Enrollment, EducatorStudent
from scrolls.models.quiz_attempt import QuizAttempt
from scrolls.models.status import (
    AttemptStatus,
    EnrollmentStatus,
    IllegalTransition,
    JobStatus,
    QuizStatus,
    ensure_transition,
)

__all__ = [
    "Quiz",
    "Question",
    "Enrollment",
    "EducatorStudent",
    "QuizAttempt",
    "AttemptStatus",
    "EnrollmentStatus",
    "IllegalTransition",
    "JobStatus",
    "QuizStatus",
    "ensure_transition",
]
