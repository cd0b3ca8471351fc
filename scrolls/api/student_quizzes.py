"""
Student quiz-taking API endpoints
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from uuid import UUID
import logging

from scrolls.auth import CurrentUser, require_student
from scrolls.database import get_db
from scrolls.schemas.quiz import (
    AutosaveRequest,
    AutosaveResponse,
    AutosaveStatus,
    QuizSubmission,
    StartQuizResponse,
    SubmitResponse,
)
from scrolls.services.attempt_service import attempt_service
from scrolls.utils.cache import CacheService, get_cache


router = APIRouter(prefix="/api/student/quiz", tags=["student-quiz"])
logger = logging.getLogger(__name__)


@router.post("/{quiz_id}/start", response_model=StartQuizResponse)
async def start_quiz(
    quiz_id: UUID,
    user: CurrentUser = Depends(require_student),
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
):
    """
    Start or resume a quiz attempt

    - Resolves the student's active enrollment (auto-enrolls on published quizzes)
    - Enforces the scheduled window for original enrollments
    - Resumes an in-progress attempt with the same question order
    - Questions never include correct answers or explanations
    """
    logger.info(f"Start request: student {user.id}, quiz {quiz_id}")
    return attempt_service.start_attempt(db, user.id, quiz_id, cache=cache)


@router.post("/{quiz_id}/submit", response_model=SubmitResponse)
async def submit_quiz(
    quiz_id: UUID,
    submission: QuizSubmission,
    user: CurrentUser = Depends(require_student),
    db: Session = Depends(get_db),
):
    """
    Submit answers for an in-progress attempt

    The score is recorded but only released after the quiz window closes.
    """
    answers = [answer.model_dump(by_alias=True) for answer in submission.answers]
    return attempt_service.submit_attempt(
        db,
        user.id,
        quiz_id,
        submission.attempt_id,
        answers,
        time_spent=submission.time_spent,
    )


@router.post("/{quiz_id}/autosave", response_model=AutosaveResponse)
async def autosave_quiz(
    quiz_id: UUID,
    request: AutosaveRequest,
    user: CurrentUser = Depends(require_student),
    db: Session = Depends(get_db),
):
    """Save in-progress answers and the current question for a later resume"""
    answers = [answer.model_dump(by_alias=True) for answer in request.answers]
    return attempt_service.save_progress(
        db,
        user.id,
        quiz_id,
        request.attempt_id,
        answers,
        current_question_index=request.current_question_index,
    )


@router.get("/{quiz_id}/autosave", response_model=AutosaveStatus)
async def get_autosave(
    quiz_id: UUID,
    user: CurrentUser = Depends(require_student),
    db: Session = Depends(get_db),
):
    """Latest autosave of the in-progress attempt; hasAutoSave is false when there is none"""
    return attempt_service.load_progress(db, user.id, quiz_id)
