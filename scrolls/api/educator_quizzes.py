"""
Educator quiz management API endpoints: reassignment and question replacement
"""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import Optional
from uuid import UUID
import logging

from scrolls.auth import CurrentUser, require_educator
from scrolls.database import get_db
from scrolls.exceptions import QuizNotFound
from scrolls.models import Quiz
from scrolls.schemas.generation import (
    JobStatusResponse,
    ReplaceQuestionRequest,
    ReplaceQuestionResponse,
)
from scrolls.schemas.quiz import ReassignRequest, ReassignResponse
from scrolls.services.callback_service import callback_service
from scrolls.services.enrollment_service import enrollment_service
from scrolls.services.generation_service import generation_service
from scrolls.services.job_store import JobStore, get_job_store
from scrolls.utils.cache import CacheService, get_cache


router = APIRouter(prefix="/api/educator/quiz", tags=["educator-quiz"])
logger = logging.getLogger(__name__)


@router.post("/{quiz_id}/reassign", response_model=ReassignResponse)
async def reassign_quiz(
    quiz_id: UUID,
    request: ReassignRequest,
    user: CurrentUser = Depends(require_educator),
    db: Session = Depends(get_db),
):
    """
    Issue retakes to students

    The current enrollment of each student is superseded; the retake is
    shuffled with its own seed and is not bound to the quiz window.
    """
    quiz = db.get(Quiz, quiz_id)
    if not quiz or quiz.educator_id != user.id:
        raise QuizNotFound()

    return enrollment_service.reassign(db, quiz, user.id, request.student_ids, request.reason)


@router.put("/{quiz_id}/question/{question_id}/replace-async", response_model=ReplaceQuestionResponse)
def replace_question_async(
    quiz_id: UUID,
    question_id: UUID,
    request: Optional[ReplaceQuestionRequest] = None,
    user: CurrentUser = Depends(require_educator),
    db: Session = Depends(get_db),
    store: JobStore = Depends(get_job_store),
):
    """
    Ask the generator for a replacement question

    Returns immediately with a jobId; poll /poll-status for the result.
    """
    overrides = request.model_dump(exclude_none=True) if request else {}
    return generation_service.request_replacement(db, store, user.id, quiz_id, question_id, overrides)


@router.get("/poll-status", response_model=JobStatusResponse)
async def poll_status(
    job_id: str = Query(..., alias="jobId", min_length=1),
    user: CurrentUser = Depends(require_educator),
    store: JobStore = Depends(get_job_store),
):
    """Current state of a replacement job"""
    return generation_service.job_status(store, job_id, educator_id=user.id)


@router.post("/webhook-callback-replace")
async def webhook_callback_replace(
    request: Request,
    db: Session = Depends(get_db),
    store: JobStore = Depends(get_job_store),
    cache: CacheService = Depends(get_cache),
):
    """
    Callback from the question generator

    Not authenticated with user headers: the generator only knows the jobId
    it was given.
    """
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

    status_code, body = callback_service.process_replacement_callback(db, store, payload, cache)
    return JSONResponse(status_code=status_code, content=body)
