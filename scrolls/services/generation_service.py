"""
Question replacement dispatch to the external generation workflow
"""
import logging
import uuid
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from scrolls.config import settings
from scrolls.exceptions import GenerationDispatchFailed, JobNotFound, QuestionNotFound, QuizNotFound
from scrolls.models import IllegalTransition, JobStatus, Question, Quiz
from scrolls.services.callback_service import REPLACEMENT_PREFIX
from scrolls.services.job_store import GenerationJob, JobStore
from scrolls.utils.timeutils import isoformat_utc

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/api/educator/quiz/webhook-callback-replace"
POLL_PATH = "/api/educator/quiz/poll-status"


class GenerationService:
    """Creates replacement jobs and hands them to the generator webhook"""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        # Tests swap in httpx.MockTransport
        self.transport = transport

    def _owned_quiz(self, db: Session, educator_id: str, quiz_id) -> Quiz:
        quiz = db.get(Quiz, quiz_id)
        if not quiz or quiz.educator_id != educator_id:
            raise QuizNotFound()
        return quiz

    def build_request(
        self,
        quiz: Quiz,
        question: Question,
        job_id: str,
        overrides: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Payload sent to the generator; also kept on the job for callback fallbacks"""
        config = quiz.configuration or {}
        book = overrides.get("book")
        chapter = overrides.get("chapter")

        return {
            "jobId": job_id,
            "callbackUrl": f"{settings.PUBLIC_BASE_URL.rstrip('/')}{CALLBACK_PATH}",
            "quizId": str(quiz.id),
            "questionId": str(question.id),
            "questionCount": 1,
            "topics": config.get("topics") or [],
            "books": [book] if book else (config.get("books") or []),
            "chapters": [chapter] if chapter else (config.get("chapters") or []),
            "difficulty": overrides.get("difficulty") or config.get("difficulty") or "intermediate",
            "bloomsLevel": config.get("bloomsLevels") or ["knowledge", "comprehension"],
            "timeLimit": quiz.duration,
            "quizTitle": quiz.title,
            "quizDescription": quiz.description,
            "isReplacement": True,
        }

    def _settled(self, store: JobStore, job_id: str, **fields) -> Optional[GenerationJob]:
        """
        Apply a post-dispatch update unless the generator's callback got there first

        Returns None when the update was applied, else the job as the callback left it.
        """
        try:
            store.update(job_id, **fields)
        except IllegalTransition:
            job = store.get(job_id)
            logger.info(f"Replacement job {job_id} already {job.status.value} by its callback")
            return job
        return None

    def _dispatched(self, job: GenerationJob) -> Dict[str, Any]:
        if job.status == JobStatus.COMPLETED:
            rows = job.questions_data or [{}]
            return {
                "success": True,
                "jobId": job.job_id,
                "questionId": rows[0].get("id") or job.webhook_payload.get("questionIdToReplace"),
                "message": job.message or "Question replaced successfully",
            }

        return self._started(job.job_id)

    @staticmethod
    def _started(job_id: str) -> Dict[str, Any]:
        return {
            "success": True,
            "jobId": job_id,
            "message": "Question replacement started",
            "pollUrl": f"{POLL_PATH}?jobId={job_id}",
            "estimatedTime": "10-30 seconds",
        }

    def _fail(self, store: JobStore, job_id: str, error: str, message: str) -> Dict[str, Any]:
        settled = self._settled(store, job_id, status=JobStatus.FAILED, error=error, message=message)
        if settled is not None and settled.status == JobStatus.COMPLETED:
            # The acknowledgement was lost but the replacement already landed
            return self._dispatched(settled)
        raise GenerationDispatchFailed(message, job_id)

    def request_replacement(
        self,
        db: Session,
        store: JobStore,
        educator_id: str,
        quiz_id,
        question_id,
        overrides: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Start an asynchronous replacement of one question

        The job is created before the webhook call so a fast callback always
        finds it. When that callback has already settled the job by the time
        the generator acknowledges, the job is left as the callback set it.

        Returns:
            {success, jobId, message, pollUrl, estimatedTime}, or
            {success, jobId, questionId, message} when the generator finished inline

        Raises:
            QuizNotFound, QuestionNotFound, GenerationDispatchFailed
        """
        overrides = overrides or {}
        quiz = self._owned_quiz(db, educator_id, quiz_id)
        question = db.scalars(
            select(Question).where(Question.id == question_id, Question.quiz_id == quiz.id)
        ).first()
        if not question:
            raise QuestionNotFound()

        job_id = f"{REPLACEMENT_PREFIX}{uuid.uuid4()}"
        request_payload = self.build_request(quiz, question, job_id, overrides)

        store.create(job_id, quiz.id, {
            **request_payload,
            "questionIdToReplace": str(question.id),
            "educatorId": educator_id,
        })
        logger.info(f"Replacement job {job_id} created for question {question.id} in quiz {quiz.id}")

        if not settings.QUIZ_GENERATION_WEBHOOK_URL:
            logger.error("QUIZ_GENERATION_WEBHOOK_URL is not configured")
            return self._fail(
                store, job_id, "No webhook configured", "Question generation webhook not configured"
            )

        try:
            with httpx.Client(timeout=settings.WEBHOOK_DISPATCH_TIMEOUT, transport=self.transport) as client:
                response = client.post(settings.QUIZ_GENERATION_WEBHOOK_URL, json=request_payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Generator webhook HTTP error: {e.response.status_code} - {e.response.text}")
            return self._fail(
                store,
                job_id,
                f"Webhook failed: {e.response.status_code} - {e.response.text}",
                "Failed to start question replacement",
            )
        except httpx.HTTPError as e:
            logger.error(f"Could not reach generator webhook: {str(e)}")
            return self._fail(
                store,
                job_id,
                "Failed to reach question generation service",
                "Failed to reach question generation service",
            )

        try:
            ack = response.json()
        except ValueError:
            ack = {}
        if not isinstance(ack, dict):
            ack = {}

        if ack.get("success") and ack.get("questionId"):
            settled = self._settled(
                store, job_id, status=JobStatus.COMPLETED, progress=100, message="Question replaced successfully"
            )
            if settled is not None:
                return self._dispatched(settled)
            return {
                "success": True,
                "jobId": job_id,
                "questionId": ack["questionId"],
                "message": ack.get("message") or "Question replaced successfully",
            }

        settled = self._settled(
            store,
            job_id,
            status=JobStatus.PROCESSING,
            progress=10,
            message="Creating new biblical study question...",
        )
        if settled is not None:
            return self._dispatched(settled)

        return self._started(job_id)

    def job_status(self, store: JobStore, job_id: str, educator_id: Optional[str] = None) -> Dict[str, Any]:
        """Pollable view of a job; the generator request payload stays private"""
        job = store.get(job_id)
        owner = job.webhook_payload.get("educatorId") if job is not None else None
        if job is None or (educator_id and owner and owner != educator_id):
            raise JobNotFound(job_id)

        return {
            "jobId": job.job_id,
            "quizId": job.quiz_id,
            "status": job.status.value,
            "progress": job.progress,
            "message": job.message,
            "error": job.error,
            "questionsCount": len(job.questions_data or []),
            "questions": job.questions_data if job.status == JobStatus.COMPLETED else None,
            "createdAt": isoformat_utc(job.created_at),
            "updatedAt": isoformat_utc(job.updated_at),
            "expiresAt": isoformat_utc(job.expires_at),
        }


# Global instance
generation_service = GenerationService()
