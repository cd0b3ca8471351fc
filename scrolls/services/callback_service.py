"""
Replacement webhook callback processor

The external generator calls back once per job with either a generated
question, an error, or an intermediate progress update. Every branch answers
with a JSON body; the route only turns (status_code, body) into a response.
"""
import logging
import uuid
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from scrolls.models import IllegalTransition, JobStatus, Question
from scrolls.services.job_store import GenerationJob, JobAlreadyClaimed, JobStore
from scrolls.services.question_normalizer import (
    NormalizedQuestion,
    QuestionValidationFailed,
    normalize_question,
)
from scrolls.utils.cache import CacheService

logger = logging.getLogger(__name__)

REPLACEMENT_PREFIX = "replace-"

CallbackResult = Tuple[int, Dict[str, Any]]


def question_row(question: Question) -> Dict[str, Any]:
    """Full persisted question, as stored on the completed job"""
    return {
        "id": str(question.id),
        "quizId": str(question.quiz_id),
        "questionText": question.question_text,
        "options": question.options,
        "correctAnswer": question.correct_answer,
        "explanation": question.explanation,
        "difficulty": question.difficulty,
        "bloomsLevel": question.blooms_level,
        "topic": question.topic,
        "book": question.book,
        "chapter": question.chapter,
        "orderIndex": question.order_index,
    }


class CallbackService:
    """Applies generator callbacks to jobs and question rows"""

    def process_replacement_callback(
        self,
        db: Session,
        store: JobStore,
        payload: Dict[str, Any],
        cache: Optional[CacheService] = None
    ) -> CallbackResult:
        """
        Handle POST /api/educator/quiz/webhook-callback-replace

        Args:
            db: Database session
            store: Job store holding the replacement job
            payload: {jobId, status, questionsData?, error?, progress?, message?}
            cache: Question projection cache to invalidate on success

        Returns:
            (HTTP status code, JSON body)
        """
        job_id = payload.get("jobId")
        if not job_id:
            return 400, {"error": "Job ID is required"}

        job_id = str(job_id)
        if not job_id.startswith(REPLACEMENT_PREFIX):
            logger.error(f"Invalid job ID for replacement: {job_id}")
            return 400, {"error": "This endpoint is only for replacement jobs", "jobId": job_id}

        status = payload.get("status")
        error = payload.get("error")
        is_error = status == "error" or bool(error)

        logger.info(f"Received replacement callback for job {job_id} (status={status})")

        job = store.get(job_id)
        if job is None:
            if is_error:
                # Expired on our side; acknowledging stops the generator from retrying
                logger.warning(f"Error callback for unknown job {job_id}: {error}")
                return 200, {
                    "success": True,
                    "jobId": job_id,
                    "warning": "Job not found or expired; error acknowledged",
                }
            logger.error(f"Replacement job not found: {job_id}")
            return 404, {"error": "Job not found or expired", "jobId": job_id}

        if job.is_terminal:
            logger.info(f"Ignoring callback for job {job_id}: already {job.status.value}")
            return 200, {
                "success": True,
                "jobId": job_id,
                "message": f"Job already {job.status.value}",
            }

        delivers_question = status == "success" and payload.get("questionsData") is not None

        try:
            if is_error and not delivers_question:
                store.claim(job_id)
                store.update(
                    job_id,
                    status=JobStatus.FAILED,
                    progress=0,
                    message=str(error) if error else "Question replacement failed",
                    error=str(error) if error else "Unknown error occurred",
                )
                logger.error(f"Replacement job {job_id} failed: {error}")
                return 200, {"success": True, "jobId": job_id, "message": "Callback received successfully"}

            question_id = job.webhook_payload.get("questionIdToReplace")
            if not question_id:
                logger.error(f"No questionId found in job payload for job: {job_id}")
                store.claim(job_id)
                store.update(job_id, status=JobStatus.FAILED, error="Question ID to replace not found in job")
                return 400, {"error": "Question ID to replace not found in job", "jobId": job_id}

            if delivers_question:
                # Only the delivery holding the claim may finalize the job
                store.claim(job_id)
                raw = self._first_question(payload["questionsData"])
                return self._replace_question(db, store, job, str(question_id), raw, cache)

            if job.claimed_at is not None:
                logger.info(f"Ignoring progress for job {job_id}: result is being saved")
            else:
                progress = self._progress(payload.get("progress"))
                store.update(
                    job_id,
                    status=JobStatus.PROCESSING,
                    progress=progress,
                    message=payload.get("message") or "Generating replacement question...",
                )
                logger.info(f"Replacement job {job_id} progress update: {progress}%")
        except (IllegalTransition, JobAlreadyClaimed) as e:
            # Another delivery for the same job finished or claimed it in the meantime
            logger.info(f"Callback for job {job_id} lost to a concurrent update: {e}")
            return 200, {"success": True, "jobId": job_id, "message": "Job already finalized"}

        return 200, {"success": True, "jobId": job_id, "message": "Callback received successfully"}

    @staticmethod
    def _first_question(questions_data: Any) -> Optional[Dict[str, Any]]:
        """A single generated question arrives either bare or as the head of a list"""
        if isinstance(questions_data, dict):
            return questions_data
        if isinstance(questions_data, list) and questions_data and isinstance(questions_data[0], dict):
            return questions_data[0]
        return None

    @staticmethod
    def _progress(value: Any) -> int:
        try:
            progress = int(value) if value is not None else 50
        except (TypeError, ValueError):
            progress = 50
        return max(0, min(progress, 99))

    def _replace_question(
        self,
        db: Session,
        store: JobStore,
        job: GenerationJob,
        question_id: str,
        raw: Optional[Dict[str, Any]],
        cache: Optional[CacheService]
    ) -> CallbackResult:
        job_id = job.job_id

        try:
            normalized = normalize_question(raw or {}, job.webhook_payload)
        except QuestionValidationFailed as e:
            logger.error(f"Invalid question data for replacement job {job_id}: missing {e.missing}")
            store.update(
                job_id,
                status=JobStatus.FAILED,
                error="Invalid question data received",
                message="Missing required fields in generated question",
            )
            return 400, {"success": False, "error": "Invalid question data received", "jobId": job_id}

        try:
            row = self._persist(db, question_id, normalized)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error for replacement job {job_id}: {str(e)}", exc_info=True)
            store.update(
                job_id,
                status=JobStatus.FAILED,
                error=str(e),
                message="Failed to update question in database",
            )
            return 500, {
                "success": False,
                "error": "Database update failed",
                "details": self._describe_failed_update(question_id, normalized),
                "jobId": job_id,
            }

        if row is None:
            store.update(
                job_id,
                status=JobStatus.FAILED,
                error="Failed to update question in database - no rows affected",
                message="Database update failed",
            )
            return 500, {
                "success": False,
                "error": "Failed to update question in database - question may not exist",
                "jobId": job_id,
            }

        if cache is not None:
            cache.invalidate_quiz(row["quizId"])

        store.update(
            job_id,
            status=JobStatus.COMPLETED,
            progress=100,
            message="Question replaced successfully",
            questions_data=[row],
        )
        logger.info(f"Replacement job {job_id} completed, question {question_id} updated")

        return 200, {
            "success": True,
            "jobId": job_id,
            "message": "Question replaced successfully",
            "questionId": question_id,
        }

    def _persist(self, db: Session, question_id: str, normalized: NormalizedQuestion) -> Optional[Dict[str, Any]]:
        """Single UPDATE keyed by id; None when no row matched"""
        try:
            key = uuid.UUID(question_id)
        except ValueError:
            return None

        result = db.execute(
            update(Question)
            .where(Question.id == key)
            .values(**normalized.as_values())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.rollback()
            return None

        db.commit()
        question = db.get(Question, key)
        return question_row(question) if question is not None else None

    @staticmethod
    def _describe_failed_update(question_id: str, normalized: NormalizedQuestion) -> str:
        """Statement shape plus truncated params; never the full generated content"""
        columns = ", ".join(f'"{name}" = :{name}' for name in normalized.as_values())
        params = [
            f"{normalized.question_text[:100]}...",
            "[options]",
            normalized.correct_answer,
            f"{normalized.explanation[:100]}...",
            normalized.difficulty,
            normalized.blooms_level,
            normalized.topic[:50],
            normalized.book[:50],
            normalized.chapter[:50],
            question_id,
        ]
        return f'Failed query: update "questions" set {columns} where "questions"."id" = :id\nparams: {",".join(params)}'


# Global instance
callback_service = CallbackService()
