"""
HTTP error taxonomy for the quiz core

Every error body is a dict with a machine-readable "error" and a
human-readable "message", plus whatever context the client needs to act
(attemptId, startTime, ...).
"""
from fastapi import HTTPException
from typing import Any, Dict, Optional


class QuizError(HTTPException):
    """Base exception; detail is always a dict"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        headers: Optional[Dict[str, Any]] = None,
        **context: Any,
    ):
        detail = {"error": error, "message": message}
        detail.update({key: value for key, value in context.items() if value is not None})
        super().__init__(status_code=status_code, detail=detail, headers=headers)

    @property
    def error(self) -> str:
        return self.detail["error"]


# ─── 401 / 403 ─────────────────────────────────────────────────────────────────

class Unauthorized(QuizError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(401, "Unauthorized", message)


class QuizNotAvailable(QuizError):
    def __init__(self):
        super().__init__(403, "Quiz not available", "This quiz is not yet published.")


class NoActiveEnrollment(QuizError):
    def __init__(self):
        super().__init__(
            403,
            "No active enrollment",
            "You have completed all available attempts for this quiz.",
        )


class QuizAlreadyCompleted(QuizError):
    def __init__(self, attempt_id=None):
        super().__init__(
            403,
            "Quiz already completed",
            "You have already completed this quiz. Each quiz can only be taken once.",
            attemptId=str(attempt_id) if attempt_id else None,
        )


class QuizTimeExpired(QuizError):
    def __init__(self, attempt_id):
        super().__init__(
            403,
            "Quiz time expired",
            "Your quiz time has expired. The quiz has been automatically submitted.",
            attemptId=str(attempt_id),
        )


class AttemptAbandoned(QuizError):
    def __init__(self, attempt_id):
        super().__init__(
            403,
            "Quiz attempt abandoned",
            "Your attempt was closed without a submission. Ask your educator to reassign the quiz.",
            attemptId=str(attempt_id),
        )


# ─── 404 / 409 ─────────────────────────────────────────────────────────────────

class QuizNotFound(QuizError):
    def __init__(self):
        super().__init__(404, "Quiz not found", "The requested quiz does not exist.")


class QuestionNotFound(QuizError):
    def __init__(self):
        super().__init__(404, "Question not found", "The question does not exist in this quiz.")


class AttemptNotFound(QuizError):
    def __init__(self):
        super().__init__(404, "Attempt not found", "No matching attempt exists for this quiz.")


class JobNotFound(QuizError):
    def __init__(self, job_id: str):
        super().__init__(
            404,
            "Job not found or expired",
            "Job may have expired or failed to initialize. Please try again.",
            jobId=job_id,
            status="unknown",
        )


class AttemptNotActive(QuizError):
    def __init__(self, attempt_id, status: str):
        super().__init__(
            409,
            "Attempt not active",
            f"This attempt is {status} and can no longer be changed.",
            attemptId=str(attempt_id),
        )


# ─── 400 ───────────────────────────────────────────────────────────────────────

class ReassignmentRejected(QuizError):
    def __init__(self, message: str):
        super().__init__(400, "Reassignment rejected", message)


# ─── 410 / 425 (time window) ───────────────────────────────────────────────────

class QuizNotScheduled(QuizError):
    def __init__(self, scheduling_status: Optional[str]):
        super().__init__(
            425,
            "Quiz time not set",
            "This quiz has not been scheduled yet. Please check back later or contact your educator.",
            schedulingStatus=scheduling_status or "unknown",
        )


class QuizNotStarted(QuizError):
    def __init__(self, start_time: str, timezone: str, ms_until_start: int):
        super().__init__(
            425,
            "Quiz not started",
            "Quiz not yet started",
            startTime=start_time,
            timezone=timezone,
            timeUntilStart=ms_until_start,
        )


class QuizEnded(QuizError):
    def __init__(self, end_time: str):
        super().__init__(
            410,
            "Quiz has ended",
            "This quiz has already ended and is no longer available.",
            endTime=end_time,
        )


# ─── 500 ───────────────────────────────────────────────────────────────────────

class QuizHasNoQuestions(QuizError):
    def __init__(self):
        super().__init__(500, "Quiz has no questions available", "This quiz has no questions yet.")


class GenerationDispatchFailed(QuizError):
    def __init__(self, message: str, job_id: str):
        super().__init__(500, message, "Could not start question generation.", jobId=job_id, success=False)
