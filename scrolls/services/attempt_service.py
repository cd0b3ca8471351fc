"""
Quiz attempt lifecycle

    NONE --start--> IN_PROGRESS --submit/expiry--> COMPLETED
                         |
                         +--stale sweep--> ABANDONED

A repeated start while IN_PROGRESS is a resume (same question order,
recomputed remaining time, autosaved answers), not a transition. Students
cannot cancel an attempt. Each enrollment gets one attempt: completing or
abandoning it also completes the enrollment, and the student can only come
back through a new (reassignment) enrollment.
"""
import logging
import math
import uuid
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scrolls.config import settings
from scrolls.exceptions import (
    AttemptAbandoned,
    AttemptNotActive,
    AttemptNotFound,
    NoActiveEnrollment,
    QuizAlreadyCompleted,
    QuizEnded,
    QuizHasNoQuestions,
    QuizNotFound,
    QuizTimeExpired,
)
from scrolls.models import (
    AttemptStatus,
    Enrollment,
    EnrollmentStatus,
    Question,
    Quiz,
    QuizAttempt,
    ensure_transition,
)
from scrolls.services.enrollment_service import enrollment_service
from scrolls.services.grading_service import grading_service
from scrolls.services.time_window import check_time_window, enforce_time_window
from scrolls.utils.cache import CacheService
from scrolls.utils.shuffle import question_seed, seeded_shuffle
from scrolls.utils.timeutils import as_utc, isoformat_utc, utcnow

logger = logging.getLogger(__name__)


def _as_uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def project_question(question: Question) -> Dict[str, Any]:
    """Student-facing view of a question: no correct answer, no explanation"""
    return {
        "id": str(question.id),
        "questionText": question.question_text or "",
        "options": question.options or [],
        "orderIndex": question.order_index or 0,
        "book": question.book or None,
        "chapter": question.chapter or None,
        "topic": question.topic or None,
        "bloomsLevel": question.blooms_level or None,
    }


class AttemptService:
    """Service for starting, resuming, autosaving and submitting attempts"""

    # ─── Question set ──────────────────────────────────────────────────────────

    def load_questions(self, db: Session, quiz_id, cache: Optional[CacheService] = None) -> List[Dict[str, Any]]:
        """Answer-stripped questions in canonical order, cached per quiz"""
        if cache is not None:
            cached = cache.get_question_projection(quiz_id)
            if cached:
                return cached

        stmt = (
            select(Question)
            .where(Question.quiz_id == quiz_id)
            .order_by(Question.order_index.asc(), Question.id.asc())
        )
        projection = [project_question(q) for q in db.scalars(stmt).all()]

        if cache is not None and projection:
            cache.set_question_projection(quiz_id, projection)

        return projection

    def order_questions(
        self,
        questions: List[Dict[str, Any]],
        quiz: Quiz,
        enrollment: Enrollment,
        attempt_id
    ) -> List[Dict[str, Any]]:
        """Seeded shuffle when the quiz asks for it or for any reassignment, else order_index"""
        if quiz.shuffle_questions or enrollment.is_reassignment:
            seed = question_seed(attempt_id, enrollment.id, enrollment.is_reassignment)
            return seeded_shuffle(questions, seed)
        return sorted(questions, key=lambda q: q.get("orderIndex") or 0)

    def _questions_for_attempt(
        self,
        db: Session,
        quiz: Quiz,
        enrollment: Enrollment,
        attempt: QuizAttempt,
        cache: Optional[CacheService]
    ) -> List[Dict[str, Any]]:
        questions = self.load_questions(db, quiz.id, cache)

        if attempt.question_order:
            by_id = {q["id"]: q for q in questions}
            stored = [by_id[qid] for qid in attempt.question_order if qid in by_id]
            if stored:
                return stored

        # Attempts created before question_order was stored
        return self.order_questions(questions, quiz, enrollment, attempt.id)

    # ─── Lookups ───────────────────────────────────────────────────────────────

    def _get_quiz(self, db: Session, quiz_id) -> Quiz:
        try:
            quiz = db.get(Quiz, _as_uuid(quiz_id))
        except ValueError:
            raise QuizNotFound()
        if not quiz:
            raise QuizNotFound()
        return quiz

    def _attempts_for(self, db: Session, quiz_id, student_id: str, enrollment_id) -> List[QuizAttempt]:
        stmt = (
            select(QuizAttempt)
            .where(
                QuizAttempt.quiz_id == quiz_id,
                QuizAttempt.student_id == student_id,
                QuizAttempt.enrollment_id == enrollment_id,
            )
            .order_by(QuizAttempt.start_time.desc())
        )
        return list(db.scalars(stmt).all())

    def _closed_attempts(self, db: Session, quiz_id, student_id: str) -> List[QuizAttempt]:
        stmt = (
            select(QuizAttempt)
            .where(
                QuizAttempt.quiz_id == quiz_id,
                QuizAttempt.student_id == student_id,
                QuizAttempt.status != AttemptStatus.IN_PROGRESS.value,
            )
            .order_by(QuizAttempt.start_time.desc())
        )
        return list(db.scalars(stmt).all())

    def _reject_closed(self, attempts: List[QuizAttempt]) -> None:
        """A closed attempt means the enrollment is used up; never issue a new timer"""
        completed = next((a for a in attempts if a.status == AttemptStatus.COMPLETED.value), None)
        if completed is not None:
            raise QuizAlreadyCompleted(completed.id)

        abandoned = next((a for a in attempts if a.status == AttemptStatus.ABANDONED.value), None)
        if abandoned is not None:
            raise AttemptAbandoned(abandoned.id)

    # ─── Transitions ───────────────────────────────────────────────────────────

    def _finish(self, attempt: QuizAttempt, target: AttemptStatus, now: datetime) -> None:
        ensure_transition("attempt", attempt.status, target)
        attempt.status = target.value
        attempt.end_time = now

    def _complete(self, db: Session, attempt: QuizAttempt, enrollment: Optional[Enrollment], now: datetime) -> None:
        self._finish(attempt, AttemptStatus.COMPLETED, now)
        if enrollment is None:
            enrollment = db.get(Enrollment, attempt.enrollment_id)
        if enrollment is not None:
            enrollment_service.complete(enrollment, now)

    def _grade(self, db: Session, quiz: Quiz, attempt: QuizAttempt, answers: List[Dict[str, Any]], now: datetime) -> int:
        """Score answers onto the attempt; returns whole seconds elapsed"""
        questions = db.scalars(select(Question).where(Question.quiz_id == quiz.id)).all()
        result = grading_service.grade_submission(questions, answers)

        attempt.answers = result.evaluated_answers
        attempt.total_questions = result.total_questions
        attempt.total_correct = result.total_correct
        attempt.score = result.score
        attempt.updated_at = now
        return math.floor((as_utc(now) - as_utc(attempt.start_time)).total_seconds())

    def _auto_submit(self, db: Session, quiz: Quiz, attempt: QuizAttempt, enrollment: Enrollment, now: datetime) -> None:
        """Time ran out: grade whatever was autosaved and complete"""
        elapsed = self._grade(db, quiz, attempt, attempt.answers or [], now)
        attempt.time_spent = max(0, min(elapsed, quiz.duration * 60))
        self._complete(db, attempt, enrollment, now)

    # ─── Time ──────────────────────────────────────────────────────────────────

    def remaining_seconds(
        self,
        quiz: Quiz,
        enrollment: Enrollment,
        attempt_start: datetime,
        now: datetime
    ) -> int:
        """
        Seconds left for an attempt

        duration*60 minus whole elapsed seconds, further capped by the quiz's
        scheduled end for non-reassignment enrollments (a student who starts
        late does not get time past the window).
        """
        elapsed = math.floor((as_utc(now) - as_utc(attempt_start)).total_seconds())
        remaining = quiz.duration * 60 - elapsed

        if not enrollment.is_reassignment and quiz.start_time is not None:
            window = check_time_window(now, quiz.start_time, quiz.duration)
            until_end = math.ceil((window.end_time - as_utc(now)).total_seconds())
            remaining = min(remaining, until_end)

        return max(0, remaining)

    # ─── Start / resume ────────────────────────────────────────────────────────

    def start_attempt(
        self,
        db: Session,
        student_id: str,
        quiz_id,
        now: Optional[datetime] = None,
        cache: Optional[CacheService] = None
    ) -> Dict[str, Any]:
        """
        Create or resume the student's attempt on their active enrollment

        Returns:
            {quiz, attemptId, remainingTime, resumed, isReassignment,
             reassignmentReason, savedAnswers, currentQuestionIndex}

        Raises:
            QuizNotFound, QuizNotAvailable, NoActiveEnrollment,
            QuizAlreadyCompleted, AttemptAbandoned, QuizTimeExpired, QuizNotScheduled,
            QuizNotStarted, QuizEnded, QuizHasNoQuestions
        """
        now = now or utcnow()
        quiz = self._get_quiz(db, quiz_id)

        try:
            resolution = enrollment_service.resolve_active_enrollment(db, student_id, quiz, now)
        except NoActiveEnrollment:
            self._reject_closed(self._closed_attempts(db, quiz.id, student_id))
            raise

        enrollment = resolution.enrollment
        attempts = self._attempts_for(db, quiz.id, student_id, enrollment.id)

        in_progress = next((a for a in attempts if a.status == AttemptStatus.IN_PROGRESS.value), None)
        if in_progress is None and attempts:
            logger.info(f"Blocking new attempt on used enrollment {enrollment.id} for student {student_id}")
            self._reject_closed(attempts)

        # Reassignments are taken at the student's convenience, outside the original window
        if not enrollment.is_reassignment:
            try:
                enforce_time_window(quiz, now)
            except QuizEnded:
                if in_progress is not None:
                    self._auto_submit(db, quiz, in_progress, enrollment, now)
                    db.commit()
                    logger.info(f"Closed attempt {in_progress.id}: quiz {quiz.id} window ended")
                raise

        if in_progress is not None:
            return self._resume(db, quiz, enrollment, in_progress, now, cache)

        return self._create(db, quiz, enrollment, student_id, now, cache)

    def _resume(
        self,
        db: Session,
        quiz: Quiz,
        enrollment: Enrollment,
        attempt: QuizAttempt,
        now: datetime,
        cache: Optional[CacheService]
    ) -> Dict[str, Any]:
        remaining = self.remaining_seconds(quiz, enrollment, attempt.start_time, now)

        if remaining <= 0:
            attempt_id = attempt.id
            self._auto_submit(db, quiz, attempt, enrollment, now)
            db.commit()
            logger.info(f"Attempt {attempt_id} expired on resume, auto-submitted")
            raise QuizTimeExpired(attempt_id)

        questions = self._questions_for_attempt(db, quiz, enrollment, attempt, cache)
        logger.info(f"Resuming attempt {attempt.id} with {remaining}s remaining")
        return self._response(
            quiz, enrollment, attempt.id, questions, remaining, resumed=True,
            saved_answers=attempt.answers or [],
            current_question_index=attempt.current_question_index or 0,
        )

    def _create(
        self,
        db: Session,
        quiz: Quiz,
        enrollment: Enrollment,
        student_id: str,
        now: datetime,
        cache: Optional[CacheService]
    ) -> Dict[str, Any]:
        questions = self.load_questions(db, quiz.id, cache)
        if not questions:
            logger.error(f"No questions prepared for quiz {quiz.id}")
            raise QuizHasNoQuestions()

        # The attempt id seeds the shuffle, so it is minted before the insert
        attempt_id = uuid.uuid4()
        ordered = self.order_questions(questions, quiz, enrollment, attempt_id)

        attempt = QuizAttempt(
            id=attempt_id,
            quiz_id=quiz.id,
            student_id=student_id,
            enrollment_id=enrollment.id,
            start_time=now,
            status=AttemptStatus.IN_PROGRESS.value,
            answers=[],
            question_order=[q["id"] for q in ordered],
            total_questions=len(questions),
            created_at=now,
            updated_at=now,
        )
        db.add(attempt)
        if enrollment.status == EnrollmentStatus.ENROLLED.value:
            enrollment_service.mark(enrollment, EnrollmentStatus.IN_PROGRESS, now)

        try:
            db.commit()
        except IntegrityError:
            # Lost the race against a concurrent start for the same enrollment
            db.rollback()
            winner = next(
                (a for a in self._attempts_for(db, quiz.id, student_id, enrollment.id)
                 if a.status == AttemptStatus.IN_PROGRESS.value),
                None
            )
            if winner is None:
                raise
            logger.info(f"Concurrent start for enrollment {enrollment.id}, resuming attempt {winner.id}")
            return self._resume(db, quiz, enrollment, winner, now, cache)

        logger.info(
            f"Created attempt {attempt_id} for student {student_id} on quiz {quiz.id} "
            f"(enrollment {enrollment.id}, reassignment={enrollment.is_reassignment})"
        )

        remaining = self.remaining_seconds(quiz, enrollment, now, now)
        return self._response(quiz, enrollment, attempt_id, ordered, remaining, resumed=False)

    def _response(
        self,
        quiz: Quiz,
        enrollment: Enrollment,
        attempt_id,
        questions: List[Dict[str, Any]],
        remaining: int,
        resumed: bool,
        saved_answers: Optional[List[Dict[str, Any]]] = None,
        current_question_index: int = 0
    ) -> Dict[str, Any]:
        return {
            "quiz": {
                "id": str(quiz.id),
                "title": quiz.title,
                "duration": quiz.duration,
                "totalQuestions": quiz.total_questions or len(questions),
                "questions": questions,
            },
            "attemptId": str(attempt_id),
            "remainingTime": remaining,
            "resumed": resumed,
            "isReassignment": bool(enrollment.is_reassignment),
            "reassignmentReason": enrollment.reassignment_reason,
            "savedAnswers": saved_answers or [],
            "currentQuestionIndex": current_question_index,
        }

    # ─── Submit ────────────────────────────────────────────────────────────────

    def _get_attempt(self, db: Session, student_id: str, quiz_id, attempt_id) -> QuizAttempt:
        try:
            attempt_id = _as_uuid(attempt_id)
            quiz_id = _as_uuid(quiz_id)
        except ValueError:
            raise AttemptNotFound()

        attempt = db.scalars(
            select(QuizAttempt).where(
                QuizAttempt.id == attempt_id,
                QuizAttempt.quiz_id == quiz_id,
                QuizAttempt.student_id == student_id,
            )
        ).first()
        if attempt is None:
            raise AttemptNotFound()
        return attempt

    def submit_attempt(
        self,
        db: Session,
        student_id: str,
        quiz_id,
        attempt_id,
        answers: List[Dict[str, Any]],
        time_spent: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Grade and complete an in-progress attempt

        The score is stored but not returned: results open once the quiz
        window has closed for everyone.
        """
        now = now or utcnow()
        attempt = self._get_attempt(db, student_id, quiz_id, attempt_id)

        if attempt.status == AttemptStatus.COMPLETED.value:
            raise QuizAlreadyCompleted(attempt.id)
        if attempt.status != AttemptStatus.IN_PROGRESS.value:
            raise AttemptNotActive(attempt.id, attempt.status)

        quiz = self._get_quiz(db, quiz_id)
        elapsed = self._grade(db, quiz, attempt, answers, now)

        late = elapsed > quiz.duration * 60 + settings.SUBMIT_GRACE_SECONDS
        if late:
            logger.warning(f"Late submission for attempt {attempt.id}: {elapsed}s elapsed")

        attempt.time_spent = time_spent if time_spent is not None else max(0, elapsed)
        attempt.submitted_late = late
        self._complete(db, attempt, None, now)
        db.commit()

        logger.info(f"Attempt {attempt.id} submitted by student {student_id}")

        return {
            "success": True,
            "attemptId": str(attempt.id),
            "message": (
                "Quiz submitted successfully. Results will be available after "
                "the quiz time expires for all students."
            ),
        }

    # ─── Autosave ──────────────────────────────────────────────────────────────

    def save_progress(
        self,
        db: Session,
        student_id: str,
        quiz_id,
        attempt_id,
        answers: List[Dict[str, Any]],
        current_question_index: int = 0,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Store in-progress answers so a resumed attempt picks up where it left off

        Saving after the time ran out auto-submits what was saved before and
        raises QuizTimeExpired; the late answers are not kept.

        Raises:
            AttemptNotFound, QuizAlreadyCompleted, AttemptNotActive, QuizTimeExpired
        """
        now = now or utcnow()
        attempt = self._get_attempt(db, student_id, quiz_id, attempt_id)

        if attempt.status == AttemptStatus.COMPLETED.value:
            raise QuizAlreadyCompleted(attempt.id)
        if attempt.status != AttemptStatus.IN_PROGRESS.value:
            raise AttemptNotActive(attempt.id, attempt.status)

        quiz = self._get_quiz(db, quiz_id)
        enrollment = db.get(Enrollment, attempt.enrollment_id)
        if self.remaining_seconds(quiz, enrollment, attempt.start_time, now) <= 0:
            self._auto_submit(db, quiz, attempt, enrollment, now)
            db.commit()
            logger.info(f"Attempt {attempt.id} expired during autosave, auto-submitted")
            raise QuizTimeExpired(attempt.id)

        attempt.answers = answers
        attempt.current_question_index = current_question_index
        attempt.last_saved_at = now
        attempt.updated_at = now
        db.commit()

        logger.debug(f"Autosaved {len(answers)} answer(s) for attempt {attempt.id}")
        return {"success": True, "attemptId": str(attempt.id), "savedAt": isoformat_utc(now)}

    def load_progress(self, db: Session, student_id: str, quiz_id, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Latest autosave of the student's in-progress attempt, if any"""
        now = now or utcnow()
        quiz = self._get_quiz(db, quiz_id)

        attempt = db.scalars(
            select(QuizAttempt)
            .where(
                QuizAttempt.quiz_id == quiz.id,
                QuizAttempt.student_id == student_id,
                QuizAttempt.status == AttemptStatus.IN_PROGRESS.value,
            )
            .order_by(QuizAttempt.start_time.desc())
        ).first()

        if attempt is None or attempt.last_saved_at is None:
            return {"hasAutoSave": False, "autoSaveData": None}

        enrollment = db.get(Enrollment, attempt.enrollment_id)
        return {
            "hasAutoSave": True,
            "autoSaveData": {
                "attemptId": str(attempt.id),
                "answers": attempt.answers or [],
                "currentQuestionIndex": attempt.current_question_index or 0,
                "remainingTime": self.remaining_seconds(quiz, enrollment, attempt.start_time, now),
                "lastSaved": isoformat_utc(attempt.last_saved_at),
            },
        }

    # ─── Stale sweep ───────────────────────────────────────────────────────────

    def abandon_stale_attempts(self, db: Session, now: Optional[datetime] = None) -> int:
        """
        Batch sweep: abandon in-progress attempts nobody will come back to

        Stale means the quiz's scheduled end passed more than the grace period
        ago (original enrollments only), or the attempt itself is older than
        the maximum age. The enrollment is completed with it, so the student
        needs a reassignment to try again.
        """
        now = as_utc(now or utcnow())
        grace = timedelta(minutes=settings.STALE_ATTEMPT_GRACE_MINUTES)
        max_age = timedelta(hours=settings.STALE_ATTEMPT_MAX_AGE_HOURS)

        rows = db.execute(
            select(QuizAttempt, Quiz, Enrollment)
            .join(Quiz, Quiz.id == QuizAttempt.quiz_id)
            .join(Enrollment, Enrollment.id == QuizAttempt.enrollment_id)
            .where(QuizAttempt.status == AttemptStatus.IN_PROGRESS.value)
        ).all()

        count = 0
        for attempt, quiz, enrollment in rows:
            stale = now - as_utc(attempt.start_time) > max_age
            if not stale and not enrollment.is_reassignment and quiz.start_time is not None:
                window = check_time_window(now, quiz.start_time, quiz.duration)
                stale = now > window.end_time + grace
            if stale:
                self._finish(attempt, AttemptStatus.ABANDONED, now)
                attempt.updated_at = now
                enrollment_service.complete(enrollment, now)
                count += 1

        if count:
            db.commit()
            logger.info(f"Abandoned {count} stale attempt(s)")

        return count


# Global instance
attempt_service = AttemptService()
