"""
Enrollment resolution and reassignment

A student may hold several enrollments for one quiz: the original plus any
reassignments (retakes issued after a dispute or technical failure). Start
requests always run against the single "active" one, i.e. the newest
enrollment that is not completed.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from scrolls.exceptions import NoActiveEnrollment, QuizNotAvailable, ReassignmentRejected
from scrolls.models import (
    AttemptStatus,
    EducatorStudent,
    Enrollment,
    EnrollmentStatus,
    Quiz,
    QuizAttempt,
    QuizStatus,
    ensure_transition,
)
from scrolls.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentResolution:
    """Outcome of resolving a student's active enrollment for a quiz"""
    enrollment: Enrollment
    auto_enrolled: bool = False
    has_completed_original: bool = False
    all_enrollments: List[Enrollment] = field(default_factory=list)


class EnrollmentService:
    """Service for picking and superseding enrollments"""

    def list_enrollments(self, db: Session, student_id: str, quiz_id) -> List[Enrollment]:
        """All enrollments for (student, quiz), newest first"""
        stmt = (
            select(Enrollment)
            .where(Enrollment.quiz_id == quiz_id, Enrollment.student_id == student_id)
            .order_by(Enrollment.enrolled_at.desc(), Enrollment.id.desc())
        )
        return list(db.scalars(stmt).all())

    def resolve_active_enrollment(
        self,
        db: Session,
        student_id: str,
        quiz: Quiz,
        now: Optional[datetime] = None
    ) -> EnrollmentResolution:
        """
        Determine the enrollment a start request runs against

        Args:
            db: Database session
            student_id: Student user id
            quiz: Quiz being started
            now: Clock override (tests)

        Returns:
            EnrollmentResolution with the active enrollment

        Raises:
            QuizNotAvailable: no enrollment exists and the quiz is unpublished
            NoActiveEnrollment: every enrollment is completed
        """
        now = now or utcnow()
        enrollments = self.list_enrollments(db, student_id, quiz.id)
        auto_enrolled = False

        if not enrollments:
            if quiz.status != QuizStatus.PUBLISHED.value:
                raise QuizNotAvailable()
            enrollments = self._auto_enroll(db, student_id, quiz, now)
            auto_enrolled = True

        active = None
        has_completed_original = False
        for enrollment in enrollments:
            if enrollment.status == EnrollmentStatus.COMPLETED.value:
                if not enrollment.is_reassignment:
                    has_completed_original = True
            elif active is None:
                active = enrollment

        if active is None:
            logger.info(f"No active enrollment for student {student_id} on quiz {quiz.id}")
            raise NoActiveEnrollment()

        return EnrollmentResolution(
            enrollment=active,
            auto_enrolled=auto_enrolled,
            has_completed_original=has_completed_original,
            all_enrollments=enrollments,
        )

    def _auto_enroll(self, db: Session, student_id: str, quiz: Quiz, now: datetime) -> List[Enrollment]:
        """Enroll a student arriving through a share link, linking them to the educator"""
        relation = db.scalars(
            select(EducatorStudent).where(
                EducatorStudent.educator_id == quiz.educator_id,
                EducatorStudent.student_id == student_id,
            )
        ).first()

        try:
            if relation is None:
                db.add(EducatorStudent(
                    educator_id=quiz.educator_id,
                    student_id=student_id,
                    status="active",
                    enrolled_at=now,
                    updated_at=now,
                ))
            db.add(Enrollment(
                quiz_id=quiz.id,
                student_id=student_id,
                enrolled_at=now,
                status=EnrollmentStatus.ENROLLED.value,
            ))
            db.commit()
            logger.info(f"Auto-enrolled student {student_id} in quiz {quiz.id}")
        except IntegrityError:
            # A concurrent request enrolled the student first; use its row
            db.rollback()
            logger.info(f"Concurrent auto-enroll for student {student_id} on quiz {quiz.id}, re-reading")

        return self.list_enrollments(db, student_id, quiz.id)

    def mark(self, enrollment: Enrollment, target: EnrollmentStatus, now: datetime) -> None:
        """Apply a validated status change and its timestamp"""
        ensure_transition("enrollment", enrollment.status, target)
        enrollment.status = target.value
        if target == EnrollmentStatus.IN_PROGRESS:
            enrollment.started_at = now
        elif target == EnrollmentStatus.COMPLETED:
            enrollment.completed_at = now

    def complete(self, enrollment: Enrollment, now: datetime) -> None:
        if enrollment.status != EnrollmentStatus.COMPLETED.value:
            self.mark(enrollment, EnrollmentStatus.COMPLETED, now)

    def reassign(
        self,
        db: Session,
        quiz: Quiz,
        educator_id: str,
        student_ids: List[str],
        reason: str,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Issue retake enrollments

        The student's current active enrollment (if any) is completed and any
        in-progress attempt on it abandoned before the new row is inserted, so
        at most one enrollment per (student, quiz) stays active.

        Raises:
            ReassignmentRejected: quiz unpublished or nobody eligible
        """
        now = now or utcnow()

        if quiz.status != QuizStatus.PUBLISHED.value:
            raise ReassignmentRejected("Quiz must be published before reassigning")

        reassigned = []
        skipped = []

        for student_id in dict.fromkeys(student_ids):
            enrollments = self.list_enrollments(db, student_id, quiz.id)
            if not enrollments:
                skipped.append({"studentId": student_id, "reason": "not_enrolled"})
                continue

            active = next(
                (e for e in enrollments if e.status != EnrollmentStatus.COMPLETED.value),
                None
            )
            if active is not None and active.is_reassignment and active.status == EnrollmentStatus.ENROLLED.value:
                skipped.append({"studentId": student_id, "reason": "already_reassigned"})
                continue

            if active is not None:
                self._abandon_open_attempts(db, active, now)
                self.complete(active, now)
                # Flush the supersede before inserting so the partial unique index never sees two active rows
                db.flush()

            new_enrollment = Enrollment(
                quiz_id=quiz.id,
                student_id=student_id,
                enrolled_at=now,
                status=EnrollmentStatus.ENROLLED.value,
                is_reassignment=True,
                reassignment_reason=reason,
                parent_enrollment_id=enrollments[0].id,
                reassigned_at=now,
                reassigned_by=educator_id,
            )
            db.add(new_enrollment)
            db.flush()

            reassigned.append({
                "studentId": student_id,
                "enrollmentId": str(new_enrollment.id),
                "parentEnrollmentId": str(enrollments[0].id),
            })

        if not reassigned:
            db.rollback()
            raise ReassignmentRejected(
                "No eligible students for reassignment (not enrolled or already reassigned)"
            )

        db.commit()

        logger.info(
            f"Reassigned quiz {quiz.id} to {len(reassigned)} student(s) by educator {educator_id}, "
            f"skipped {len(skipped)}"
        )

        return {
            "success": True,
            "message": f"Successfully reassigned quiz to {len(reassigned)} student(s)",
            "reassignedCount": len(reassigned),
            "alreadyReassignedCount": sum(1 for s in skipped if s["reason"] == "already_reassigned"),
            "notEnrolledCount": sum(1 for s in skipped if s["reason"] == "not_enrolled"),
            "reassigned": reassigned,
            "skipped": skipped,
        }

    def _abandon_open_attempts(self, db: Session, enrollment: Enrollment, now: datetime) -> None:
        open_attempts = db.scalars(
            select(QuizAttempt).where(
                QuizAttempt.enrollment_id == enrollment.id,
                QuizAttempt.status == AttemptStatus.IN_PROGRESS.value,
            )
        ).all()
        for attempt in open_attempts:
            ensure_transition("attempt", attempt.status, AttemptStatus.ABANDONED)
            attempt.status = AttemptStatus.ABANDONED.value
            attempt.end_time = now
            logger.info(f"Abandoned attempt {attempt.id} superseded by reassignment")


# Global instance
enrollment_service = EnrollmentService()
