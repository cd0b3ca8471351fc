"""
Quiz grading service

Multiple-choice only: an answer is correct when its option id matches the
question's correct_answer (case-insensitive, trimmed).
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Iterable

from scrolls.models import Question

logger = logging.getLogger(__name__)


@dataclass
class GradingResult:
    total_questions: int
    total_correct: int
    score: int  # percentage, rounded
    evaluated_answers: List[Dict[str, Any]] = field(default_factory=list)


class GradingService:
    """Service for grading quiz submissions"""

    @staticmethod
    def _normalize(answer: Any) -> str:
        if answer is None:
            return ""
        return str(answer).strip().lower()

    def grade_submission(
        self,
        questions: Iterable[Question],
        answers: List[Dict[str, Any]]
    ) -> GradingResult:
        """
        Grade a complete quiz submission

        Args:
            questions: All questions of the quiz
            answers: [{questionId, answer, markedForReview, timeSpent}, ...]

        Returns:
            GradingResult; unanswered questions count as incorrect
        """
        by_id = {str(q.id): q for q in questions}
        total_correct = 0
        evaluated = []
        seen = set()

        for item in answers:
            question_id = str(item.get("questionId", ""))
            if question_id in seen:
                # Only the first entry per question is graded
                continue
            seen.add(question_id)

            question = by_id.get(question_id)
            if question is None:
                logger.warning(f"Submitted answer for unknown question {question_id}")
                continue

            selected = self._normalize(item.get("answer"))
            is_correct = bool(selected) and selected == self._normalize(question.correct_answer)
            if is_correct:
                total_correct += 1

            evaluated.append({
                "questionId": question_id,
                "answer": item.get("answer"),
                "isCorrect": is_correct,
                "markedForReview": bool(item.get("markedForReview", False)),
                "timeSpent": item.get("timeSpent"),
            })

        total_questions = len(by_id)
        score = round(total_correct / total_questions * 100) if total_questions else 0

        logger.info(f"Submission graded: {total_correct}/{total_questions} ({score}%)")

        return GradingResult(
            total_questions=total_questions,
            total_correct=total_correct,
            score=score,
            evaluated_answers=evaluated,
        )


# Global instance
grading_service = GradingService()
