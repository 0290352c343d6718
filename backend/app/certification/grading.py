"""
grading.py — Pure quiz grading.

    score  = round_half_up(correct / total × 100)
    passed = score ≥ threshold (80)

Rounding is half-up so 5/8 = 62.5 % scores 63, and the computation is
done in integers so the 80 % boundary is exact.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Sequence

from backend.app.certification.models import QuizQuestion, QuizResult, UserProgress
from backend.app.core.errors import ValidationError

PASS_THRESHOLD = 80


def score_percent(correct_count: int, total_questions: int) -> int:
    """
    Integer percentage, rounded half-up.

    >>> score_percent(5, 8)
    63
    >>> score_percent(4, 5)
    80
    """
    if total_questions <= 0:
        raise ValueError("total_questions must be positive")
    return (correct_count * 200 + total_questions) // (2 * total_questions)


def grade_quiz(
    questions: Sequence[QuizQuestion],
    answers: Mapping[str, Any],
    *,
    pass_threshold: int = PASS_THRESHOLD,
) -> QuizResult:
    """
    Grade one submission. Unanswered questions count as wrong; answers
    to unknown question ids are ignored.
    """
    if not isinstance(answers, Mapping):
        raise ValidationError("Answers must be an object keyed by question id", field="answers")
    if not questions:
        raise ValueError("Cannot grade a quiz with no questions")

    correct = sum(1 for q in questions if answers.get(q.id) == q.correct_answer)
    score = score_percent(correct, len(questions))

    return QuizResult(
        passed=score >= pass_threshold,
        score=score,
        correct_count=correct,
        total_questions=len(questions),
    )


def apply_attempt(progress: UserProgress, result: QuizResult, now: datetime) -> UserProgress:
    """
    Fold a graded attempt into the progress record (best attempt wins).

    Every attempt bumps the counter and overwrites ``quiz_score``; a
    failing retake never clears ``passed``.
    """
    progress.quiz_attempts += 1
    progress.quiz_score = result.score
    if progress.best_score is None or result.score > progress.best_score:
        progress.best_score = result.score
    if result.passed:
        progress.passed = True
        progress.passed_at = now
    return progress
