"""Deterministic scoring of submitted answers against an answer key.

:func:`grade_exam` grades proctored exam attempts. :func:`grade_quiz` is the
quiz-level rule (one point per question, pass by percentage) exported for
quiz graders outside the exam flow.
"""
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional


@dataclass(frozen=True)
class GradeResult:
    score: int
    max_score: int
    percentage: float
    passed: bool
    correct_count: int


def _percentage(score: float, total: float) -> float:
    if not total:
        return 0.0
    return round(score / total * 100, 2)


def is_correct(question: Mapping[str, Any], chosen: Optional[int]) -> bool:
    return chosen is not None and chosen == question.get("correctAnswer")


def grade_exam(questions: List[Mapping[str, Any]], answers: Mapping[int, int],
               total_marks: int, passing_marks: int) -> GradeResult:
    """Score canonical answers (original question index -> original option index)."""
    score = 0
    correct = 0
    for index, question in enumerate(questions):
        if is_correct(question, answers.get(index)):
            score += question.get("marks", 0)
            correct += 1

    return GradeResult(
        score=score,
        max_score=total_marks,
        percentage=_percentage(score, total_marks),
        passed=score >= passing_marks,
        correct_count=correct,
    )


def grade_quiz(questions: List[Mapping[str, Any]], answers: Mapping[int, int],
               passing_score: float) -> GradeResult:
    """Quiz variant: one point per question, pass mark is a percentage."""
    correct = sum(1 for index, question in enumerate(questions) if is_correct(question, answers.get(index)))
    percentage = _percentage(correct, len(questions))
    return GradeResult(
        score=correct,
        max_score=len(questions),
        percentage=percentage,
        passed=percentage >= passing_score,
        correct_count=correct,
    )

