"""
Instant grading for objective question types (multiple choice, true/false, matching).
Free-text types return None and go through the AI grading service instead.
"""

import re
from typing import Any, Dict, List, Optional

from models.assessment_models import InstantFeedback, QuestionType

CORRECT_FEEDBACK = "Correct! Well done."
INCORRECT_FEEDBACK = "Incorrect. Please review the material."

_SINGLE_LETTER_RE = re.compile(r'^[A-Z]$')


def grade_answer(question: Dict[str, Any], student_answer: Any) -> Optional[InstantFeedback]:
    """Grade an answer instantly; None means the question needs AI grading."""
    max_points = float(question.get("points") or 1)
    question_type = question.get("question_type")

    if question_type == QuestionType.MULTIPLE_CHOICE.value:
        return _grade_multiple_choice(question, student_answer, max_points)
    if question_type == QuestionType.TRUE_FALSE.value:
        return _grade_true_false(question, student_answer, max_points)
    if question_type == QuestionType.MATCHING.value:
        return _grade_matching(question, student_answer, max_points)
    return None


def _grade_multiple_choice(question: Dict[str, Any], student_answer: Any, max_points: float) -> InstantFeedback:
    answer_key = question.get("answer_key") or {}
    correct = answer_key.get("correct_option") or question.get("correct_answer") or answer_key.get("correct_answer")
    options = question.get("options") or answer_key.get("options") or []

    selected = student_answer
    # Letter answers (A, B, C, D) refer to the option at that position
    if isinstance(student_answer, str) and _SINGLE_LETTER_RE.match(student_answer):
        index = ord(student_answer) - ord("A")
        if 0 <= index < len(options):
            selected = options[index]

    is_correct = selected is not None and selected == correct

    explanations = answer_key.get("explanations")
    if isinstance(explanations, dict) and isinstance(selected, str) and (selected in explanations or student_answer in explanations):
        feedback = explanations.get(selected) or explanations.get(student_answer)
    else:
        feedback = CORRECT_FEEDBACK if is_correct else INCORRECT_FEEDBACK

    return InstantFeedback(
        is_correct=is_correct,
        points_earned=max_points if is_correct else 0,
        max_points=max_points,
        feedback=str(feedback),
        explanation=question.get("explanation"),
    )


def _grade_true_false(question: Dict[str, Any], student_answer: Any, max_points: float) -> InstantFeedback:
    answer_key = question.get("answer_key") or {}
    correct = answer_key.get("correct_answer")
    if correct is None:
        correct = question.get("correct_answer")

    answer = student_answer
    if isinstance(student_answer, str):
        answer = student_answer.strip().lower() == "true"

    is_correct = answer is not None and answer == correct

    if answer_key.get("explanation"):
        feedback = answer_key["explanation"]
    else:
        feedback = CORRECT_FEEDBACK if is_correct else INCORRECT_FEEDBACK

    return InstantFeedback(
        is_correct=is_correct,
        points_earned=max_points if is_correct else 0,
        max_points=max_points,
        feedback=feedback,
        explanation=question.get("explanation"),
    )


def _grade_matching(question: Dict[str, Any], student_answer: Any, max_points: float) -> InstantFeedback:
    answer_key = question.get("answer_key") or {}
    correct_pairs = {pair["left"]: pair["right"] for pair in answer_key.get("pairs", []) if isinstance(pair, dict)}
    answers = student_answer if isinstance(student_answer, dict) else {}

    total = len(correct_pairs)
    matched = sum(1 for left, right in correct_pairs.items() if answers.get(left) == right)
    is_correct = total > 0 and matched == total
    points = (matched / total) * max_points if total else 0

    if is_correct:
        feedback = "Excellent! All matches are correct."
    else:
        hint = answer_key.get("explanation") or "Please review the material and try again."
        feedback = f"You got {matched} out of {total} matches correct. {hint}"

    return InstantFeedback(
        is_correct=is_correct,
        points_earned=round(points, 2),
        max_points=max_points,
        feedback=feedback,
        explanation=question.get("explanation"),
    )


def calculate_total_score(results: List[Optional[InstantFeedback]]) -> Dict[str, float]:
    """Sum instant feedback; None entries (AI-graded questions) are skipped."""
    total_points = 0.0
    earned_points = 0.0
    for feedback in results:
        if feedback:
            total_points += feedback.max_points
            earned_points += feedback.points_earned

    percentage = (earned_points / total_points) * 100 if total_points > 0 else 0
    return {
        "total_points": total_points,
        "earned_points": earned_points,
        "percentage": round(percentage, 2),
    }
