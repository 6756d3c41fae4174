"""
Storage utilities for assessments and grading.
Supabase-backed persistence for assessments, questions, student responses and attempts.

The store exposes no multi-statement transactions, so the only multi-step write
(assessment + questions) is made coherent with a compensating delete.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from clients import supabase_client
from models.assessment_models import (
    AI_GRADED_TYPES,
    AnalyticsOverview,
    AssessmentAnalytics,
    Attempt,
    GeneratedQuestion,
    GradingResult,
    GradingStatus,
    ManualGrade,
    QuestionStats,
    ScoreBand,
    StudentResponse,
)
from utils.exceptions import NotFoundError, StorageError

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_FEEDBACK = "No response provided"
PENDING_REVIEW_FEEDBACK = "Pending manual review"

# Columns copied when an existing question is reused in a compiled exam
REUSABLE_QUESTION_COLUMNS = (
    "question_text",
    "question_type",
    "options",
    "correct_answer",
    "answer_key",
    "sample_response",
    "grading_rubric",
    "points",
    "explanation",
    "ai_grading_enabled",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def question_rows(questions: List[GeneratedQuestion]) -> List[Dict[str, Any]]:
    """Turn validated questions into assessment_questions rows (without assessment_id)."""
    rows = []
    for index, question in enumerate(questions):
        rows.append({
            "question_text": question.question_text,
            "question_type": question.question_type,
            "options": question.options,
            "correct_answer": question.correct_answer,
            "answer_key": question.answer_key,
            "sample_response": question.sample_response,
            "grading_rubric": question.grading_rubric,
            "points": question.points,
            "explanation": question.explanation,
            "order_index": index + 1,
            "is_required": True,
            "ai_grading_enabled": question.question_type in AI_GRADED_TYPES,
        })
    return rows


def resolve_final_score(row: Dict[str, Any]) -> float:
    """Manual score wins over AI score; objective answers fall back to the stored final score."""
    if row.get("manual_score") is not None:
        return float(row["manual_score"])
    if row.get("ai_score") is not None:
        return float(row["ai_score"])
    return float(row.get("final_score") or 0)


def compute_attempt_totals(responses: List[Dict[str, Any]], passing_score: float) -> Dict[str, Any]:
    """Aggregate every response of an attempt into totals and pass/fail."""
    total_points = 0.0
    earned_points = 0.0
    for row in responses:
        question = row.get("assessment_questions") or {}
        total_points += float(question.get("points") or 0)
        earned_points += resolve_final_score(row)

    percentage = round(100 * earned_points / total_points, 2) if total_points > 0 else 0.0
    return {
        "total_points": total_points,
        "earned_points": round(earned_points, 2),
        "percentage_score": percentage,
        "passed": percentage >= passing_score,
    }


# Lower bound of each band is inclusive; a score lands in the first band it reaches
SCORE_BANDS = (
    ("90-100%", 90, 100),
    ("80-89%", 80, 89),
    ("70-79%", 70, 79),
    ("60-69%", 60, 69),
    ("50-59%", 50, 59),
    ("Below 50%", 0, 49),
)


def score_distribution(scores: List[float]) -> List[ScoreBand]:
    """Count percentage scores per band, highest band first."""
    bands = [ScoreBand(label=label, min=low, max=high) for label, low, high in SCORE_BANDS]
    for score in scores:
        for band in bands:
            if score >= band.min:
                band.count += 1
                break
    return bands


def summarize_scores(scores: List[float], passing_score: float) -> AnalyticsOverview:
    if not scores:
        return AnalyticsOverview(passing_score=passing_score)
    passed = sum(1 for score in scores if score >= passing_score)
    return AnalyticsOverview(
        total_attempts=len(scores),
        average_score=round(sum(scores) / len(scores), 2),
        highest_score=max(scores),
        lowest_score=min(scores),
        pass_rate=round(100 * passed / len(scores), 2),
        passed_count=passed,
        passing_score=passing_score,
    )


def question_statistics(responses: List[Dict[str, Any]]) -> List[QuestionStats]:
    """
    Per-question response counts, average score and accuracy.

    A response without an is_correct flag (AI-graded free text) counts as
    correct when it earned the question's full points.
    """
    grouped: Dict[str, Dict[str, Any]] = {}
    for row in responses:
        question = row.get("assessment_questions") or {}
        entry = grouped.setdefault(str(row.get("question_id")), {
            "question_text": question.get("question_text"),
            "question_type": question.get("question_type"),
            "points": float(question.get("points") or 0),
            "scores": [],
            "correct": 0,
        })
        score = resolve_final_score(row)
        entry["scores"].append(score)
        is_correct = row.get("is_correct")
        if is_correct is None:
            is_correct = entry["points"] > 0 and score >= entry["points"]
        if is_correct:
            entry["correct"] += 1

    stats = []
    for question_id, entry in grouped.items():
        total = len(entry["scores"])
        stats.append(QuestionStats(
            question_id=question_id,
            question_text=entry["question_text"],
            question_type=entry["question_type"],
            total_responses=total,
            correct_responses=entry["correct"],
            average_score=round(sum(entry["scores"]) / total, 2),
            accuracy_rate=round(100 * entry["correct"] / total, 2),
        ))
    return stats


def build_assessment_analytics(
    assessment_id: str,
    attempts: List[Dict[str, Any]],
    responses: List[Dict[str, Any]],
    passing_score: float,
) -> AssessmentAnalytics:
    scores = [float(attempt.get("percentage_score") or 0) for attempt in attempts]
    return AssessmentAnalytics(
        assessment_id=assessment_id,
        overview=summarize_scores(scores, passing_score),
        question_analytics=question_statistics(responses),
        score_distribution=score_distribution(scores),
    )


class AssessmentStorage:
    """Persistence adapter used by the generation and grading services."""

    def __init__(self, default_passing_score: int = 70):
        self.default_passing_score = default_passing_score

    # Assessments and questions

    def create_assessment(self, data: Dict[str, Any]) -> str:
        try:
            assessment_id = supabase_client.insert_assessment(data)
            logger.info(f"Created assessment {assessment_id} ({data.get('assessment_type')})")
            return assessment_id
        except Exception as e:
            logger.error(f"Error creating assessment '{data.get('title')}': {e}")
            raise StorageError(f"Failed to create assessment: {e}", context={"title": data.get("title")}) from e

    def insert_questions(self, assessment_id: str, rows: List[Dict[str, Any]]) -> List[str]:
        try:
            stamped = [{**row, "assessment_id": assessment_id} for row in rows]
            return supabase_client.insert_assessment_questions(stamped)
        except Exception as e:
            logger.error(f"Error inserting {len(rows)} questions for assessment {assessment_id}: {e}")
            raise StorageError(
                f"Failed to insert questions: {e}",
                context={"assessment_id": assessment_id, "question_count": len(rows)},
            ) from e

    def delete_assessment(self, assessment_id: str) -> None:
        try:
            supabase_client.delete_assessment(assessment_id)
        except Exception as e:
            logger.error(f"Error deleting assessment {assessment_id}: {e}")
            raise StorageError(f"Failed to delete assessment: {e}", context={"assessment_id": assessment_id}) from e

    def create_assessment_with_questions(
        self,
        data: Dict[str, Any],
        rows: List[Dict[str, Any]],
    ) -> Tuple[str, List[str]]:
        """Create an assessment and its questions; delete the assessment if the questions fail."""
        assessment_id = self.create_assessment(data)
        try:
            question_ids = self.insert_questions(assessment_id, rows)
        except StorageError:
            logger.warning(f"Rolling back assessment {assessment_id} after question insert failure")
            try:
                self.delete_assessment(assessment_id)
            except StorageError as rollback_error:
                logger.error(f"Rollback of assessment {assessment_id} failed: {rollback_error}")
            raise
        return assessment_id, question_ids

    def get_questions_by_ids(self, question_ids: List[str]) -> List[Dict[str, Any]]:
        try:
            return supabase_client.get_questions_by_ids(question_ids)
        except Exception as e:
            logger.error(f"Error getting questions {question_ids}: {e}")
            raise StorageError(f"Failed to read questions: {e}") from e

    # Grading

    def read_ungraded_responses(self, attempt_id: str) -> List[StudentResponse]:
        try:
            rows = supabase_client.get_ungraded_responses(attempt_id, sorted(AI_GRADED_TYPES))
        except Exception as e:
            logger.error(f"Error reading ungraded responses for attempt {attempt_id}: {e}")
            raise StorageError(f"Failed to read responses: {e}", context={"attempt_id": attempt_id}) from e

        try:
            return [StudentResponse.from_row(row) for row in rows]
        except PydanticValidationError as e:
            logger.error(f"Malformed response row for attempt {attempt_id}: {e}")
            raise StorageError(f"Malformed response row: {e}", context={"attempt_id": attempt_id}) from e

    def get_attempt(self, attempt_id: str) -> Dict[str, Any]:
        try:
            attempt = supabase_client.get_attempt(attempt_id)
        except Exception as e:
            logger.error(f"Error reading attempt {attempt_id}: {e}")
            raise StorageError(f"Failed to read attempt: {e}", context={"attempt_id": attempt_id}) from e
        if not attempt:
            raise NotFoundError("Attempt not found", error_code="ATTEMPT_NOT_FOUND", context={"attempt_id": attempt_id})
        return attempt

    def save_grading_result(self, response_id: str, result: GradingResult) -> None:
        try:
            supabase_client.update_student_response(response_id, {
                "ai_score": result.score,
                "ai_feedback": result.feedback,
                "ai_confidence": result.confidence,
                "ai_reasoning": result.reasoning,
                "ai_suggestions": result.suggestions,
                "ai_graded_at": _now(),
                "final_score": result.score,
                "grading_status": GradingStatus.AI_GRADED.value,
                "grading_error": None,
            })
        except Exception as e:
            logger.error(f"Error saving grading result for response {response_id}: {e}")
            raise StorageError(f"Failed to save grading result: {e}", context={"response_id": response_id}) from e

    def save_grading_error(self, response_id: str, message: str) -> None:
        try:
            supabase_client.update_student_response(response_id, {
                "ai_score": None,
                "ai_feedback": PENDING_REVIEW_FEEDBACK,
                "ai_confidence": 0,
                "ai_graded_at": _now(),
                "grading_status": GradingStatus.GRADING_ERROR.value,
                "grading_error": message,
            })
        except Exception as e:
            logger.error(f"Error saving grading error for response {response_id}: {e}")
            raise StorageError(f"Failed to save grading error: {e}", context={"response_id": response_id}) from e

    def apply_manual_grade(self, grade: ManualGrade) -> str:
        """Persist an instructor override and return the owning attempt id."""
        try:
            row = supabase_client.update_student_response(grade.response_id, {
                "manual_score": grade.score,
                "manual_feedback": grade.feedback,
                "manually_graded_by": grade.grader_id,
                "manually_graded_at": _now(),
                "override_reason": grade.reason,
                "final_score": grade.score,
                "grading_status": GradingStatus.MANUALLY_OVERRIDDEN.value,
            })
            attempt_id = row.get("attempt_id")
            if not attempt_id:
                existing = supabase_client.get_student_response(grade.response_id) or {}
                attempt_id = existing.get("attempt_id")
        except Exception as e:
            logger.error(f"Error applying manual grade to response {grade.response_id}: {e}")
            raise StorageError(f"Failed to apply manual grade: {e}", context={"response_id": grade.response_id}) from e

        if not attempt_id:
            raise NotFoundError(
                "Response has no attempt", error_code="RESPONSE_NOT_FOUND", context={"response_id": grade.response_id}
            )
        return str(attempt_id)

    def recompute_attempt_totals(self, attempt_id: str) -> Attempt:
        """Recompute totals from every response of the attempt and persist them."""
        attempt = self.get_attempt(attempt_id)
        assessment_id = attempt.get("assessment_id")

        try:
            assessment = supabase_client.get_assessment(assessment_id) if assessment_id else None
            responses = supabase_client.get_attempt_responses(attempt_id)
        except Exception as e:
            logger.error(f"Error reading responses for attempt {attempt_id}: {e}")
            raise StorageError(f"Failed to read attempt responses: {e}", context={"attempt_id": attempt_id}) from e

        passing_score = (assessment or {}).get("passing_score_percentage")
        if passing_score is None:
            passing_score = self.default_passing_score

        totals = compute_attempt_totals(responses, passing_score)

        try:
            supabase_client.update_attempt(attempt_id, {
                "total_points": totals["total_points"],
                "earned_points": totals["earned_points"],
                "percentage_score": totals["percentage_score"],
                "is_passing": totals["passed"],
                "status": "graded",
                "ai_grading_status": "completed",
                "ai_graded_at": _now(),
            })
        except Exception as e:
            logger.error(f"Error updating totals for attempt {attempt_id}: {e}")
            raise StorageError(f"Failed to update attempt totals: {e}", context={"attempt_id": attempt_id}) from e

        logger.info(
            f"Attempt {attempt_id}: {totals['earned_points']}/{totals['total_points']} "
            f"({totals['percentage_score']}%), passed={totals['passed']}"
        )
        return Attempt(
            id=attempt_id,
            assessment_id=assessment_id,
            student_id=attempt.get("student_id"),
            status="graded",
            **totals,
        )

    # Results and analytics

    def get_assessment_results(self, assessment_id: str) -> List[Dict[str, Any]]:
        try:
            return supabase_client.get_assessment_results(assessment_id)
        except Exception as e:
            logger.error(f"Error fetching results for assessment {assessment_id}: {e}")
            raise StorageError(f"Failed to fetch assessment results: {e}", context={"assessment_id": assessment_id}) from e

    def get_assessment_analytics(self, assessment_id: str) -> AssessmentAnalytics:
        """Score summary, score bands and per-question stats over the graded attempts."""
        try:
            assessment = supabase_client.get_assessment(assessment_id)
            attempts = supabase_client.get_graded_attempts(assessment_id) if assessment else []
            responses = supabase_client.get_responses_for_attempts([str(a["id"]) for a in attempts])
        except Exception as e:
            logger.error(f"Error calculating analytics for assessment {assessment_id}: {e}")
            raise StorageError(f"Failed to calculate assessment analytics: {e}", context={"assessment_id": assessment_id}) from e

        if not assessment:
            raise NotFoundError(
                "Assessment not found", error_code="ASSESSMENT_NOT_FOUND", context={"assessment_id": assessment_id}
            )

        passing_score = assessment.get("passing_score_percentage")
        if passing_score is None:
            passing_score = self.default_passing_score
        return build_assessment_analytics(assessment_id, attempts, responses, passing_score)
