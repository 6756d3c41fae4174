"""
GradingService: AI grading of free-text responses plus attempt scoring.

Each ungraded short-answer or essay response of an attempt is graded on its own;
a failure is recorded on that response and never stops its siblings. Attempt
totals are then recomputed from every response and progress is reported.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from clients.model_gateway import ModelGateway, build_grading_gateway
from clients.progress_client import ProgressTracker
from models.assessment_models import (
    AssessmentAnalytics,
    Attempt,
    BatchGradingReport,
    GradingResult,
    GradingStatus,
    ManualGrade,
    ProgressStatus,
    ProgressUpdate,
    QuestionType,
    StudentResponse,
)
from prompts.assessment_prompts import GRADING_SYSTEM_PROMPT, build_grading_prompt
from services.response_parser import parse_grading_result
from utils.assessment_storage import EMPTY_RESPONSE_FEEDBACK, AssessmentStorage
from utils.exceptions import AssessmentError, StorageError
from utils.model_config import PipelineSettings
from utils.progress_trail import ProgressTrail

logger = logging.getLogger(__name__)

# Keys tried, in order, when response_data is a dict
ANSWER_KEYS = {
    QuestionType.SHORT_ANSWER.value: ("answer", "text", "response"),
    QuestionType.ESSAY.value: ("essay", "text", "content", "answer"),
}
DEFAULT_ANSWER_KEYS = ("text", "answer")


def extract_student_answer(response_data: Any, question_type: Optional[str]) -> str:
    """Pull the free-text answer out of a stored response payload."""
    if response_data is None:
        return ""
    if isinstance(response_data, str):
        return response_data
    if isinstance(response_data, dict):
        for key in ANSWER_KEYS.get(question_type or "", DEFAULT_ANSWER_KEYS):
            value = response_data.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return ""
    return str(response_data)


class GradingService:
    def __init__(
        self,
        gateway: Optional[ModelGateway] = None,
        storage: Optional[AssessmentStorage] = None,
        progress_tracker: Optional[ProgressTracker] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self.settings = settings or PipelineSettings.from_env()
        self.gateway = gateway or build_grading_gateway(self.settings)
        self.storage = storage or AssessmentStorage(self.settings.default_passing_score)
        self.progress_tracker = progress_tracker or ProgressTracker()

    async def grade_attempt(
        self,
        attempt_id: str,
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> Attempt:
        """Grade every ungraded AI-gradable response, then recompute and report the attempt."""
        trail = ProgressTrail(on_progress, name="grading")
        try:
            trail("Fetching student responses for grading...")
            responses = await asyncio.to_thread(self.storage.read_ungraded_responses, attempt_id)

            if responses:
                trail(f"Grading {len(responses)} responses with AI...")
                results = await asyncio.gather(
                    *(self._grade_response(response, trail) for response in responses),
                    return_exceptions=True,
                )
                statuses = []
                for response, result in zip(responses, results):
                    if isinstance(result, BaseException):
                        logger.error(f"Unexpected failure grading response {response.id}: {result}")
                        statuses.append(GradingStatus.GRADING_ERROR)
                    else:
                        statuses.append(result)
                errors = statuses.count(GradingStatus.GRADING_ERROR)
                trail(f"Graded {len(statuses) - errors}/{len(statuses)} responses ({errors} need manual review)")
            else:
                trail("No responses requiring AI grading found")

            trail("Calculating final scores...")
            attempt = await asyncio.to_thread(self.storage.recompute_attempt_totals, attempt_id)
        except AssessmentError as e:
            e.context["progress_trail"] = list(trail.messages)
            logger.error(f"Grading failed for attempt {attempt_id}: {e.message}")
            raise

        await self._report_progress(attempt)
        trail(f"Attempt scored {attempt.percentage_score}% ({'passed' if attempt.passed else 'failed'})")
        return attempt

    async def _grade_response(self, response: StudentResponse, trail: ProgressTrail) -> GradingStatus:
        question_type = response.question.get("question_type")
        answer = extract_student_answer(response.response_data, question_type)

        try:
            if not answer.strip():
                result = GradingResult(
                    score=0,
                    feedback=EMPTY_RESPONSE_FEEDBACK,
                    confidence=1.0,
                    reasoning="Empty response automatically scored as 0",
                )
            else:
                prompt = build_grading_prompt(response.question, answer)
                raw = await self.gateway.complete(GRADING_SYSTEM_PROMPT, prompt)
                result = parse_grading_result(raw, response.max_points)
            await asyncio.to_thread(self.storage.save_grading_result, response.id, result)
        except Exception as e:
            message = e.message if isinstance(e, AssessmentError) else str(e)
            logger.error(f"AI grading failed for response {response.id}: {message}")
            await self._record_error(response.id, message)
            return GradingStatus.GRADING_ERROR

        question_text = response.question.get("question_text") or ""
        trail(f"Graded response for question: {question_text[:50]}...")
        return GradingStatus.AI_GRADED

    async def _record_error(self, response_id: str, message: str) -> None:
        try:
            await asyncio.to_thread(self.storage.save_grading_error, response_id, message)
        except StorageError as e:
            logger.error(f"Could not mark response {response_id} for manual review: {e.message}")

    async def _report_progress(self, attempt: Attempt) -> None:
        if not attempt.assessment_id or not attempt.student_id:
            logger.warning(f"Attempt {attempt.id} has no assessment or student, skipping progress update")
            return

        update = ProgressUpdate(
            status=ProgressStatus.PASSED if attempt.passed else ProgressStatus.FAILED,
            progress_percentage=100,
            last_position=None,
        )
        try:
            await asyncio.to_thread(
                self.progress_tracker.update_assessment_progress,
                attempt.assessment_id,
                attempt.student_id,
                update,
            )
        except Exception as e:
            # Grades are already persisted; progress is reported best effort
            logger.error(f"Progress update failed for attempt {attempt.id}: {e}")

    async def batch_grade_attempts(
        self,
        attempt_ids: List[str],
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> BatchGradingReport:
        """Grade attempts one after another; a failed attempt is reported, not raised."""
        report = BatchGradingReport()
        for index, attempt_id in enumerate(attempt_ids):
            logger.info(f"Batch grading attempt {index + 1}/{len(attempt_ids)}: {attempt_id}")
            try:
                report.graded[attempt_id] = await self.grade_attempt(attempt_id, on_progress)
            except AssessmentError as e:
                report.failed[attempt_id] = e.message
        logger.info(f"Batch grading finished: {len(report.graded)} graded, {len(report.failed)} failed")
        return report

    async def apply_manual_grade(self, grade: ManualGrade) -> Attempt:
        """Store an instructor override; it takes precedence over the AI score in totals."""
        attempt_id = await asyncio.to_thread(self.storage.apply_manual_grade, grade)
        logger.info(f"Manual grade {grade.score} applied to response {grade.response_id} by {grade.grader_id}")
        return await asyncio.to_thread(self.storage.recompute_attempt_totals, attempt_id)

    async def get_assessment_results(self, assessment_id: str) -> List[Dict[str, Any]]:
        """Every attempt of the assessment with its responses, newest first."""
        return await asyncio.to_thread(self.storage.get_assessment_results, assessment_id)

    async def get_assessment_analytics(self, assessment_id: str) -> AssessmentAnalytics:
        analytics = await asyncio.to_thread(self.storage.get_assessment_analytics, assessment_id)
        overview = analytics.overview
        logger.info(
            f"Analytics for assessment {assessment_id}: {overview.total_attempts} graded attempts, "
            f"average {overview.average_score}%, pass rate {overview.pass_rate}%"
        )
        return analytics
