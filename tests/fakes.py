"""
In-memory stand-ins for the external collaborators (Supabase, the chat API,
the progress tracker and the tokenizer) used across the test suite.
"""

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Union

from models.assessment_models import AI_GRADED_TYPES, AssessmentAnalytics, Attempt, GradingResult, GradingStatus, ManualGrade, StudentResponse
from utils.assessment_storage import (
    PENDING_REVIEW_FEEDBACK,
    build_assessment_analytics,
    compute_attempt_totals,
)
from utils.exceptions import NotFoundError, StorageError


class FakeEncoding:
    """Whitespace tokenizer so prompt building never downloads a BPE file."""

    def encode(self, text: str) -> List[str]:
        return text.split(" ") if text else []

    def decode(self, tokens: List[str]) -> str:
        return " ".join(tokens)


async def no_sleep(_: float) -> None:
    return None


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def chat_response(content: str, finish_reason: str = "stop") -> Any:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)]
    )


Reply = Union[str, BaseException]


class FakeChatClient:
    """
    Mimics `client.chat.completions.create`.

    Replies come from a script (consumed in order, the last one repeats) or from a
    responder called with the request params. Exceptions in the script are raised.
    """

    def __init__(
        self,
        replies: Optional[List[Reply]] = None,
        responder: Optional[Callable[[Dict[str, Any]], Reply]] = None,
        delay: float = 0.0,
        finish_reason: str = "stop",
    ):
        self.replies = list(replies or [])
        self.responder = responder
        self.delay = delay
        self.finish_reason = finish_reason
        self.calls: List[Dict[str, Any]] = []
        self.in_flight = 0
        self.peak = 0
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **params: Any) -> Any:
        self.calls.append(params)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.responder:
                reply = self.responder(params)
            elif len(self.replies) > 1:
                reply = self.replies.pop(0)
            else:
                reply = self.replies[0]
        finally:
            self.in_flight -= 1

        if isinstance(reply, BaseException):
            raise reply
        return chat_response(reply, self.finish_reason)

    def user_prompt(self, index: int) -> str:
        return self.calls[index]["messages"][1]["content"]


class FakeContentSource:
    """Lesson/path/class hierarchy held in dicts; sections can appear after N reads."""

    def __init__(
        self,
        lessons: Optional[Dict[str, Dict[str, Any]]] = None,
        sections: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        module_lessons: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        course_modules: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        sections_ready_after: int = 0,
        fail_with: Optional[BaseException] = None,
    ):
        self.lessons = lessons or {}
        self.sections = sections or {}
        self.module_lessons = module_lessons or {}
        self.course_modules = course_modules or {}
        self.sections_ready_after = sections_ready_after
        self.fail_with = fail_with
        self.section_reads = 0

    def get_lesson(self, lesson_id: str) -> Optional[Dict[str, Any]]:
        return self.lessons.get(lesson_id)

    def get_lesson_sections(self, lesson_id: str) -> List[Dict[str, Any]]:
        self.section_reads += 1
        if self.fail_with:
            raise self.fail_with
        if self.section_reads <= self.sections_ready_after:
            return []
        return self.sections.get(lesson_id, [])

    def get_module_lessons(self, path_id: str) -> List[Dict[str, Any]]:
        if self.fail_with:
            raise self.fail_with
        return self.module_lessons.get(path_id, [])

    def get_course_modules(self, base_class_id: str) -> List[Dict[str, Any]]:
        if self.fail_with:
            raise self.fail_with
        return self.course_modules.get(base_class_id, [])


class FakeProgressTracker:
    def __init__(self, fail_with: Optional[BaseException] = None):
        self.updates: List[Dict[str, Any]] = []
        self.fail_with = fail_with

    def update_assessment_progress(self, assessment_id, user_id, update) -> None:
        if self.fail_with:
            raise self.fail_with
        self.updates.append({"assessment_id": assessment_id, "user_id": user_id, "update": update})


class InMemoryAssessmentStorage:
    """Same surface as AssessmentStorage, backed by dicts."""

    def __init__(self, default_passing_score: int = 70):
        self.default_passing_score = default_passing_score
        self.assessments: Dict[str, Dict[str, Any]] = {}
        self.questions: Dict[str, Dict[str, Any]] = {}
        self.responses: Dict[str, Dict[str, Any]] = {}
        self.attempts: Dict[str, Dict[str, Any]] = {}
        self.fail_question_insert = False
        self.fail_save_for: set = set()
        self.fail_error_save_for: set = set()

    # Generation side

    def create_assessment_with_questions(self, data, rows):
        assessment_id = f"assessment-{len(self.assessments) + 1}"
        self.assessments[assessment_id] = dict(data, id=assessment_id)
        if self.fail_question_insert:
            del self.assessments[assessment_id]
            raise StorageError("Failed to insert questions", context={"assessment_id": assessment_id})

        question_ids = []
        for row in rows:
            question_id = f"question-{len(self.questions) + 1}"
            # Round-trip through JSON like a jsonb column would
            self.questions[question_id] = dict(json.loads(json.dumps(row)), id=question_id, assessment_id=assessment_id)
            question_ids.append(question_id)
        return assessment_id, question_ids

    def get_questions_by_ids(self, question_ids):
        return [self.questions[qid] for qid in question_ids if qid in self.questions]

    def questions_for(self, assessment_id: str) -> List[Dict[str, Any]]:
        rows = [q for q in self.questions.values() if q["assessment_id"] == assessment_id]
        return sorted(rows, key=lambda q: q["order_index"])

    # Grading side

    def add_attempt(self, attempt_id: str, assessment_id: str, student_id: str, passing_score: int = 70) -> None:
        self.attempts[attempt_id] = {"id": attempt_id, "assessment_id": assessment_id, "student_id": student_id}
        self.assessments.setdefault(assessment_id, {"id": assessment_id, "passing_score_percentage": passing_score})

    def add_response(self, response_id: str, attempt_id: str, question: Dict[str, Any], response_data: Any, **fields) -> None:
        question = dict({"points": 1, "ai_grading_enabled": question.get("question_type") in AI_GRADED_TYPES}, **question)
        self.responses[response_id] = dict(
            {
                "id": response_id,
                "attempt_id": attempt_id,
                "question_id": f"q-{response_id}",
                "response_data": response_data,
                "ai_score": None,
                "manual_score": None,
                "final_score": None,
                "grading_status": GradingStatus.UNGRADED.value,
                "assessment_questions": question,
            },
            **fields,
        )

    def read_ungraded_responses(self, attempt_id):
        rows = [
            row for row in self.responses.values()
            if row["attempt_id"] == attempt_id
            and row["assessment_questions"].get("question_type") in AI_GRADED_TYPES
            and row["assessment_questions"].get("ai_grading_enabled")
            and row["ai_score"] is None
            and row["manual_score"] is None
        ]
        return [StudentResponse.from_row(row) for row in rows]

    def save_grading_result(self, response_id: str, result: GradingResult) -> None:
        if response_id in self.fail_save_for:
            raise StorageError("Failed to save grading result", context={"response_id": response_id})
        self.responses[response_id].update({
            "ai_score": result.score,
            "ai_feedback": result.feedback,
            "ai_confidence": result.confidence,
            "ai_reasoning": result.reasoning,
            "final_score": result.score,
            "grading_status": GradingStatus.AI_GRADED.value,
            "grading_error": None,
        })

    def save_grading_error(self, response_id: str, message: str) -> None:
        if response_id in self.fail_error_save_for:
            raise StorageError("Failed to save grading error", context={"response_id": response_id})
        self.responses[response_id].update({
            "ai_score": None,
            "ai_feedback": PENDING_REVIEW_FEEDBACK,
            "ai_confidence": 0,
            "grading_status": GradingStatus.GRADING_ERROR.value,
            "grading_error": message,
        })

    def apply_manual_grade(self, grade: ManualGrade) -> str:
        row = self.responses.get(grade.response_id)
        if row is None:
            raise NotFoundError("Response not found", context={"response_id": grade.response_id})
        row.update({
            "manual_score": grade.score,
            "manual_feedback": grade.feedback,
            "manually_graded_by": grade.grader_id,
            "final_score": grade.score,
            "grading_status": GradingStatus.MANUALLY_OVERRIDDEN.value,
        })
        return row["attempt_id"]

    def recompute_attempt_totals(self, attempt_id: str) -> Attempt:
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt not found", error_code="ATTEMPT_NOT_FOUND", context={"attempt_id": attempt_id})
        assessment = self.assessments.get(attempt["assessment_id"]) or {}
        passing_score = assessment.get("passing_score_percentage", self.default_passing_score)
        rows = [row for row in self.responses.values() if row["attempt_id"] == attempt_id]
        totals = compute_attempt_totals(rows, passing_score)
        attempt.update(totals, status="graded")
        return Attempt(
            id=attempt_id,
            assessment_id=attempt["assessment_id"],
            student_id=attempt["student_id"],
            **totals,
        )

    # Results and analytics

    def get_assessment_results(self, assessment_id: str) -> List[Dict[str, Any]]:
        return [
            dict(attempt, student_responses=[r for r in self.responses.values() if r["attempt_id"] == attempt["id"]])
            for attempt in self.attempts.values()
            if attempt["assessment_id"] == assessment_id
        ]

    def get_assessment_analytics(self, assessment_id: str) -> AssessmentAnalytics:
        assessment = self.assessments.get(assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment not found", error_code="ASSESSMENT_NOT_FOUND")
        attempts = [
            a for a in self.attempts.values()
            if a["assessment_id"] == assessment_id and a.get("status") == "graded"
        ]
        attempt_ids = {a["id"] for a in attempts}
        responses = [r for r in self.responses.values() if r["attempt_id"] in attempt_ids]
        passing_score = assessment.get("passing_score_percentage", self.default_passing_score)
        return build_assessment_analytics(assessment_id, attempts, responses, passing_score)
