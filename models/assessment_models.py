"""
Pydantic models for assessment generation and AI grading.
Request/record models plus the typed answer-key union used to validate model output.
"""

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StringConstraints, TypeAdapter, model_validator
from typing import Annotated, List, Optional, Dict, Any, Literal, Set, Union
from enum import Enum


# Enums for type safety and validation
class ScopeKind(str, Enum):
    LESSON = "lesson"
    MODULE = "module"
    COURSE = "course"


class AssessmentType(str, Enum):
    LESSON = "lesson"
    PATH = "path"
    CLASS = "class"


SCOPE_TO_ASSESSMENT_TYPE: Dict[ScopeKind, AssessmentType] = {
    ScopeKind.LESSON: AssessmentType.LESSON,
    ScopeKind.MODULE: AssessmentType.PATH,
    ScopeKind.COURSE: AssessmentType.CLASS,
}


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    MATCHING = "matching"


# Free-text types graded by the model after submission
AI_GRADED_TYPES = {QuestionType.SHORT_ANSWER.value, QuestionType.ESSAY.value}


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class GradingStatus(str, Enum):
    UNGRADED = "ungraded"
    AI_GRADED = "ai_graded"
    GRADING_ERROR = "grading_error"
    MANUALLY_OVERRIDDEN = "manually_overridden"


class ProgressStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"


# Request models
class ContentScope(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ScopeKind
    id: str = Field(..., min_length=1)


class GenerationRequest(BaseModel):
    scope: ContentScope
    title: str = Field(..., min_length=1, max_length=300)
    question_count: int = Field(..., ge=1, le=100)
    question_types: Set[QuestionType] = Field(..., min_length=1)
    difficulty: Difficulty = Difficulty.MEDIUM
    time_limit: Optional[int] = Field(None, ge=1, description="Minutes; None means untimed")
    passing_score: Optional[int] = Field(None, ge=0, le=100)
    base_class_id: Optional[str] = None
    created_by: Optional[str] = None
    description: Optional[str] = None


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


class GeneratedQuestion(BaseModel):
    """One question as produced by the model, loosely typed until validated."""
    question_text: str
    question_type: str
    options: Any = None
    correct_answer: Any = None
    answer_key: Dict[str, Any] = Field(default_factory=dict)
    sample_response: Optional[str] = None
    grading_rubric: Any = None
    points: int = 1
    explanation: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "GeneratedQuestion":
        """Build from an arbitrary parsed JSON object without raising on odd field types."""
        answer_key = raw.get("answer_key")
        if not isinstance(answer_key, dict):
            # A bare scalar/list key is most often the correct answer itself
            answer_key = {"correct_answer": answer_key}

        try:
            points = int(raw.get("points") or 1)
        except (TypeError, ValueError):
            points = 1

        return cls(
            question_text=str(raw.get("question_text", "")).strip(),
            question_type=str(raw.get("question_type", "")).strip(),
            options=raw.get("options"),
            correct_answer=raw.get("correct_answer"),
            answer_key=answer_key,
            sample_response=_optional_text(raw.get("sample_response")),
            grading_rubric=raw.get("grading_rubric"),
            points=max(points, 1),
            explanation=_optional_text(raw.get("explanation")),
        )


# Typed answer keys: one shape per question type
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class MultipleChoiceAnswerKey(BaseModel):
    options: List[NonEmptyStr] = Field(..., min_length=3)
    correct_option: NonEmptyStr
    correct_position: Optional[str] = None
    explanations: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def correct_option_is_listed(self) -> "MultipleChoiceAnswerKey":
        if self.correct_option not in self.options:
            raise ValueError("correct_option must be one of the options")
        return self


class TrueFalseAnswerKey(BaseModel):
    correct_answer: StrictBool
    explanation: Annotated[str, StringConstraints(strip_whitespace=True, min_length=11)]


class ShortAnswerAnswerKey(BaseModel):
    acceptable_answers: List[NonEmptyStr] = Field(..., min_length=1)
    keywords: List[str]
    min_score_threshold: Union[StrictInt, StrictFloat]
    grading_notes: Optional[str] = None


class EssayAnswerKey(BaseModel):
    grading_criteria: NonEmptyStr
    key_points: List[NonEmptyStr] = Field(..., min_length=1)
    rubric: Dict[str, Any]


class MatchingPair(BaseModel):
    left: NonEmptyStr
    right: NonEmptyStr


class MatchingAnswerKey(BaseModel):
    pairs: List[MatchingPair] = Field(..., min_length=3)
    explanation: Optional[str] = None


class MultipleChoiceQuestion(BaseModel):
    question_type: Literal["multiple_choice"]
    question_text: NonEmptyStr
    answer_key: MultipleChoiceAnswerKey


class TrueFalseQuestion(BaseModel):
    question_type: Literal["true_false"]
    question_text: NonEmptyStr
    answer_key: TrueFalseAnswerKey


class ShortAnswerQuestion(BaseModel):
    question_type: Literal["short_answer"]
    question_text: NonEmptyStr
    answer_key: ShortAnswerAnswerKey


class EssayQuestion(BaseModel):
    question_type: Literal["essay"]
    question_text: NonEmptyStr
    answer_key: EssayAnswerKey


class MatchingQuestion(BaseModel):
    question_type: Literal["matching"]
    question_text: NonEmptyStr
    answer_key: MatchingAnswerKey


TypedQuestion = Annotated[
    Union[MultipleChoiceQuestion, TrueFalseQuestion, ShortAnswerQuestion, EssayQuestion, MatchingQuestion],
    Field(discriminator="question_type"),
]

TYPED_QUESTION_ADAPTER: TypeAdapter = TypeAdapter(TypedQuestion)


# Persisted records
class Assessment(BaseModel):
    id: str
    title: str
    type: AssessmentType
    scope_id: Optional[str] = None
    time_limit: Optional[int] = None
    passing_score_percent: int = 70
    ai_grading_enabled: bool = True
    question_ids: List[str] = Field(default_factory=list)

    @property
    def question_count(self) -> int:
        return len(self.question_ids)


class StudentResponse(BaseModel):
    id: str
    attempt_id: str
    question_id: str
    response_data: Any = None
    ai_score: Optional[float] = None
    ai_feedback: Optional[str] = None
    ai_confidence: Optional[float] = None
    manual_score: Optional[float] = None
    final_score: Optional[float] = None
    grading_status: GradingStatus = GradingStatus.UNGRADED
    # Joined assessment_questions row (question_text, question_type, answer_key, points, ...)
    question: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "StudentResponse":
        data = {k: v for k, v in row.items() if k in cls.model_fields and v is not None}
        data["question"] = row.get("assessment_questions") or {}
        return cls(**data)

    @property
    def max_points(self) -> float:
        return float(self.question.get("points") or 1)


class GradingResult(BaseModel):
    score: float = Field(..., ge=0)
    feedback: str
    confidence: float = Field(..., ge=0, le=1)
    reasoning: str = ""
    suggestions: List[str] = Field(default_factory=list)


class Attempt(BaseModel):
    id: str
    assessment_id: Optional[str] = None
    student_id: Optional[str] = None
    total_points: float = 0
    earned_points: float = 0
    percentage_score: float = 0
    passed: bool = False
    status: str = "graded"


class ManualGrade(BaseModel):
    response_id: str
    score: float = Field(..., ge=0)
    feedback: str = ""
    grader_id: str
    reason: Optional[str] = None


class ProgressUpdate(BaseModel):
    status: ProgressStatus
    progress_percentage: float = Field(100, ge=0, le=100)
    last_position: Optional[str] = None


class InstantFeedback(BaseModel):
    is_correct: bool
    points_earned: float
    max_points: float
    feedback: str
    explanation: Optional[str] = None
    confidence: float = 1.0


class DifficultyReport(BaseModel):
    difficulty: Difficulty
    target: Dict[str, float]
    actual: Dict[str, float]
    counts: Dict[str, int]


class BatchGradingReport(BaseModel):
    graded: Dict[str, Attempt] = Field(default_factory=dict)
    failed: Dict[str, str] = Field(default_factory=dict)


# Analytics over graded attempts
class ScoreBand(BaseModel):
    label: str
    min: float
    max: float
    count: int = 0


class QuestionStats(BaseModel):
    question_id: str
    question_text: Optional[str] = None
    question_type: Optional[str] = None
    total_responses: int = 0
    correct_responses: int = 0
    average_score: float = 0
    accuracy_rate: float = 0


class AnalyticsOverview(BaseModel):
    total_attempts: int = 0
    average_score: float = 0
    highest_score: float = 0
    lowest_score: float = 0
    pass_rate: float = 0
    passed_count: int = 0
    passing_score: float = 70


class AssessmentAnalytics(BaseModel):
    assessment_id: str
    overview: AnalyticsOverview
    question_analytics: List[QuestionStats] = Field(default_factory=list)
    score_distribution: List[ScoreBand] = Field(default_factory=list)
