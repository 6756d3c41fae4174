"""
AssessmentGenerationService: content -> validated, point-weighted, persisted questions.

  1. generate_assessment - aggregate scope content, generate with acceptance retries,
                           balance answer positions and points, persist with rollback
  2. compile_exam        - build a class-level exam from existing questions
"""

import asyncio
import logging
import math
from typing import Any, Callable, Dict, List, Optional, Tuple

from clients.model_gateway import ModelGateway, build_generation_gateway
from models.assessment_models import (
    AI_GRADED_TYPES,
    Assessment,
    AssessmentType,
    GeneratedQuestion,
    GenerationRequest,
    SCOPE_TO_ASSESSMENT_TYPE,
    ScopeKind,
)
from prompts.assessment_prompts import (
    QUESTION_GENERATION_SYSTEM_PROMPT,
    RETRY_PROMPT_ADDENDUM,
    build_generation_prompt,
)
from services.content_aggregation import ContentAggregator
from services.difficulty_balancer import balance_questions
from services.question_validation import (
    answer_position_distribution,
    balance_answer_positions,
    normalize_and_validate,
    true_false_distribution,
)
from services.response_parser import parse_questions
from utils.assessment_storage import REUSABLE_QUESTION_COLUMNS, AssessmentStorage, question_rows
from utils.exceptions import AssessmentError, GenerationError, NotFoundError, ValidationError
from utils.model_config import PipelineSettings
from utils.progress_trail import ProgressTrail
from utils.retry import RetryPolicy, retry_until

logger = logging.getLogger(__name__)

# (questions parsed from the reply, questions that validated)
BatchResult = Tuple[int, List[GeneratedQuestion]]


class AssessmentGenerationService:
    """Runs the generation pipeline for one request at a time; share the gateway to share its limiter."""

    def __init__(
        self,
        gateway: Optional[ModelGateway] = None,
        aggregator: Optional[ContentAggregator] = None,
        storage: Optional[AssessmentStorage] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self.settings = settings or PipelineSettings.from_env()
        self.gateway = gateway or build_generation_gateway(self.settings)
        self.aggregator = aggregator or ContentAggregator(
            retry_attempts=self.settings.content_retry_attempts,
            retry_delay_seconds=self.settings.content_retry_delay_seconds,
        )
        self.storage = storage or AssessmentStorage(self.settings.default_passing_score)

    async def generate_assessment(
        self,
        request: GenerationRequest,
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> Assessment:
        trail = ProgressTrail(on_progress, name="generation")
        try:
            trail(f"Fetching {request.scope.kind.value} content...")
            content = await self.aggregator.fetch_content(request.scope)
            trail(f"Loaded {len(content)} characters of content")

            questions = await self.generate_validated_questions(content, request, trail)

            questions = balance_answer_positions(questions)
            questions, report = balance_questions(questions, request.difficulty)
            logger.info(
                f"Answer positions {answer_position_distribution(questions)}, "
                f"true/false split {true_false_distribution(questions)}, difficulty counts {report.counts}"
            )

            trail(f"Saving assessment with {len(questions)} questions...")
            assessment = await self._persist_generated(request, questions)
            trail(f"Assessment {assessment.id} created with {assessment.question_count} questions")
            return assessment
        except AssessmentError as e:
            e.context["progress_trail"] = list(trail.messages)
            logger.error(f"Assessment generation failed for {request.scope.kind.value} {request.scope.id}: {e.message}")
            raise

    async def generate_validated_questions(
        self,
        content: str,
        request: GenerationRequest,
        trail: Optional[ProgressTrail] = None,
    ) -> List[GeneratedQuestion]:
        """
        Generate, parse and validate until the batch is accepted or attempts run out.

        A batch is accepted when at least `acceptance_ratio` of the parsed questions
        validate and the valid questions cover `acceptance_ratio` of the requested count.
        Model call failures propagate; an unparseable reply is just a rejected batch.
        """
        trail = trail or ProgressTrail(name="generation")
        count = request.question_count
        ratio = self.settings.acceptance_ratio
        required = math.ceil(count * ratio)
        attempts_made = 0

        base_prompt = build_generation_prompt(
            content,
            count,
            request.question_types,
            request.difficulty,
            self.settings.content_token_budget,
        )

        async def generate_batch() -> BatchResult:
            nonlocal attempts_made
            attempts_made += 1
            prompt = base_prompt if attempts_made == 1 else base_prompt + RETRY_PROMPT_ADDENDUM

            trail(f"Generating questions (attempt {attempts_made}/{self.settings.generation_attempts})...")
            raw = await self.gateway.complete(QUESTION_GENERATION_SYSTEM_PROMPT, prompt)
            parsed = parse_questions(raw)
            valid = normalize_and_validate(parsed, request.question_types)
            trail(f"Parsed {len(parsed)} questions from AI response, {len(valid)} valid")
            return len(parsed), valid

        def accepted(batch: BatchResult) -> bool:
            parsed_count, valid = batch
            return parsed_count > 0 and len(valid) / parsed_count >= ratio and len(valid) >= required

        policy = RetryPolicy(max_attempts=self.settings.generation_attempts, accept=accepted)
        outcome = await retry_until(
            generate_batch,
            policy,
            on_retry=lambda attempt, batch, error: trail(
                f"Batch rejected ({len(batch[1]) if batch else 0}/{count} valid), retrying..."
            ),
        )

        valid = outcome.result[1] if outcome.result else []
        if outcome.accepted:
            return valid[:count]

        if self.settings.allow_partial_batch and valid:
            trail(f"Accepting partial batch of {len(valid)}/{count} questions after {outcome.attempts} attempts")
            return valid[:count]

        raise GenerationError(
            f"Only {len(valid)} of {count} questions passed validation after {outcome.attempts} attempts",
            error_code="BATCH_NOT_ACCEPTED",
            context={"requested": count, "valid": len(valid), "attempts": outcome.attempts},
        )

    async def _persist_generated(self, request: GenerationRequest, questions: List[GeneratedQuestion]) -> Assessment:
        scope = request.scope
        assessment_type = SCOPE_TO_ASSESSMENT_TYPE[scope.kind]
        passing_score = request.passing_score
        if passing_score is None:
            passing_score = self.settings.default_passing_score

        ai_grading_enabled = any(q.question_type in AI_GRADED_TYPES for q in questions)
        data = {
            "title": request.title,
            "description": request.description,
            "assessment_type": assessment_type.value,
            "base_class_id": scope.id if scope.kind == ScopeKind.COURSE else request.base_class_id,
            "lesson_id": scope.id if scope.kind == ScopeKind.LESSON else None,
            "path_id": scope.id if scope.kind == ScopeKind.MODULE else None,
            "time_limit_minutes": request.time_limit,
            "passing_score_percentage": passing_score,
            "ai_grading_enabled": ai_grading_enabled,
            "ai_grading_model": self.gateway.model_config.get("model"),
            "created_by": request.created_by,
        }

        assessment_id, question_ids = await asyncio.to_thread(
            self.storage.create_assessment_with_questions, data, question_rows(questions)
        )
        return Assessment(
            id=assessment_id,
            title=request.title,
            type=assessment_type,
            scope_id=scope.id,
            time_limit=request.time_limit,
            passing_score_percent=passing_score,
            ai_grading_enabled=ai_grading_enabled,
            question_ids=question_ids,
        )

    async def compile_exam(
        self,
        title: str,
        question_ids: List[str],
        base_class_id: str,
        time_limit: Optional[int] = None,
        passing_score: Optional[int] = None,
        created_by: Optional[str] = None,
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> Assessment:
        """Copy existing questions, in the given order, into a new class-level exam."""
        trail = ProgressTrail(on_progress, name="exam-compilation")
        if not question_ids:
            raise ValidationError("An exam needs at least one question", error_code="EMPTY_EXAM")

        try:
            trail(f"Loading {len(question_ids)} questions...")
            existing = await asyncio.to_thread(self.storage.get_questions_by_ids, question_ids)
            by_id: Dict[str, Dict[str, Any]] = {str(row["id"]): row for row in existing}
            missing = [qid for qid in question_ids if qid not in by_id]
            if missing:
                raise NotFoundError("Questions not found", error_code="QUESTION_NOT_FOUND", context={"question_ids": missing})

            rows = []
            for index, qid in enumerate(question_ids):
                row = {column: by_id[qid].get(column) for column in REUSABLE_QUESTION_COLUMNS}
                row["order_index"] = index + 1
                row["is_required"] = True
                rows.append(row)

            if passing_score is None:
                passing_score = self.settings.default_passing_score
            data = {
                "title": title,
                "assessment_type": AssessmentType.CLASS.value,
                "base_class_id": base_class_id,
                "lesson_id": None,
                "path_id": None,
                "time_limit_minutes": time_limit,
                "passing_score_percentage": passing_score,
                "ai_grading_enabled": any(row.get("ai_grading_enabled") for row in rows),
                "created_by": created_by,
            }

            trail("Saving exam...")
            assessment_id, new_ids = await asyncio.to_thread(self.storage.create_assessment_with_questions, data, rows)
            trail(f"Exam {assessment_id} compiled with {len(new_ids)} questions")
        except AssessmentError as e:
            e.context["progress_trail"] = list(trail.messages)
            raise

        return Assessment(
            id=assessment_id,
            title=title,
            type=AssessmentType.CLASS,
            scope_id=base_class_id,
            time_limit=time_limit,
            passing_score_percent=passing_score,
            ai_grading_enabled=data["ai_grading_enabled"],
            question_ids=new_ids,
        )
