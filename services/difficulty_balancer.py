"""
Point assignment from a deterministic complexity heuristic.

The score depends only on the question type and text, so the same question
always gets the same points. The requested difficulty profile is reported
against, not enforced.
"""

import logging
import re
from typing import Dict, List, Tuple

from models.assessment_models import Difficulty, DifficultyReport, GeneratedQuestion, QuestionType

logger = logging.getLogger(__name__)

TYPE_BASE_WEIGHTS: Dict[str, float] = {
    QuestionType.MULTIPLE_CHOICE.value: 1.0,
    QuestionType.TRUE_FALSE.value: 0.5,
    QuestionType.SHORT_ANSWER.value: 2.0,
    QuestionType.ESSAY.value: 3.0,
    QuestionType.MATCHING.value: 1.5,
}

ANALYTICAL_VERBS = ("analyze", "evaluate", "compare", "synthesize", "critique")
_ANALYTICAL_VERB_RE = re.compile(r"\b(" + "|".join(ANALYTICAL_VERBS) + r")\b", re.IGNORECASE)

LONG_QUESTION_WORDS = 20
LONG_WORD_AVERAGE = 6

BUCKET_POINTS = {"easy": 1, "medium": 2, "hard": 3}

# Target share of easy/medium/hard questions per requested difficulty
DIFFICULTY_DISTRIBUTIONS: Dict[Difficulty, Dict[str, float]] = {
    Difficulty.EASY: {"easy": 0.7, "medium": 0.25, "hard": 0.05},
    Difficulty.MEDIUM: {"easy": 0.2, "medium": 0.6, "hard": 0.2},
    Difficulty.HARD: {"easy": 0.1, "medium": 0.3, "hard": 0.6},
}

DEFAULT_EXPLANATIONS = {
    QuestionType.MULTIPLE_CHOICE.value: "Tests recognition and understanding of key concepts from the content.",
    QuestionType.TRUE_FALSE.value: "Tests factual knowledge of a specific statement from the content.",
    QuestionType.SHORT_ANSWER.value: "Tests recall and the ability to explain concepts briefly.",
    QuestionType.ESSAY.value: "Tests deeper understanding, analysis and synthesis of the content.",
    QuestionType.MATCHING.value: "Tests understanding of relationships between related concepts.",
}


def complexity_score(question: GeneratedQuestion) -> float:
    score = TYPE_BASE_WEIGHTS.get(question.question_type, 1.0)

    text = question.question_text
    words = text.split()
    if len(words) > LONG_QUESTION_WORDS:
        score += 0.5
    # Non-whitespace characters per whitespace-separated word, punctuation included
    if words and len("".join(words)) / len(words) > LONG_WORD_AVERAGE:
        score += 0.3

    if _ANALYTICAL_VERB_RE.search(text):
        score += 0.7

    return round(score, 2)


def difficulty_bucket(score: float) -> str:
    if score < 1.5:
        return "easy"
    if score < 2.5:
        return "medium"
    return "hard"


def assign_points(question: GeneratedQuestion) -> GeneratedQuestion:
    bucket = difficulty_bucket(complexity_score(question))
    question.points = BUCKET_POINTS[bucket]
    if not question.explanation:
        question.explanation = DEFAULT_EXPLANATIONS.get(question.question_type)
    return question


def balance_questions(
    questions: List[GeneratedQuestion],
    difficulty: Difficulty,
) -> Tuple[List[GeneratedQuestion], DifficultyReport]:
    """Assign points to every question and compare the bucket mix with the requested profile."""
    counts = {"easy": 0, "medium": 0, "hard": 0}
    balanced = []
    for question in questions:
        counts[difficulty_bucket(complexity_score(question))] += 1
        balanced.append(assign_points(question))

    total = len(questions) or 1
    report = DifficultyReport(
        difficulty=difficulty,
        target=DIFFICULTY_DISTRIBUTIONS[difficulty],
        actual={bucket: round(count / total, 2) for bucket, count in counts.items()},
        counts=counts,
    )
    logger.info(f"Difficulty mix for {difficulty.value} request: actual={report.actual} target={report.target}")
    return balanced, report
