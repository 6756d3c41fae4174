"""
Validation and normalization of generated questions.

normalize_question only rebuilds canonical answer-key fields from sibling fields
the model did return; it never invents answers. validate_question then checks
the typed answer-key union keyed on question_type.
"""

import hashlib
import logging
import random
import re
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from models.assessment_models import TYPED_QUESTION_ADAPTER, GeneratedQuestion, QuestionType

logger = logging.getLogger(__name__)

OPTION_LETTERS = "ABCDEFGHIJ"

# Share of correct answers in one option slot above which a batch is reshuffled
POSITION_CONCENTRATION_LIMIT = 0.6
MIN_QUESTIONS_FOR_POSITION_CHECK = 4

DEFAULT_MIN_SCORE_THRESHOLD = 0.7

TYPE_ALIASES = {
    "mcq": "multiple_choice",
    "multiple choice": "multiple_choice",
    "multiplechoice": "multiple_choice",
    "true/false": "true_false",
    "true or false": "true_false",
    "truefalse": "true_false",
    "tf": "true_false",
    "boolean": "true_false",
    "short answer": "short_answer",
    "shortanswer": "short_answer",
    "long_answer": "essay",
    "match": "matching",
    "matching_pairs": "matching",
}

_LETTER_PREFIX_RE = re.compile(r'^\(?([A-Ja-j])[\).:]\s+(.*)$')


def canonical_question_type(value: str) -> str:
    key = (value or "").strip().lower()
    if key in TYPE_ALIASES:
        return TYPE_ALIASES[key]
    key = key.replace("-", "_").replace(" ", "_")
    return TYPE_ALIASES.get(key, key)


def _to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "t", "yes"):
            return True
        if lowered in ("false", "f", "no"):
            return False
    return None


def _clean_strings(values: Iterable[Any]) -> List[str]:
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


def _match_option_text(text: str, options: List[str]) -> Optional[str]:
    if text in options:
        return text
    lowered = {option.lower(): option for option in options}
    return lowered.get(text.lower())


def _resolve_option(value: Any, options: List[str]) -> Optional[str]:
    """Map a correct-answer reference (text, letter, index, "B) text") onto the option text."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return options[value] if 0 <= value < len(options) else None

    text = str(value).strip()
    matched = _match_option_text(text, options)
    if matched:
        return matched

    if len(text) == 1 and text.upper() in OPTION_LETTERS:
        index = OPTION_LETTERS.index(text.upper())
        if index < len(options):
            return options[index]

    prefixed = _LETTER_PREFIX_RE.match(text)
    if prefixed:
        matched = _match_option_text(prefixed.group(2).strip(), options)
        if matched:
            return matched
        index = OPTION_LETTERS.index(prefixed.group(1).upper())
        if index < len(options):
            return options[index]

    return text


def _normalize_multiple_choice(question: GeneratedQuestion, key: Dict[str, Any]) -> None:
    options = key.get("options") or question.options
    if isinstance(options, dict):
        options = [options[label] for label in sorted(options)]
    if isinstance(options, list):
        options = _clean_strings(options)
        key["options"] = options
    else:
        options = []

    reference = key.get("correct_option")
    if reference is None:
        reference = key.get("correct_answer")
    if reference is None:
        reference = question.correct_answer

    correct_option = _resolve_option(reference, options)
    if correct_option is not None:
        key["correct_option"] = correct_option
        if correct_option in options:
            key["correct_position"] = OPTION_LETTERS[options.index(correct_option)]

    if "explanations" not in key and isinstance(key.get("distractors"), dict):
        key["explanations"] = key["distractors"]

    if options and not isinstance(question.options, list):
        question.options = options
    if correct_option is not None:
        question.correct_answer = correct_option


def _normalize_true_false(question: GeneratedQuestion, key: Dict[str, Any]) -> None:
    value = key.get("correct_answer")
    if value is None:
        value = question.correct_answer

    as_bool = _to_bool(value)
    if as_bool is not None:
        key["correct_answer"] = as_bool
        question.correct_answer = as_bool

    if not key.get("explanation") and question.explanation:
        key["explanation"] = question.explanation


def _normalize_short_answer(question: GeneratedQuestion, key: Dict[str, Any]) -> None:
    answers = key.get("acceptable_answers")
    if not answers:
        answers = question.correct_answer
    if isinstance(answers, (str, int, float)) and not isinstance(answers, bool):
        answers = [answers]
    if isinstance(answers, list):
        key["acceptable_answers"] = _clean_strings(answers)

    keywords = key.get("keywords")
    if keywords is None:
        key["keywords"] = []
    elif isinstance(keywords, str):
        key["keywords"] = _clean_strings(keywords.split(","))
    elif isinstance(keywords, list):
        key["keywords"] = _clean_strings(keywords)

    threshold = key.get("min_score_threshold")
    if threshold is None:
        key["min_score_threshold"] = DEFAULT_MIN_SCORE_THRESHOLD
    elif isinstance(threshold, str):
        try:
            key["min_score_threshold"] = float(threshold)
        except ValueError:
            pass


def _criteria_text(value: Any) -> Any:
    if isinstance(value, dict):
        return "; ".join(f"{name}: {detail}" for name, detail in value.items())
    if isinstance(value, list):
        return "; ".join(str(item) for item in value)
    return value


def _normalize_essay(question: GeneratedQuestion, key: Dict[str, Any]) -> None:
    criteria = key.get("grading_criteria")
    if not criteria:
        if isinstance(question.grading_rubric, str) and question.grading_rubric.strip():
            criteria = question.grading_rubric
        else:
            criteria = question.explanation
    if criteria:
        key["grading_criteria"] = _criteria_text(criteria)

    key_points = key.get("key_points")
    if isinstance(key_points, str):
        key["key_points"] = [key_points.strip()] if key_points.strip() else []
    elif isinstance(key_points, list):
        key["key_points"] = _clean_strings(key_points)

    if not isinstance(key.get("rubric"), dict):
        key["rubric"] = question.grading_rubric if isinstance(question.grading_rubric, dict) else {}


def _pairs_from_mapping(mapping: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [{"left": left, "right": right} for left, right in mapping.items()]


def _normalize_matching(question: GeneratedQuestion, key: Dict[str, Any]) -> None:
    pairs = key.get("pairs")
    if isinstance(pairs, dict):
        pairs = _pairs_from_mapping(pairs)
    if not pairs and isinstance(question.correct_answer, dict):
        pairs = _pairs_from_mapping(question.correct_answer)
    if not isinstance(pairs, list):
        return

    normalized = []
    for pair in pairs:
        if isinstance(pair, dict) and "left" in pair and "right" in pair:
            normalized.append({"left": str(pair["left"]).strip(), "right": str(pair["right"]).strip()})
        elif isinstance(pair, (list, tuple)) and len(pair) == 2:
            normalized.append({"left": str(pair[0]).strip(), "right": str(pair[1]).strip()})
        else:
            normalized.append(pair)
    key["pairs"] = normalized


_NORMALIZERS = {
    QuestionType.MULTIPLE_CHOICE.value: _normalize_multiple_choice,
    QuestionType.TRUE_FALSE.value: _normalize_true_false,
    QuestionType.SHORT_ANSWER.value: _normalize_short_answer,
    QuestionType.ESSAY.value: _normalize_essay,
    QuestionType.MATCHING.value: _normalize_matching,
}


def normalize_question(question: GeneratedQuestion) -> GeneratedQuestion:
    """Return a copy with canonical question_type and answer-key fields filled from siblings."""
    normalized = question.model_copy(deep=True)
    normalized.question_type = canonical_question_type(normalized.question_type)

    normalizer = _NORMALIZERS.get(normalized.question_type)
    if normalizer:
        normalizer(normalized, normalized.answer_key)
    return normalized


def validate_question(question: GeneratedQuestion) -> bool:
    try:
        TYPED_QUESTION_ADAPTER.validate_python({
            "question_type": question.question_type,
            "question_text": question.question_text,
            "answer_key": question.answer_key,
        })
    except PydanticValidationError as e:
        logger.debug(f"Rejected {question.question_type} question '{question.question_text[:60]}': {e.errors()[:3]}")
        return False
    return True


def normalize_and_validate(
    questions: List[GeneratedQuestion],
    allowed_types: Optional[Iterable[Any]] = None,
) -> List[GeneratedQuestion]:
    """Normalize every question and keep the ones that validate (and were requested)."""
    allowed = {getattr(t, "value", t) for t in allowed_types} if allowed_types else None

    valid = []
    for question in questions:
        normalized = normalize_question(question)
        if allowed is not None and normalized.question_type not in allowed:
            logger.debug(f"Dropping unrequested {normalized.question_type} question")
            continue
        if validate_question(normalized):
            valid.append(normalized)
    return valid


# Answer-position balance

def answer_position_distribution(questions: List[GeneratedQuestion]) -> Dict[str, int]:
    """Count correct multiple-choice answers per option slot (A, B, C, ...)."""
    counts: Dict[str, int] = {}
    for question in questions:
        if question.question_type != QuestionType.MULTIPLE_CHOICE.value:
            continue
        options = question.answer_key.get("options") or []
        correct = question.answer_key.get("correct_option")
        if correct in options:
            letter = OPTION_LETTERS[options.index(correct)]
            counts[letter] = counts.get(letter, 0) + 1
    return counts


def is_position_concentrated(
    questions: List[GeneratedQuestion],
    limit: float = POSITION_CONCENTRATION_LIMIT,
) -> bool:
    counts = answer_position_distribution(questions)
    total = sum(counts.values())
    if total < MIN_QUESTIONS_FOR_POSITION_CHECK:
        return False
    return max(counts.values()) / total > limit


def _reposition_options(question: GeneratedQuestion, slot: int) -> GeneratedQuestion:
    """Shuffle the distractors and put the correct option at `slot` (modulo the option count)."""
    key = question.answer_key
    correct = key["correct_option"]
    distractors = [option for option in key.get("options") or [] if option != correct]
    # Seeded from the text so the same question always lands in the same order
    seed = int(hashlib.sha256(question.question_text.encode("utf-8")).hexdigest(), 16)
    random.Random(seed).shuffle(distractors)

    position = slot % (len(distractors) + 1)
    options = distractors[:position] + [correct] + distractors[position:]

    repositioned = question.model_copy(deep=True)
    repositioned.answer_key["options"] = options
    repositioned.answer_key["correct_position"] = OPTION_LETTERS[position]
    repositioned.options = list(options)
    return repositioned


def balance_answer_positions(
    questions: List[GeneratedQuestion],
    limit: float = POSITION_CONCENTRATION_LIMIT,
) -> List[GeneratedQuestion]:
    """Spread multiple-choice correct answers round-robin over the slots when they cluster in one."""
    if not is_position_concentrated(questions, limit):
        return questions

    logger.warning(f"Correct answers concentrated in one position {answer_position_distribution(questions)}, reshuffling options")
    balanced = []
    slot = 0
    for question in questions:
        if question.question_type == QuestionType.MULTIPLE_CHOICE.value:
            balanced.append(_reposition_options(question, slot))
            slot += 1
        else:
            balanced.append(question)
    logger.info(f"Answer positions after reshuffle: {answer_position_distribution(balanced)}")
    return balanced


def true_false_distribution(questions: List[GeneratedQuestion]) -> Dict[str, int]:
    counts = {"true": 0, "false": 0}
    for question in questions:
        if question.question_type == QuestionType.TRUE_FALSE.value:
            counts["true" if question.answer_key.get("correct_answer") else "false"] += 1
    return counts
