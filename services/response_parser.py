"""
Parsing and repair of raw model output.

Generation output is often cut off at the token limit, so a failed parse falls
through a chain of repair strategies that recover every complete question
object before the break. parse_questions never raises: unrecoverable text
yields an empty list, which the generation loop treats as a rejected batch.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from models.assessment_models import GeneratedQuestion, GradingResult
from utils.exceptions import GradingError

logger = logging.getLogger(__name__)

REQUIRED_QUESTION_FIELDS = ("question_text", "question_type", "answer_key")

_FENCE_RE = re.compile(r'^\s*```(?:json|JSON)?\s*|\s*```\s*$', re.MULTILINE)


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub('', text).strip()


def _as_question_list(parsed: Any) -> Optional[List[Any]]:
    """Accept an array, a {"questions": [...]} wrapper, or a single question object."""
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        if isinstance(parsed.get("questions"), list):
            return parsed["questions"]
        return [parsed]
    return None


def _load_array(text: str) -> Optional[List[Any]]:
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    if isinstance(parsed, list):
        return parsed
    return None


def repair_truncate_to_last_brace(text: str) -> Optional[List[Any]]:
    """Cut after the last closing brace and close the array."""
    start = text.find('[')
    end = text.rfind('}')
    if start == -1 or end == -1 or end < start:
        return None
    return _load_array(text[start:end + 1] + ']')


def _scan_top_level_objects(text: str, start: int) -> Tuple[List[Tuple[int, int]], int]:
    """
    Walk the array opened at `start`, tracking brace depth and string/escape state.

    Returns the (start, end) spans of every balanced top-level object and the
    start offset of a trailing unbalanced object (-1 when there is none).
    """
    spans: List[Tuple[int, int]] = []
    depth = 0
    in_string = False
    escaped = False
    object_start = -1

    for index in range(start + 1, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == '{':
            if depth == 0:
                object_start = index
            depth += 1
        elif char == '}' and depth > 0:
            depth -= 1
            if depth == 0:
                spans.append((object_start, index + 1))
                object_start = -1
        elif char == ']' and depth == 0:
            break

    return spans, object_start if depth > 0 else -1


def repair_close_before_last_question(text: str) -> Optional[List[Any]]:
    """Drop the last (partial) question object by closing the array at the comma before it."""
    start = text.find('[')
    if start == -1:
        return None
    spans, partial_start = _scan_top_level_objects(text, start)
    last_start = partial_start if partial_start != -1 else (spans[-1][0] if spans else -1)
    if last_start == -1:
        return None
    comma = text.rfind(',', start, last_start)
    if comma == -1:
        return None
    return _load_array(text[start:comma] + ']')


def repair_collect_balanced_objects(text: str) -> Optional[List[Any]]:
    """Keep only the top-level objects whose braces balance."""
    start = text.find('[')
    if start == -1:
        return None

    objects: List[Any] = []
    spans, _ = _scan_top_level_objects(text, start)
    for object_start, object_end in spans:
        try:
            objects.append(json.loads(text[object_start:object_end]))
        except (json.JSONDecodeError, ValueError):
            logger.debug(f"Skipping unparseable object at offset {object_start}")

    return objects or None


REPAIR_STRATEGIES: List[Callable[[str], Optional[List[Any]]]] = [
    repair_truncate_to_last_brace,
    repair_close_before_last_question,
    repair_collect_balanced_objects,
]


def _has_required_fields(obj: Any) -> bool:
    if not isinstance(obj, dict):
        return False
    return all(obj.get(name) not in (None, "", {}, []) for name in REQUIRED_QUESTION_FIELDS)


def parse_question_objects(raw_text: str) -> List[Dict[str, Any]]:
    """Parse (and if needed repair) raw generation output into question-shaped dicts."""
    if not raw_text or not raw_text.strip():
        return []

    text = strip_code_fences(raw_text)
    items: Optional[List[Any]] = None

    try:
        items = _as_question_list(json.loads(text))
    except (json.JSONDecodeError, ValueError):
        logger.warning(f"Model output is not valid JSON (ends with {text[-20:]!r}), attempting repair...")
        for strategy in REPAIR_STRATEGIES:
            repaired = strategy(text)
            if repaired:
                logger.info(f"Recovered {len(repaired)} objects with {strategy.__name__}")
                items = repaired
                break

    if not items:
        logger.error(f"Could not recover any questions from: {text[:500]}")
        return []

    kept = [obj for obj in items if _has_required_fields(obj)]
    dropped = len(items) - len(kept)
    if dropped:
        logger.debug(f"Dropped {dropped} objects missing {', '.join(REQUIRED_QUESTION_FIELDS)}")
    return kept


def parse_questions(raw_text: str) -> List[GeneratedQuestion]:
    return [GeneratedQuestion.from_raw(obj) for obj in parse_question_objects(raw_text)]


def _extract_json_object(text: str) -> Dict[str, Any]:
    """Extract a JSON object from text response"""
    try:
        parsed = json.loads(text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    patterns = [
        r'```json\s*(.*?)\s*```',
        r'```\s*(.*?)\s*```',
        r'\{.*\}'
    ]

    for pattern in patterns:
        matches = re.findall(pattern, text, re.DOTALL)
        for match in matches:
            try:
                parsed = json.loads(match)
            except (json.JSONDecodeError, ValueError):
                continue
            if isinstance(parsed, dict):
                return parsed

    logger.error(f"Could not extract grading JSON from: {text[:500]}")
    raise GradingError("Failed to parse grading response")


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_grading_result(raw_text: str, max_points: float) -> GradingResult:
    """Parse a grading reply, clamping score to [0, max_points] and confidence to [0, 1]."""
    if not raw_text or not raw_text.strip():
        raise GradingError("Empty grading response")

    parsed = _extract_json_object(strip_code_fences(raw_text))

    score = min(max(_as_float(parsed.get("score"), 0.0), 0.0), float(max_points))
    confidence = min(max(_as_float(parsed.get("confidence"), 0.5), 0.0), 1.0)
    suggestions = parsed.get("suggestions")

    return GradingResult(
        score=score,
        feedback=str(parsed.get("feedback") or "No feedback provided"),
        confidence=confidence,
        reasoning=str(parsed.get("reasoning") or "No reasoning provided"),
        suggestions=[str(s) for s in suggestions] if isinstance(suggestions, list) else [],
    )
