"""
ContentAggregator: flattens lesson content for a scope into one text blob.

  lesson  - sections of one lesson; polled because the authoring pipeline may
            still be writing them, then a title/description stub
  module  - lessons of a path with their sections, single read
  course  - paths of a base class with lessons and sections, single read
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from clients import supabase_client
from models.assessment_models import ContentScope, ScopeKind
from utils.exceptions import ContentUnavailableError
from utils.retry import RetryPolicy, retry_until

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n"
LESSON_SEPARATOR = "\n\n---\n\n"
MODULE_SEPARATOR = "\n\n=== MODULE BREAK ===\n\n"


class SupabaseContentSource:
    """Reads the lesson/path/class hierarchy from Supabase."""

    def get_lesson(self, lesson_id: str) -> Optional[Dict[str, Any]]:
        return supabase_client.get_lesson(lesson_id)

    def get_lesson_sections(self, lesson_id: str) -> List[Dict[str, Any]]:
        return supabase_client.get_lesson_sections(lesson_id)

    def get_module_lessons(self, path_id: str) -> List[Dict[str, Any]]:
        return supabase_client.get_path_lessons(path_id)

    def get_course_modules(self, base_class_id: str) -> List[Dict[str, Any]]:
        return supabase_client.get_class_paths(base_class_id)


def _ordered(rows: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return sorted(rows or [], key=lambda row: row.get("order_index") or 0)


def _collect_text(node: Any, parts: List[str]) -> None:
    if isinstance(node, str):
        if node.strip():
            parts.append(node.strip())
    elif isinstance(node, list):
        for child in node:
            _collect_text(child, parts)
    elif isinstance(node, dict):
        if isinstance(node.get("text"), str):
            _collect_text(node["text"], parts)
        for key in ("content", "children", "blocks"):
            if key in node:
                _collect_text(node[key], parts)


def section_text(content: Any) -> str:
    """Plain text of a section body, which may be a string or a rich-text JSON document."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content.strip()
    parts: List[str] = []
    _collect_text(content, parts)
    return " ".join(parts)


def render_sections(sections: Optional[List[Dict[str, Any]]]) -> str:
    rendered = []
    for section in _ordered(sections):
        body = section_text(section.get("content"))
        title = (section.get("title") or "").strip()
        if not body and not title:
            continue
        rendered.append(f"{title}\n{body}".strip())
    return SECTION_SEPARATOR.join(rendered)


def render_lesson(lesson: Dict[str, Any]) -> str:
    sections = render_sections(lesson.get("lesson_sections"))
    return f"Lesson: {lesson.get('title') or ''}\n{lesson.get('description') or ''}\n\n{sections}".strip()


def render_module(module: Dict[str, Any]) -> str:
    lessons = LESSON_SEPARATOR.join(render_lesson(lesson) for lesson in _ordered(module.get("lessons")))
    return f"Module: {module.get('title') or ''}\n{module.get('description') or ''}\n\n{lessons}".strip()


class ContentAggregator:
    def __init__(
        self,
        source: Any = None,
        retry_attempts: int = 5,
        retry_delay_seconds: float = 3.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.source = source or SupabaseContentSource()
        self.lesson_policy = RetryPolicy(
            max_attempts=retry_attempts,
            delay_seconds=retry_delay_seconds,
            accept=lambda text: bool(text and text.strip()),
            retry_on=(Exception,),
        )
        self._sleep = sleep

    async def fetch_content(self, scope: ContentScope) -> str:
        if scope.kind == ScopeKind.LESSON:
            return await self._fetch_lesson(scope)
        if scope.kind == ScopeKind.MODULE:
            text = await self._read_once(scope, lambda: LESSON_SEPARATOR.join(
                render_lesson(lesson) for lesson in _ordered(self.source.get_module_lessons(scope.id))
            ))
        else:
            text = await self._read_once(scope, lambda: MODULE_SEPARATOR.join(
                render_module(module) for module in _ordered(self.source.get_course_modules(scope.id))
            ))

        if not text.strip():
            raise ContentUnavailableError(scope.kind.value, scope.id)
        logger.info(f"Aggregated {len(text)} characters for {scope.kind.value} {scope.id}")
        return text

    async def _read_once(self, scope: ContentScope, read) -> str:
        try:
            return await asyncio.to_thread(read)
        except Exception as e:
            logger.error(f"Content read failed for {scope.kind.value} {scope.id}: {e}")
            raise ContentUnavailableError(scope.kind.value, scope.id, context={"error": str(e)}) from e

    async def _fetch_lesson(self, scope: ContentScope) -> str:
        async def read_sections() -> str:
            sections = await asyncio.to_thread(self.source.get_lesson_sections, scope.id)
            return render_sections(sections)

        def log_retry(attempt: int, result: Any, error: Optional[BaseException]) -> None:
            reason = f"read failed: {error}" if error else "no sections yet"
            logger.warning(
                f"Lesson {scope.id} content not ready ({reason}), "
                f"attempt {attempt}/{self.lesson_policy.max_attempts}"
            )

        try:
            outcome = await retry_until(read_sections, self.lesson_policy, on_retry=log_retry, sleep=self._sleep)
            text = outcome.result or ""
        except Exception as e:
            logger.warning(f"Lesson {scope.id} sections unreadable after retries: {e}")
            text = ""

        if text.strip():
            logger.info(f"Aggregated {len(text)} characters for lesson {scope.id}")
            return text

        stub = await self._lesson_stub(scope)
        if not stub:
            raise ContentUnavailableError(scope.kind.value, scope.id)
        logger.warning(f"Using title/description stub for lesson {scope.id}")
        return stub

    async def _lesson_stub(self, scope: ContentScope) -> str:
        try:
            lesson = await asyncio.to_thread(self.source.get_lesson, scope.id)
        except Exception as e:
            logger.error(f"Lesson {scope.id} lookup failed: {e}")
            raise ContentUnavailableError(scope.kind.value, scope.id, context={"error": str(e)}) from e
        if not lesson:
            return ""
        title = (lesson.get("title") or "").strip()
        description = (lesson.get("description") or "").strip()
        if not title and not description:
            return ""
        return f"Lesson: {title}\n{description}".strip()
