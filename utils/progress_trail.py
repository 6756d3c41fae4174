import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class ProgressTrail:
    """Records pipeline progress messages and forwards them to an optional on_progress callback."""

    def __init__(self, callback: Optional[Callable[[str], None]] = None, name: str = "pipeline"):
        self.messages: List[str] = []
        self.name = name
        self._callback = callback

    def __call__(self, message: str) -> None:
        self.messages.append(message)
        logger.info(f"[{self.name}] {message}")
        if self._callback:
            try:
                self._callback(message)
            except Exception as e:
                # A broken listener must not abort generation or grading
                logger.warning(f"on_progress callback failed: {e}")
