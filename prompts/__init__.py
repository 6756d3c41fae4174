# Prompts module initialization

# Assessment Prompts
from .assessment_prompts import (
    build_generation_prompt,
    build_grading_prompt,
    preprocess_content,
    QUESTION_GENERATION_SYSTEM_PROMPT,
    GRADING_SYSTEM_PROMPT,
    RETRY_PROMPT_ADDENDUM
)

__all__ = [
    'build_generation_prompt',
    'build_grading_prompt',
    'preprocess_content',
    'QUESTION_GENERATION_SYSTEM_PROMPT',
    'GRADING_SYSTEM_PROMPT',
    'RETRY_PROMPT_ADDENDUM'
]
