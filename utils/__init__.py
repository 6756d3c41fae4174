# Assessment Pipeline Utilities
from .exceptions import (
    AssessmentError,
    ValidationError,
    NotFoundError,
    ContentUnavailableError,
    GenerationError,
    ModelCallError,
    GradingError,
    StorageError
)

from .model_config import (
    ModelConfig,
    ModelProvider,
    PipelineSettings,
    MODEL_CONFIGS,
    DEFAULT_GENERATION_MODEL,
    DEFAULT_GRADING_MODEL
)

from .retry import RetryPolicy, RetryOutcome, retry_until
from .concurrency import ConcurrencyLimiter
from .progress_trail import ProgressTrail

__all__ = [
    'AssessmentError',
    'ValidationError',
    'NotFoundError',
    'ContentUnavailableError',
    'GenerationError',
    'ModelCallError',
    'GradingError',
    'StorageError',
    'ModelConfig',
    'ModelProvider',
    'PipelineSettings',
    'MODEL_CONFIGS',
    'DEFAULT_GENERATION_MODEL',
    'DEFAULT_GRADING_MODEL',
    'RetryPolicy',
    'RetryOutcome',
    'retry_until',
    'ConcurrencyLimiter',
    'ProgressTrail'
]
