"""
Model configuration and pipeline settings for assessment generation and grading.
Centralized model management so the generation and grading paths can be switched independently.
"""

import os
from typing import Dict, Any, Optional
from enum import Enum

from pydantic import BaseModel, Field

from utils.exceptions import ValidationError


class ModelProvider(str, Enum):
    OPENAI = "openai"
    GROQ = "groq"


# Model configurations
MODEL_CONFIGS: Dict[str, Dict[str, Any]] = {
    "gpt-4.1-mini": {
        "provider": ModelProvider.OPENAI,
        "model": "gpt-4.1-mini",
        "max_tokens": 4000,
        "cost_per_1k_input": 0.0004,
        "cost_per_1k_output": 0.0016,
        "temperature": 0.8
    },
    "gpt-4.1-mini-grader": {
        "provider": ModelProvider.OPENAI,
        "model": "gpt-4.1-mini",
        "max_tokens": 1000,
        "cost_per_1k_input": 0.0004,
        "cost_per_1k_output": 0.0016,
        "temperature": 0.1
    },
    "gpt-4o": {
        "provider": ModelProvider.OPENAI,
        "model": "gpt-4o",
        "max_tokens": 4000,
        "cost_per_1k_input": 0.0025,
        "cost_per_1k_output": 0.01,
        "temperature": 0.8
    },
    "llama-4-scout": {
        "provider": ModelProvider.GROQ,
        "model": "meta-llama/llama-4-scout-17b-16e-instruct",
        "max_tokens": 4000,
        "cost_per_1k_input": 0.00011,
        "cost_per_1k_output": 0.00034,
        "temperature": 0.8
    },
    "llama-4-scout-grader": {
        "provider": ModelProvider.GROQ,
        "model": "meta-llama/llama-4-scout-17b-16e-instruct",
        "max_tokens": 1000,
        "cost_per_1k_input": 0.00011,
        "cost_per_1k_output": 0.00034,
        "temperature": 0.1
    }
}

DEFAULT_GENERATION_MODEL = "gpt-4.1-mini"
DEFAULT_GRADING_MODEL = "gpt-4.1-mini-grader"


class ModelConfig:
    """Model configuration manager"""

    @staticmethod
    def get_config(model_key: Optional[str] = None, default: str = DEFAULT_GENERATION_MODEL) -> Dict[str, Any]:
        """Get configuration for specified model or default"""
        key = model_key or default

        if key not in MODEL_CONFIGS:
            raise ValidationError(
                f"Unknown model: {key}. Available: {list(MODEL_CONFIGS.keys())}",
                error_code="INVALID_MODEL",
            )

        return MODEL_CONFIGS[key]

    @staticmethod
    def get_generation_config() -> Dict[str, Any]:
        """Generation model, overridable with ASSESSMENT_GENERATION_MODEL"""
        return ModelConfig.get_config(os.getenv("ASSESSMENT_GENERATION_MODEL"), DEFAULT_GENERATION_MODEL)

    @staticmethod
    def get_grading_config() -> Dict[str, Any]:
        """Grading model, overridable with ASSESSMENT_GRADING_MODEL"""
        return ModelConfig.get_config(os.getenv("ASSESSMENT_GRADING_MODEL"), DEFAULT_GRADING_MODEL)

    @staticmethod
    def get_available_models() -> list:
        """List all available models"""
        return list(MODEL_CONFIGS.keys())

    @staticmethod
    def estimate_cost(model_key: str, input_tokens: int, output_tokens: int) -> float:
        """Estimate cost for a request"""
        config = ModelConfig.get_config(model_key)

        input_cost = (input_tokens / 1000) * config["cost_per_1k_input"]
        output_cost = (output_tokens / 1000) * config["cost_per_1k_output"]

        return round(input_cost + output_cost, 4)


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class PipelineSettings(BaseModel):
    """Numeric policies shared by the generation and grading pipelines."""
    content_retry_attempts: int = Field(5, ge=1)
    content_retry_delay_seconds: float = Field(3.0, ge=0)
    generation_attempts: int = Field(3, ge=1)
    acceptance_ratio: float = Field(0.8, ge=0, le=1)
    content_token_budget: int = Field(8000, ge=1)
    generation_concurrency: int = Field(3, ge=1)
    grading_concurrency: int = Field(2, ge=1)
    default_passing_score: int = Field(70, ge=0, le=100)
    # False: a batch that never reaches the acceptance ratio fails the request.
    # True: the last attempt's validated questions are kept.
    allow_partial_batch: bool = False

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(allow_partial_batch=_env_flag("ASSESSMENT_ALLOW_PARTIAL_BATCH", False))
