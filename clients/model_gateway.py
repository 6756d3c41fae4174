"""
Model gateway: the single path to the text-generation provider.

Every call is bounded by the ConcurrencyLimiter handed in at construction and
retried with exponential backoff on rate-limit, timeout, connection and 5xx
errors. Anything else, or an exhausted budget, surfaces as ModelCallError.
"""

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Optional

import groq
import openai
from dotenv import load_dotenv
from groq import AsyncGroq
from openai import AsyncOpenAI

from utils.concurrency import ConcurrencyLimiter
from utils.exceptions import ModelCallError, ValidationError
from utils.model_config import ModelConfig, ModelProvider, PipelineSettings
from utils.retry import RetryPolicy, retry_until

load_dotenv()

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
    groq.RateLimitError,
    groq.APITimeoutError,
    groq.APIConnectionError,
    groq.InternalServerError,
)


def _any_result(_: Any) -> bool:
    return True


class ModelGateway:
    def __init__(
        self,
        limiter: ConcurrencyLimiter,
        model_config: Dict[str, Any],
        client: Any = None,
        max_attempts: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.limiter = limiter
        self.model_config = model_config
        self._client = client
        self._sleep = sleep
        # 2s, 4s, ... between attempts
        self.retry_policy = RetryPolicy(
            max_attempts=max_attempts,
            delay_seconds=2.0,
            backoff=2.0,
            accept=_any_result,
            retry_on=RETRYABLE_ERRORS,
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            provider = self.model_config["provider"]
            # SDK-level retries are disabled; retry_policy owns backoff
            if provider == ModelProvider.OPENAI:
                self._client = AsyncOpenAI(api_key=os.getenv("OPENAI_API_KEY"), max_retries=0)
            elif provider == ModelProvider.GROQ:
                self._client = AsyncGroq(api_key=os.getenv("GROQ_API_KEY"), max_retries=0)
            else:
                raise ValidationError(f"Unknown provider: {provider}", error_code="INVALID_MODEL")
        return self._client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send one chat completion and return the raw text (possibly truncated)."""
        params = {
            "model": self.model_config["model"],
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature if temperature is not None else self.model_config.get("temperature", 0.7),
            "max_tokens": max_tokens or self.model_config.get("max_tokens", 4000),
        }

        try:
            outcome = await retry_until(
                lambda: self._create(params),
                self.retry_policy,
                on_retry=self._log_retry,
                sleep=self._sleep,
            )
        except ValidationError:
            raise
        except Exception as e:
            logger.error(f"{self.model_config['provider']} call failed for {params['model']}: {e}")
            raise ModelCallError(
                f"Model call failed: {e}",
                attempts=self.retry_policy.max_attempts,
                context={"model": params["model"]},
            ) from e

        return outcome.result or ""

    async def _create(self, params: Dict[str, Any]) -> str:
        async with self.limiter:
            response = await self.client.chat.completions.create(**params)

        choice = response.choices[0]
        content = choice.message.content or ""
        if choice.finish_reason == "length":
            # Truncated JSON is left to the response repairer
            logger.warning(f"{params['model']} response truncated at max_tokens. Response length: {len(content)}")
        return content

    def _log_retry(self, attempt: int, result: Any, error: Optional[BaseException]) -> None:
        backoff = self.retry_policy.delay_for(attempt)
        logger.warning(
            f"{self.model_config['provider']} transient error (attempt {attempt}/{self.retry_policy.max_attempts}): "
            f"{error}. Retrying in {backoff}s..."
        )


def build_generation_gateway(settings: Optional[PipelineSettings] = None) -> ModelGateway:
    settings = settings or PipelineSettings.from_env()
    limiter = ConcurrencyLimiter(settings.generation_concurrency, name="generation")
    return ModelGateway(limiter, ModelConfig.get_generation_config())


def build_grading_gateway(settings: Optional[PipelineSettings] = None) -> ModelGateway:
    settings = settings or PipelineSettings.from_env()
    limiter = ConcurrencyLimiter(settings.grading_concurrency, name="grading")
    return ModelGateway(limiter, ModelConfig.get_grading_config())
