"""
LiteLLM-backed contribution generator.

Implements the ``ContributionGenerator`` protocol: one system prompt, one
user prompt, one text reply. Adds per-provider rate limiting, health
tracking and tenacity retries. Retrying is the adapter's concern; the
orchestration core treats any exception here as "no contribution".

Usage:
    generator = LiteLLMContributionGenerator(default_model="anthropic/claude-sonnet-4-5-20250929")
    text = await generator.generate(system_prompt, user_prompt, persona=maya)
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import litellm
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from huddle.models.persona import Persona
from huddle.utils.logging import get_logger

logger = get_logger(__name__)

litellm.set_verbose = False


class ProviderStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ProviderHealth:
    """Tracks the health state of an LLM provider."""

    provider: str
    status: ProviderStatus = ProviderStatus.UNKNOWN
    consecutive_failures: int = 0
    total_calls: int = 0
    total_failures: int = 0

    def record_success(self) -> None:
        self.total_calls += 1
        self.consecutive_failures = 0
        self.status = ProviderStatus.HEALTHY

    def record_failure(self) -> None:
        self.total_calls += 1
        self.total_failures += 1
        self.consecutive_failures += 1
        if self.consecutive_failures >= 3:
            self.status = ProviderStatus.UNHEALTHY
        else:
            self.status = ProviderStatus.DEGRADED

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "status": self.status.value,
            "consecutive_failures": self.consecutive_failures,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
        }


@dataclass
class ProviderRateLimit:
    """
    Sliding-window limiter: at most ``max_requests_per_minute`` calls per 60s.
    """

    provider: str
    max_requests_per_minute: int = 60
    _request_times: list[float] = field(default_factory=list)

    async def acquire(self) -> None:
        now = time.time()
        self._request_times = [t for t in self._request_times if now - t < 60]

        if len(self._request_times) >= self.max_requests_per_minute:
            wait_time = 60 - (now - self._request_times[0])
            if wait_time > 0:
                logger.warning(
                    "Rate limit reached for provider %s, waiting %.1fs",
                    self.provider,
                    wait_time,
                )
                await asyncio.sleep(wait_time)

        self._request_times.append(time.time())


DEFAULT_RATE_LIMITS: dict[str, int] = {
    "anthropic": 50,
    "openai": 60,
    "ollama": 100,
}


def build_model_string(provider: str, model: str) -> str:
    """
    LiteLLM model string for a provider/model pair.

    ``("anthropic", "claude-x")`` -> ``"anthropic/claude-x"``. Models that
    already carry a prefix are returned unchanged.
    """
    if "/" in model:
        return model
    provider_lower = provider.lower()
    if provider_lower in ("anthropic", "openai", "ollama"):
        return f"{provider_lower}/{model}"
    return model


def extract_message_text(response: Any) -> str:
    """Text content of the first choice of a LiteLLM response."""
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError, KeyError, TypeError):
        return ""
    return (content or "").strip()


class LiteLLMContributionGenerator:
    """
    ContributionGenerator backed by ``litellm.acompletion``.

    Args:
        default_model: LiteLLM model string for personas without an override
        default_max_tokens: Token cap when neither caller nor persona sets one
        default_temperature: Sampling temperature for personas without an override
        rate_limits: Requests per minute per provider
    """

    def __init__(
        self,
        default_model: str,
        default_max_tokens: int = 512,
        default_temperature: float = 0.8,
        rate_limits: Optional[dict[str, int]] = None,
    ) -> None:
        self.default_model = default_model
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature
        self._health: dict[str, ProviderHealth] = {}
        self._rate_limiters = {
            provider: ProviderRateLimit(provider=provider, max_requests_per_minute=limit)
            for provider, limit in (rate_limits or DEFAULT_RATE_LIMITS).items()
        }

    def _provider_of(self, model: str) -> str:
        return model.split("/")[0] if "/" in model else "unknown"

    def _get_health(self, provider: str) -> ProviderHealth:
        if provider not in self._health:
            self._health[provider] = ProviderHealth(provider=provider)
        return self._health[provider]

    def _get_rate_limiter(self, provider: str) -> ProviderRateLimit:
        if provider not in self._rate_limiters:
            self._rate_limiters[provider] = ProviderRateLimit(
                provider=provider,
                max_requests_per_minute=DEFAULT_RATE_LIMITS.get(provider, 60),
            )
        return self._rate_limiters[provider]

    def _call_kwargs(
        self, persona: Optional[Persona], max_tokens: Optional[int]
    ) -> dict[str, Any]:
        override = persona.llm if persona else None
        if override is None:
            return {
                "model": self.default_model,
                "temperature": self.default_temperature,
                "max_tokens": max_tokens or self.default_max_tokens,
            }

        kwargs: dict[str, Any] = {
            "model": build_model_string(override.provider, override.model),
            "temperature": override.temperature,
            "max_tokens": max_tokens or override.max_tokens,
        }
        if override.base_url:
            kwargs["api_base"] = override.base_url
        return kwargs

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type((Exception,)),
        reraise=True,
    )
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        persona: Optional[Persona] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Produce one persona utterance.

        Raises:
            Exception: The last provider error once retries are exhausted
        """
        call_kwargs = self._call_kwargs(persona, max_tokens)
        model = call_kwargs["model"]
        provider = self._provider_of(model)
        health = self._get_health(provider)

        await self._get_rate_limiter(provider).acquire()

        start_time = time.time()
        try:
            response = await litellm.acompletion(
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                **call_kwargs,
            )
        except Exception as e:
            health.record_failure()
            logger.warning("llm_call_failed", model=model, error=str(e))
            raise

        health.record_success()
        logger.debug(
            "llm_call_succeeded",
            model=model,
            persona=persona.name if persona else None,
            latency_ms=round((time.time() - start_time) * 1000),
        )
        return extract_message_text(response)

    def get_provider_health(self) -> dict[str, Any]:
        return {name: health.to_dict() for name, health in self._health.items()}
