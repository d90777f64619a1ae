"""
Tests for the LiteLLM contribution generator.

Tests cover:
- Model string building from provider/model pairs
- Response text extraction
- Provider health tracking (success/failure recording)
- Rate limiting with sliding window
- Default vs persona-override call parameters
- Failure propagation after retries
"""

import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from tenacity import wait_none

from huddle.integrations.llm_provider import (
    LiteLLMContributionGenerator,
    ProviderHealth,
    ProviderRateLimit,
    ProviderStatus,
    build_model_string,
    extract_message_text,
)
from huddle.models.persona import Persona, PersonaModelConfig

LITELLM = "huddle.integrations.llm_provider.litellm"


# ==================
# Fixtures
# ==================


@pytest.fixture
def generator():
    return LiteLLMContributionGenerator(default_model="anthropic/claude-sonnet-4-5-20250929")


@pytest.fixture
def mock_litellm_response():
    """Create a mock litellm completion response."""
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = "  Token never expires. That's the bug.  "
    return response


@pytest.fixture
def ollama_persona():
    return Persona(
        id="priya",
        name="Priya",
        role="QA Engineer",
        llm=PersonaModelConfig(
            provider="ollama",
            model="llama3",
            base_url="http://localhost:11434",
            temperature=0.2,
            max_tokens=300,
        ),
    )


# ==================
# Helpers
# ==================


class TestBuildModelString:
    def test_known_providers(self):
        assert build_model_string("anthropic", "claude-x") == "anthropic/claude-x"
        assert build_model_string("OpenAI", "gpt-4o") == "openai/gpt-4o"

    def test_prefixed_model_unchanged(self):
        assert build_model_string("ollama", "ollama/llama3") == "ollama/llama3"

    def test_unknown_provider(self):
        assert build_model_string("custom", "my-model") == "my-model"


class TestExtractMessageText:
    def test_strips(self, mock_litellm_response):
        assert extract_message_text(mock_litellm_response) == "Token never expires. That's the bug."

    def test_empty_choices(self):
        response = MagicMock()
        response.choices = []
        assert extract_message_text(response) == ""

    def test_none_content(self, mock_litellm_response):
        mock_litellm_response.choices[0].message.content = None
        assert extract_message_text(mock_litellm_response) == ""


# ==================
# Health and rate limits
# ==================


class TestProviderHealth:
    def test_failures_degrade_then_unhealthy(self):
        health = ProviderHealth(provider="anthropic")
        health.record_failure()
        assert health.status == ProviderStatus.DEGRADED
        health.record_failure()
        health.record_failure()
        assert health.status == ProviderStatus.UNHEALTHY

    def test_success_resets(self):
        health = ProviderHealth(provider="anthropic")
        health.record_failure()
        health.record_success()
        assert health.status == ProviderStatus.HEALTHY
        assert health.to_dict()["consecutive_failures"] == 0
        assert health.to_dict()["total_calls"] == 2


class TestProviderRateLimit:
    @pytest.mark.asyncio
    async def test_acquire_under_limit(self):
        limiter = ProviderRateLimit(provider="anthropic", max_requests_per_minute=5)
        await limiter.acquire()
        await limiter.acquire()
        assert len(limiter._request_times) == 2

    @pytest.mark.asyncio
    async def test_expired_requests_dropped(self):
        limiter = ProviderRateLimit(provider="anthropic", max_requests_per_minute=1)
        limiter._request_times = [time.time() - 120]
        await limiter.acquire()
        assert len(limiter._request_times) == 1


# ==================
# generate()
# ==================


class TestGenerate:
    @pytest.mark.asyncio
    async def test_default_model(self, generator, mock_litellm_response):
        with patch(LITELLM) as mock_litellm:
            mock_litellm.acompletion = AsyncMock(return_value=mock_litellm_response)

            text = await generator.generate("system", "user", max_tokens=64)

        assert text == "Token never expires. That's the bug."
        kwargs = mock_litellm.acompletion.call_args.kwargs
        assert kwargs["model"] == "anthropic/claude-sonnet-4-5-20250929"
        assert kwargs["max_tokens"] == 64
        assert kwargs["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ]
        assert generator.get_provider_health()["anthropic"]["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_persona_override(self, generator, ollama_persona, mock_litellm_response):
        with patch(LITELLM) as mock_litellm:
            mock_litellm.acompletion = AsyncMock(return_value=mock_litellm_response)

            await generator.generate("system", "user", persona=ollama_persona)

        kwargs = mock_litellm.acompletion.call_args.kwargs
        assert kwargs["model"] == "ollama/llama3"
        assert kwargs["api_base"] == "http://localhost:11434"
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 300

    @pytest.mark.asyncio
    async def test_failure_propagates_after_retries(self, generator):
        generate_fast = LiteLLMContributionGenerator.generate.retry_with(wait=wait_none())
        with patch(LITELLM) as mock_litellm:
            mock_litellm.acompletion = AsyncMock(side_effect=Exception("overloaded"))

            with pytest.raises(Exception, match="overloaded"):
                await generate_fast(generator, "system", "user")

        assert mock_litellm.acompletion.await_count == 3
        assert generator.get_provider_health()["anthropic"]["status"] == "unhealthy"
