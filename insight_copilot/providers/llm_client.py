"""
LLM client abstraction -- provider-agnostic async wrapper.

Supported providers:
  mock      -- echo back the prompt (for tests / offline dev)
  openai    -- OpenAI Chat Completions (gpt-4o-mini default)
  anthropic -- Anthropic Messages (claude-3-haiku default)

Configuration is read from Settings (env / .env).
"""
from __future__ import annotations

from typing import Any

from insight_copilot.core.config import get_settings
from insight_copilot.core.errors import ProviderError
from insight_copilot.core.logging import get_logger
from insight_copilot.providers.retry import call_with_retry

logger = get_logger(__name__)

_DEFAULT_SYSTEM = "Você é um assistente especializado em análise de dados de e-commerce."


async def _call_mock(prompt: str, system: str) -> str:
    logger.info("LLM mock mode -- returning echo")
    return f"[MOCK] {prompt[:200]}"


async def _call_openai(prompt: str, system: str) -> str:
    """Call OpenAI Chat Completions API."""
    settings = get_settings()
    if not settings.openai_api_key:
        raise RuntimeError(
            "openai_api_key is not set.  "
            "Set OPENAI_API_KEY in your .env file or environment."
        )

    try:
        import openai  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "The 'openai' package is not installed.  "
            "Run: pip install openai"
        ) from exc

    client = openai.AsyncOpenAI(api_key=settings.openai_api_key)
    try:
        response = await client.chat.completions.create(
            model=settings.openai_model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        )
    except (openai.APIConnectionError, openai.APITimeoutError,
            openai.RateLimitError, openai.InternalServerError) as exc:
        raise ProviderError("openai", str(exc)) from exc
    text = response.choices[0].message.content or ""
    logger.info("OpenAI response (%d chars)", len(text))
    return text


async def _call_anthropic(prompt: str, system: str) -> str:
    """Call Anthropic Messages API."""
    settings = get_settings()
    if not settings.anthropic_api_key:
        raise RuntimeError(
            "anthropic_api_key is not set.  "
            "Set ANTHROPIC_API_KEY in your .env file or environment."
        )

    try:
        import anthropic  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "The 'anthropic' package is not installed.  "
            "Run: pip install anthropic"
        ) from exc

    client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    try:
        response = await client.messages.create(
            model=settings.anthropic_model,
            max_tokens=settings.llm_max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        )
    except (anthropic.APIConnectionError, anthropic.APITimeoutError,
            anthropic.RateLimitError, anthropic.InternalServerError) as exc:
        raise ProviderError("anthropic", str(exc)) from exc
    text = response.content[0].text if response.content else ""
    logger.info("Anthropic response (%d chars)", len(text))
    return text


_PROVIDERS: dict[str, Any] = {
    "mock": _call_mock,
    "openai": _call_openai,
    "anthropic": _call_anthropic,
}


async def call_llm(prompt: str, provider: str | None = None, system: str = _DEFAULT_SYSTEM) -> str:
    """Send *prompt* to the configured (or overridden) LLM provider.

    Parameters
    ----------
    prompt : str
        The full prompt text.
    provider : str, optional
        Override the provider from settings.  One of: mock, openai, anthropic.
    system : str
        System instruction sent alongside the prompt.
    """
    if provider is None:
        provider = get_settings().llm_provider.lower()

    fn = _PROVIDERS.get(provider)
    if fn is None:
        raise NotImplementedError(
            f"LLM provider '{provider}' is not supported.  "
            f"Choose from: {', '.join(_PROVIDERS)}"
        )

    logger.info("Calling LLM provider=%s  prompt_len=%d", provider, len(prompt))
    return await call_with_retry(f"llm:{provider}", lambda: fn(prompt, system))


class LlmSqlGenerator:
    """SqlGenerator port backed by :func:`call_llm`."""

    system = (
        "Você gera exclusivamente SQL de leitura (SELECT) para o data warehouse. "
        "Responda apenas com a consulta SQL."
    )

    def __init__(self, provider: str | None = None):
        self.provider = provider

    async def generate_sql(self, prompt: str) -> str:
        return await call_llm(prompt, provider=self.provider, system=self.system)


class LlmTextSynthesizer:
    """TextSynthesizer port backed by :func:`call_llm`."""

    system = (
        "Você é um assistente de análise de dados de e-commerce. Responda em português do Brasil, "
        "de forma clara, formatando números de forma legível (ex: R$ 1.234,56)."
    )

    def __init__(self, provider: str | None = None):
        self.provider = provider

    async def synthesize(self, prompt: str) -> str:
        return await call_llm(prompt, provider=self.provider, system=self.system)
