"""
Text embedding adapters.

  mock   -- deterministic hashed bag-of-words (offline dev / tests)
  openai -- OpenAI embeddings API

Every adapter returns vectors of exactly ``dimension`` floats.
"""
from __future__ import annotations

import hashlib
import re

import numpy as np

from insight_copilot.core.config import get_settings
from insight_copilot.core.errors import ProviderError
from insight_copilot.core.logging import get_logger
from insight_copilot.core.utils import normalize_text, strip_accents
from insight_copilot.providers.retry import call_with_retry

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")


def _bucket(token: str, dimension: int) -> tuple[int, float]:
    digest = hashlib.sha1(token.encode("utf-8")).digest()
    index = int.from_bytes(digest[:8], "big") % dimension
    sign = 1.0 if digest[8] & 1 else -1.0
    return index, sign


class MockEmbedder:
    """Hashed bag of words + bigrams, L2-normalised.

    Identical normalised text always maps to the same vector, and questions
    sharing most of their words land close together.
    """

    def __init__(self, dimension: int = 1536):
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        tokens = _TOKEN_RE.findall(strip_accents(normalize_text(text)))
        features = tokens + [f"{a}_{b}" for a, b in zip(tokens, tokens[1:])]

        vector = np.zeros(self.dimension, dtype=np.float32)
        for feature in features:
            index, sign = _bucket(feature, self.dimension)
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()


class OpenAIEmbedder:
    def __init__(self, model: str | None = None, dimension: int | None = None):
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

        self._openai = openai
        self._client = openai.AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.embedding_model
        self.dimension = dimension or settings.embedding_dimension

    async def _embed_once(self, text: str) -> list[float]:
        try:
            response = await self._client.embeddings.create(model=self.model, input=text)
        except (self._openai.APIConnectionError, self._openai.APITimeoutError,
                self._openai.RateLimitError, self._openai.InternalServerError) as exc:
            raise ProviderError("embeddings", str(exc)) from exc
        return list(response.data[0].embedding)

    async def embed(self, text: str) -> list[float]:
        vector = await call_with_retry("embeddings", lambda: self._embed_once(text))
        if len(vector) != self.dimension:
            raise ProviderError(
                "embeddings",
                f"model {self.model} returned {len(vector)} dimensions, expected {self.dimension}",
            )
        return vector


def build_embedder() -> MockEmbedder | OpenAIEmbedder:
    settings = get_settings()
    provider = settings.embedding_provider.lower()
    if provider == "mock":
        return MockEmbedder(settings.embedding_dimension)
    if provider == "openai":
        return OpenAIEmbedder()
    raise NotImplementedError(f"Embedding provider '{provider}' is not supported.  Choose from: mock, openai")
