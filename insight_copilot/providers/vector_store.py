"""
Vector store adapters for the semantic cache.

``InMemoryVectorStore`` is a thread-safe cosine-similarity store backed by
numpy; ``PineconeVectorStore`` wraps a Pinecone index. Both reject vectors
whose length differs from the configured dimension.
"""
from __future__ import annotations

import asyncio
import threading
from typing import Any

import numpy as np

from insight_copilot.core.config import get_settings
from insight_copilot.core.errors import ProviderError
from insight_copilot.core.logging import get_logger
from insight_copilot.providers.base import VectorMatch, VectorRecord
from insight_copilot.providers.retry import call_with_retry

logger = get_logger(__name__)


def _check_dimension(vector: list[float], dimension: int) -> None:
    if len(vector) != dimension:
        raise ValueError(f"Vector has {len(vector)} dimensions, index expects {dimension}")


# ── In-memory ───────────────────────────────────────────


class InMemoryVectorStore:
    """Process-local store: ``namespace -> id -> (unit vector, metadata)``."""

    def __init__(self, dimension: int = 1536):
        self.dimension = dimension
        self._data: dict[str, dict[str, tuple[np.ndarray, dict[str, Any]]]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _unit(vector: list[float]) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float32)
        norm = np.linalg.norm(arr)
        return arr / norm if norm > 0 else arr

    async def upsert(self, id: str, vector: list[float], metadata: dict[str, Any], namespace: str) -> None:
        _check_dimension(vector, self.dimension)
        entry = (self._unit(vector), dict(metadata))
        with self._lock:
            self._data.setdefault(namespace, {})[id] = entry

    async def query(self, vector: list[float], top_k: int, namespace: str) -> list[VectorMatch]:
        _check_dimension(vector, self.dimension)
        with self._lock:
            items = list(self._data.get(namespace, {}).items())
        if not items:
            return []

        query = self._unit(vector)
        matrix = np.stack([vec for _, (vec, _) in items])
        scores = matrix @ query
        order = np.argsort(-scores)[:top_k]
        return [
            VectorMatch(id=items[i][0], score=float(scores[i]), metadata=dict(items[i][1][1]))
            for i in order
        ]

    async def update(self, id: str, metadata_patch: dict[str, Any], namespace: str) -> None:
        with self._lock:
            entries = self._data.get(namespace, {})
            if id not in entries:
                raise KeyError(id)
            vector, metadata = entries[id]
            entries[id] = (vector, {**metadata, **metadata_patch})

    async def delete(self, id: str, namespace: str) -> None:
        with self._lock:
            self._data.get(namespace, {}).pop(id, None)

    async def fetch(self, ids: list[str], namespace: str) -> dict[str, VectorRecord]:
        with self._lock:
            entries = self._data.get(namespace, {})
            return {
                id: VectorRecord(id=id, values=entries[id][0].tolist(), metadata=dict(entries[id][1]))
                for id in ids
                if id in entries
            }

    async def list_ids(self, namespace: str) -> list[str]:
        with self._lock:
            return list(self._data.get(namespace, {}))

    def __len__(self) -> int:
        with self._lock:
            return sum(len(entries) for entries in self._data.values())


# ── Pinecone ────────────────────────────────────────────


class PineconeVectorStore:
    """Pinecone index adapter. SDK calls are blocking, so they run in a worker thread."""

    def __init__(self, api_key: str | None = None, index_name: str | None = None, dimension: int | None = None):
        settings = get_settings()
        api_key = api_key or settings.pinecone_api_key
        if not api_key:
            raise RuntimeError(
                "pinecone_api_key is not set.  "
                "Set PINECONE_API_KEY in your .env file or environment."
            )
        try:
            from pinecone import Pinecone  # type: ignore[import-untyped]
        except ImportError as exc:
            raise RuntimeError(
                "The 'pinecone' package is not installed.  "
                "Run: pip install pinecone"
            ) from exc

        self.index_name = index_name or settings.pinecone_index
        self.dimension = dimension or settings.embedding_dimension
        self._index = Pinecone(api_key=api_key).Index(self.index_name)
        logger.info("Pinecone index ready  name=%s  dim=%d", self.index_name, self.dimension)

    async def _call(self, op: str, fn, *args, **kwargs):
        async def _run():
            try:
                return await asyncio.to_thread(fn, *args, **kwargs)
            except Exception as exc:
                raise ProviderError(f"pinecone:{op}", str(exc)) from exc

        return await call_with_retry(f"pinecone:{op}", _run)

    async def upsert(self, id: str, vector: list[float], metadata: dict[str, Any], namespace: str) -> None:
        _check_dimension(vector, self.dimension)
        await self._call(
            "upsert", self._index.upsert,
            vectors=[{"id": id, "values": vector, "metadata": metadata}],
            namespace=namespace,
        )

    async def query(self, vector: list[float], top_k: int, namespace: str) -> list[VectorMatch]:
        _check_dimension(vector, self.dimension)
        response = await self._call(
            "query", self._index.query,
            vector=vector, top_k=top_k, namespace=namespace, include_metadata=True,
        )
        return [
            VectorMatch(id=m.id, score=float(m.score), metadata=dict(m.metadata or {}))
            for m in response.matches
        ]

    async def update(self, id: str, metadata_patch: dict[str, Any], namespace: str) -> None:
        await self._call("update", self._index.update, id=id, set_metadata=metadata_patch, namespace=namespace)

    async def delete(self, id: str, namespace: str) -> None:
        await self._call("delete", self._index.delete, ids=[id], namespace=namespace)

    async def fetch(self, ids: list[str], namespace: str) -> dict[str, VectorRecord]:
        if not ids:
            return {}
        response = await self._call("fetch", self._index.fetch, ids=ids, namespace=namespace)
        return {
            id: VectorRecord(id=id, values=list(vec.values or []), metadata=dict(vec.metadata or {}))
            for id, vec in response.vectors.items()
        }

    async def list_ids(self, namespace: str) -> list[str]:
        def _collect() -> list[str]:
            ids: list[str] = []
            for page in self._index.list(namespace=namespace):
                ids.extend(page)
            return ids

        return await self._call("list", _collect)


def build_vector_store() -> InMemoryVectorStore | PineconeVectorStore:
    settings = get_settings()
    backend = settings.vector_store.lower()
    if backend == "memory":
        return InMemoryVectorStore(settings.embedding_dimension)
    if backend == "pinecone":
        return PineconeVectorStore()
    raise NotImplementedError(f"Vector store '{backend}' is not supported.  Choose from: memory, pinecone")
