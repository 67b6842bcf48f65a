"""
Provider ports -- the external collaborators the copilot depends on.

Every adapter (mock, OpenAI, Anthropic, Pinecone, Postgres, BigQuery ...)
implements one of these protocols and is injected into the service at
construction time.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


# ── Result objects ──────────────────────────────────────


@dataclass
class VectorRecord:
    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DryRunResult:
    bytes_processed: int
    schema: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ExecutionResult:
    rows: list[dict[str, Any]]
    total_rows: int
    bytes_processed: int = 0
    execution_time_ms: int = 0
    schema: list[dict[str, Any]] = field(default_factory=list)


class WarehouseQueryError(Exception):
    """The warehouse rejected or failed a query (not a transport problem)."""


# ── Ports ───────────────────────────────────────────────


class Embedder(Protocol):
    dimension: int

    async def embed(self, text: str) -> list[float]: ...


class VectorStore(Protocol):
    async def upsert(self, id: str, vector: list[float], metadata: dict[str, Any], namespace: str) -> None: ...

    async def query(self, vector: list[float], top_k: int, namespace: str) -> list[VectorMatch]: ...

    async def update(self, id: str, metadata_patch: dict[str, Any], namespace: str) -> None: ...

    async def delete(self, id: str, namespace: str) -> None: ...

    async def fetch(self, ids: list[str], namespace: str) -> dict[str, VectorRecord]: ...

    async def list_ids(self, namespace: str) -> list[str]: ...


class SqlGenerator(Protocol):
    async def generate_sql(self, prompt: str) -> str: ...


class TextSynthesizer(Protocol):
    async def synthesize(self, prompt: str) -> str: ...


class Warehouse(Protocol):
    async def dry_run(self, sql: str) -> DryRunResult: ...

    async def execute(self, sql: str, max_rows: int | None = None) -> ExecutionResult: ...
