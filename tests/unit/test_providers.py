"""
Unit tests -- mock embedder and in-memory vector store.
"""
import numpy as np
import pytest

from insight_copilot.providers.embeddings import MockEmbedder
from insight_copilot.providers.vector_store import InMemoryVectorStore


@pytest.mark.asyncio
async def test_mock_embedding_shape_and_norm():
    vector = await MockEmbedder(64).embed("top 5 produtos")
    assert len(vector) == 64
    assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-5)


@pytest.mark.asyncio
async def test_mock_embedding_deterministic_and_normalised():
    embedder = MockEmbedder(128)
    assert await embedder.embed("Março de 2025") == await embedder.embed("  marco DE 2025 ")


@pytest.mark.asyncio
async def test_query_ranks_by_cosine():
    store = InMemoryVectorStore(3)
    await store.upsert("a", [1, 0, 0], {"q": "a"}, "ns")
    await store.upsert("b", [0.7, 0.7, 0], {"q": "b"}, "ns")
    await store.upsert("c", [0, 0, 1], {"q": "c"}, "ns")
    matches = await store.query([1, 0.1, 0], 2, "ns")
    assert [m.id for m in matches] == ["a", "b"]
    assert matches[0].score > matches[1].score
    assert matches[0].metadata == {"q": "a"}


@pytest.mark.asyncio
async def test_dimension_mismatch_rejected():
    store = InMemoryVectorStore(3)
    with pytest.raises(ValueError):
        await store.upsert("a", [1, 0], {}, "ns")


@pytest.mark.asyncio
async def test_update_fetch_delete():
    store = InMemoryVectorStore(2)
    await store.upsert("a", [1, 0], {"hits": 0, "q": "x"}, "ns")
    await store.update("a", {"hits": 1}, "ns")
    records = await store.fetch(["a", "missing"], "ns")
    assert list(records) == ["a"]
    assert records["a"].metadata == {"hits": 1, "q": "x"}

    with pytest.raises(KeyError):
        await store.update("missing", {}, "ns")

    await store.delete("a", "ns")
    assert await store.list_ids("ns") == []
    assert len(store) == 0


@pytest.mark.asyncio
async def test_query_empty_namespace():
    assert await InMemoryVectorStore(2).query([1, 0], 3, "nothing") == []
