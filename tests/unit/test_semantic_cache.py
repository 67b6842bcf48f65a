"""
Unit tests -- semantic cache matcher.
"""
import asyncio
from datetime import timedelta

import pytest

from insight_copilot.copilot.results import ErrorResult, GeneratedResult
from insight_copilot.copilot.semantic_cache import CacheEntry, SemanticCache, normalize_question
from insight_copilot.core.errors import ErrorCategory, ProviderError
from insight_copilot.core.utils import utcnow

from tests.fakes import TOP_PRODUCTS, FailingEmbedder, FakeSynthesizer

_TOP5 = "top 5 produtos mais vendidos em janeiro de 2025"


def _generated(response="\U0001F947 **Kit Café Especial** - 150 unidades"):
    return GeneratedResult(
        response=response,
        sql="SELECT 1",
        tables=["PEDIDOS"],
        rows=TOP_PRODUCTS,
        total_rows=5,
        suggestions=["E em fevereiro?"],
    )


@pytest.fixture
def cache(embedder, vector_store):
    return SemanticCache(embedder, vector_store, namespace="test", threshold=0.85)


# ── Lookup ──────────────────────────────────────────────

@pytest.mark.asyncio
async def test_round_trip_exact(cache):
    entry_id = await cache.store(_TOP5, _generated())
    match = await cache.find_similar(_TOP5)
    assert match is not None
    assert match.kind == "exact"
    assert match.entry.id == entry_id
    assert match.score >= cache.threshold
    assert match.response == _generated().response


@pytest.mark.asyncio
async def test_exact_ignores_case_and_punctuation(cache):
    await cache.store(_TOP5, _generated())
    match = await cache.find_similar("Top 5 produtos mais vendidos em Janeiro de 2025?")
    assert match.kind == "exact"


@pytest.mark.asyncio
async def test_empty_cache_misses(cache):
    assert await cache.find_similar(_TOP5) is None
    assert cache.stats()["misses"] == 1


@pytest.mark.asyncio
async def test_similar_match_is_reworded(embedder, vector_store):
    synthesizer = FakeSynthesizer(reply="Os 5 mais vendidos de janeiro foram ...")
    cache = SemanticCache(embedder, vector_store, synthesizer, namespace="test", threshold=0.8)
    await cache.store(_TOP5, _generated())

    match = await cache.find_similar("quais os top 5 produtos mais vendidos em janeiro de 2025?")
    assert match.kind == "similar"
    assert match.reworded
    assert match.response == "Os 5 mais vendidos de janeiro foram ..."
    assert "Kit Café Especial" in synthesizer.prompts[0]


@pytest.mark.asyncio
async def test_rewording_failure_falls_back(embedder, vector_store):
    synthesizer = FakeSynthesizer(error=ProviderError("llm:openai", "boom"))
    cache = SemanticCache(embedder, vector_store, synthesizer, namespace="test", threshold=0.8)
    await cache.store(_TOP5, _generated())

    match = await cache.find_similar("quais os top 5 produtos mais vendidos em janeiro de 2025?")
    assert match.response == _generated().response
    assert not match.reworded
    assert cache.stats()["adaptation_failures"] == 1


@pytest.mark.asyncio
async def test_incompatible_neighbour_is_a_miss(embedder, vector_store):
    cache = SemanticCache(embedder, vector_store, namespace="test", threshold=0.5)
    await cache.store(_TOP5, _generated())
    assert await cache.find_similar("top 3 produtos mais vendidos em janeiro de 2025") is None
    assert cache.stats()["incompatible"] == 1


@pytest.mark.asyncio
async def test_provider_error_is_a_miss(vector_store):
    cache = SemanticCache(FailingEmbedder(ProviderError("embeddings", "down")), vector_store, namespace="test")
    assert await cache.find_similar(_TOP5) is None
    assert cache.stats()["lookup_errors"] == 1


@pytest.mark.asyncio
async def test_expired_entries_are_skipped(embedder, vector_store):
    cache = SemanticCache(embedder, vector_store, namespace="test", ttl_days=1)
    entry_id = await cache.store(_TOP5, _generated())
    await vector_store.update(entry_id, {"expiresAt": (utcnow() - timedelta(days=1)).isoformat()}, "test")
    assert await cache.find_similar(_TOP5) is None
    assert cache.stats()["expired"] == 1


@pytest.mark.asyncio
async def test_hit_counter(cache):
    entry_id = await cache.store(_TOP5, _generated())
    await cache.find_similar(_TOP5)
    await cache.find_similar(_TOP5)
    assert (await cache.get(entry_id)).hits == 2


@pytest.mark.asyncio
async def test_concurrent_hits_are_all_counted(cache):
    entry_id = await cache.store(_TOP5, _generated())
    await asyncio.gather(*(cache.find_similar(_TOP5) for _ in range(5)))
    assert (await cache.get(entry_id)).hits == 5


@pytest.mark.asyncio
@pytest.mark.parametrize("patch", [{"result": "{not json"}, {"errorCategory": "bogus_error"}])
async def test_unreadable_record_is_a_miss(cache, vector_store, patch):
    entry_id = await cache.store(_TOP5, _generated())
    await vector_store.update(entry_id, patch, "test")

    assert await cache.find_similar(_TOP5) is None
    assert cache.stats()["unreadable"] == 1
    assert await cache.list_templates() == []


@pytest.mark.asyncio
async def test_namespaces_are_isolated(embedder, vector_store):
    await SemanticCache(embedder, vector_store, namespace="a").store(_TOP5, _generated())
    assert await SemanticCache(embedder, vector_store, namespace="b").find_similar(_TOP5) is None


# ── Error entries ───────────────────────────────────────

@pytest.mark.asyncio
async def test_error_entry_needs_review_and_returns_error(cache):
    failed = ErrorResult("Ocorreu um erro.", ErrorCategory.EXECUTION, sql="SELECT 1/0", tables=["PEDIDOS"])
    entry_id = await cache.store(_TOP5, failed)

    entry = await cache.get(entry_id)
    assert entry.is_error and entry.needs_review
    assert entry.error_category == "execution_error"

    result = (await cache.find_similar(_TOP5)).to_result()
    assert isinstance(result, ErrorResult)
    assert result.category == ErrorCategory.EXECUTION


# ── Feedback ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_negative_feedback_flags_review(cache):
    entry_id = await cache.store(_TOP5, _generated())
    assert await cache.update_feedback(entry_id, {"type": "negative", "comment": "faltou o item 6"})
    assert await cache.update_feedback(entry_id, {"type": "positive"})

    entry = await cache.get(entry_id)
    assert entry.feedback_negative == 1
    assert entry.feedback_positive == 1
    assert entry.needs_review
    assert entry.feedback_comments == ["faltou o item 6"]
    assert entry.confidence == 0.5


@pytest.mark.asyncio
async def test_feedback_unknown_entry(cache):
    assert await cache.update_feedback("missing", {"type": "positive"}) is False


# ── Administration ──────────────────────────────────────

@pytest.mark.asyncio
async def test_template_admin(cache):
    keep = await cache.store(_TOP5, _generated())
    review = await cache.store("qual o faturamento de janeiro de 2025", _generated("R$ 10,00"))
    await cache.update_feedback(review, {"type": "negative"})

    flagged = await cache.list_templates(needs_review=True)
    assert [e.id for e in flagged] == [review]

    updated = await cache.update_template(review, response="R$ 12,00")
    assert updated.response == "R$ 12,00"
    assert not (await cache.get(review)).needs_review

    assert await cache.delete_template(keep)
    assert not await cache.delete_template(keep)
    assert [e.id for e in await cache.list_templates()] == [review]


@pytest.mark.asyncio
async def test_clear_older_than(cache):
    await cache.store(_TOP5, _generated())
    assert await cache.clear(older_than=utcnow() - timedelta(days=1)) == 0
    assert await cache.clear() == 1


def test_metadata_round_trip():
    entry = CacheEntry(id="e1", question="q", response="r", result=TOP_PRODUCTS, source_tables=["PEDIDOS"])
    restored = CacheEntry.from_metadata("e1", entry.to_metadata())
    assert restored.result == TOP_PRODUCTS
    assert restored.source_tables == ["PEDIDOS"]
    assert restored.created_at == entry.created_at


def test_normalize_question():
    assert normalize_question("  Qual o Ticket  Médio? ") == "qual o ticket medio"


async def _feedback(cache, entry_id, positive=0, negative=0):
    for _ in range(positive):
        await cache.update_feedback(entry_id, {"type": "positive"})
    for _ in range(negative):
        await cache.update_feedback(entry_id, {"type": "negative"})


@pytest.mark.asyncio
async def test_templates_for_review(cache):
    worst = await cache.store("qual o faturamento de janeiro de 2025", _generated())
    await _feedback(cache, worst, positive=1, negative=2)
    mild = await cache.store("quantos clientes ativos em março de 2025", _generated())
    await _feedback(cache, mild, positive=3, negative=1)
    await cache.update_template(mild, response="corrigido")
    too_few = await cache.store("ticket médio de abril de 2025", _generated())
    await _feedback(cache, too_few, negative=2)
    liked = await cache.store(_TOP5, _generated())
    await _feedback(cache, liked, positive=3)

    assert [e.id for e in await cache.templates_for_review()] == [worst]
    assert [e.id for e in await cache.templates_for_review(threshold=20)] == [worst, mild]


@pytest.mark.asyncio
async def test_flagged_template_reviewed_below_threshold(cache):
    entry_id = await cache.store(_TOP5, _generated())
    await _feedback(cache, entry_id, positive=4, negative=1)
    assert (await cache.get(entry_id)).needs_review
    assert [e.id for e in await cache.templates_for_review()] == [entry_id]
