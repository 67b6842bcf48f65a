"""
Unit tests -- conversation controller end to end over fake providers.
"""
import asyncio

import pytest

from insight_copilot.copilot.schemas import ConversationRequest, FeedbackRequest, RequestOptions
from insight_copilot.core.config import Settings
from insight_copilot.core.errors import ProviderError
from insight_copilot.providers.base import WarehouseQueryError

from tests.fakes import TOP_PRODUCTS, CountingSqlGenerator, FakeWarehouse

_TOP5 = "top 5 produtos mais vendidos em janeiro de 2025"
_SECOND = "qual o segundo produto mais vendido em janeiro de 2025"


def _req(message, conversation_id=None, **options):
    return ConversationRequest(
        message=message,
        conversation_id=conversation_id,
        options=RequestOptions(**options) if options else None,
    )


# ── Routing ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_conversational_skips_warehouse(make_service):
    warehouse = FakeWarehouse()
    generator = CountingSqlGenerator()
    service = make_service(warehouse=warehouse, sql_generator=generator)

    resp = await service.process_conversation(_req("obrigado"))
    assert resp.metadata.source == "conversational"
    assert resp.metadata.confidence == 1.0
    assert resp.suggestions
    assert resp.feedback_options.thumbs_up and resp.feedback_options.comment_enabled
    assert generator.calls == 0 and warehouse.executed == []


@pytest.mark.asyncio
async def test_general_knowledge(make_service):
    resp = await make_service().process_conversation(_req("O que é ticket médio?"))
    assert resp.metadata.source == "conversational"
    assert "ticket médio" in resp.message.lower()


# ── Generation path ─────────────────────────────────────

@pytest.mark.asyncio
async def test_generated_answer_is_cached(make_service, vector_store):
    warehouse = FakeWarehouse()
    service = make_service(warehouse=warehouse)

    resp = await service.process_conversation(_req(_TOP5))
    assert resp.metadata.source == "generated"
    assert resp.metadata.tables == ["PEDIDOS", "PRODUTOS"]
    assert resp.metadata.sql is None
    assert "Kit Café Especial" in resp.message
    assert resp.data.type == "table"
    assert len(warehouse.executed) == 1
    assert len(vector_store) == 1

    session = service.sessions.get(resp.conversation_id)
    assert session.total_interactions == 1
    assert session.last_assistant_message().id == resp.id


@pytest.mark.asyncio
async def test_include_sql_and_row_limit(make_service):
    resp = await make_service().process_conversation(_req(_TOP5, include_sql=True, max_result_rows=2))
    assert resp.metadata.sql.startswith("SELECT")
    assert len(resp.data.content["rows"]) == 2


@pytest.mark.asyncio
async def test_subset_follow_up_uses_history(make_service):
    generator = CountingSqlGenerator()
    service = make_service(sql_generator=generator)

    first = await service.process_conversation(_req(_TOP5))
    second = await service.process_conversation(_req(_SECOND, first.conversation_id))

    assert second.metadata.source == "cache"
    assert second.metadata.confidence == pytest.approx(0.98)
    assert f"**{TOP_PRODUCTS[1]['produto']}**" in second.message
    assert generator.calls == 1


@pytest.mark.asyncio
async def test_cache_hit_across_conversations(make_service):
    warehouse = FakeWarehouse()
    generator = CountingSqlGenerator()
    service = make_service(warehouse=warehouse, sql_generator=generator)

    await service.process_conversation(_req(_TOP5))
    resp = await service.process_conversation(_req(_TOP5))

    assert resp.metadata.source == "cache"
    assert resp.metadata.confidence >= 0.85
    assert resp.data is not None
    assert generator.calls == 1 and len(warehouse.executed) == 1


# ── Failures ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_validation_failure_not_executed_or_cached(make_service, vector_store):
    warehouse = FakeWarehouse()
    service = make_service(
        warehouse=warehouse, sql_generator=CountingSqlGenerator("SELECT * FROM pedidos; DROP TABLE pedidos"),
    )
    resp = await service.process_conversation(_req(_TOP5))

    assert resp.metadata.source == "error"
    assert resp.metadata.error_type == "validation_error"
    assert resp.metadata.confidence == 0.0
    assert warehouse.executed == []
    assert len(vector_store) == 0


@pytest.mark.asyncio
async def test_resource_limit_is_cached_for_review(make_service, vector_store, policy):
    warehouse = FakeWarehouse(bytes_processed=policy.max_bytes_processed * 2)
    service = make_service(warehouse=warehouse)
    resp = await service.process_conversation(_req(_TOP5))

    assert resp.metadata.error_type == "resource_limit_error"
    assert warehouse.executed == []
    [entry] = await service.cache.list_templates()
    assert entry.needs_review and entry.is_error


@pytest.mark.asyncio
async def test_execution_failure_cached_and_replayed(make_service, vector_store):
    warehouse = FakeWarehouse(execute_error=WarehouseQueryError("division by zero"))
    service = make_service(warehouse=warehouse)

    first = await service.process_conversation(_req(_TOP5))
    second = await service.process_conversation(_req(_TOP5))

    assert first.metadata.error_type == "execution_error"
    assert second.metadata.source == "error"
    assert second.metadata.error_type == "execution_error"
    assert len(warehouse.executed) == 1


@pytest.mark.asyncio
async def test_syntax_failure_not_cached(make_service, vector_store):
    warehouse = FakeWarehouse(execute_error=WarehouseQueryError('syntax error at or near "FROM"'))
    resp = await make_service(warehouse=warehouse).process_conversation(_req(_TOP5))
    assert resp.metadata.error_type == "syntax_error"
    assert len(vector_store) == 0


@pytest.mark.asyncio
async def test_warehouse_outage_not_cached(make_service, vector_store):
    warehouse = FakeWarehouse(execute_error=ProviderError("postgres:execute", "connection refused"))
    resp = await make_service(warehouse=warehouse).process_conversation(_req(_TOP5))
    assert resp.metadata.error_type == "execution_error"
    assert len(vector_store) == 0


@pytest.mark.asyncio
async def test_generation_failure(make_service):
    class DownGenerator:
        async def generate_sql(self, prompt):
            raise ProviderError("llm:openai", "503")

    resp = await make_service(sql_generator=DownGenerator()).process_conversation(_req(_TOP5))
    assert resp.metadata.error_type == "generation_error"


@pytest.mark.asyncio
async def test_request_timeout(make_service):
    service = make_service(warehouse=FakeWarehouse(delay=1.0), settings=Settings(request_timeout_s=0.05))
    resp = await service.process_conversation(_req(_TOP5))
    assert resp.metadata.source == "error"
    assert resp.metadata.error_type == "processing_error"
    assert service.sessions.get(resp.conversation_id).total_interactions == 1


@pytest.mark.asyncio
async def test_unexpected_error_keeps_session_usable(make_service):
    class BrokenWarehouse(FakeWarehouse):
        async def execute(self, sql, max_rows=None):
            raise RuntimeError("bug")

    service = make_service(warehouse=BrokenWarehouse())
    first = await service.process_conversation(_req(_TOP5))
    second = await service.process_conversation(_req("obrigado", first.conversation_id))

    assert first.metadata.error_type == "processing_error"
    assert second.metadata.source == "conversational"
    assert service.sessions.get(first.conversation_id).total_interactions == 2


# ── Concurrency ─────────────────────────────────────────

@pytest.mark.asyncio
async def test_concurrent_requests_same_conversation(make_service):
    service = make_service(warehouse=FakeWarehouse(delay=0.01))
    conversation_id = (await service.process_conversation(_req("oi"))).conversation_id

    questions = [f"qual foi o faturamento de {m} de 2025?" for m in ("janeiro", "fevereiro", "março", "abril")]
    await asyncio.gather(*(service.process_conversation(_req(q, conversation_id)) for q in questions))

    session = service.sessions.get(conversation_id)
    assert session.total_interactions == 5
    roles = [m.role for m in session.messages]
    assert roles == ["user", "assistant"] * 5
    users = [m.content for m in session.user_messages()][1:]
    assert users == questions


# ── Retrieval & feedback ────────────────────────────────

@pytest.mark.asyncio
async def test_get_conversation(make_service):
    service = make_service()
    resp = await service.process_conversation(_req(_TOP5))
    latest = service.get_conversation(resp.conversation_id)
    assert latest.id == resp.id
    assert latest.message == resp.message
    assert service.get_conversation("missing") is None


@pytest.mark.asyncio
async def test_negative_feedback_flags_cache_entry(make_service):
    service = make_service()
    resp = await service.process_conversation(_req(_TOP5))

    ack = await service.process_feedback(FeedbackRequest(
        conversation_id=resp.conversation_id, response_id=resp.id,
        type="negative", helpful=False, comment="faltou um produto",
    ))
    assert ack.status == "success"

    [entry] = await service.cache.list_templates()
    assert entry.needs_review and entry.feedback_negative == 1
    assert service.feedback.stats()["negative"] == 1
    assert service.feedback.review_queue()[0].question == _TOP5
    assert service.feedback.review_queue()[0].category == "produtos"


@pytest.mark.asyncio
async def test_feedback_falls_back_to_response_id(make_service):
    service = make_service()
    resp = await service.process_conversation(_req(_TOP5))
    ack = await service.process_feedback(FeedbackRequest(
        conversation_id="unknown", response_id=resp.id, type="positive", helpful=True,
    ))
    assert ack.status == "success"
    assert ack.conversation_id == resp.conversation_id


@pytest.mark.asyncio
async def test_feedback_unknown_response(make_service):
    ack = await make_service().process_feedback(FeedbackRequest(
        conversation_id="x", response_id="y", type="positive", helpful=True,
    ))
    assert ack.status == "error"
