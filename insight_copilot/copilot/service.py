"""
Copilot service -- orchestrates route -> subset -> cache -> generate -> validate
-> execute -> synthesize -> store.

Per message:
  1. Intent routing: small talk and general-knowledge questions get canned
     replies without touching the warehouse.
  2. Subset adaptation against the conversation's own ranked answers.
  3. Semantic cache lookup (exact or reworded similar match).
  4. Cache miss: SQL generation, security validation, read-only execution,
     response synthesis, and a single cache write.
Every reply carries follow-up suggestions and feedback options. Requests on
the same conversation are serialised; each runs under a request timeout.
"""
from __future__ import annotations

import asyncio
from typing import Any

from insight_copilot.copilot.explainer import TIMEOUT_MESSAGE, explain_error
from insight_copilot.copilot.feedback import FeedbackAnalytics
from insight_copilot.copilot.intent import (
    CONVERSATIONAL,
    GENERAL_KNOWLEDGE,
    classify,
    conversational_reply,
    general_knowledge_reply,
)
from insight_copilot.copilot.responder import Responder, data_payload
from insight_copilot.copilot.results import (
    CacheResult,
    ConversationalResult,
    ErrorResult,
    GeneratedResult,
    ProcessingResult,
)
from insight_copilot.copilot.schemas import (
    ConversationRequest,
    ConversationResponse,
    FeedbackRequest,
    FeedbackResponse,
    RequestContext,
    RequestOptions,
    ResponseData,
    ResponseMetadata,
)
from insight_copilot.copilot.semantic_cache import SemanticCache
from insight_copilot.copilot.session import ConversationSession, Message, MessageFeedback, SessionStore
from insight_copilot.copilot.sql_generator import MockSqlGenerator, QueryGenerator
from insight_copilot.copilot.subset import SubsetAdapter
from insight_copilot.copilot.suggestions import DEFAULT_SUGGESTIONS, default_suggestions, extract_topics, topic_label
from insight_copilot.core.config import Settings, get_settings
from insight_copilot.core.errors import (
    CopilotError,
    ErrorCategory,
    ExecutionError,
    ProviderError,
    SqlValidationError,
    WarehouseUnavailableError,
)
from insight_copilot.core.logging import get_logger
from insight_copilot.core.utils import new_id, timer
from insight_copilot.governance.cost_guard import is_syntax_failure
from insight_copilot.governance.policy import SecurityPolicy, load_security_policy
from insight_copilot.governance.results import ValidationResult
from insight_copilot.governance.validator import QueryValidator
from insight_copilot.providers.base import (
    Embedder,
    ExecutionResult,
    SqlGenerator,
    TextSynthesizer,
    VectorStore,
    Warehouse,
    WarehouseQueryError,
)

logger = get_logger(__name__)


class CopilotService:
    def __init__(
        self,
        *,
        embedder: Embedder,
        vector_store: VectorStore,
        sql_generator: SqlGenerator,
        warehouse: Warehouse,
        synthesizer: TextSynthesizer | None = None,
        policy: SecurityPolicy | None = None,
        sessions: SessionStore | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.policy = policy or load_security_policy()
        self.sessions = sessions or SessionStore()
        self.warehouse = warehouse
        self.cache = SemanticCache(embedder, vector_store, synthesizer)
        self.subset = SubsetAdapter()
        self.generator = QueryGenerator(sql_generator, self.policy)
        self.validator = QueryValidator(warehouse, self.policy)
        self.responder = Responder(synthesizer, self.settings.max_suggestions)
        self.feedback = FeedbackAnalytics()

    # ── Conversation ────────────────────────────────────

    async def process_conversation(self, request: ConversationRequest) -> ConversationResponse:
        options = request.options or RequestOptions()
        timeout_s = options.timeout / 1000 if options.timeout else self.settings.request_timeout_s
        session = self.sessions.get_or_create(request.conversation_id)
        logger.info("Conversation | id=%s | message=%s", session.id, request.message[:80])

        async with self.sessions.lock(session.id):
            with timer() as t:
                try:
                    result = await asyncio.wait_for(
                        self._process(request.message, session, request.context), timeout=timeout_s,
                    )
                except asyncio.TimeoutError:
                    logger.warning("Request timed out after %.1fs | conversation=%s", timeout_s, session.id)
                    result = ErrorResult(TIMEOUT_MESSAGE, ErrorCategory.PROCESSING, code="TIMEOUT")
                except CopilotError as exc:
                    logger.error("Request failed | %s: %s", exc.category.value, exc)
                    result = ErrorResult(explain_error(exc.category, exc.code), exc.category, code=exc.code, sql=exc.sql)
                except Exception:
                    logger.exception("Unexpected failure | conversation=%s", session.id)
                    result = ErrorResult(explain_error(ErrorCategory.PROCESSING), ErrorCategory.PROCESSING)

            if not result.suggestions:
                result.suggestions = self._default_suggestions(request.message, result)
            self.sessions.append_user_message(session, request.message)
            message = self.sessions.append_assistant_message(
                session, result.response, result.to_metadata(t["elapsed_ms"]), result=result,
            )

        logger.info(
            "Answered | conversation=%s | source=%s | %dms", session.id, result.source, t["elapsed_ms"],
        )
        return self._to_response(session, message, result, options)

    async def _process(
        self, question: str, session: ConversationSession, context: RequestContext | None,
    ) -> ProcessingResult:
        intent = classify(question)
        if intent.kind == CONVERSATIONAL:
            return ConversationalResult(conversational_reply(intent, session), intent.subtype or "general")
        if intent.kind == GENERAL_KNOWLEDGE:
            return ConversationalResult(general_knowledge_reply(intent), intent.topic or "general")

        topics = extract_topics(question)
        if topics:
            session.context["last_topic"] = topic_label(topics[0])

        subset = self.subset.try_adapt(question, session)
        if subset is not None:
            return subset

        cache_context = self._cache_context(session, context)
        match = await self.cache.find_similar(question, cache_context)
        if match is not None:
            cached = match.to_result()
            if isinstance(cached, CacheResult):
                cached.data = data_payload(match.entry.result)
            return cached

        return await self._generate(question, cache_context)

    async def _generate(self, question: str, context: dict[str, Any]) -> ProcessingResult:
        sql = await self.generator.generate(question, context)
        try:
            validation, execution = await self._run_query(sql)
        except (SqlValidationError, ExecutionError) as exc:
            logger.error("Query failed | %s: %s", exc.category.value, exc)
            result = ErrorResult(
                explain_error(exc.category, exc.code), exc.category, code=exc.code, sql=sql, tables=exc.tables,
            )
            if exc.cacheable:
                result.cache_entry_id = await self._store(question, result, context)
            return result

        response = await self.responder.compose(question, sql, execution)
        suggestions = await self.responder.follow_ups(question, response)
        result = GeneratedResult(
            response=response,
            sql=sql,
            tables=validation.tables,
            rows=execution.rows,
            total_rows=execution.total_rows,
            execution_time_ms=execution.execution_time_ms,
            bytes_processed=execution.bytes_processed,
            suggestions=suggestions,
            data=data_payload(execution.rows),
        )
        result.cache_entry_id = await self._store(question, result, context)
        return result

    async def _run_query(self, sql: str) -> tuple[ValidationResult, ExecutionResult]:
        """Validate then execute *sql*; failures raise a :class:`CopilotError` subclass."""
        validation = await self.validator.validate(sql)
        if not validation.is_valid:
            issue = validation.first_error
            raise SqlValidationError(
                issue.message if issue else "invalid SQL",
                category=validation.category,
                code=issue.code if issue else None,
                sql=sql,
                tables=validation.tables,
            )

        try:
            execution = await self.warehouse.execute(sql, max_rows=self.settings.max_result_rows)
        except WarehouseQueryError as exc:
            if is_syntax_failure(exc):
                raise SqlValidationError(
                    str(exc), category=ErrorCategory.SYNTAX, code="SYNTAX_ERROR", sql=sql, tables=validation.tables,
                ) from exc
            raise ExecutionError(str(exc), sql=sql, tables=validation.tables) from exc
        except ProviderError as exc:
            raise WarehouseUnavailableError(str(exc), sql=sql, tables=validation.tables) from exc
        return validation, execution

    async def _store(self, question: str, result: GeneratedResult | ErrorResult, context: dict[str, Any]) -> str | None:
        try:
            return await self.cache.store(question, result, context)
        except Exception as exc:
            logger.error("Cache store failed -- answer not cached: %s", exc)
            return None

    def _cache_context(self, session: ConversationSession, context: RequestContext | None) -> dict[str, Any]:
        previous = [m.content for m in session.user_messages()][-3:]
        ctx: dict[str, Any] = {"previous_questions": previous}
        if context is not None:
            if context.time_range is not None:
                ctx["time_range"] = (
                    f"{context.time_range.start.date().isoformat()} a {context.time_range.end.date().isoformat()}"
                )
            if context.filters:
                ctx["filters"] = context.filters
        return ctx

    def _default_suggestions(self, question: str, result: ProcessingResult) -> list[str]:
        limit = self.settings.max_suggestions
        if isinstance(result, ConversationalResult):
            return DEFAULT_SUGGESTIONS[:limit]
        return default_suggestions(question, limit)

    def _to_response(
        self,
        session: ConversationSession,
        message: Message,
        result: ProcessingResult,
        options: RequestOptions,
    ) -> ConversationResponse:
        meta = message.metadata
        data = None
        payload = getattr(result, "data", None)
        if payload is not None:
            content = payload.content
            if options.max_result_rows and isinstance(content, dict) and "rows" in content:
                content = {**content, "rows": content["rows"][: options.max_result_rows]}
            data = ResponseData(type=payload.type, content=content)

        return ConversationResponse(
            id=message.id,
            conversation_id=session.id,
            message=message.content,
            metadata=ResponseMetadata(
                processing_time_ms=meta.processing_time_ms if meta else 0,
                source=result.source,
                confidence=result.confidence,
                tables=list(meta.tables) if meta and meta.tables else None,
                sql=meta.sql if meta and options.include_sql else None,
                error_type=result.category.value if isinstance(result, ErrorResult) else None,
            ),
            data=data,
            suggestions=list(result.suggestions),
        )

    def get_conversation(self, conversation_id: str) -> ConversationResponse | None:
        """The conversation's latest reply, in the response shape."""
        session = self.sessions.get(conversation_id)
        if session is None:
            return None
        message = session.last_assistant_message()
        if message is None or session.last_result is None:
            return None
        return self._to_response(session, message, session.last_result, RequestOptions())

    # ── Feedback ────────────────────────────────────────

    async def process_feedback(self, request: FeedbackRequest) -> FeedbackResponse:
        found = self.sessions.find_message(request.response_id, request.conversation_id)
        if found is None:
            found = self.sessions.find_message(request.response_id)
        if found is None:
            logger.warning("Feedback for unknown response=%s", request.response_id)
            return FeedbackResponse(
                id=new_id(),
                conversation_id=request.conversation_id,
                response_id=request.response_id,
                status="error",
                message="Resposta não encontrada para registrar o feedback.",
            )

        session, message = found
        self.sessions.record_feedback(
            message.id,
            MessageFeedback(type=request.type, helpful=request.helpful, comment=request.comment),
            session.id,
        )

        entry_id = message.metadata.cache_entry_id if message.metadata else None
        if entry_id:
            try:
                await self.cache.update_feedback(entry_id, {"type": request.type, "comment": request.comment})
            except Exception as exc:
                logger.error("Could not update cache feedback for entry=%s: %s", entry_id, exc)

        question = session.paired_user_message(message)
        self.feedback.record(
            conversation_id=session.id,
            response_id=message.id,
            type=request.type,
            comment=request.comment,
            cache_entry_id=entry_id,
            question=question.content if question else None,
            response=message.content,
            category=_feedback_category(question.content if question else ""),
        )
        logger.info("Feedback | conversation=%s | response=%s | type=%s", session.id, message.id, request.type)
        return FeedbackResponse(
            id=new_id(),
            conversation_id=session.id,
            response_id=message.id,
            status="success",
            message="Obrigado pelo feedback!",
        )


def _feedback_category(question: str) -> str | None:
    topics = extract_topics(question)
    return topics[0] if topics else None


# ── Wiring ──────────────────────────────────────────────


def build_service(settings: Settings | None = None) -> CopilotService:
    """Assemble the service from configured provider adapters."""
    from insight_copilot.providers.embeddings import build_embedder
    from insight_copilot.providers.llm_client import LlmSqlGenerator, LlmTextSynthesizer
    from insight_copilot.providers.vector_store import build_vector_store
    from insight_copilot.providers.warehouse import build_warehouse

    settings = settings or get_settings()
    policy = load_security_policy(settings.security_policy_path)
    mock = settings.llm_provider.lower() == "mock"
    return CopilotService(
        embedder=build_embedder(),
        vector_store=build_vector_store(),
        sql_generator=MockSqlGenerator() if mock else LlmSqlGenerator(),
        warehouse=build_warehouse(max_bytes_billed=policy.max_bytes_processed),
        synthesizer=None if mock else LlmTextSynthesizer(),
        policy=policy,
        settings=settings,
    )


_service: CopilotService | None = None


def get_service() -> CopilotService:
    """Return the process-wide service (built on first use)."""
    global _service
    if _service is None:
        _service = build_service()
    return _service
