"""
Semantic cache matcher.

Stores answered questions as embedding vectors and serves later questions
whose nearest neighbour scores at or above the similarity threshold:

  * exact match (same normalised text) -> cached answer verbatim
  * similar match with a compatible shape -> cached answer reworded by the
    synthesis provider (cached text on failure, counted in ``stats()``)
  * anything else -> miss

Provider failures during lookup are a miss, never an error. Every entry is
written with a single upsert, so it is either fully present or absent.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from insight_copilot.copilot.query_shape import extract_query_intent, is_compatible
from insight_copilot.copilot.results import CacheResult, ErrorResult, GeneratedResult
from insight_copilot.core.config import get_settings
from insight_copilot.core.errors import ErrorCategory
from insight_copilot.core.logging import get_logger
from insight_copilot.core.utils import new_id, normalize_text, strip_accents, utcnow
from insight_copilot.providers.base import Embedder, TextSynthesizer, VectorMatch, VectorStore

logger = get_logger(__name__)

ENTRY_VERSION = "1.0"
MAX_STORED_ROWS = 100
MAX_COMMENTS = 50
_FETCH_BATCH = 100
REVIEW_NEGATIVE_PCT = 30.0
REVIEW_MIN_FEEDBACK = 3


# ── Cache entry ─────────────────────────────────────────


@dataclass
class CacheEntry:
    id: str
    question: str
    response: str
    sql: str | None = None
    result: list[dict[str, Any]] | None = None
    source_tables: list[str] = field(default_factory=list)
    execution_time_ms: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    version: str = ENTRY_VERSION
    feedback_positive: int = 0
    feedback_negative: int = 0
    feedback_comments: list[str] = field(default_factory=list)
    needs_review: bool = False
    hits: int = 0
    expires_at: datetime | None = None
    suggestions: list[str] = field(default_factory=list)
    is_error: bool = False
    error_category: str | None = None
    embedding: list[float] | None = None

    @property
    def confidence(self) -> float:
        total = self.feedback_positive + self.feedback_negative
        return self.feedback_positive / total if total else 0.0

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and (now or utcnow()) >= self.expires_at

    def to_metadata(self) -> dict[str, Any]:
        """Flat vector-store metadata (no nulls, lists of strings only)."""
        meta: dict[str, Any] = {
            "question": self.question,
            "normalizedQuestion": normalize_question(self.question),
            "response": self.response,
            "sourceTables": list(self.source_tables),
            "executionTimeMs": self.execution_time_ms,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "version": self.version,
            "feedbackPositive": self.feedback_positive,
            "feedbackNegative": self.feedback_negative,
            "feedbackComments": list(self.feedback_comments),
            "needsReview": self.needs_review,
            "hits": self.hits,
            "suggestions": list(self.suggestions),
            "isError": self.is_error,
        }
        if self.sql:
            meta["query"] = self.sql
        if self.result is not None:
            meta["result"] = json.dumps(self.result[:MAX_STORED_ROWS], default=str, ensure_ascii=False)
        if self.expires_at is not None:
            meta["expiresAt"] = self.expires_at.isoformat()
        if self.error_category:
            meta["errorCategory"] = self.error_category
        return meta

    @classmethod
    def from_metadata(cls, id: str, meta: dict[str, Any], embedding: list[float] | None = None) -> "CacheEntry":
        raw_result = meta.get("result")
        return cls(
            id=id,
            question=str(meta.get("question", "")),
            response=str(meta.get("response", "")),
            sql=meta.get("query") or None,
            result=json.loads(raw_result) if raw_result else None,
            source_tables=list(meta.get("sourceTables") or []),
            execution_time_ms=int(meta.get("executionTimeMs") or 0),
            created_at=_parse_dt(meta.get("createdAt")) or utcnow(),
            updated_at=_parse_dt(meta.get("updatedAt")) or utcnow(),
            version=str(meta.get("version") or ENTRY_VERSION),
            feedback_positive=int(meta.get("feedbackPositive") or 0),
            feedback_negative=int(meta.get("feedbackNegative") or 0),
            feedback_comments=list(meta.get("feedbackComments") or []),
            needs_review=bool(meta.get("needsReview", False)),
            hits=int(meta.get("hits") or 0),
            expires_at=_parse_dt(meta.get("expiresAt")),
            suggestions=list(meta.get("suggestions") or []),
            is_error=bool(meta.get("isError", False)),
            error_category=ErrorCategory(meta["errorCategory"]).value if meta.get("errorCategory") else None,
            embedding=embedding,
        )

    def to_template(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "sql": self.sql,
            "response": self.response,
            "usage": {"hits": self.hits, "lastUsed": self.updated_at.isoformat()},
            "feedback": {
                "positive": self.feedback_positive,
                "negative": self.feedback_negative,
                "comments": list(self.feedback_comments),
            },
            "needsReview": self.needs_review,
            "isError": self.is_error,
            "confidence": round(self.confidence, 3),
        }


def _parse_dt(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def normalize_question(text: str) -> str:
    return strip_accents(normalize_text(text)).rstrip(" ?!.")


@dataclass
class CacheMatch:
    entry: CacheEntry
    score: float
    kind: str  # exact | similar
    response: str
    reworded: bool = False

    def to_result(self) -> CacheResult | ErrorResult:
        if self.entry.is_error:
            category = ErrorCategory(self.entry.error_category or ErrorCategory.EXECUTION.value)
            return ErrorResult(
                response=self.response,
                category=category,
                sql=self.entry.sql,
                tables=list(self.entry.source_tables),
                cache_entry_id=self.entry.id,
                suggestions=list(self.entry.suggestions),
            )
        return CacheResult(
            response=self.response,
            confidence=self.score,
            cache_entry_id=self.entry.id,
            sql=self.entry.sql,
            tables=list(self.entry.source_tables),
            suggestions=list(self.entry.suggestions),
            kind=self.kind,
        )


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    exact_hits: int = 0
    similar_hits: int = 0
    incompatible: int = 0
    expired: int = 0
    lookup_errors: int = 0
    adaptation_failures: int = 0
    unreadable: int = 0
    stores: int = 0

    def to_dict(self) -> dict[str, Any]:
        total = self.hits + self.misses
        return {
            **self.__dict__,
            "hit_rate": round(self.hits / total, 3) if total else 0.0,
        }


# ── Matcher ─────────────────────────────────────────────


_REWORD_PROMPT = """Uma pergunta anterior parecida já foi respondida.

Pergunta original: {original}
Resposta original:
{response}

Nova pergunta: {question}
{context}
Reescreva a resposta original para responder exatamente à nova pergunta, usando apenas os dados da
resposta original. Não invente números. Responda em português do Brasil."""


class SemanticCache:
    """Question -> answer cache over an :class:`Embedder` and a :class:`VectorStore`.

    Parameters
    ----------
    embedder, store : providers
        Injected ports (see ``providers.base``).
    synthesizer : TextSynthesizer, optional
        Used to reword similar matches. Without one, similar matches return
        the cached text unchanged.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        synthesizer: TextSynthesizer | None = None,
        *,
        namespace: str | None = None,
        threshold: float | None = None,
        ttl_days: int | None = None,
        top_k: int = 3,
    ):
        settings = get_settings()
        self.embedder = embedder
        self.vectors = store
        self.synthesizer = synthesizer
        self.namespace = namespace or settings.cache_namespace
        self.threshold = settings.similarity_threshold if threshold is None else threshold
        if ttl_days is None and settings.cache_ttl_enabled:
            ttl_days = settings.cache_ttl_days
        self.ttl = timedelta(days=ttl_days) if ttl_days else None
        self.top_k = top_k
        self._stats = CacheStats()
        self._write_lock = asyncio.Lock()

    # ── Lookup ──────────────────────────────────────────

    async def find_similar(self, question: str, context: dict[str, Any] | None = None) -> CacheMatch | None:
        try:
            vector = await self.embedder.embed(question)
            matches = await self.vectors.query(vector, self.top_k, self.namespace)
        except Exception as exc:
            self._stats.lookup_errors += 1
            self._stats.misses += 1
            logger.warning("Cache lookup failed -- treating as miss: %s", exc)
            return None

        match = await self._select(question, matches, context or {})
        if match is None:
            self._stats.misses += 1
            return None

        self._stats.hits += 1
        if match.kind == "exact":
            self._stats.exact_hits += 1
        else:
            self._stats.similar_hits += 1
        await self._record_hit(match.entry.id)
        logger.info(
            "Cache %s hit | entry=%s | score=%.3f | reworded=%s",
            match.kind, match.entry.id, match.score, match.reworded,
        )
        return match

    async def _select(self, question: str, matches: list[VectorMatch], context: dict[str, Any]) -> CacheMatch | None:
        wanted = normalize_question(question)
        shape = None
        now = utcnow()

        for candidate in sorted(matches, key=lambda m: m.score, reverse=True):
            if candidate.score < self.threshold:
                break
            entry = self._parse(candidate.id, candidate.metadata)
            if entry is None:
                continue
            if entry.is_expired(now):
                self._stats.expired += 1
                continue

            if normalize_question(entry.question) == wanted:
                return CacheMatch(entry, candidate.score, "exact", entry.response)

            shape = shape or extract_query_intent(question)
            if not is_compatible(extract_query_intent(entry.question), shape):
                self._stats.incompatible += 1
                continue

            if entry.is_error:
                return CacheMatch(entry, candidate.score, "similar", entry.response)
            response, reworded = await self._reword(question, entry, context)
            return CacheMatch(entry, candidate.score, "similar", response, reworded)
        return None

    async def _reword(self, question: str, entry: CacheEntry, context: dict[str, Any]) -> tuple[str, bool]:
        if self.synthesizer is None:
            return entry.response, False
        previous = context.get("previous_questions") or []
        prompt = _REWORD_PROMPT.format(
            original=entry.question,
            response=entry.response,
            question=question,
            context=("Perguntas anteriores da conversa: " + "; ".join(previous) + "\n") if previous else "",
        )
        try:
            text = (await self.synthesizer.synthesize(prompt)).strip()
        except Exception as exc:
            self._stats.adaptation_failures += 1
            logger.warning("Cache rewording failed for entry=%s -- using cached text: %s", entry.id, exc)
            return entry.response, False
        if not text:
            self._stats.adaptation_failures += 1
            return entry.response, False
        return text, True

    def _parse(self, entry_id: str, meta: dict[str, Any], embedding: list[float] | None = None) -> CacheEntry | None:
        """Decode stored metadata; unreadable records are skipped."""
        try:
            return CacheEntry.from_metadata(entry_id, meta, embedding)
        except (ValueError, TypeError) as exc:
            self._stats.unreadable += 1
            logger.warning("Skipping unreadable cache entry=%s: %s", entry_id, exc)
            return None

    async def _record_hit(self, entry_id: str) -> None:
        try:
            async with self._write_lock:
                current = await self.get(entry_id)
                if current is not None:
                    await self.vectors.update(entry_id, {"hits": current.hits + 1}, self.namespace)
        except Exception as exc:
            logger.warning("Could not record cache hit for entry=%s: %s", entry_id, exc)

    # ── Writes ──────────────────────────────────────────

    def _new_entry(self, question: str, result: GeneratedResult | ErrorResult) -> CacheEntry:
        now = utcnow()
        entry = CacheEntry(
            id=new_id(),
            question=question,
            response=result.response,
            sql=result.sql,
            source_tables=list(result.tables),
            created_at=now,
            updated_at=now,
            suggestions=list(result.suggestions),
            expires_at=now + self.ttl if self.ttl else None,
        )
        if isinstance(result, GeneratedResult):
            entry.result = result.rows
            entry.execution_time_ms = result.execution_time_ms
        else:
            entry.is_error = True
            entry.error_category = result.category.value
            entry.needs_review = True
        return entry

    async def store(
        self, question: str, result: GeneratedResult | ErrorResult, context: dict[str, Any] | None = None,
    ) -> str:
        """Embed and upsert one entry; returns its id."""
        entry = self._new_entry(question, result)
        vector = await self.embedder.embed(question)
        await self.vectors.upsert(entry.id, vector, entry.to_metadata(), self.namespace)
        self._stats.stores += 1
        logger.info("Cache store | entry=%s | error=%s | tables=%s", entry.id, entry.is_error, entry.source_tables)
        return entry.id

    async def get(self, entry_id: str) -> CacheEntry | None:
        records = await self.vectors.fetch([entry_id], self.namespace)
        record = records.get(entry_id)
        if record is None:
            return None
        return self._parse(record.id, record.metadata, record.values)

    async def update_feedback(self, entry_id: str, feedback: dict[str, Any]) -> bool:
        """Apply ``{"type": "positive"|"negative", "comment": str?}`` to an entry."""
        async with self._write_lock:
            entry = await self.get(entry_id)
            if entry is None:
                logger.warning("Feedback for unknown cache entry=%s", entry_id)
                return False

            patch: dict[str, Any] = {"updatedAt": utcnow().isoformat()}
            if feedback.get("type") == "negative":
                patch["feedbackNegative"] = entry.feedback_negative + 1
                patch["needsReview"] = True
            else:
                patch["feedbackPositive"] = entry.feedback_positive + 1
            comment = (feedback.get("comment") or "").strip()
            if comment:
                patch["feedbackComments"] = (entry.feedback_comments + [comment])[-MAX_COMMENTS:]

            await self.vectors.update(entry_id, patch, self.namespace)
        logger.info("Cache feedback | entry=%s | type=%s", entry_id, feedback.get("type"))
        return True

    # ── Administration ──────────────────────────────────

    async def _all_entries(self) -> list[CacheEntry]:
        ids = await self.vectors.list_ids(self.namespace)
        entries: list[CacheEntry] = []
        for start in range(0, len(ids), _FETCH_BATCH):
            records = await self.vectors.fetch(ids[start:start + _FETCH_BATCH], self.namespace)
            entries.extend(e for e in (self._parse(r.id, r.metadata) for r in records.values()) if e is not None)
        return entries

    async def list_templates(self, min_confidence: float | None = None, needs_review: bool | None = None) -> list[CacheEntry]:
        entries = await self._all_entries()
        if min_confidence:
            entries = [e for e in entries if e.confidence >= min_confidence]
        if needs_review is not None:
            entries = [e for e in entries if e.needs_review == needs_review]
        return sorted(entries, key=lambda e: e.updated_at, reverse=True)

    async def templates_for_review(
        self, threshold: float = REVIEW_NEGATIVE_PCT, min_feedback: int = REVIEW_MIN_FEEDBACK,
    ) -> list[CacheEntry]:
        """Entries with enough feedback whose negative share (percent) reaches
        *threshold*, or that are flagged ``needs_review``; worst first."""
        picked = []
        for entry in await self._all_entries():
            total = entry.feedback_positive + entry.feedback_negative
            if total < min_feedback:
                continue
            if entry.feedback_negative / total * 100 >= threshold or entry.needs_review:
                picked.append(entry)
        return sorted(
            picked,
            key=lambda e: e.feedback_negative / (e.feedback_positive + e.feedback_negative),
            reverse=True,
        )

    async def update_template(self, entry_id: str, sql: str | None = None, response: str | None = None) -> CacheEntry | None:
        """Correct a stored answer; clears ``needs_review``."""
        async with self._write_lock:
            entry = await self.get(entry_id)
            if entry is None:
                return None
            patch: dict[str, Any] = {"updatedAt": utcnow().isoformat(), "needsReview": False}
            if sql is not None:
                patch["query"] = sql
                entry.sql = sql
            if response is not None:
                patch["response"] = response
                entry.response = response
            await self.vectors.update(entry_id, patch, self.namespace)
        entry.needs_review = False
        logger.info("Cache template updated | entry=%s", entry_id)
        return entry

    async def delete_template(self, entry_id: str) -> bool:
        if await self.get(entry_id) is None:
            return False
        await self.vectors.delete(entry_id, self.namespace)
        logger.info("Cache template deleted | entry=%s", entry_id)
        return True

    async def clear(self, older_than: datetime | None = None) -> int:
        """Delete every entry (or those last updated before *older_than*)."""
        removed = 0
        for entry in await self._all_entries():
            if older_than is None or entry.updated_at < older_than:
                await self.vectors.delete(entry.id, self.namespace)
                removed += 1
        logger.info("Cache cleared | removed=%d | older_than=%s", removed, older_than)
        return removed

    def stats(self) -> dict[str, Any]:
        return {**self._stats.to_dict(), "threshold": self.threshold, "namespace": self.namespace}
