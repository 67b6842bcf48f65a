"""
Subset adapter -- answers a narrower ranked question from the conversation's
own history, with no generation or warehouse cost.

"qual o segundo produto mais vendido em janeiro de 2025" after a cached
"top 5 produtos mais vendidos em janeiro de 2025" returns item #2 of the
earlier answer. Only ever narrows a previous top-N answer; never widens,
reorders or guesses.
"""
from __future__ import annotations

from insight_copilot.copilot.query_shape import (
    POSITION,
    TOP_N,
    QueryIntentInfo,
    RankedItem,
    extract_query_intent,
    extract_ranked_items,
    ordinal_name,
)
from insight_copilot.copilot.results import CacheResult
from insight_copilot.copilot.session import ConversationSession, Message
from insight_copilot.core.logging import get_logger

logger = get_logger(__name__)

SUBSET_CONFIDENCE = 0.98
_REUSABLE_SOURCES = ("cache", "generated")


def _render(current: QueryIntentInfo, items: list[RankedItem]) -> str:
    timeframe = current.timeframe_text()
    suffix = f" em {timeframe}" if timeframe else ""
    if current.query_type == POSITION:
        item = items[current.n - 1]
        return f"O {ordinal_name(current.n)} lugar{suffix} foi **{item.name}**, com {item.count}."

    lines = "\n".join(item.line for item in items[: current.n])
    header = "O primeiro colocado" if current.n == 1 else f"Os {current.n} primeiros colocados"
    verb = "foi" if current.n == 1 else "foram"
    return f"{header}{suffix} {verb}:\n{lines}"


class SubsetAdapter:
    def _candidates(self, session: ConversationSession) -> list[Message]:
        return [
            m for m in reversed(session.messages)
            if m.role == "assistant" and m.metadata is not None and m.metadata.source in _REUSABLE_SOURCES
        ]

    def try_adapt(self, question: str, session: ConversationSession | None) -> CacheResult | None:
        """Return a narrowed answer, or ``None`` when no prior answer covers *question*."""
        if session is None or not session.messages:
            return None

        current = extract_query_intent(question)
        if not current.detected:
            return None

        for assistant in self._candidates(session):
            user = session.paired_user_message(assistant)
            if user is None:
                continue
            prior = extract_query_intent(user.content)
            if prior.query_type != TOP_N or not prior.detected:
                continue
            if not current.same_timeframe(prior):
                continue
            if current.subjects and prior.subjects and current.subjects != prior.subjects:
                continue
            if current.n > prior.n:
                continue
            items = extract_ranked_items(assistant.content)
            if len(items) < prior.n:
                continue

            meta = assistant.metadata
            logger.info(
                "Subset hit | %s %d from top %d | prior message=%s",
                current.query_type, current.n, prior.n, assistant.id,
            )
            return CacheResult(
                response=_render(current, items),
                confidence=SUBSET_CONFIDENCE,
                cache_entry_id=meta.cache_entry_id,
                sql=meta.sql,
                tables=list(meta.tables),
                kind="subset",
            )
        return None
