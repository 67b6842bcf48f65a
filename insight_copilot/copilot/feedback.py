"""
Feedback analytics -- in-process counters, per-category totals and a bounded
review queue of recent negative feedback.

The category of a feedback is the first topic of the question it answers
(``vendas``, ``produtos`` ...), or ``sem_categoria``.
"""
from __future__ import annotations

import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from insight_copilot.core.logging import get_logger
from insight_copilot.core.utils import utcnow

logger = get_logger(__name__)

REVIEW_QUEUE_SIZE = 100
UNCATEGORISED = "sem_categoria"

# Category patterns need this many feedbacks and a negative share above this percentage.
PATTERN_MIN_FEEDBACK = 5
PATTERN_MIN_NEGATIVE_PCT = 20.0


@dataclass
class ReviewItem:
    conversation_id: str
    response_id: str
    cache_entry_id: str | None
    question: str | None
    response: str | None
    comment: str | None
    category: str = UNCATEGORISED
    received_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversationId": self.conversation_id,
            "responseId": self.response_id,
            "cacheEntryId": self.cache_entry_id,
            "question": self.question,
            "response": self.response,
            "comment": self.comment,
            "category": self.category,
            "receivedAt": self.received_at.isoformat(),
        }


@dataclass
class CategoryFeedback:
    total: int = 0
    positive: int = 0
    negative: int = 0

    @property
    def negative_pct(self) -> float:
        return self.negative / self.total * 100 if self.total else 0.0


class FeedbackAnalytics:
    def __init__(self, queue_size: int = REVIEW_QUEUE_SIZE):
        self._lock = threading.Lock()
        self._total = 0
        self._positive = 0
        self._negative = 0
        self._with_comment = 0
        self._by_category: dict[str, CategoryFeedback] = {}
        self._review: deque[ReviewItem] = deque(maxlen=queue_size)

    def record(
        self,
        *,
        conversation_id: str,
        response_id: str,
        type: str,
        comment: str | None = None,
        cache_entry_id: str | None = None,
        question: str | None = None,
        response: str | None = None,
        category: str | None = None,
    ) -> None:
        category = category or UNCATEGORISED
        with self._lock:
            self._total += 1
            counts = self._by_category.setdefault(category, CategoryFeedback())
            counts.total += 1
            if type == "negative":
                self._negative += 1
                counts.negative += 1
                self._review.append(ReviewItem(
                    conversation_id, response_id, cache_entry_id, question, response, comment, category,
                ))
            else:
                self._positive += 1
                counts.positive += 1
            if comment:
                self._with_comment += 1

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total": self._total,
                "positive": self._positive,
                "negative": self._negative,
                "with_comment": self._with_comment,
                "satisfaction_rate": round(self._positive / self._total, 3) if self._total else 0.0,
                "pending_review": len(self._review),
                "by_category": {
                    name: {"total": c.total, "positive": c.positive, "negative": c.negative}
                    for name, c in self._by_category.items()
                },
            }

    def review_queue(self) -> list[ReviewItem]:
        with self._lock:
            return list(reversed(self._review))

    def negative_patterns(self) -> list[dict[str, Any]]:
        """Negative feedback in the review queue counted per category, most frequent first."""
        with self._lock:
            counts = Counter(item.category for item in self._review)
        return [{"category": name, "count": n} for name, n in counts.most_common()]

    def category_patterns(
        self,
        min_feedback: int = PATTERN_MIN_FEEDBACK,
        min_negative_pct: float = PATTERN_MIN_NEGATIVE_PCT,
    ) -> list[dict[str, Any]]:
        """Categories whose negative share exceeds *min_negative_pct*, worst first.

        Categories with fewer than *min_feedback* feedbacks are ignored.
        """
        with self._lock:
            rows = [
                {"category": name, "count": c.negative, "percentage": round(c.negative_pct, 1)}
                for name, c in self._by_category.items()
                if c.total >= min_feedback and c.negative_pct > min_negative_pct
            ]
        return sorted(rows, key=lambda r: r["percentage"], reverse=True)
