"""
Processing results -- one variant per answer source.

The controller only ever produces one of:

  CacheResult          exact / reworded cache hit, or a subset adaptation
  GeneratedResult      fresh SQL -> warehouse -> synthesis
  ConversationalResult canned reply (small talk or general knowledge)
  ErrorResult          user-facing failure with its error category
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

from insight_copilot.copilot.session import MessageMetadata
from insight_copilot.core.errors import ErrorCategory


@dataclass
class DataPayload:
    type: str  # table | scalar | chart
    content: Any


@dataclass
class CacheResult:
    source: ClassVar[str] = "cache"

    response: str
    confidence: float
    cache_entry_id: str | None = None
    sql: str | None = None
    tables: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    data: DataPayload | None = None
    kind: str = "exact"  # exact | similar | subset

    def to_metadata(self, processing_time_ms: int = 0) -> MessageMetadata:
        return MessageMetadata(
            source=self.source,
            confidence=self.confidence,
            tables=list(self.tables),
            sql=self.sql,
            cache_entry_id=self.cache_entry_id,
            processing_time_ms=processing_time_ms,
        )


@dataclass
class GeneratedResult:
    source: ClassVar[str] = "generated"

    response: str
    sql: str
    tables: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    total_rows: int = 0
    execution_time_ms: int = 0
    bytes_processed: int = 0
    confidence: float = 0.9
    cache_entry_id: str | None = None
    suggestions: list[str] = field(default_factory=list)
    data: DataPayload | None = None

    def to_metadata(self, processing_time_ms: int = 0) -> MessageMetadata:
        return MessageMetadata(
            source=self.source,
            confidence=self.confidence,
            tables=list(self.tables),
            sql=self.sql,
            cache_entry_id=self.cache_entry_id,
            processing_time_ms=processing_time_ms,
        )


@dataclass
class ConversationalResult:
    source: ClassVar[str] = "conversational"

    response: str
    intent: str  # subtype or general-knowledge topic
    confidence: float = 1.0
    suggestions: list[str] = field(default_factory=list)

    def to_metadata(self, processing_time_ms: int = 0) -> MessageMetadata:
        return MessageMetadata(
            source=self.source, confidence=self.confidence, processing_time_ms=processing_time_ms,
        )


@dataclass
class ErrorResult:
    source: ClassVar[str] = "error"

    response: str
    category: ErrorCategory
    code: str | None = None
    sql: str | None = None
    tables: list[str] = field(default_factory=list)
    cache_entry_id: str | None = None
    suggestions: list[str] = field(default_factory=list)
    confidence: float = 0.0

    def to_metadata(self, processing_time_ms: int = 0) -> MessageMetadata:
        return MessageMetadata(
            source=self.source,
            confidence=self.confidence,
            tables=list(self.tables),
            sql=self.sql,
            cache_entry_id=self.cache_entry_id,
            processing_time_ms=processing_time_ms,
        )


ProcessingResult = Union[CacheResult, GeneratedResult, ConversationalResult, ErrorResult]
