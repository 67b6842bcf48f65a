"""
Error taxonomy shared by every stage of the copilot pipeline.

Each error carries a ``category`` (surfaced to callers as the error type) and a
``cacheable`` flag deciding whether the failed answer may be stored in the
semantic cache with ``needs_review=True``.
"""
from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    VALIDATION = "validation_error"
    SYNTAX = "syntax_error"
    EXECUTION = "execution_error"
    GENERATION = "generation_error"
    RESOURCE_LIMIT = "resource_limit_error"
    PROCESSING = "processing_error"


# Failures in these categories are stored in the cache with needs_review=True.
CACHEABLE_CATEGORIES = frozenset({ErrorCategory.EXECUTION, ErrorCategory.RESOURCE_LIMIT})


class CopilotError(Exception):
    category: ErrorCategory = ErrorCategory.PROCESSING

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        sql: str | None = None,
        tables: list[str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.sql = sql
        self.tables = list(tables or [])

    @property
    def cacheable(self) -> bool:
        return self.category in CACHEABLE_CATEGORIES


class SqlValidationError(CopilotError):
    """Generated SQL was rejected by the security validator or the warehouse parser."""

    def __init__(self, message: str, *, category: ErrorCategory = ErrorCategory.VALIDATION, **kwargs):
        super().__init__(message, **kwargs)
        self.category = category


class GenerationError(CopilotError):
    category = ErrorCategory.GENERATION


class ExecutionError(CopilotError):
    category = ErrorCategory.EXECUTION


class WarehouseUnavailableError(ExecutionError):
    """The warehouse could not be reached; the query itself may be fine."""

    @property
    def cacheable(self) -> bool:
        return False


class ProviderError(CopilotError):
    """Transient failure talking to an external provider (retried)."""

    category = ErrorCategory.PROCESSING

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderTimeout(ProviderError):
    def __init__(self, provider: str, timeout_s: float):
        super().__init__(provider, f"timed out after {timeout_s:.1f}s")
        self.timeout_s = timeout_s
