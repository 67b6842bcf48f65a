"""
Value objects produced by the SQL security validator.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from insight_copilot.core.errors import ErrorCategory


# Validation codes that map to a non-default error category.
_CODE_CATEGORIES: dict[str, ErrorCategory] = {
    "SYNTAX_ERROR": ErrorCategory.SYNTAX,
    "RESOURCE_LIMIT_EXCEEDED": ErrorCategory.RESOURCE_LIMIT,
}


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    message: str
    severity: str = "error"  # error | warning

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "severity": self.severity}


def error(code: str, message: str) -> ValidationIssue:
    return ValidationIssue(code=code, message=message, severity="error")


def warning(code: str, message: str) -> ValidationIssue:
    return ValidationIssue(code=code, message=message, severity="warning")


@dataclass(frozen=True)
class CostEstimate:
    """Dry-run cost breakdown."""
    bytes_processed: int
    estimated_time_ms: int
    estimated_cost_usd: float


@dataclass(frozen=True)
class OptimizationHint:
    type: str  # partition | clustering
    description: str
    recommendation: str
    cost_reduction: float = 0.0


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    cost: CostEstimate | None = None
    optimizations: list[OptimizationHint] = field(default_factory=list)
    tables: list[str] = field(default_factory=list)

    @property
    def first_error(self) -> ValidationIssue | None:
        return self.errors[0] if self.errors else None

    @property
    def error_code(self) -> str | None:
        issue = self.first_error
        return issue.code if issue else None

    @property
    def category(self) -> ErrorCategory | None:
        """Error category of the failed check (``None`` when valid)."""
        if self.is_valid:
            return None
        return _CODE_CATEGORIES.get(self.error_code or "", ErrorCategory.VALIDATION)

    @classmethod
    def failed(cls, issue: ValidationIssue, warnings: list[ValidationIssue] | None = None) -> "ValidationResult":
        return cls(is_valid=False, errors=[issue], warnings=list(warnings or []))
