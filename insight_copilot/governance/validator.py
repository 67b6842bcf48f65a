"""
SQL security validator -- the gate every generated query passes before it is
executed.

Runs the static safety checks (see ``sql_safety``) and, only when they pass,
one dry run against the warehouse to enforce the byte-cost ceiling
(see ``cost_guard``). The first failing check decides the result.
"""
from __future__ import annotations

from insight_copilot.governance.cost_guard import check_cost, suggest_optimizations
from insight_copilot.governance.policy import SecurityPolicy, load_security_policy
from insight_copilot.governance.results import ValidationResult
from insight_copilot.governance.sql_safety import check_sql_safety
from insight_copilot.providers.base import Warehouse
from insight_copilot.core.logging import get_logger

logger = get_logger(__name__)


class QueryValidator:
    def __init__(self, warehouse: Warehouse, policy: SecurityPolicy | None = None):
        self.warehouse = warehouse
        self.policy = policy or load_security_policy()

    def validate_static(self, sql: str) -> ValidationResult:
        """Text-only checks, no warehouse round-trip."""
        return check_sql_safety(sql, self.policy)

    async def validate(self, sql: str) -> ValidationResult:
        result = self.validate_static(sql)
        if not result.is_valid:
            return result

        cost_check = await check_cost(sql, self.warehouse, self.policy)
        warnings = result.warnings + cost_check.warnings
        if cost_check.issue is not None:
            failed = ValidationResult.failed(cost_check.issue, warnings)
            failed.cost = cost_check.cost
            failed.tables = result.tables
            return failed

        validated = ValidationResult(
            is_valid=True,
            warnings=warnings,
            cost=cost_check.cost,
            optimizations=suggest_optimizations(sql, result.tables, self.policy),
            tables=result.tables,
        )
        logger.info(
            "SQL validated | tables=%s | bytes=%s | warnings=%d",
            validated.tables,
            validated.cost.bytes_processed if validated.cost else "n/a",
            len(validated.warnings),
        )
        return validated
