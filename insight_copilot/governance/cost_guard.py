"""
Query cost & performance guardrails.

Prevents expensive queries from being executed by asking the warehouse for a
dry-run estimate of bytes processed and enforcing the policy ceiling. Also
derives a monetary estimate and a few optimisation hints.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from insight_copilot.governance.policy import SecurityPolicy
from insight_copilot.governance.results import (
    CostEstimate,
    OptimizationHint,
    ValidationIssue,
    error,
    warning,
)
from insight_copilot.providers.base import Warehouse
from insight_copilot.core.logging import get_logger

logger = get_logger(__name__)


# ── Thresholds ──────────────────────────────────────────

BYTES_PER_TIB = 1024 ** 4
USD_PER_TIB = 5.0
SCAN_BYTES_PER_MS = 1_000_000  # ~1 GB/s scan throughput

_SYNTAX_SIGNALS = re.compile(
    r"syntax|unrecognized name|unexpected|parse error|not found:|does not exist|"
    r"invalid query|no matching signature",
    re.IGNORECASE,
)


@dataclass
class CostCheck:
    """Outcome of the dry-run stage."""
    issue: ValidationIssue | None = None
    warnings: list[ValidationIssue] = field(default_factory=list)
    cost: CostEstimate | None = None


def estimate_cost(bytes_processed: int) -> CostEstimate:
    """Convert a byte estimate into time and USD (on-demand pricing)."""
    bytes_processed = max(int(bytes_processed or 0), 0)
    return CostEstimate(
        bytes_processed=bytes_processed,
        estimated_time_ms=bytes_processed // SCAN_BYTES_PER_MS,
        estimated_cost_usd=round(bytes_processed / BYTES_PER_TIB * USD_PER_TIB, 6),
    )


def is_syntax_failure(exc: BaseException) -> bool:
    return bool(_SYNTAX_SIGNALS.search(str(exc)))


def _format_bytes(n: int) -> str:
    size = float(n)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024 or unit == "TB":
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{n} B"


async def check_cost(sql: str, warehouse: Warehouse, policy: SecurityPolicy) -> CostCheck:
    """Dry-run *sql* and enforce ``policy.max_bytes_processed``.

    A dry-run failure that looks like a syntax problem blocks the query; any
    other dry-run failure is downgraded to a warning.
    """
    try:
        dry = await warehouse.dry_run(sql)
    except Exception as exc:
        if is_syntax_failure(exc):
            logger.warning("Dry run rejected SQL as invalid: %s", exc)
            return CostCheck(issue=error("SYNTAX_ERROR", f"Erro de sintaxe na consulta: {exc}"))
        logger.warning("Dry run unavailable -- continuing without cost estimate: %s", exc)
        return CostCheck(warnings=[
            warning("DRY_RUN_FAILED", f"Não foi possível estimar o custo da consulta: {exc}"),
        ])

    cost = estimate_cost(dry.bytes_processed)
    if cost.bytes_processed > policy.max_bytes_processed:
        logger.warning(
            "Cost ceiling exceeded: %d bytes > %d", cost.bytes_processed, policy.max_bytes_processed,
        )
        return CostCheck(
            issue=error(
                "RESOURCE_LIMIT_EXCEEDED",
                f"A consulta processaria {_format_bytes(cost.bytes_processed)}, acima do limite de "
                f"{_format_bytes(policy.max_bytes_processed)}.",
            ),
            cost=cost,
        )
    return CostCheck(cost=cost)


def suggest_optimizations(sql: str, tables: list[str], policy: SecurityPolicy) -> list[OptimizationHint]:
    """Cheap textual heuristics for partitioning / clustering opportunities."""
    hints: list[OptimizationHint] = []
    lower = sql.lower()

    partitioned = [
        schema for schema in (policy.table(t) for t in tables)
        if schema is not None and schema.partition_column
    ]
    if any(schema.partition_column.lower() in lower for schema in partitioned):
        hints.append(OptimizationHint(
            type="partition",
            description="Consulta pode se beneficiar de particionamento",
            recommendation="Filtre pela coluna de partição com um intervalo de datas fechado",
            cost_reduction=0.4,
        ))

    if " join " in f" {lower} " or "group by" in lower:
        hints.append(OptimizationHint(
            type="clustering",
            description="Consulta pode se beneficiar de clustering",
            recommendation="Considere clustering nas colunas usadas em JOIN e GROUP BY",
            cost_reduction=0.3,
        ))
    return hints
