"""
Read-only SQL executor.

All copilot-generated queries run through `execute_readonly`, which:
  1. Opens a READ ONLY transaction (Postgres-enforced)
  2. Enforces a per-query timeout (statement_timeout)
  3. Fetches at most ``max_rows`` rows, counting the rest
  4. Converts Decimal/date/datetime to JSON-safe Python types

`explain_bytes` asks the planner for an estimate without running the query.
"""
from __future__ import annotations

import datetime
import decimal
import json
from typing import Any

from sqlalchemy import text

from insight_copilot.db.connection import readonly_connection
from insight_copilot.core.logging import get_logger

logger = get_logger(__name__)


def _serialise_value(val: Any) -> Any:
    """Convert DB types to JSON-serialisable Python types."""
    if isinstance(val, decimal.Decimal):
        return float(val)
    if isinstance(val, (datetime.date, datetime.datetime)):
        return val.isoformat()
    if isinstance(val, datetime.timedelta):
        return str(val)
    return val


def execute_readonly(
    sql: str,
    max_rows: int | None = None,
    timeout_ms: int | None = None,
) -> tuple[list[dict[str, Any]], int, list[dict[str, Any]]]:
    """Execute a read-only query.

    Returns
    -------
    (rows, total_rows, schema)
        ``rows`` is truncated to ``max_rows``; ``total_rows`` counts every row
        the query produced.
    """
    logger.info("Executing SQL (%d chars)", len(sql))

    with readonly_connection(timeout_ms) as conn:
        result = conn.execute(text(sql))
        columns = list(result.keys())
        rows: list[dict[str, Any]] = []
        total = 0
        for row in result:
            total += 1
            if max_rows is None or len(rows) < max_rows:
                rows.append({col: _serialise_value(val) for col, val in zip(columns, row)})

    schema = [{"name": col} for col in columns]
    logger.info("Returned %d rows (of %d)", len(rows), total)
    return rows, total, schema


def explain_bytes(sql: str, timeout_ms: int | None = None) -> int:
    """Planner estimate of bytes scanned: ``Plan Rows * Plan Width`` of the root node."""
    with readonly_connection(timeout_ms) as conn:
        plan = conn.execute(text(f"EXPLAIN (FORMAT JSON) {sql.strip().rstrip(';')}")).scalar_one()

    if isinstance(plan, str):
        plan = json.loads(plan)
    root = plan[0]["Plan"]
    return int(root.get("Plan Rows", 0)) * int(root.get("Plan Width", 0))
