"""
Loads, parses, and caches the warehouse security policy YAML into
strongly-typed, immutable objects.

The policy is the single source of truth for:
  - allowed operations  (read-only: SELECT)
  - cost ceilings       (max bytes processed, max rows)
  - allow-listed tables (and a short schema description per table)
  - restricted columns  (per table)
  - approved CTE prefixes
"""
from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from insight_copilot.core.config import get_settings


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class TableSchema:
    name: str
    description: str = ""
    columns: tuple[str, ...] = ()
    partition_column: str | None = None


@dataclass(frozen=True)
class RestrictedColumns:
    table: str
    columns: tuple[str, ...] = ()


@dataclass(frozen=True)
class SecurityPolicy:
    """Immutable read-only query policy."""

    allowed_operations: frozenset[str] = frozenset({"SELECT"})
    max_bytes_processed: int = 1_000_000_000
    max_rows: int = 10_000
    allowed_tables: frozenset[str] = frozenset()
    restricted_columns: tuple[RestrictedColumns, ...] = ()
    cte_prefixes: tuple[str, ...] = ()
    tables: tuple[TableSchema, ...] = field(default_factory=tuple)

    # ── Convenience look-ups ─────────────────────────

    def is_table_allowed(self, name: str) -> bool:
        return name.upper() in self.allowed_tables

    def is_approved_cte(self, name: str) -> bool:
        lower = name.lower()
        return any(lower.startswith(prefix) for prefix in self.cte_prefixes)

    def restricted_for(self, table: str) -> tuple[str, ...]:
        for restriction in self.restricted_columns:
            if restriction.table.upper() == table.upper():
                return restriction.columns
        return ()

    def table(self, name: str) -> TableSchema | None:
        for schema in self.tables:
            if schema.name.upper() == name.upper():
                return schema
        return None


# ── Parsing ──────────────────────────────────────────────

def _parse_restriction(raw: dict[str, Any]) -> RestrictedColumns:
    return RestrictedColumns(
        table=raw["table"].upper(),
        columns=tuple(raw.get("columns") or []),
    )


def _parse_table(raw: dict[str, Any]) -> TableSchema:
    return TableSchema(
        name=raw["name"].upper(),
        description=raw.get("description", ""),
        columns=tuple(raw.get("columns") or []),
        partition_column=raw.get("partition_column"),
    )


def parse_policy(raw: dict[str, Any]) -> SecurityPolicy:
    return SecurityPolicy(
        allowed_operations=frozenset(op.upper() for op in raw.get("allowed_operations", ["SELECT"])),
        max_bytes_processed=int(raw.get("max_bytes_processed", 1_000_000_000)),
        max_rows=int(raw.get("max_rows", 10_000)),
        allowed_tables=frozenset(t.upper() for t in raw.get("allowed_tables", [])),
        restricted_columns=tuple(_parse_restriction(r) for r in raw.get("restricted_columns", [])),
        cte_prefixes=tuple(p.lower() for p in raw.get("cte_prefixes", [])),
        tables=tuple(_parse_table(t) for t in raw.get("tables", [])),
    )


# ── Public API ───────────────────────────────────────────

@lru_cache
def load_security_policy(path: str | None = None) -> SecurityPolicy:
    """Load and cache the security policy from YAML."""
    policy_path = Path(path or get_settings().security_policy_path)
    with open(policy_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return parse_policy(raw)
