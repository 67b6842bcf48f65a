"""
In-process fakes for the provider ports.
"""
from __future__ import annotations

import asyncio

from insight_copilot.copilot.sql_generator import MockSqlGenerator
from insight_copilot.providers.base import DryRunResult, ExecutionResult

DIMENSION = 1024

TOP_PRODUCTS = [
    {"produto": "Kit Café Especial", "unidades": 150},
    {"produto": "Caneca Térmica", "unidades": 120},
    {"produto": "Moedor Manual", "unidades": 98},
    {"produto": "Filtro de Papel", "unidades": 75},
    {"produto": "Prensa Francesa", "unidades": 60},
]


class FakeWarehouse:
    """Records calls; returns fixed rows or raises the configured error."""

    def __init__(self, rows=None, bytes_processed=1_000, dry_run_error=None, execute_error=None, delay=0.0):
        self.rows = list(TOP_PRODUCTS if rows is None else rows)
        self.bytes_processed = bytes_processed
        self.dry_run_error = dry_run_error
        self.execute_error = execute_error
        self.delay = delay
        self.dry_runs: list[str] = []
        self.executed: list[str] = []

    async def dry_run(self, sql):
        self.dry_runs.append(sql)
        if self.dry_run_error is not None:
            raise self.dry_run_error
        return DryRunResult(bytes_processed=self.bytes_processed)

    async def execute(self, sql, max_rows=None):
        self.executed.append(sql)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.execute_error is not None:
            raise self.execute_error
        rows = self.rows[:max_rows] if max_rows else self.rows
        return ExecutionResult(rows=rows, total_rows=len(self.rows), bytes_processed=self.bytes_processed)


class CountingSqlGenerator:
    """Keyword templates (or a fixed reply) with a call counter."""

    def __init__(self, reply: str | None = None):
        self.reply = reply
        self.calls = 0
        self._mock = MockSqlGenerator()

    async def generate_sql(self, prompt):
        self.calls += 1
        if self.reply is not None:
            return self.reply
        return await self._mock.generate_sql(prompt)


class FakeSynthesizer:
    def __init__(self, reply: str = "Resposta reescrita.", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.prompts: list[str] = []

    async def synthesize(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


class FailingEmbedder:
    dimension = DIMENSION

    def __init__(self, error: Exception):
        self.error = error

    async def embed(self, text):
        raise self.error
