"""
Warehouse adapters.

  postgres -- SQLAlchemy read-only connection; dry run via EXPLAIN (FORMAT JSON)
  bigquery -- google-cloud-bigquery; native dry run

Transport failures surface as ``ProviderError`` (retried); anything the
engine rejects surfaces as ``WarehouseQueryError`` (never retried).
"""
from __future__ import annotations

import asyncio

from insight_copilot.core.config import get_settings
from insight_copilot.core.errors import ProviderError
from insight_copilot.core.logging import get_logger
from insight_copilot.core.utils import timer
from insight_copilot.providers.base import DryRunResult, ExecutionResult, WarehouseQueryError
from insight_copilot.providers.retry import call_with_retry

logger = get_logger(__name__)


# ── Postgres ────────────────────────────────────────────


class PostgresWarehouse:
    def __init__(self, timeout_ms: int | None = None):
        settings = get_settings()
        self.timeout_ms = timeout_ms or int(settings.provider_timeout_s * 1000)

    async def _run(self, op: str, fn, *args):
        from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

        async def _once():
            try:
                return await asyncio.to_thread(fn, *args)
            except (InterfaceError, OperationalError) as exc:
                if exc.connection_invalidated or "connect" in str(exc).lower():
                    raise ProviderError(f"postgres:{op}", str(exc.orig or exc)) from exc
                raise WarehouseQueryError(str(exc.orig or exc)) from exc
            except DBAPIError as exc:
                raise WarehouseQueryError(str(exc.orig or exc)) from exc

        return await call_with_retry(f"postgres:{op}", _once)

    async def dry_run(self, sql: str) -> DryRunResult:
        from insight_copilot.db.executor import explain_bytes

        estimated = await self._run("dry_run", explain_bytes, sql, self.timeout_ms)
        return DryRunResult(bytes_processed=estimated)

    async def execute(self, sql: str, max_rows: int | None = None) -> ExecutionResult:
        from insight_copilot.db.executor import execute_readonly

        with timer() as t:
            rows, total, schema = await self._run("execute", execute_readonly, sql, max_rows, self.timeout_ms)
        return ExecutionResult(
            rows=rows,
            total_rows=total,
            execution_time_ms=t["elapsed_ms"],
            schema=schema,
        )


# ── BigQuery ────────────────────────────────────────────


class BigQueryWarehouse:
    def __init__(self, project: str | None = None, location: str | None = None, max_bytes_billed: int | None = None):
        settings = get_settings()
        try:
            from google.cloud import bigquery  # type: ignore[import-untyped]
        except ImportError as exc:
            raise RuntimeError(
                "The 'google-cloud-bigquery' package is not installed.  "
                "Run: pip install google-cloud-bigquery"
            ) from exc

        self._bq = bigquery
        self.project = project or settings.bigquery_project or None
        self.location = location or settings.bigquery_location
        self.max_bytes_billed = max_bytes_billed
        self._client = bigquery.Client(project=self.project, location=self.location)
        logger.info("BigQuery client ready  project=%s  location=%s", self._client.project, self.location)

    async def _run(self, op: str, fn):
        from google.api_core import exceptions as gexc  # type: ignore[import-untyped]

        async def _once():
            try:
                return await asyncio.to_thread(fn)
            except (gexc.ServiceUnavailable, gexc.DeadlineExceeded,
                    gexc.InternalServerError, gexc.TooManyRequests) as exc:
                raise ProviderError(f"bigquery:{op}", str(exc)) from exc
            except gexc.GoogleAPICallError as exc:
                raise WarehouseQueryError(str(exc)) from exc

        return await call_with_retry(f"bigquery:{op}", _once)

    async def dry_run(self, sql: str) -> DryRunResult:
        config = self._bq.QueryJobConfig(dry_run=True, use_query_cache=False)

        def _dry():
            job = self._client.query(sql, job_config=config)
            schema = [{"name": f.name, "type": f.field_type} for f in (job.schema or [])]
            return DryRunResult(bytes_processed=int(job.total_bytes_processed or 0), schema=schema)

        return await self._run("dry_run", _dry)

    async def execute(self, sql: str, max_rows: int | None = None) -> ExecutionResult:
        config = self._bq.QueryJobConfig(maximum_bytes_billed=self.max_bytes_billed)

        def _execute() -> ExecutionResult:
            with timer() as t:
                job = self._client.query(sql, job_config=config)
                result = job.result(max_results=max_rows)
                rows = [dict(row.items()) for row in result]
            return ExecutionResult(
                rows=rows,
                total_rows=int(result.total_rows or len(rows)),
                bytes_processed=int(job.total_bytes_processed or 0),
                execution_time_ms=t["elapsed_ms"],
                schema=[{"name": f.name, "type": f.field_type} for f in result.schema],
            )

        return await self._run("execute", _execute)


def build_warehouse(max_bytes_billed: int | None = None) -> PostgresWarehouse | BigQueryWarehouse:
    settings = get_settings()
    provider = settings.warehouse_provider.lower()
    if provider == "postgres":
        return PostgresWarehouse()
    if provider == "bigquery":
        return BigQueryWarehouse(max_bytes_billed=max_bytes_billed)
    raise NotImplementedError(f"Warehouse provider '{provider}' is not supported.  Choose from: postgres, bigquery")
