"""Postgres warehouse connections.

One pooled engine per process. Copilot queries only ever see a connection
from `readonly_connection`: a READ ONLY transaction with a statement timeout,
rolled back on exit.
"""
from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine

from insight_copilot.core.config import get_settings
from insight_copilot.core.logging import get_logger

logger = get_logger(__name__)


@lru_cache
def get_engine() -> Engine:
    settings = get_settings()
    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=settings.postgres_pool_size,
        max_overflow=settings.postgres_pool_size * 2,
        connect_args={"application_name": "insight-copilot"},
    )
    logger.info(
        "Warehouse engine ready | %s:%s/%s | pool=%d",
        settings.postgres_host, settings.postgres_port, settings.postgres_db, settings.postgres_pool_size,
    )
    return engine


def dispose_engine() -> None:
    """Drop pooled connections; the next `get_engine` call builds a fresh engine."""
    if get_engine.cache_info().currsize:
        get_engine().dispose()
        get_engine.cache_clear()


@contextmanager
def readonly_connection(statement_timeout_ms: int | None = None) -> Iterator[Connection]:
    timeout_ms = statement_timeout_ms or get_settings().postgres_statement_timeout_ms
    with get_engine().connect() as conn:
        try:
            conn.execute(text("SET TRANSACTION READ ONLY"))
            conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
            yield conn
        finally:
            conn.rollback()
