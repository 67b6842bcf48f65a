"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_PROJECT_ROOT = Path(__file__).resolve().parents[2]
_ENV_PATH = _PROJECT_ROOT / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── App ──────────────────────────────────────────────
    api_port: int = 8000
    log_level: str = "INFO"
    request_timeout_s: float = 60.0
    provider_timeout_s: float = 30.0
    provider_max_retries: int = 3
    max_result_rows: int = 1000
    max_suggestions: int = 3

    # ── LLM ──────────────────────────────────────────────
    llm_provider: str = "mock"  # mock | openai | anthropic
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-haiku-20240307"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 1024

    # ── Embeddings ───────────────────────────────────────
    embedding_provider: str = "mock"  # mock | openai
    embedding_model: str = "text-embedding-ada-002"
    embedding_dimension: int = 1536

    # ── Semantic cache / vector store ────────────────────
    vector_store: str = "memory"  # memory | pinecone
    pinecone_api_key: str = ""
    pinecone_index: str = "insight-copilot"
    cache_namespace: str = "default"
    similarity_threshold: float = 0.85
    cache_ttl_enabled: bool = False
    cache_ttl_days: int = 30

    # ── Warehouse ────────────────────────────────────────
    warehouse_provider: str = "postgres"  # postgres | bigquery
    postgres_user: str = "copilot"
    postgres_password: str = "copilot_pw"
    postgres_db: str = "analytics"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_pool_size: int = 5
    postgres_statement_timeout_ms: int = 10_000
    bigquery_project: str = ""
    bigquery_location: str = "US"

    # ── Governance ───────────────────────────────────────
    security_policy_path: str = str(_PROJECT_ROOT / "policy" / "security_policy.yml")

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
