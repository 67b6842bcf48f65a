"""
SQL generation stage -- question -> SQL text.

Builds the generation prompt from the security policy's table catalogue
(restricted columns are never advertised), calls the injected
``SqlGenerator`` port and extracts a single SQL statement from its reply.

``MockSqlGenerator`` provides deterministic keyword templates so the whole
pipeline runs offline (``llm_provider=mock``).
"""
from __future__ import annotations

import re
from datetime import date
from typing import Any

from insight_copilot.copilot.query_shape import MONTHS, TOP_N, extract_query_intent
from insight_copilot.core.errors import GenerationError, ProviderError
from insight_copilot.core.logging import get_logger
from insight_copilot.core.utils import normalize_text, strip_accents
from insight_copilot.governance.policy import SecurityPolicy, load_security_policy
from insight_copilot.providers.base import SqlGenerator

logger = get_logger(__name__)

_QUESTION_LINE = "Pergunta: "

_PROMPT = """Gere uma consulta SQL (somente leitura) que responda à pergunta do usuário.

Tabelas disponíveis:
{schema}

Regras:
- Use apenas as tabelas e colunas listadas acima.
- Gere um único comando SELECT (CTEs com WITH são permitidas).
- Nunca use INSERT, UPDATE, DELETE, DROP, CREATE, ALTER, TRUNCATE, MERGE, GRANT ou REVOKE.
- Inclua LIMIT de no máximo {max_rows} linhas.
- Para rankings, ordene do maior para o menor.
{context}
{question_line}{question}

Responda apenas com o SQL."""

_FENCE_RE = re.compile(r"```(?:sql)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)
_START_RE = re.compile(r"\b(SELECT|WITH)\b", re.IGNORECASE)


def describe_schema(policy: SecurityPolicy) -> str:
    lines = []
    for table in policy.tables:
        hidden = {c.lower() for c in policy.restricted_for(table.name)}
        columns = ", ".join(c for c in table.columns if c.lower() not in hidden)
        lines.append(f"- {table.name}: {table.description} (colunas: {columns})")
    return "\n".join(lines)


def build_prompt(question: str, policy: SecurityPolicy, context: dict[str, Any] | None = None) -> str:
    context = context or {}
    notes = []
    if context.get("time_range"):
        notes.append(f"Período de interesse: {context['time_range']}")
    if context.get("filters"):
        notes.append(f"Filtros adicionais: {context['filters']}")
    if context.get("previous_questions"):
        notes.append("Perguntas anteriores: " + "; ".join(context["previous_questions"]))
    return _PROMPT.format(
        schema=describe_schema(policy),
        max_rows=policy.max_rows,
        context=("\n" + "\n".join(notes) + "\n") if notes else "",
        question_line=_QUESTION_LINE,
        question=question.strip(),
    )


def extract_sql(raw: str) -> str:
    """Pull the SQL statement out of a model reply (fenced or bare)."""
    text = (raw or "").strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    else:
        start = _START_RE.search(text)
        if start is None:
            raise GenerationError("O modelo não retornou uma consulta SQL.")
        text = text[start.start():].strip()
    return text.rstrip().rstrip(";").strip()


class QueryGenerator:
    """Prompt -> ``SqlGenerator`` port -> extracted SQL."""

    def __init__(self, generator: SqlGenerator, policy: SecurityPolicy | None = None):
        self.generator = generator
        self.policy = policy or load_security_policy()

    async def generate(self, question: str, context: dict[str, Any] | None = None) -> str:
        prompt = build_prompt(question, self.policy, context)
        try:
            raw = await self.generator.generate_sql(prompt)
        except ProviderError as exc:
            raise GenerationError(f"Falha ao gerar SQL: {exc}") from exc
        sql = extract_sql(raw)
        logger.info("Generated SQL (%d chars)", len(sql))
        return sql


# ── Mock generator (keyword templates) ──────────────────


def _date_filter(column: str, question: str) -> str:
    info = extract_query_intent(question)
    if info.year and info.month:
        year, month = int(info.year), MONTHS.index(info.month) + 1
        start = date(year, month, 1)
        end = date(year + (month == 12), month % 12 + 1, 1)
    elif info.year:
        start, end = date(int(info.year), 1, 1), date(int(info.year) + 1, 1, 1)
    else:
        return ""
    return f"{column} >= '{start.isoformat()}' AND {column} < '{end.isoformat()}'"


def _where(*conditions: str) -> str:
    parts = [c for c in conditions if c]
    return ("WHERE " + " AND ".join(parts)) if parts else ""


def mock_sql_for(question: str) -> str:
    """Deterministic SQL for common questions (offline development)."""
    q = strip_accents(normalize_text(question))
    info = extract_query_intent(question)
    limit = info.n if info.query_type == TOP_N else 10

    if "produto" in q and ("vendid" in q or "top" in q or "ranking" in q or "melhor" in q):
        where = _where(_date_filter("ped.data_pedido", question), "ped.situacao <> 'cancelado'")
        return (
            "SELECT p.nome AS produto, COUNT(*) AS unidades\n"
            "FROM PEDIDOS AS ped\n"
            "JOIN PRODUTOS AS p ON p.sku = ANY(ped.itens)\n"
            f"{where}\n"
            "GROUP BY p.nome\n"
            "ORDER BY unidades DESC\n"
            f"LIMIT {limit}"
        )
    if "ticket medio" in q:
        return (
            "SELECT ROUND(AVG(total_pedido_pago), 2) AS ticket_medio\n"
            f"FROM PEDIDOS {_where(_date_filter('data_pedido', question))}\n"
            "LIMIT 1"
        )
    if "assinatura" in q or "assinante" in q:
        return (
            "SELECT status, COUNT(*) AS assinaturas\n"
            f"FROM ASSINATURA {_where(_date_filter('data_inicio', question))}\n"
            "GROUP BY status\n"
            "ORDER BY assinaturas DESC\n"
            "LIMIT 100"
        )
    if "cliente" in q and "estado" in q:
        return (
            "SELECT estado, COUNT(*) AS clientes\n"
            "FROM CLIENTES\n"
            "GROUP BY estado\n"
            "ORDER BY clientes DESC\n"
            f"LIMIT {limit}"
        )
    if "cliente" in q:
        return (
            "SELECT COUNT(*) AS clientes\n"
            f"FROM CLIENTES {_where(_date_filter('data_cadastro', question))}\n"
            "LIMIT 1"
        )
    if "pedido" in q and ("quantos" in q or "numero" in q or "total de pedidos" in q):
        return (
            "SELECT COUNT(*) AS pedidos\n"
            f"FROM PEDIDOS {_where(_date_filter('data_pedido', question))}\n"
            "LIMIT 1"
        )
    if "faturamento" in q or "receita" in q or "vendas" in q:
        date_filter = _date_filter("data_pedido", question)
        if date_filter:
            return (
                "SELECT SUM(total_pedido_pago) AS faturamento\n"
                f"FROM PEDIDOS {_where(date_filter)}\n"
                "LIMIT 1"
            )
    return (
        "SELECT date_trunc('month', data_pedido) AS mes, SUM(total_pedido_pago) AS faturamento\n"
        "FROM PEDIDOS\n"
        "GROUP BY 1\n"
        "ORDER BY 1\n"
        "LIMIT 24"
    )


class MockSqlGenerator:
    """SqlGenerator port answering from :func:`mock_sql_for`."""

    async def generate_sql(self, prompt: str) -> str:
        question = prompt
        for line in prompt.splitlines():
            if line.startswith(_QUESTION_LINE):
                question = line[len(_QUESTION_LINE):]
                break
        logger.info("SQL mock mode -- keyword template")
        return f"```sql\n{mock_sql_for(question)}\n```"
