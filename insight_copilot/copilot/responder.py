"""
Response synthesis -- query rows -> Portuguese answer.

Uses the injected ``TextSynthesizer`` when one is configured and falls back
to a deterministic template formatter otherwise (or when synthesis fails).
Ranked results are rendered as medal / numbered lines with a bold name and a
unit count, the shape the subset adapter reads back.
"""
from __future__ import annotations

import json
import re
from typing import Any

from insight_copilot.copilot.query_shape import POSITION, TOP_N, extract_query_intent
from insight_copilot.copilot.results import DataPayload
from insight_copilot.copilot.suggestions import default_suggestions
from insight_copilot.core.logging import get_logger
from insight_copilot.providers.base import ExecutionResult, TextSynthesizer

logger = get_logger(__name__)

MAX_PROMPT_ROWS = 50
_MEDALS = ("\U0001F947", "\U0001F948", "\U0001F949")
_TIME_COLUMN_RE = re.compile(r"^(mes|data|dia|semana|trimestre|ano|periodo|month|date|day|week)(_|$)", re.IGNORECASE)
_UNIT_COLUMNS = {"unidades", "quantidade", "qtd", "itens", "vendas", "pedidos", "clientes", "assinaturas"}
_MONEY_COLUMN_RE = re.compile(r"(valor|faturamento|receita|ticket|preco|total)", re.IGNORECASE)

_SYNTHESIS_PROMPT = """Pergunta do usuário: {question}

Consulta executada:
{sql}

Resultado ({total} linhas, mostrando {shown}):
{rows}

Escreva uma resposta clara e objetiva em português do Brasil.
- Se o resultado for um ranking, liste um item por linha no formato "🥇 **Nome** - 123 unidades"
  (use 🥇, 🥈, 🥉 para os três primeiros e "4.", "5." ... para os demais).
- Formate valores monetários como R$ 1.234,56.
- Não invente dados que não estejam no resultado."""

_FOLLOW_UP_PROMPT = """Com base na pergunta "{question}" e na resposta abaixo, sugira {count} perguntas de
acompanhamento curtas que o usuário poderia fazer em seguida. Uma por linha, sem numeração.

Resposta:
{response}"""


# ── Formatting helpers ──────────────────────────────────


def _format_number(value: Any, money: bool = False) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, float) and not value.is_integer() or money:
        text = f"{float(value):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
        return f"R$ {text}" if money else text
    return f"{int(value):,}".replace(",", ".")


def _is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def data_payload(rows: list[dict[str, Any]] | None) -> DataPayload | None:
    """``scalar`` for a single cell, ``chart`` for a time series, ``table`` otherwise."""
    if not rows:
        return None
    columns = list(rows[0])
    if len(rows) == 1 and len(columns) == 1:
        return DataPayload(type="scalar", content=rows[0][columns[0]])
    time_cols = [c for c in columns if _TIME_COLUMN_RE.match(c)]
    numeric_cols = [c for c in columns if _is_numeric(rows[0][c])]
    if len(rows) > 1 and time_cols and numeric_cols:
        return DataPayload(
            type="chart",
            content={"chart_type": "line", "x": time_cols[0], "y": numeric_cols, "rows": rows},
        )
    return DataPayload(type="table", content={"columns": columns, "rows": rows})


def format_rows(question: str, rows: list[dict[str, Any]], total_rows: int | None = None) -> str:
    """Deterministic answer text for *rows*."""
    if not rows:
        return "Não encontrei dados para essa pergunta no período consultado."

    columns = list(rows[0])
    if len(rows) == 1 and len(columns) == 1:
        value = rows[0][columns[0]]
        label = columns[0].replace("_", " ")
        return f"O resultado para {label} é **{_format_number(value, bool(_MONEY_COLUMN_RE.search(columns[0])))}**."

    label_col = next((c for c in columns if not _is_numeric(rows[0][c])), None)
    value_col = next((c for c in reversed(columns) if _is_numeric(rows[0][c])), None)
    shape = extract_query_intent(question)
    ranked = label_col is not None and value_col is not None and (
        shape.query_type in (TOP_N, POSITION) or not _TIME_COLUMN_RE.match(label_col)
    )

    if ranked:
        money = bool(_MONEY_COLUMN_RE.search(value_col))
        unit = value_col.replace("_", " ") if value_col.lower() in _UNIT_COLUMNS else ""
        lines = []
        for i, row in enumerate(rows, start=1):
            marker = _MEDALS[i - 1] if i <= len(_MEDALS) else f"{i}."
            amount = _format_number(row[value_col], money)
            lines.append(f"{marker} **{row[label_col]}** - {amount}{' ' + unit if unit else ''}".rstrip())
        header = "Aqui está o ranking solicitado:"
        return header + "\n" + "\n".join(lines)

    lines = [
        "- " + ", ".join(f"{col}: {_format_number(row[col])}" for col in columns)
        for row in rows[:20]
    ]
    more = ""
    if total_rows and total_rows > len(lines):
        more = f"\n(mostrando {len(lines)} de {total_rows} linhas)"
    return "Resultado da consulta:\n" + "\n".join(lines) + more


# ── Responder ───────────────────────────────────────────


class Responder:
    def __init__(self, synthesizer: TextSynthesizer | None = None, max_suggestions: int = 3):
        self.synthesizer = synthesizer
        self.max_suggestions = max_suggestions

    async def compose(self, question: str, sql: str, execution: ExecutionResult) -> str:
        if self.synthesizer is None or not execution.rows:
            return format_rows(question, execution.rows, execution.total_rows)

        shown = execution.rows[:MAX_PROMPT_ROWS]
        prompt = _SYNTHESIS_PROMPT.format(
            question=question,
            sql=sql,
            total=execution.total_rows,
            shown=len(shown),
            rows=json.dumps(shown, ensure_ascii=False, default=str, indent=1),
        )
        try:
            text = (await self.synthesizer.synthesize(prompt)).strip()
        except Exception as exc:
            logger.warning("Response synthesis failed -- using template answer: %s", exc)
            return format_rows(question, execution.rows, execution.total_rows)
        return text or format_rows(question, execution.rows, execution.total_rows)

    async def follow_ups(self, question: str, response: str) -> list[str]:
        """LLM follow-up questions, defaulting to topic suggestions."""
        fallback = default_suggestions(question, self.max_suggestions)
        if self.synthesizer is None:
            return fallback
        prompt = _FOLLOW_UP_PROMPT.format(question=question, response=response, count=self.max_suggestions)
        try:
            raw = await self.synthesizer.synthesize(prompt)
        except Exception as exc:
            logger.warning("Follow-up generation failed -- using defaults: %s", exc)
            return fallback
        lines = [re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", line).strip() for line in raw.splitlines()]
        picked = [line for line in lines if line.endswith("?")][: self.max_suggestions]
        return picked or fallback
