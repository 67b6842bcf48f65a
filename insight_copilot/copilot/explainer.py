"""
User-facing explanations for failed requests.

Maps validator codes (most specific) and error categories (fallback) to
friendly Portuguese messages. Raw provider / database errors are never shown
to the user; they are logged by the caller.
"""
from __future__ import annotations

from insight_copilot.core.errors import ErrorCategory

# ── Templates by validation code ────────────────────────

_CODE_TEMPLATES: dict[str, str] = {
    "EMPTY_QUERY": "Não consegui gerar uma consulta para essa pergunta. Tente reformulá-la com mais detalhes.",
    "OPERATION_NOT_ALLOWED": "Só posso executar consultas de leitura. Reformule a pergunta como uma consulta de dados.",
    "MULTIPLE_STATEMENTS": "A consulta gerada continha mais de um comando e foi bloqueada por segurança.",
    "FORBIDDEN_KEYWORD": "A consulta gerada tentava modificar dados e foi bloqueada. Apenas leituras são permitidas.",
    "SQL_INJECTION": "A consulta gerada tinha um padrão suspeito e foi bloqueada por segurança. Tente reformular a pergunta.",
    "SET_OPERATION_NOT_ALLOWED": "Combinações de consultas (UNION, INTERSECT, EXCEPT) não são permitidas. Tente dividir a pergunta.",
    "INVALID_ARRAY_JOIN": "A consulta gerada usava uma sintaxe inválida para dados aninhados. Tente reformular a pergunta.",
    "INVALID_ALIAS": "A consulta gerada usava um apelido de tabela inválido. Tente reformular a pergunta.",
    "UNAUTHORIZED_TABLE": (
        "A pergunta envolve dados que não estão disponíveis para consulta. "
        "Posso responder sobre pedidos, produtos, clientes e assinaturas."
    ),
    "RESTRICTED_COLUMN": "A pergunta envolve dados pessoais protegidos (documento, telefone, cupons) que não posso consultar.",
    "RESOURCE_LIMIT_EXCEEDED": (
        "Essa consulta processaria dados demais. Tente restringir o período (por exemplo, um mês específico) "
        "ou reduzir o número de itens."
    ),
    "SYNTAX_ERROR": "Não consegui montar uma consulta válida para essa pergunta. Tente reformulá-la.",
}

# ── Templates by category ───────────────────────────────

_CATEGORY_TEMPLATES: dict[ErrorCategory, str] = {
    ErrorCategory.VALIDATION: "A consulta gerada não passou nas regras de segurança e não foi executada.",
    ErrorCategory.SYNTAX: _CODE_TEMPLATES["SYNTAX_ERROR"],
    ErrorCategory.EXECUTION: (
        "Ocorreu um erro ao executar a consulta no banco de dados. "
        "Nossa equipe foi notificada; tente novamente mais tarde ou reformule a pergunta."
    ),
    ErrorCategory.GENERATION: "Não consegui gerar uma consulta para essa pergunta agora. Tente novamente em instantes.",
    ErrorCategory.RESOURCE_LIMIT: _CODE_TEMPLATES["RESOURCE_LIMIT_EXCEEDED"],
    ErrorCategory.PROCESSING: "Desculpe, ocorreu um erro inesperado ao processar sua pergunta. Tente novamente.",
}

TIMEOUT_MESSAGE = "A análise demorou mais que o esperado e foi interrompida. Tente uma pergunta mais específica."


def explain_error(category: ErrorCategory, code: str | None = None) -> str:
    """Friendly message for a failed request."""
    if code and code in _CODE_TEMPLATES:
        return _CODE_TEMPLATES[code]
    return _CATEGORY_TEMPLATES.get(category, _CATEGORY_TEMPLATES[ErrorCategory.PROCESSING])
