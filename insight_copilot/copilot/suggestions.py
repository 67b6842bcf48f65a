"""
Follow-up question suggestions.

Detects the business topics a question touches (keyword map) and returns
ranked default follow-ups for them. Used whenever a cached answer carries no
suggestions of its own, and as the fallback when LLM-generated follow-ups fail.

No external dependencies -- pure keyword matching.
"""
from __future__ import annotations

from insight_copilot.core.utils import normalize_text, strip_accents

# ── Topic keywords ──────────────────────────────────────

TOPIC_KEYWORDS: dict[str, list[str]] = {
    "vendas":      ["venda", "vendido", "vendas", "comercializado", "comercializacao", "faturamento"],
    "produtos":    ["produto", "produtos", "item", "itens", "mercadoria", "sku"],
    "clientes":    ["cliente", "clientes", "consumidor", "consumidores", "comprador"],
    "pedidos":     ["pedido", "pedidos", "compra", "compras", "aquisicao"],
    "assinaturas": ["assinatura", "assinaturas", "assinante", "assinantes", "recorrencia", "plano"],
    "estoque":     ["estoque", "inventario", "disponibilidade", "armazenamento"],
    "precos":      ["preco", "precos", "valor", "valores", "custo", "custos", "ticket"],
    "categorias":  ["categoria", "categorias", "tipo", "tipos", "classificacao"],
    "periodo":     ["periodo", "data", "mes", "ano", "semana", "trimestre", "janeiro", "fevereiro",
                    "marco", "abril", "maio", "junho", "julho", "agosto", "setembro", "outubro",
                    "novembro", "dezembro"],
    "desempenho":  ["desempenho", "performance", "resultado", "resultados", "metrica", "metricas"],
    "comparacao":  ["comparacao", "comparar", "versus", "contra", "diferenca"],
}

TOPIC_LABELS: dict[str, str] = {
    "vendas": "vendas",
    "produtos": "produtos",
    "clientes": "clientes",
    "pedidos": "pedidos",
    "assinaturas": "assinaturas",
    "estoque": "estoque",
    "precos": "preços",
    "categorias": "categorias",
    "periodo": "período",
    "desempenho": "desempenho",
    "comparacao": "comparação",
}

_TOPIC_SUGGESTIONS: dict[str, list[str]] = {
    "produtos": [
        "Quais categorias de produtos venderam mais?",
        "Quais produtos estão com estoque baixo?",
        "Como evoluíram as vendas desses produtos nos últimos meses?",
    ],
    "vendas": [
        "Como o faturamento se compara com o mês anterior?",
        "Qual foi o ticket médio no período?",
        "Quais dias da semana têm mais vendas?",
    ],
    "clientes": [
        "Quantos clientes novos tivemos no último mês?",
        "Quais estados concentram mais clientes?",
        "Quais clientes compraram com mais frequência?",
    ],
    "pedidos": [
        "Qual o valor médio dos pedidos?",
        "Quantos pedidos foram cancelados no período?",
        "Qual o valor médio de frete por pedido?",
    ],
    "assinaturas": [
        "Quantas assinaturas estão ativas hoje?",
        "Qual a taxa de cancelamento de assinaturas no último mês?",
        "Quais planos de assinatura são mais populares?",
    ],
    "estoque": [
        "Quais produtos estão sem estoque?",
        "Quais produtos ativos têm menos de 10 unidades em estoque?",
    ],
}

DEFAULT_SUGGESTIONS = [
    "Quais os 5 produtos mais vendidos no último mês?",
    "Qual foi o faturamento total do mês passado?",
    "Quantos clientes novos tivemos este mês?",
]


def extract_topics(text: str) -> list[str]:
    """Topics mentioned in *text*, in :data:`TOPIC_KEYWORDS` order."""
    words = set(strip_accents(normalize_text(text)).replace("?", " ").replace(",", " ").split())
    return [topic for topic, keywords in TOPIC_KEYWORDS.items() if words.intersection(keywords)]


def topic_label(topic: str) -> str:
    return TOPIC_LABELS.get(topic, topic)


def default_suggestions(question: str = "", limit: int = 3) -> list[str]:
    """Topic-based follow-ups for *question*, padded with generic ones."""
    picked: list[str] = []
    for topic in extract_topics(question):
        for suggestion in _TOPIC_SUGGESTIONS.get(topic, []):
            if suggestion not in picked:
                picked.append(suggestion)
    for suggestion in DEFAULT_SUGGESTIONS:
        if suggestion not in picked:
            picked.append(suggestion)
    return picked[:limit]
