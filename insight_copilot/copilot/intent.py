"""
Intent router -- decides, before any cache or LLM work, whether a message is
small talk, a canned e-commerce definition question, or an analytical
question for the warehouse.

Rules are evaluated in order over the normalised (lower-cased, trimmed,
accent-stripped) message:
  1. Conversational: full-message acknowledgements, questions about the
     assistant, greetings / thanks / farewells without analytical content,
     and any message under 5 tokens with no analytical keyword.
  2. General knowledge: fixed definition / best-practice questions.
  3. Everything else is analytical.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from insight_copilot.core.utils import normalize_text, strip_accents

if TYPE_CHECKING:
    from insight_copilot.copilot.session import ConversationSession

CONVERSATIONAL = "conversational"
GENERAL_KNOWLEDGE = "general_knowledge"
ANALYTICAL = "analytical"


@dataclass(frozen=True)
class Intent:
    kind: str
    subtype: str | None = None  # conversational only
    topic: str | None = None  # general knowledge only

    @property
    def is_analytical(self) -> bool:
        return self.kind == ANALYTICAL


# ── Vocabularies ────────────────────────────────────────

_ANALYTICAL_KEYWORDS = re.compile(
    r"\b(vend\w*|produt\w*|pedid\w*|client\w*|assinat\w*|assinant\w*|faturament\w*|receit\w*|"
    r"ticket|compr[aeo]\w*|estoque\w*|categori\w*|preco\w*|valor\w*|quantidade\w*|total\w*|"
    r"top|ranking|mais vendid\w*|media\w*|mes|meses|ano|anos|semana\w*|trimestre\w*|periodo\w*|"
    r"hoje|ontem|janeiro|fevereiro|marco|abril|maio|junho|julho|agosto|setembro|outubro|"
    r"novembro|dezembro|20\d{2})\b"
)

_SATISFACTION = re.compile(
    r"(ok|okay|certo|beleza|blz|otimo|perfeito|legal|show|entendi|entendido|top|massa|"
    r"excelente|muito bom|muito bem|maravilha|joia|show de bola|boa)[\s!.]*"
)

_ABOUT_ASSISTANT = re.compile(
    r"\b(quem (e|es) voce|quem voce e|o que voce (faz|pode fazer|sabe fazer|sabe)|"
    r"como voce funciona|qual (e )?(o )?seu nome|voce e (um|uma) (bot|robo|ia|pessoa)|"
    r"como (voce )?pode me ajudar)\b"
)

_CONVERSATIONAL_RULES: list[tuple[str, re.Pattern]] = [
    ("greeting", re.compile(r"^(oi+|ola|opa|e ai|eai|bom dia|boa tarde|boa noite|hey|hello|hi|salve)\b")),
    ("thanks", re.compile(r"\b(obrigad[oa]s?|brigad[oa]|valeu|agradec\w*|grat[oa]|thanks|thank you)\b")),
    ("farewell", re.compile(r"\b(tchau|ate logo|ate mais|ate breve|ate a proxima|adeus|falou|bye)\b")),
]

_GENERAL_KNOWLEDGE: list[tuple[str, re.Pattern]] = [
    ("ticket_medio", re.compile(
        r"\b(o que (e|significa)|como (se )?calcula\w*|defina|definicao de) (o )?ticket medio\b")),
    ("abandono_carrinho", re.compile(
        r"\b(como (reduzir|diminuir|evitar)|o que (e|significa)) (o )?abandono de carrinho\b")),
    ("taxa_conversao", re.compile(
        r"\b(o que (e|significa) (a )?taxa de conversao|como (aumentar|melhorar) (a )?(taxa de )?conversao)\b")),
    ("ltv", re.compile(r"\bo que (e|significa) (o )?(ltv|lifetime value|valor do tempo de vida)\b")),
    ("cac", re.compile(r"\bo que (e|significa) (o )?(cac|custo de aquisicao)\b")),
    ("churn", re.compile(r"\b(o que (e|significa)|como (reduzir|diminuir|evitar)) (o )?churn\b")),
    ("recorrencia", re.compile(r"\bo que (e|significa) (uma )?(assinatura recorrente|recorrencia)\b")),
]


# ── Classification ──────────────────────────────────────


def _normalise(message: str) -> str:
    return strip_accents(normalize_text(message))


def has_analytical_keyword(message: str) -> bool:
    return bool(_ANALYTICAL_KEYWORDS.search(_normalise(message)))


def classify(message: str) -> Intent:
    """Classify *message*. Pure and constant-time in the vocabulary size."""
    text = _normalise(message)
    analytical = bool(_ANALYTICAL_KEYWORDS.search(text))

    if _SATISFACTION.fullmatch(text):
        return Intent(CONVERSATIONAL, subtype="satisfaction")
    if _ABOUT_ASSISTANT.search(text):
        return Intent(CONVERSATIONAL, subtype="about_assistant")
    if not analytical:
        for subtype, pattern in _CONVERSATIONAL_RULES:
            if pattern.search(text):
                return Intent(CONVERSATIONAL, subtype=subtype)

    for topic, pattern in _GENERAL_KNOWLEDGE:
        if pattern.search(text):
            return Intent(GENERAL_KNOWLEDGE, topic=topic)

    if len(text.split()) < 5 and not analytical:
        return Intent(CONVERSATIONAL, subtype="general")

    return Intent(ANALYTICAL)


# ── Canned replies ──────────────────────────────────────

_CAPABILITIES = (
    "Posso responder perguntas sobre vendas, produtos, pedidos, clientes e assinaturas, "
    "por exemplo: \"quais os 5 produtos mais vendidos em janeiro de 2025?\""
)

_GENERAL_ANSWERS: dict[str, str] = {
    "ticket_medio": (
        "O ticket médio é o valor médio gasto por pedido: faturamento total dividido pelo número "
        "de pedidos no período. Ele ajuda a acompanhar o poder de compra dos clientes e o efeito "
        "de ações como kits, frete grátis a partir de um valor mínimo e upsell."
    ),
    "abandono_carrinho": (
        "Para reduzir o abandono de carrinho: simplifique o checkout, mostre o frete cedo, ofereça "
        "vários meios de pagamento, envie e-mails de recuperação e transmita segurança na compra."
    ),
    "taxa_conversao": (
        "A taxa de conversão é a porcentagem de visitas que terminam em pedido. Para melhorá-la, "
        "trabalhe a velocidade do site, a qualidade das páginas de produto e a experiência de checkout."
    ),
    "ltv": (
        "LTV (lifetime value) é a receita total esperada de um cliente durante todo o relacionamento "
        "com a loja. Compare-o com o CAC para avaliar a saúde da aquisição de clientes."
    ),
    "cac": (
        "CAC é o custo de aquisição de clientes: o investimento em marketing e vendas dividido pelo "
        "número de novos clientes no período."
    ),
    "churn": (
        "Churn é a taxa de clientes ou assinantes que cancelam em um período. Para reduzi-lo, "
        "acompanhe sinais de risco, melhore o onboarding e ofereça alternativas antes do cancelamento."
    ),
    "recorrencia": (
        "Uma assinatura recorrente cobra o cliente periodicamente (mensal, trimestral...) em troca do "
        "envio contínuo de produtos, o que gera receita previsível e aumenta a retenção."
    ),
}


def conversational_reply(intent: Intent, session: "ConversationSession | None" = None) -> str:
    returning = session is not None and session.total_interactions > 0
    last_topic = session.context.get("last_topic") if session is not None else None

    if intent.subtype == "greeting":
        if returning:
            follow = f" Quer continuar falando sobre {last_topic}?" if last_topic else ""
            return f"Olá novamente!{follow} {_CAPABILITIES}"
        return f"Olá! Sou o assistente de análise de dados da loja. {_CAPABILITIES}"
    if intent.subtype == "thanks":
        return "Por nada! Se quiser, posso analisar outros dados para você."
    if intent.subtype == "farewell":
        return "Até logo! Quando precisar de novas análises, é só chamar."
    if intent.subtype == "satisfaction":
        return "Que bom que ajudou! Posso aprofundar essa análise ou responder outra pergunta."
    if intent.subtype == "about_assistant":
        return f"Sou um assistente que transforma perguntas em consultas ao data warehouse da loja. {_CAPABILITIES}"
    return f"Não entendi bem o que você precisa. {_CAPABILITIES}"


def general_knowledge_reply(intent: Intent) -> str:
    return _GENERAL_ANSWERS.get(intent.topic or "", _CAPABILITIES)
