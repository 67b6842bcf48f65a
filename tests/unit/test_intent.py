"""
Unit tests -- intent routing (pure, no providers).
"""
import pytest

from insight_copilot.copilot.intent import (
    ANALYTICAL,
    CONVERSATIONAL,
    GENERAL_KNOWLEDGE,
    classify,
    conversational_reply,
    general_knowledge_reply,
)
from insight_copilot.copilot.session import ConversationSession


def test_thanks():
    intent = classify("obrigado")
    assert intent.kind == CONVERSATIONAL
    assert intent.subtype == "thanks"


def test_analytical_question():
    intent = classify("quais os produtos mais vendidos em janeiro de 2025")
    assert intent.kind == ANALYTICAL
    assert intent.is_analytical


def test_short_message_without_keywords():
    intent = classify("isso é interessante")
    assert intent.kind == CONVERSATIONAL
    assert intent.subtype == "general"


@pytest.mark.parametrize("message,subtype", [
    ("Olá!", "greeting"),
    ("bom dia", "greeting"),
    ("tchau, até logo", "farewell"),
    ("perfeito!", "satisfaction"),
    ("quem é você?", "about_assistant"),
    ("o que você pode fazer?", "about_assistant"),
])
def test_conversational_subtypes(message, subtype):
    intent = classify(message)
    assert intent.kind == CONVERSATIONAL
    assert intent.subtype == subtype


def test_greeting_with_question_is_analytical():
    assert classify("oi, qual foi o faturamento de março de 2025?").kind == ANALYTICAL


def test_short_analytical_question():
    assert classify("vendas de janeiro?").kind == ANALYTICAL


@pytest.mark.parametrize("message,topic", [
    ("O que é ticket médio?", "ticket_medio"),
    ("como reduzir o abandono de carrinho", "abandono_carrinho"),
    ("o que significa churn?", "churn"),
])
def test_general_knowledge(message, topic):
    intent = classify(message)
    assert intent.kind == GENERAL_KNOWLEDGE
    assert intent.topic == topic
    assert general_knowledge_reply(intent)


def test_returning_greeting_mentions_last_topic():
    session = ConversationSession(total_interactions=2, context={"last_topic": "vendas"})
    reply = conversational_reply(classify("oi"), session)
    assert reply.startswith("Olá novamente")
    assert "vendas" in reply


def test_first_greeting():
    reply = conversational_reply(classify("oi"), ConversationSession())
    assert reply.startswith("Olá!")
