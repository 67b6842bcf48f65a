"""
Query shape extraction -- what kind of ranked answer a question asks for.

Pure text helpers shared by the subset adapter and the semantic cache:

  extract_query_intent   "top 5 ... janeiro de 2025"  -> TopN(5), janeiro, 2025
                         "qual o segundo ..."         -> Position(2)
                         "qual o produto mais vendido" -> Position(1)
  extract_ranked_items   ranked lines of a formatted answer
  is_compatible          can a cached answer be reworded for a new question
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from insight_copilot.core.utils import normalize_text, strip_accents

TOP_N = "topN"
POSITION = "position"
UNKNOWN = "unknown"

MONTHS = (
    "janeiro", "fevereiro", "marco", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
)

MONTH_DISPLAY = {"marco": "março"}

SUBJECTS = frozenset({
    "produto", "cliente", "categoria", "pedido", "assinatura", "assinante", "marca", "sku", "estado", "cidade",
})

_NUMBER_WORDS = {
    "um": 1, "uma": 1, "dois": 2, "duas": 2, "tres": 3, "quatro": 4, "cinco": 5,
    "seis": 6, "sete": 7, "oito": 8, "nove": 9, "dez": 10, "quinze": 15, "vinte": 20,
}

_ORDINALS = {
    "primeir": 1, "segund": 2, "terceir": 3, "quart": 4, "quint": 5,
    "sext": 6, "setim": 7, "oitav": 8, "non": 9, "decim": 10,
}

ORDINAL_NAMES = {
    1: "primeiro", 2: "segundo", 3: "terceiro", 4: "quarto", 5: "quinto",
    6: "sexto", 7: "sétimo", 8: "oitavo", 9: "nono", 10: "décimo",
}


@dataclass(frozen=True)
class QueryIntentInfo:
    query_type: str = UNKNOWN
    n: int = 0  # count for topN, 1-based rank for position
    month: str | None = None
    year: str | None = None
    entities: frozenset[str] = field(default_factory=frozenset)

    @property
    def detected(self) -> bool:
        return self.query_type != UNKNOWN and self.n > 0

    @property
    def subjects(self) -> frozenset[str]:
        """Ranked subject nouns (produto, cliente, ...) without metrics."""
        return self.entities & SUBJECTS

    def same_timeframe(self, other: "QueryIntentInfo") -> bool:
        return (self.month or "").lower() == (other.month or "").lower() and \
            (self.year or "").lower() == (other.year or "").lower()

    def timeframe_text(self) -> str:
        month = MONTH_DISPLAY.get(self.month or "", self.month)
        if month and self.year:
            return f"{month} de {self.year}"
        return month or self.year or ""


# ── Patterns ────────────────────────────────────────────

_COUNT = r"(\d{1,3}|" + "|".join(_NUMBER_WORDS) + r")"
_RANK_CUE = r"(?:mais|melhor\w*|maior\w*|menor\w*|pior\w*|lugar|colocad\w*|posicao|do ranking)"

_TOP_N_PATTERNS = [
    re.compile(r"\btop\s*-?\s*" + _COUNT + r"\b"),
    re.compile(r"\b" + _COUNT + r"\s+(?:primeir[oa]s|principais|maiores|melhores|ultim[oa]s)\b"),
    re.compile(
        r"\b" + _COUNT + r"\s+(?:produtos|itens|clientes|categorias|pedidos|marcas|skus|assinaturas)"
        r"\s+(?:\w+\s+){0,2}?" + _RANK_CUE
    ),
    re.compile(r"\b(?:os|as)\s+(?:primeir[oa]s|principais|maiores|melhores)\s+" + _COUNT + r"\b"),
]

_ORDINAL_WORD = re.compile(
    r"\b(primeir|segund|terceir|quart|quint|sext|setim|oitav|non|decim)[oa]\b"
    r"(?=(?:\s+\w+){0,3}?\s+" + _RANK_CUE + r")"
)
_ORDINAL_NUMBER = re.compile(
    r"\b(\d{1,2})\s*(?:[oa]\b|°|st\b|nd\b|rd\b|th\b)(?=(?:\s+\w+){0,3}?\s+" + _RANK_CUE + r")"
)
_POSITION_NUMBER = re.compile(r"\b(?:posicao|lugar|colocado)\s*(?:n(?:umero)?\.?\s*)?(\d{1,2})\b")
_BARE_BEST = re.compile(
    r"\b(?:o|a|qual|quem)\b(?:\s+\w+){0,4}?\s+(?:mais vendid[oa]|melhor|campea?o de vendas)\b(?!s)"
)

_MONTH_RE = re.compile(r"\b(" + "|".join(MONTHS) + r")\b")
_NUMERIC_MONTH_RE = re.compile(r"\b(0?[1-9]|1[0-2])\s*/\s*(20\d{2})\b")
_YEAR_RE = re.compile(r"\b(20\d{2})\b")

_ENTITY_RE = re.compile(
    r"\b(produto|cliente|categoria|pedido|assinatura|assinante|marca|sku|estado|cidade)s?\b"
)
_METRIC_RE = re.compile(r"\b(vend\w*|faturamento|receita|quantidade|valor|ticket)\b")


def _normalise(text: str) -> str:
    return strip_accents(normalize_text(text))


def _to_int(token: str) -> int:
    return int(token) if token.isdigit() else _NUMBER_WORDS.get(token, 0)


def _timeframe(text: str, start: int = 0) -> tuple[str | None, str | None]:
    """Month / year from the text after *start*, falling back to the whole text."""
    month = year = None
    for scope in (text[start:], text):
        if month is None:
            m = _MONTH_RE.search(scope)
            if m:
                month = m.group(1)
            else:
                nm = _NUMERIC_MONTH_RE.search(scope)
                if nm:
                    month = MONTHS[int(nm.group(1)) - 1]
                    year = year or nm.group(2)
        if year is None:
            y = _YEAR_RE.search(scope)
            if y:
                year = y.group(1)
    return month, year


def _entities(text: str) -> frozenset[str]:
    found = {m.group(1) for m in _ENTITY_RE.finditer(text)}
    found |= {"vendas" if m.group(1).startswith("vend") else m.group(1) for m in _METRIC_RE.finditer(text)}
    return frozenset(found)


def extract_query_intent(text: str) -> QueryIntentInfo:
    """Detect a top-N / position request plus its timeframe."""
    norm = _normalise(text)
    entities = _entities(norm)

    for pattern in _TOP_N_PATTERNS:
        m = pattern.search(norm)
        if m:
            n = _to_int(m.group(1))
            if n > 0:
                month, year = _timeframe(norm, m.start())
                return QueryIntentInfo(TOP_N, n, month, year, entities)

    m = _ORDINAL_WORD.search(norm)
    if m:
        month, year = _timeframe(norm, m.start())
        return QueryIntentInfo(POSITION, _ORDINALS[m.group(1)], month, year, entities)

    for pattern in (_ORDINAL_NUMBER, _POSITION_NUMBER):
        m = pattern.search(norm)
        if m and int(m.group(1)) > 0:
            month, year = _timeframe(norm, m.start())
            return QueryIntentInfo(POSITION, int(m.group(1)), month, year, entities)

    m = _BARE_BEST.search(norm)
    if m:
        month, year = _timeframe(norm, m.start())
        return QueryIntentInfo(POSITION, 1, month, year, entities)

    month, year = _timeframe(norm)
    return QueryIntentInfo(UNKNOWN, 0, month, year, entities)


def is_compatible(a: QueryIntentInfo, b: QueryIntentInfo) -> bool:
    """Same timeframe, same ranked shape, same subject when both name one."""
    if not a.same_timeframe(b):
        return False
    if a.query_type != b.query_type or a.n != b.n:
        return False
    if a.entities and b.entities and a.entities != b.entities:
        return False
    return True


# ── Ranked answer parsing ───────────────────────────────


@dataclass(frozen=True)
class RankedItem:
    position: int  # 1-based order of appearance
    name: str
    count: str  # as written, e.g. "1.234 unidades"
    line: str


_MARKER = (
    "(?:\U0001F947|\U0001F948|\U0001F949|\U0001F3C5|\U0001F51F|\\d{1,2}\ufe0f?\u20e3"
    r"|#\d{1,2}|\d{1,2}\s*[.)º°ª]|\d{1,2}\s*-)"
)
_LEAD = r"^\s*(?:[-*•]\s*)?" + _MARKER + r"\s*"
_AMOUNT = r"(?P<count>(?:R\$\s*)?\d[\d.,]*(?:\s*%)?)"
_UNIT = r"(?P<unit>\s*(?:unidades?|un\b\.?|vendas|pedidos|itens|clientes|assinaturas|vezes)?)"

_RANKED_LINE_VARIANTS = [
    # 🥇 **Produto A** - 150 unidades
    re.compile(_LEAD + r"\*\*(?P<name>[^*]+?)\*\*\s*(?:[-–—]|com|,)?\s*" + _AMOUNT + _UNIT),
    # 1. **Produto A**: 150   /   1. **Produto A:** 150
    re.compile(_LEAD + r"\*\*(?P<name>[^*]+?):?\*\*\s*:?\s*" + _AMOUNT + _UNIT),
    # 1. Produto A (150 unidades)
    re.compile(_LEAD + r"\**(?P<name>[^*(\n]+?)\**\s*\(\s*" + _AMOUNT + r"(?P<unit>[^)]*)\)"),
]

_INLINE_SPLIT = re.compile(r"(?<=\))\s*[,;]\s*(?=\d{1,2}[.)]\s)|:\s+(?=1[.)]\s)")


def _parse_line(line: str) -> tuple[str, str] | None:
    for pattern in _RANKED_LINE_VARIANTS:
        m = pattern.match(line)
        if m:
            name = m.group("name").strip(" -–—:")
            if not name:
                continue
            count = (m.group("count") + (m.group("unit") or "")).strip()
            return name, count
    return None


def extract_ranked_items(text: str) -> list[RankedItem]:
    """Ranked line items of a formatted answer, in order of appearance."""
    items: list[RankedItem] = []
    for raw in (text or "").splitlines():
        for line in _INLINE_SPLIT.split(raw):
            parsed = _parse_line(line)
            if parsed is not None:
                name, count = parsed
                items.append(RankedItem(len(items) + 1, name, count, line.strip()))
    return items


def ordinal_name(position: int) -> str:
    return ORDINAL_NAMES.get(position, f"{position}º")
