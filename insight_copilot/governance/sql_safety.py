"""
Deterministic SQL safety checks (non-LLM).

These checks are the static gate before any generated SQL reaches the
warehouse. They operate purely on the SQL text and the security policy.

Checks performed, in order, stopping at the first failure:
  1. SQL is a single statement starting with SELECT or WITH
  2. No forbidden verb (INSERT, UPDATE, DELETE, DROP, CREATE, ALTER, TRUNCATE,
     MERGE, GRANT, REVOKE) as a whole word, comments included
  3. No injection patterns (OR-tautologies, UNION/INTERSECT/EXCEPT SELECT)
  4. No invalid nested-data syntax (JOIN on JSON extraction functions,
     dotted aliases)
  5. Every FROM/JOIN reference is an allow-listed table, a locally defined
     CTE, or a dialect table function; restricted columns are never touched
"""
from __future__ import annotations

import re

from insight_copilot.governance.policy import SecurityPolicy, load_security_policy
from insight_copilot.governance.results import ValidationIssue, ValidationResult, error, warning
from insight_copilot.core.logging import get_logger

logger = get_logger(__name__)

# ── Compiled patterns ────────────────────────────────────

FORBIDDEN_VERBS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE",
    "ALTER", "TRUNCATE", "MERGE", "GRANT", "REVOKE",
)

_FORBIDDEN_RE = re.compile(r"\b(" + "|".join(FORBIDDEN_VERBS) + r")\b", re.IGNORECASE)

_COMMENT_MARKER_RE = re.compile(r"--|/\*|\*/")

_LEADING_WORD_RE = re.compile(r"^\(*\s*([A-Za-z]+)")

_TRAILING_SEMICOLONS_RE = re.compile(r"[;\s]+$")

_TAUTOLOGY_RE = re.compile(
    r"\bOR\s+(?:TRUE\b|('[^']*'|\d+(?:\.\d+)?|[A-Za-z_]\w*)\s*=\s*\1(?![\w'.]))",
    re.IGNORECASE,
)

_SET_OPERATION_RE = re.compile(
    r"\b(UNION|INTERSECT|EXCEPT)\b(?:\s+(?:ALL|DISTINCT))?\s*\(?\s*SELECT\b",
    re.IGNORECASE,
)

_JSON_JOIN_RE = re.compile(
    r"\bJOIN\s+((?:JSON|JSON_EXTRACT|JSON_EXTRACT_ARRAY|JSON_EXTRACT_STRING_ARRAY|"
    r"JSON_QUERY|JSON_QUERY_ARRAY|JSON_VALUE|JSON_VALUE_ARRAY|PARSE_JSON))\s*\(",
    re.IGNORECASE,
)

_DOTTED_ALIAS_RE = re.compile(
    r"\bAS\s+(`[^`]*\.[^`]*`|[A-Za-z_]\w*\.[A-Za-z_][\w.]*)",
    re.IGNORECASE,
)

# FROM inside EXTRACT(x FROM y), TRIM(... FROM y) etc. is not a table reference.
_FUNCTION_FROM_RE = re.compile(
    r"\b(EXTRACT|TRIM|SUBSTRING|OVERLAY|POSITION)\s*\(([^()]*?)\bFROM\b",
    re.IGNORECASE,
)
_DISTINCT_FROM_RE = re.compile(r"\bDISTINCT\s+FROM\b", re.IGNORECASE)

_CTE_RE = re.compile(
    r"(?:\bWITH\s+(?:RECURSIVE\s+)?|,\s*)[`\"]?([A-Za-z_]\w*)[`\"]?\s+AS\s*\(",
    re.IGNORECASE,
)

_FROM_JOIN_RE = re.compile(r"\b(?:FROM|JOIN)\b", re.IGNORECASE)
_SUBQUERY_START_RE = re.compile(r"\s*\(*\s*(?:SELECT|WITH|VALUES)\b", re.IGNORECASE)

_IDENT = r"(?:`[^`]+`|\"[^\"]+\"|[A-Za-z_][\w\-]*)"
_TABLE_NAME_RE = re.compile(rf"\s*({_IDENT}(?:\s*\.\s*{_IDENT})*)")

_CLAUSE_KEYWORDS = frozenset({
    "WHERE", "ON", "USING", "JOIN", "LEFT", "RIGHT", "INNER", "OUTER", "FULL",
    "CROSS", "GROUP", "ORDER", "LIMIT", "HAVING", "WINDOW", "QUALIFY", "UNION",
    "INTERSECT", "EXCEPT", "FOR", "TABLESAMPLE", "PIVOT", "UNPIVOT", "NATURAL",
    "LATERAL", "SELECT", "OFFSET", "FETCH",
})
_ALIAS_RE = re.compile(r"\s+(?:AS\s+)?([A-Za-z_]\w*)", re.IGNORECASE)

_LIMIT_RE = re.compile(r"\bLIMIT\s+(\d+)", re.IGNORECASE)

# Table-valued functions that may legitimately follow FROM / JOIN.
KNOWN_TABLE_FUNCTIONS = frozenset({
    "unnest", "generate_array", "generate_date_array", "generate_timestamp_array",
    "generate_series", "lateral", "table", "struct", "external_query",
    "ml.predict", "vector_search",
})
FUNCTION_PREFIXES = ("st_", "json_", "array_", "date_", "timestamp_", "generate_")


# ── Text preparation ─────────────────────────────────────

def _scan(sql: str) -> tuple[str, str]:
    """Return ``(code, masked)``: comments removed, and additionally string
    literal contents blanked out.

    Backtick and double-quoted identifiers keep their content so table names
    survive in both forms.
    """
    code: list[str] = []
    masked: list[str] = []
    i, n = 0, len(sql)
    while i < n:
        ch = sql[i]
        two = sql[i:i + 2]
        if two == "--":
            end = sql.find("\n", i)
            i = n if end == -1 else end
            code.append(" ")
            masked.append(" ")
            continue
        if two == "/*":
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            code.append(" ")
            masked.append(" ")
            continue
        if ch == "'":
            j = i + 1
            while j < n:
                if sql[j] == "\\":
                    j += 2
                    continue
                if sql[j] == "'":
                    if sql[j + 1:j + 2] == "'":
                        j += 2
                        continue
                    break
                j += 1
            literal = sql[i:j + 1]
            code.append(literal)
            masked.append("''")
            i = j + 1
            continue
        if ch in "`\"":
            end = sql.find(ch, i + 1)
            end = n - 1 if end == -1 else end
            code.append(sql[i:end + 1])
            masked.append(sql[i:end + 1])
            i = end + 1
            continue
        code.append(ch)
        masked.append(ch)
        i += 1
    return "".join(code), "".join(masked)


def sanitize_sql(sql: str) -> str:
    """Strip comments, keep everything else."""
    return _scan(sql)[0]


def _unquote(part: str) -> str:
    return part.strip().strip("`\"")


# ── Reference extraction ─────────────────────────────────

def extract_cte_names(sql: str) -> set[str]:
    """Names of every CTE defined anywhere in *sql* (nested WITH included), lower-cased."""
    masked = _scan(sql)[1]
    return {m.group(1).lower() for m in _CTE_RE.finditer(masked)}


def _is_table_function(name: str) -> bool:
    lower = name.lower()
    last = lower.rsplit(".", 1)[-1]
    if lower in KNOWN_TABLE_FUNCTIONS or last in KNOWN_TABLE_FUNCTIONS:
        return True
    return last.startswith(FUNCTION_PREFIXES)


def _read_table_ref(text: str, pos: int) -> tuple[str | None, int]:
    """Read one table reference at *pos*. Returns (name or None, end position).

    A parenthesised subquery yields None; a parenthesised join such as
    ``(a CROSS JOIN b)`` yields its first table. A name followed by ``(`` is
    skipped only when it is a known table function.
    """
    paren = re.match(r"\s*\(", text[pos:])
    if paren:
        inner = pos + paren.end()
        if _SUBQUERY_START_RE.match(text, inner):
            return None, pos
        name, end = _read_table_ref(text, inner)
        return (name, end) if name is not None else (None, pos)
    m = _TABLE_NAME_RE.match(text, pos)
    if not m:
        return None, pos
    raw = m.group(1)
    end = m.end()
    name = ".".join(_unquote(p) for p in raw.split("."))
    if name.upper() in _CLAUSE_KEYWORDS:
        return None, pos
    if re.match(r"\s*\(", text[end:]) and _is_table_function(name):
        return None, end
    return name, end


def _skip_alias(text: str, pos: int) -> int:
    m = _ALIAS_RE.match(text, pos)
    if m and m.group(1).upper() not in _CLAUSE_KEYWORDS:
        return m.end()
    return pos


def _prepare_for_tables(sql: str) -> str:
    masked = _scan(sql)[1]
    masked = _FUNCTION_FROM_RE.sub(lambda m: f"{m.group(1)}({m.group(2)} OF", masked)
    return _DISTINCT_FROM_RE.sub("DISTINCT OF", masked)


def extract_table_references(sql: str) -> list[str]:
    """Every name that follows FROM / JOIN (comma lists included), minus
    subqueries and table functions. CTE names are *not* removed here.

    Names are returned in the order they appear, de-duplicated, with the
    project/dataset qualifier kept.
    """
    text = _prepare_for_tables(sql)
    found: list[str] = []
    for match in _FROM_JOIN_RE.finditer(text):
        pos = match.end()
        while True:
            name, end = _read_table_ref(text, pos)
            if name is not None and name not in found:
                found.append(name)
            if name is None and end == pos:
                break
            end = _skip_alias(text, end)
            comma = re.match(r"\s*,", text[end:])
            if not comma:
                break
            pos = end + comma.end()
    return found


def _base_name(name: str) -> str:
    return name.rsplit(".", 1)[-1]


# ── Individual checks ────────────────────────────────────

def _check_statement(code: str, masked: str, policy: SecurityPolicy) -> ValidationIssue | None:
    stripped = code.strip()
    if not stripped:
        return error("EMPTY_QUERY", "A consulta SQL está vazia.")

    m = _LEADING_WORD_RE.match(stripped)
    operation = m.group(1).upper() if m else ""
    allowed = {"WITH"} | set(policy.allowed_operations)
    if operation not in allowed:
        return error(
            "OPERATION_NOT_ALLOWED",
            f"Operação {operation or '?'} não permitida. Apenas "
            f"{', '.join(sorted(policy.allowed_operations))} (ou WITH ... SELECT) são permitidas.",
        )

    body = _TRAILING_SEMICOLONS_RE.sub("", masked.strip())
    if ";" in body:
        return error(
            "MULTIPLE_STATEMENTS",
            "Foi detectada uma segunda instrução após ';'. Apenas uma consulta é permitida.",
        )
    return None


def _check_forbidden_verbs(sql: str) -> ValidationIssue | None:
    # Comment markers become whitespace: a verb hidden behind or inside a
    # comment is still a verb.
    exposed = _COMMENT_MARKER_RE.sub(" ", sql)
    m = _FORBIDDEN_RE.search(exposed)
    if m:
        return error(
            "FORBIDDEN_KEYWORD",
            f"Palavra-chave proibida detectada: '{m.group(1).upper()}'. Apenas consultas de leitura são permitidas.",
        )
    return None


def _check_injection(code: str, masked: str) -> ValidationIssue | None:
    if _TAUTOLOGY_RE.search(code):
        return error("SQL_INJECTION", "Predicado sempre verdadeiro (ex.: OR 1=1) detectado.")
    m = _SET_OPERATION_RE.search(masked)
    if m:
        return error(
            "SET_OPERATION_NOT_ALLOWED",
            f"Combinação de consultas com {m.group(1).upper()} SELECT não é permitida.",
        )
    return None


def _check_nested_syntax(masked: str) -> ValidationIssue | None:
    m = _JSON_JOIN_RE.search(masked)
    if m:
        return error(
            "INVALID_ARRAY_JOIN",
            f"JOIN direto em {m.group(1).upper()}(...) é inválido; use CROSS JOIN UNNEST(...) para expandir arrays.",
        )
    m = _DOTTED_ALIAS_RE.search(masked)
    if m:
        return error("INVALID_ALIAS", f"Alias '{m.group(1).strip('`')}' não pode conter ponto.")
    return None


def _check_tables(sql: str, masked: str, policy: SecurityPolicy) -> tuple[ValidationIssue | None, list[str]]:
    ctes = extract_cte_names(sql)
    tables: list[str] = []
    for ref in extract_table_references(sql):
        base = _base_name(ref)
        if base.lower() in ctes or ref.lower() in ctes or policy.is_approved_cte(base):
            continue
        if not policy.is_table_allowed(base):
            return error(
                "UNAUTHORIZED_TABLE",
                f"Tabela {ref} não está na lista de tabelas permitidas.",
            ), tables
        if base.upper() not in tables:
            tables.append(base.upper())

    for table in tables:
        used = [
            col for col in policy.restricted_for(table)
            if re.search(rf"\b{re.escape(col)}\b", masked, re.IGNORECASE)
        ]
        if used:
            return error(
                "RESTRICTED_COLUMN",
                f"Uso de colunas restritas em {table}: {', '.join(used)}",
            ), tables
    return None, tables


def _limit_warnings(masked: str, policy: SecurityPolicy) -> list[ValidationIssue]:
    limits = [int(v) for v in _LIMIT_RE.findall(masked)]
    if not limits:
        return [warning("MISSING_LIMIT", "A consulta não possui LIMIT; o resultado será truncado.")]
    if max(limits) > policy.max_rows:
        return [warning(
            "LIMIT_EXCEEDS_MAX_ROWS",
            f"LIMIT {max(limits)} excede o máximo permitido ({policy.max_rows}).",
        )]
    return []


# ── Public API ───────────────────────────────────────────

def check_sql_safety(sql: str, policy: SecurityPolicy | None = None) -> ValidationResult:
    """Run the static checks and return a :class:`ValidationResult`.

    Parameters
    ----------
    sql : str
        The SQL query to validate.
    policy : SecurityPolicy, optional
        If None, auto-loads the security policy from disk.
    """
    if policy is None:
        policy = load_security_policy()

    sql = sql or ""
    code, masked = _scan(sql)

    issue = (
        _check_statement(code, masked, policy)
        or _check_forbidden_verbs(sql)
        or _check_injection(code, masked)
        or _check_nested_syntax(masked)
    )
    if issue is None:
        issue, tables = _check_tables(sql, masked, policy)
    else:
        tables = []

    if issue is not None:
        logger.warning("SQL safety violation: %s - %s", issue.code, issue.message)
        return ValidationResult.failed(issue)

    return ValidationResult(is_valid=True, warnings=_limit_warnings(masked, policy), tables=tables)
