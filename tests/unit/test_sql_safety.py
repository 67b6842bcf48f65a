"""
Unit tests -- static SQL safety checks.
"""
import pytest

from insight_copilot.governance.sql_safety import (
    check_sql_safety,
    extract_cte_names,
    extract_table_references,
    sanitize_sql,
)


def _codes(result):
    return [e.code for e in result.errors]


# ── Helper: a known-safe SQL ─────────────────────────────

_SAFE_SQL = """\
SELECT p.nome AS produto, COUNT(*) AS unidades
FROM PEDIDOS AS ped
JOIN PRODUTOS AS p ON p.sku = ANY(ped.itens)
WHERE ped.data_pedido >= '2025-01-01' AND ped.data_pedido < '2025-02-01'
GROUP BY p.nome
ORDER BY unidades DESC
LIMIT 5"""


def test_safe_sql_passes(policy):
    result = check_sql_safety(_SAFE_SQL, policy)
    assert result.is_valid, result.errors
    assert result.tables == ["PEDIDOS", "PRODUTOS"]
    assert result.warnings == []


# ── 1. Single SELECT / WITH statement ───────────────────

def test_empty_query(policy):
    assert _codes(check_sql_safety("   ", policy)) == ["EMPTY_QUERY"]


def test_not_select(policy):
    result = check_sql_safety("INSERT INTO PEDIDOS VALUES (1)", policy)
    assert _codes(result) == ["OPERATION_NOT_ALLOWED"]


def test_injected_second_statement(policy):
    result = check_sql_safety("SELECT * FROM pedidos; DROP TABLE pedidos", policy)
    assert result.is_valid is False
    assert _codes(result) == ["MULTIPLE_STATEMENTS"]


def test_trailing_semicolon_allowed(policy):
    assert check_sql_safety("SELECT COUNT(*) AS n FROM PEDIDOS LIMIT 1;", policy).is_valid


def test_semicolon_inside_literal_allowed(policy):
    sql = "SELECT COUNT(*) AS n FROM PEDIDOS WHERE situacao = 'a;b' LIMIT 1"
    assert check_sql_safety(sql, policy).is_valid


# ── 2. Forbidden verbs ──────────────────────────────────

@pytest.mark.parametrize("sql", [
    "SELECT nome FROM PRODUTOS -- DROP TABLE PRODUTOS\nLIMIT 10",
    "SELECT nome FROM PRODUTOS /* delete everything */ LIMIT 10",
    "select nome from produtos where nome = 'x' --truncate\n limit 10",
    "SELECT nome FROM PRODUTOS/*UPDATE*/LIMIT 10",
])
def test_forbidden_verb_in_comment(policy, sql):
    assert _codes(check_sql_safety(sql, policy)) == ["FORBIDDEN_KEYWORD"]


def test_forbidden_verb_case_insensitive(policy):
    sql = "SELECT nome FROM PRODUTOS LIMIT 10 -- GrAnT select"
    assert _codes(check_sql_safety(sql, policy)) == ["FORBIDDEN_KEYWORD"]


def test_verb_as_substring_allowed(policy):
    sql = "SELECT data_atualizacao AS updated_at FROM STATUS_ASSINANTES LIMIT 10"
    assert check_sql_safety(sql, policy).is_valid


# ── 3. Injection patterns ───────────────────────────────

@pytest.mark.parametrize("predicate", ["OR 1=1", "or 'a' = 'a'", "OR TRUE", "OR x=x"])
def test_tautology(policy, predicate):
    sql = f"SELECT nome FROM PRODUTOS WHERE sku = 'abc' {predicate} LIMIT 10"
    assert _codes(check_sql_safety(sql, policy)) == ["SQL_INJECTION"]


def test_legitimate_or_allowed(policy):
    sql = "SELECT nome FROM PRODUTOS WHERE categoria = 'cafe' OR categoria = 'cha' LIMIT 10"
    assert check_sql_safety(sql, policy).is_valid


@pytest.mark.parametrize("op", ["UNION", "UNION ALL", "INTERSECT", "EXCEPT"])
def test_set_operations(policy, op):
    sql = f"SELECT nome FROM PRODUTOS {op} SELECT nome FROM CLIENTES LIMIT 10"
    assert _codes(check_sql_safety(sql, policy)) == ["SET_OPERATION_NOT_ALLOWED"]


# ── 4. Nested-data syntax ───────────────────────────────

def test_join_on_json_function(policy):
    sql = "SELECT item FROM PEDIDOS JOIN JSON_EXTRACT_ARRAY(itens) AS item ON true LIMIT 10"
    assert _codes(check_sql_safety(sql, policy)) == ["INVALID_ARRAY_JOIN"]


def test_dotted_alias(policy):
    sql = "SELECT p.nome AS p.nome FROM PRODUTOS AS p LIMIT 10"
    assert _codes(check_sql_safety(sql, policy)) == ["INVALID_ALIAS"]


# ── 5. Table allow-list ─────────────────────────────────

def test_unknown_table(policy):
    result = check_sql_safety("SELECT * FROM usuarios LIMIT 10", policy)
    assert _codes(result) == ["UNAUTHORIZED_TABLE"]


def test_unknown_table_in_join(policy):
    sql = "SELECT c.nome FROM CLIENTES c JOIN pagamentos pg ON pg.cliente_id = c.cliente_id LIMIT 10"
    assert _codes(check_sql_safety(sql, policy)) == ["UNAUTHORIZED_TABLE"]


def test_cte_and_allowed_tables(policy):
    sql = """\
WITH vendas_mes AS (
  SELECT date_trunc('month', data_pedido) AS mes, SUM(total_pedido_pago) AS total
  FROM PEDIDOS
  GROUP BY 1
), melhores AS (
  SELECT mes, total FROM vendas_mes ORDER BY total DESC LIMIT 3
)
SELECT * FROM melhores LIMIT 3"""
    result = check_sql_safety(sql, policy)
    assert result.is_valid, result.errors
    assert result.tables == ["PEDIDOS"]


def test_approved_cte_prefix(policy):
    sql = "SELECT * FROM cte_externa LIMIT 10"
    assert check_sql_safety(sql, policy).is_valid


def test_table_functions_skipped(policy):
    sql = "SELECT sku FROM PEDIDOS, UNNEST(itens) AS sku LIMIT 10"
    result = check_sql_safety(sql, policy)
    assert result.is_valid, result.errors
    assert result.tables == ["PEDIDOS"]


def test_parenthesised_join_checks_first_table(policy):
    sql = "SELECT * FROM (usuarios_secretos CROSS JOIN PEDIDOS) LIMIT 5"
    result = check_sql_safety(sql, policy)
    assert _codes(result) == ["UNAUTHORIZED_TABLE"]
    assert extract_table_references(sql) == ["usuarios_secretos", "PEDIDOS"]


def test_nested_parenthesised_join(policy):
    sql = "SELECT * FROM ((PEDIDOS p JOIN CLIENTES c ON true) JOIN PRODUTOS pr ON true) LIMIT 5"
    result = check_sql_safety(sql, policy)
    assert result.is_valid, result.errors
    assert set(result.tables) == {"PEDIDOS", "CLIENTES", "PRODUTOS"}


def test_function_like_table_name_is_checked(policy):
    result = check_sql_safety("SELECT * FROM date_secret_table LIMIT 5", policy)
    assert _codes(result) == ["UNAUTHORIZED_TABLE"]


def test_unknown_call_after_from_is_checked(policy):
    result = check_sql_safety("SELECT * FROM usuarios_secretos(1) LIMIT 5", policy)
    assert _codes(result) == ["UNAUTHORIZED_TABLE"]


def test_restricted_column(policy):
    sql = "SELECT nome, clientProfileData_document FROM CLIENTES LIMIT 10"
    assert _codes(check_sql_safety(sql, policy)) == ["RESTRICTED_COLUMN"]


# ── LIMIT warnings ──────────────────────────────────────

def test_missing_limit_warns(policy):
    result = check_sql_safety("SELECT COUNT(*) AS n FROM PEDIDOS", policy)
    assert result.is_valid
    assert [w.code for w in result.warnings] == ["MISSING_LIMIT"]


def test_limit_above_max_rows_warns(policy):
    result = check_sql_safety("SELECT nome FROM PRODUTOS LIMIT 50000", policy)
    assert result.is_valid
    assert [w.code for w in result.warnings] == ["LIMIT_EXCEEDS_MAX_ROWS"]


# ── Reference extraction helpers ────────────────────────

def test_extract_table_references_skips_function_from():
    sql = "SELECT EXTRACT(MONTH FROM data_pedido) AS mes FROM PEDIDOS p, CLIENTES c LIMIT 1"
    assert extract_table_references(sql) == ["PEDIDOS", "CLIENTES"]


def test_extract_table_references_skips_subquery():
    sql = "SELECT * FROM (SELECT nome FROM PRODUTOS) AS sub LIMIT 1"
    assert extract_table_references(sql) == ["PRODUTOS"]


def test_extract_cte_names_nested():
    sql = "WITH a AS (WITH b AS (SELECT 1) SELECT * FROM b), c AS (SELECT 2) SELECT * FROM a, c"
    assert extract_cte_names(sql) == {"a", "b", "c"}


def test_sanitize_strips_comments_keeps_literals():
    cleaned = sanitize_sql("SELECT '--x' AS a -- comment\nFROM t /* block */")
    assert "comment" not in cleaned
    assert "block" not in cleaned
    assert "'--x'" in cleaned
