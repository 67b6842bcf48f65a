"""
Unit tests -- QueryValidator: static checks + dry-run cost guard.
"""
import pytest

from insight_copilot.core.errors import ErrorCategory, ProviderError
from insight_copilot.governance.cost_guard import estimate_cost, is_syntax_failure, suggest_optimizations
from insight_copilot.governance.validator import QueryValidator
from insight_copilot.providers.base import WarehouseQueryError

from tests.fakes import FakeWarehouse

_SQL = "SELECT COUNT(*) AS pedidos FROM PEDIDOS WHERE data_pedido >= '2025-01-01' LIMIT 1"


@pytest.mark.asyncio
async def test_valid_query_has_cost_estimate(policy):
    validator = QueryValidator(FakeWarehouse(bytes_processed=2048), policy)
    result = await validator.validate(_SQL)
    assert result.is_valid
    assert result.cost.bytes_processed == 2048
    assert result.tables == ["PEDIDOS"]
    assert result.category is None


@pytest.mark.asyncio
async def test_static_failure_skips_dry_run(policy):
    warehouse = FakeWarehouse()
    result = await QueryValidator(warehouse, policy).validate("SELECT * FROM pedidos; DROP TABLE pedidos")
    assert result.error_code == "MULTIPLE_STATEMENTS"
    assert result.category == ErrorCategory.VALIDATION
    assert warehouse.dry_runs == []


@pytest.mark.asyncio
async def test_cost_ceiling_exceeded(policy):
    warehouse = FakeWarehouse(bytes_processed=policy.max_bytes_processed + 1)
    result = await QueryValidator(warehouse, policy).validate(_SQL)
    assert not result.is_valid
    assert result.error_code == "RESOURCE_LIMIT_EXCEEDED"
    assert result.category == ErrorCategory.RESOURCE_LIMIT
    assert result.cost is not None


@pytest.mark.asyncio
async def test_dry_run_syntax_failure_blocks(policy):
    warehouse = FakeWarehouse(dry_run_error=WarehouseQueryError('syntax error at or near "FORM"'))
    result = await QueryValidator(warehouse, policy).validate(_SQL)
    assert result.error_code == "SYNTAX_ERROR"
    assert result.category == ErrorCategory.SYNTAX


@pytest.mark.asyncio
async def test_dry_run_outage_downgrades_to_warning(policy):
    warehouse = FakeWarehouse(dry_run_error=ProviderError("postgres:dry_run", "connection refused"))
    result = await QueryValidator(warehouse, policy).validate(_SQL)
    assert result.is_valid
    assert "DRY_RUN_FAILED" in [w.code for w in result.warnings]
    assert result.cost is None


def test_validate_static_no_warehouse_call(policy):
    warehouse = FakeWarehouse()
    result = QueryValidator(warehouse, policy).validate_static("SELECT * FROM usuarios LIMIT 1")
    assert result.error_code == "UNAUTHORIZED_TABLE"
    assert warehouse.dry_runs == []


# ── Cost helpers ────────────────────────────────────────

def test_estimate_cost_one_tib():
    cost = estimate_cost(1024 ** 4)
    assert cost.estimated_cost_usd == 5.0
    assert cost.estimated_time_ms > 0


def test_estimate_cost_negative_clamped():
    assert estimate_cost(-10).bytes_processed == 0


@pytest.mark.parametrize("message,expected", [
    ('syntax error at or near "FROM"', True),
    ('relation "foo" does not exist', True),
    ("Unrecognized name: nome_produto", True),
    ("canceling statement due to statement timeout", False),
])
def test_is_syntax_failure(message, expected):
    assert is_syntax_failure(Exception(message)) is expected


def test_suggest_optimizations(policy):
    sql = "SELECT p.nome FROM PEDIDOS ped JOIN PRODUTOS p ON p.sku = ANY(ped.itens) WHERE ped.data_pedido > '2025-01-01'"
    hints = {h.type for h in suggest_optimizations(sql, ["PEDIDOS", "PRODUTOS"], policy)}
    assert hints == {"partition", "clustering"}
