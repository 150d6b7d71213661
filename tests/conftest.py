"""
Shared test fixtures.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_dir = Path(__file__).parent.parent
sys.path.insert(0, str(project_dir))

import pytest
from unittest.mock import MagicMock, patch
from typing import Generator

from models.allocation import AllocationPeriod
from models.weight_matrix import WeightMatrix
from tests.factories import StatRecordFactory, WeightRowFactory


# ===================
# MOCK SUPABASE CLIENT
# ===================

class MockSupabaseResponse:
    """Mock Supabase query response."""

    def __init__(self, data: list = None, count: int = None):
        self.data = data or []
        self.count = count if count is not None else len(self.data)


class MockSupabaseQuery:
    """Mock Supabase query builder with chainable methods."""

    def __init__(self, data: list = None, count: int = None, log: list = None):
        self._data = data or []
        self._count = count
        self._log = log if log is not None else []

    def select(self, *args, **kwargs):
        return self

    def upsert(self, data, on_conflict: str = ""):
        if isinstance(data, dict):
            data = [data]
        self._data = data
        self._log.append(("upsert", data))
        self._log.append(("on_conflict", on_conflict))
        return self

    @property
    def not_(self):
        self._log.append(("not", None))
        return self

    def delete(self):
        self._log.append(("delete", None))
        return self

    def eq(self, column, value):
        self._log.append(("eq", (column, value)))
        return self

    def in_(self, column, values):
        self._log.append(("in", (column, list(values))))
        return self

    def order(self, column, **kwargs):
        return self

    def limit(self, count):
        return self

    def execute(self) -> MockSupabaseResponse:
        return MockSupabaseResponse(
            data=self._data,
            count=self._count if self._count is not None else len(self._data)
        )


class MockSupabaseTable:
    """Mock Supabase table with configurable responses."""

    def __init__(self, data: list = None, count: int = None, log: list = None):
        self._data = data or []
        self._count = count
        self._log = log

    def select(self, *args, **kwargs):
        return MockSupabaseQuery(self._data.copy(), self._count, self._log)

    def upsert(self, data, on_conflict: str = ""):
        query = MockSupabaseQuery(self._data.copy(), self._count, self._log)
        return query.upsert(data, on_conflict=on_conflict)

    def delete(self):
        query = MockSupabaseQuery([], self._count, self._log)
        return query.delete()


class MockSupabaseClient:
    """
    Mock Supabase client.

    Every call on a table is recorded in calls[table_name] as
    (operation, argument) tuples.
    """

    def __init__(self):
        self._tables = {}
        self.calls: dict[str, list] = {}

    def set_table_data(self, table_name: str, data: list, count: int = None):
        """Configure mock data for a table."""
        self._tables[table_name] = {"data": data, "count": count}

    def table(self, name: str) -> MockSupabaseTable:
        """Get mock table."""
        config = self._tables.get(name, {"data": [], "count": None})
        log = self.calls.setdefault(name, [])
        return MockSupabaseTable(config["data"], config["count"], log)


# ===================
# FIXTURES
# ===================

@pytest.fixture
def mock_supabase() -> MockSupabaseClient:
    """
    Create a mock Supabase client.

    Usage:
        def test_something(mock_supabase):
            mock_supabase.set_table_data("region_customer_statistics", [
                {"region": "城区", "D30": 5, ...}
            ])
    """
    return MockSupabaseClient()


@pytest.fixture
def mock_db(mock_supabase) -> Generator:
    """
    Patch the database client with mock.

    Usage:
        def test_something(mock_db, mock_supabase):
            mock_supabase.set_table_data("allocation_prediction", [...])
            # Now any code using get_supabase_client() gets the mock
    """
    with patch("config.database.get_supabase_client", return_value=mock_supabase):
        with patch("services.customer_statistics_service.get_supabase_client", return_value=mock_supabase):
            with patch("services.write_back_service.get_supabase_client", return_value=mock_supabase):
                yield mock_supabase


@pytest.fixture
def period() -> AllocationPeriod:
    """A fixed allocation period."""
    return AllocationPeriod(year=2025, month=9, week_seq=3)


@pytest.fixture
def uniform_matrix() -> WeightMatrix:
    """One region, weight 10 in every grade (total 300)."""
    return WeightMatrix.from_rows([("全市", WeightRowFactory.uniform(10))])


@pytest.fixture
def two_region_matrix() -> WeightMatrix:
    """Two regions with different customer profiles."""
    return WeightMatrix.from_rows([
        ("城区", WeightRowFactory.uniform(6)),
        ("郊区", WeightRowFactory.uniform(4)),
    ])


@pytest.fixture
def mock_stats_source() -> MagicMock:
    """
    Statistics source returning two regions plus a city-wide row.

    Usage:
        def test_something(mock_stats_source):
            mock_stats_source.fetch_records.return_value = [...]
    """
    source = MagicMock()
    source.fetch_records.return_value = [
        StatRecordFactory.create(region="城区", counts=WeightRowFactory.uniform(6)),
        StatRecordFactory.create(region="郊区", counts=WeightRowFactory.uniform(4)),
        StatRecordFactory.create(region="全市", counts=WeightRowFactory.uniform(10)),
    ]
    return source


@pytest.fixture
def mock_sink() -> MagicMock:
    """Write-back sink that accepts everything."""
    sink = MagicMock()
    sink.write_back.return_value = True
    return sink
