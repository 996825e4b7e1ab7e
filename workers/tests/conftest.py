# =============================================================================
# workers/tests/conftest.py - Pytest Configuration
# =============================================================================
# Shared fixtures for the settlement import test suite.
#
# Key features:
# - Sets worker environment variables before any package import
# - Builds small in-memory sources for profiling, validation and deployment
# - Writes throwaway CSV uploads for the task and CLI tests
# =============================================================================

import os

# =============================================================================
# Set up test environment BEFORE any imports
# =============================================================================
# settlement_import.config builds its settings object at import time

os.environ.setdefault("SETTLEMENT_IMPORT_ENVIRONMENT", "test")
os.environ.setdefault("SETTLEMENT_IMPORT_LOG_JSON", "false")
os.environ.setdefault("SETTLEMENT_IMPORT_LOG_LEVEL", "WARNING")
os.environ.setdefault("SETTLEMENT_IMPORT_PROGRESS_POLL_INTERVAL_SECONDS", "0.01")

import pytest

from settlement_import.parsers.tabular_source import TabularSource
from settlement_import.validation.column_profiler import ColumnProfiler
from settlement_import.validation.mapping_resolver import MappingResolver
from settlement_import.validation.schema_registry import SchemaRegistry


PARTY_HEADERS = ["first_name", "last_name", "email", "phone", "zip_code"]

PARTY_ROWS = [
    ["Jane", "Doe", "jane@example.com", "555-123-4567", "90210"],
    ["John", "Smith", "john@example.com", "(555) 987-6543", "10001"],
    ["Jane", "Doe", "jane@example.com", "555-123-4567", "90210"],
]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def registry() -> SchemaRegistry:
    """Fresh default settlement schema."""
    return SchemaRegistry()


@pytest.fixture
def party_source() -> TabularSource:
    """Three party rows; rows 1 and 3 are identical."""
    return TabularSource.from_rows(PARTY_HEADERS, PARTY_ROWS, file_name="parties.csv")


@pytest.fixture
def make_party_source():
    """Factory for sources of distinct party rows."""
    def _make(count: int, file_name: str = "parties.csv") -> TabularSource:
        rows = [
            [f"Person{i}", "Tester", f"person{i}@example.com", f"555-010-{i:04d}", "90210"]
            for i in range(count)
        ]
        return TabularSource.from_rows(PARTY_HEADERS, rows, file_name=file_name)
    return _make


@pytest.fixture
def auto_map(registry):
    """Profile a source and resolve its mappings against the registry."""
    def _map(source: TabularSource):
        profiles = ColumnProfiler().profile(source)
        return MappingResolver(registry).resolve(profiles)
    return _map


@pytest.fixture
def party_csv(tmp_path):
    """The party rows written as a CSV upload."""
    lines = [",".join(PARTY_HEADERS)] + [",".join(row) for row in PARTY_ROWS]
    path = tmp_path / "parties.csv"
    path.write_text("\n".join(lines) + "\n")
    return path
