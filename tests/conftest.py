"""Pytest configuration and shared fixtures."""
from __future__ import annotations

from typing import Any

import pytest

from db2_tap.config import AgentConfig, CategoryDefinition
from db2_tap.connection import PING


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )


class FakeDatabaseError(Exception):
    """Stands in for a DB-API driver error."""


class FakeCursor:
    def __init__(self, connection: FakeConnection) -> None:
        self.connection = connection
        self.description: list[tuple[Any, ...]] | None = None
        self._rows: list[tuple[Any, ...]] = []
        self.closed = False
        self.fail_close = False

    def execute(self, sql: str) -> None:
        self.connection.executed.append(sql)
        if self.connection.broken:
            raise FakeDatabaseError("SQL30081N A communication error has been detected.")
        result = self.connection.results.get(sql)
        if isinstance(result, Exception):
            raise result
        if result is None:
            raise FakeDatabaseError(f"SQL0204N undefined name in {sql!r}")
        columns, rows = result
        self.description = [(name, None, None, None, None, None, None) for name in columns]
        self._rows = list(rows)

    def fetchone(self) -> tuple[Any, ...] | None:
        return self._rows.pop(0) if self._rows else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        rows, self._rows = self._rows, []
        return rows

    def close(self) -> None:
        self.closed = True
        if self.fail_close or self.connection.fail_cursor_close:
            raise FakeDatabaseError("cursor close failed")


class FakeConnection:
    """Minimal DB-API connection returning canned results keyed by SQL text."""

    def __init__(self, results: dict[str, Any] | None = None) -> None:
        self.results: dict[str, Any] = {PING: (["1"], [(1,)])}
        self.results.update(results or {})
        self.executed: list[str] = []
        self.cursors: list[FakeCursor] = []
        self.broken = False
        self.closed = False
        self.fail_close = False
        self.fail_cursor_close = False

    def cursor(self) -> FakeCursor:
        cursor = FakeCursor(self)
        self.cursors.append(cursor)
        return cursor

    def close(self) -> None:
        self.closed = True
        if self.fail_close:
            raise FakeDatabaseError("close failed")


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def agent_config() -> AgentConfig:
    return AgentConfig(
        name="PRODDB",
        host="db2.example.com:50001",
        database="SAMPLE",
        user="db2inst1",
        password="s3cr3t-pw",
        properties=None,
        metrics=frozenset({"overview", "tablespace"}),
    )


@pytest.fixture
def categories() -> list[CategoryDefinition]:
    return [
        CategoryDefinition(
            name="overview",
            sql="SELECT OVERVIEW",
            result="row",
        ),
        CategoryDefinition(
            name="tablespace",
            sql="SELECT TABLESPACES",
            result="set",
            value_metrics=("tbsp_utilization_percent",),
        ),
        CategoryDefinition(
            name="transactions",
            sql="SELECT TRANSACTIONS",
            result="row",
            counter_metrics=("commits",),
        ),
    ]


@pytest.fixture
def make_connection():
    """Factory building a FakeConnection from ``{sql: (columns, rows)}``."""
    return FakeConnection


@pytest.fixture
def db_error():
    return FakeDatabaseError
