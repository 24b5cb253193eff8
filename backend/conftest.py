"""Pytest configuration and shared fakes for the backend tests.

The fakes stand in for psycopg2 clients, the connection pool and a
treatment database, so no test needs a running PostgreSQL server.
"""

from __future__ import annotations

import itertools
import pathlib
import sys
from collections.abc import Callable
from typing import Any

import pytest

BACKEND_ROOT = pathlib.Path(__file__).resolve().parent

if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from restoration.db import database  # noqa: E402

Handler = Callable[[str, Any], "list[dict[str, Any]] | Exception | None"]


def default_handler(text: str, values: Any) -> list[dict[str, Any]] | None:
    """Answer the user context call; every other statement returns nothing."""
    if "api_set_context" in text:
        return [{"api_set_context": 7}]
    return None


class FakeCursor:
    def __init__(self, client: FakeClient) -> None:
        self.client = client
        self.description: list[tuple[str]] | None = None
        self.rowcount = -1
        self._rows: list[dict[str, Any]] = []

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(self, *args: Any) -> None:
        pass

    def execute(self, text: str, values: Any = None) -> None:
        self.client.executed.append((text, values))
        result = self.client.handler(text, values)
        if isinstance(result, Exception):
            raise result
        if result is None:
            self.description = None
            self.rowcount = 1
            self._rows = []
        else:
            self.description = [("column",)]
            self.rowcount = len(result)
            self._rows = result

    def fetchall(self) -> list[dict[str, Any]]:
        return self._rows


class FakeClient:
    """Mock psycopg2 connection recording statements and transaction calls."""

    def __init__(self, handler: Handler = default_handler) -> None:
        self.handler = handler
        self.executed: list[tuple[str, Any]] = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory: Any = None) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


class FakePool:
    """Mock DBPool handing out a single FakeClient."""

    def __init__(self, client: FakeClient) -> None:
        self.client = client
        self.acquired = 0
        self.returned: list[FakeClient] = []

    def acquire(self) -> FakeClient:
        self.acquired += 1
        return self.client

    def put(self, client: FakeClient) -> None:
        self.returned.append(client)


class InMemoryTreatmentConnection:
    """Connection answering the treatment statements from in-memory tables.

    Statements are recognised by their text, so the real statement builders
    and service code run unchanged.
    """

    FEATURE_TYPES = [
        {"feature_type_id": 1, "name": "Other"},
        {"feature_type_id": 2, "name": "Riparian"},
    ]
    TREATMENT_TYPES = [
        {"treatment_type_id": 3, "name": "Seeding"},
        {"treatment_type_id": 4, "name": "Tree Felling"},
    ]

    def __init__(self) -> None:
        self.units: dict[int, dict[str, Any]] = {}
        self.treatments: dict[int, dict[str, Any]] = {}
        self.links: list[tuple[int, int]] = []
        self._ids = itertools.count(1)
        self.statements: list[str] = []
        self.state = "closed"
        self.commits = 0
        self.rollbacks = 0

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    def open(self) -> None:
        if self.state == "closed":
            self.state = "open"

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def release(self) -> None:
        if self.state == "open":
            self.state = "released"

    def system_user_id(self) -> int:
        return 7

    def sql(self, statement: database.SQLStatement) -> database.QueryResult:
        return self.query(statement.text, statement.values)

    def query_builder_sql(
        self, builder: database.ComposedStatement
    ) -> database.QueryResult:
        return self.query(builder.query.as_string(None), builder.values)

    def query(self, text: str, values: Any = None) -> database.QueryResult:
        self.statements.append(text)
        rows = self._answer(text, values or {})
        return database.QueryResult(rows=rows, row_count=len(rows))

    def _project_units(self, values: dict[str, Any]) -> set[int]:
        return {
            unit_id
            for unit_id, unit in self.units.items()
            if unit["project_id"] == values["project_id"]
            and values.get("treatment_unit_id") in (None, unit_id)
        }

    def _answer(self, text: str, values: dict[str, Any]) -> list[dict[str, Any]]:
        if "FROM feature_type" in text:
            return list(self.FEATURE_TYPES)
        if "FROM treatment_type" in text:
            return list(self.TREATMENT_TYPES)
        if "INSERT INTO treatment_unit" in text:
            unit_id = next(self._ids)
            self.units[unit_id] = dict(values)
            return [{"treatment_unit_id": unit_id}]
        if "INSERT INTO treatment_treatment_type" in text:
            self.links.append((values["treatment_id"], values["treatment_type_id"]))
            return [{"treatment_treatment_type_id": len(self.links)}]
        if "INSERT INTO treatment" in text:
            treatment_id = next(self._ids)
            self.treatments[treatment_id] = dict(values)
            return [{"treatment_id": treatment_id}]
        if "SELECT treatment_unit_id" in text:
            return [
                {"treatment_unit_id": unit_id}
                for unit_id, unit in self.units.items()
                if unit["project_id"] == values["project_id"]
                and unit["feature_type_id"] == values["feature_type_id"]
                and unit["name"] == values["name"]
            ]
        if "SELECT treatment_id" in text:
            return [
                {"treatment_id": treatment_id}
                for treatment_id, treatment in self.treatments.items()
                if treatment["treatment_unit_id"] == values["treatment_unit_id"]
                and treatment["year"] == values["year"]
            ]
        if "SELECT DISTINCT t.year" in text:
            unit_ids = self._project_units(values)
            years = {
                treatment["year"]
                for treatment in self.treatments.values()
                if treatment["treatment_unit_id"] in unit_ids
            }
            return [{"year": year} for year in sorted(years)]
        if "DELETE FROM treatment_treatment_type" in text:
            unit_ids = self._project_units(values)
            treatment_ids = {
                treatment_id
                for treatment_id, treatment in self.treatments.items()
                if treatment["treatment_unit_id"] in unit_ids
            }
            self.links = [link for link in self.links if link[0] not in treatment_ids]
            for treatment_id in treatment_ids:
                del self.treatments[treatment_id]
            for unit_id in unit_ids:
                del self.units[unit_id]
            return []
        raise AssertionError(f"unexpected statement: {text}")


@pytest.fixture
def keycloak_token() -> dict[str, Any]:
    return {
        "preferred_username": "jdoe@idir",
        "idir_user_guid": "AbC123DeF",
        "idir_username": "jdoe",
        "identity_provider": "idir",
    }


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def fake_pool(fake_client: FakeClient) -> FakePool:
    return FakePool(fake_client)


@pytest.fixture
def in_memory_connection() -> InMemoryTreatmentConnection:
    return InMemoryTreatmentConnection()
