"""Tests for the FastAPI main application factory and error translation.

This module validates that:
    - The FastAPI app is correctly instantiated via main.create_app,
    - OpenAPI metadata (title, version) matches the project contract,
    - The treatment and logger routers are registered,
    - The /health endpoint returns the expected response,
    - Application errors are rendered as ``{"detail", "errors"}`` JSON.

See Also:
    - backend/restoration/main.py for the application factory.
"""

from __future__ import annotations

from typing import cast

import fastapi
from fastapi import testclient

from restoration import main
from restoration.core import errors
from restoration.services import shapefile


def test_create_app() -> None:
    """Test that create_app returns a configured FastAPI instance."""
    app = main.create_app()
    assert app is not None
    assert app.title == "Restoration Tracker API"
    assert app.version == "0.1.0"


def test_health_endpoint() -> None:
    """Test the health check endpoint returns ok status."""
    client = testclient.TestClient(main.create_app())
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_app_includes_routers() -> None:
    """Test that all API routers are included in the app."""
    app = main.create_app()
    routes: list[str] = [
        cast(str, getattr(route, "path", ""))
        for route in app.routes  # type: ignore[attr-defined]
        if hasattr(route, "path")
    ]
    assert "/health" in routes
    assert "/api/logger" in routes
    assert "/api/project/{project_id}/treatments" in routes
    assert "/api/project/{project_id}/treatments/years" in routes
    assert "/api/project/{project_id}/treatments/upload" in routes
    assert "/api/project/{project_id}/treatments/unit/{treatment_unit_id}" in routes


def _app_raising(exc: Exception) -> testclient.TestClient:
    app = fastapi.FastAPI()
    main.register_exception_handlers(app)

    @app.get("/boom")
    def boom() -> None:
        raise exc

    return testclient.TestClient(app)


def test_bad_request_carries_errors() -> None:
    client = _app_raising(
        errors.BadRequest("Failed to parse treatment features", ["Year - missing"])
    )
    response = client.get("/boom")
    assert response.status_code == 400
    assert response.json() == {
        "detail": "Failed to parse treatment features",
        "errors": ["Year - missing"],
    }


def test_server_error_hides_details() -> None:
    client = _app_raising(
        errors.QueryExecutionError("Failed to set user context", ["secret"])
    )
    response = client.get("/boom")
    assert response.status_code == 500
    assert response.json() == {"detail": "Failed to set user context", "errors": []}


def test_connection_unavailable_status() -> None:
    response = _app_raising(errors.ConnectionUnavailable("pool exhausted")).get(
        "/boom"
    )
    assert response.status_code == 503


def test_command_error_is_bad_request() -> None:
    response = _app_raising(shapefile.CommandError("Unable to open units.shp")).get(
        "/boom"
    )
    assert response.status_code == 400
    assert response.json() == {
        "detail": "Failed to read shapefile",
        "errors": ["Unable to open units.shp"],
    }
