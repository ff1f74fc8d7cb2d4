"""Tests for /api/v1/utils routes (liveness, health-check)."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from dbanchor.core.config import settings
from dbanchor.main import app


def test_liveness(client: TestClient) -> None:
    r = client.get(f"{settings.API_V1_STR}/utils/liveness/")
    assert r.status_code == 200
    assert r.json() is True


def test_health_check_returns_200_when_ready(client: TestClient) -> None:
    """GET /health-check/ returns 200 with true once the backend is bootstrapped."""
    r = client.get(f"{settings.API_V1_STR}/utils/health-check/")
    assert r.status_code == 200
    assert r.json() is True


def test_health_check_returns_503_when_readiness_fails(client: TestClient) -> None:
    """GET /health-check/ returns 503 with envelope when readiness_check fails."""
    with patch(
        "dbanchor.api.routes.utils.readiness_check", return_value=(False, ["database"])
    ):
        r = client.get(f"{settings.API_V1_STR}/utils/health-check/")
    assert r.status_code == 503
    data = r.json()
    assert data.get("success") is False
    assert "database" in data["data"]


def test_health_check_after_handle_dropped(client: TestClient) -> None:
    app.state.selector.close()
    r = client.get(f"{settings.API_V1_STR}/utils/health-check/")
    assert r.status_code == 503
    assert r.json()["data"] == ["no_backend"]
