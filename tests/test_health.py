"""Tests for the health check endpoint."""

import pytest
from fastapi.testclient import TestClient

from directupload.main import create_app


@pytest.fixture
def client(make_router):
    """Create test client."""
    return TestClient(create_app(make_router({})))


def test_health_endpoint(client):
    """Test that the health endpoint returns correct response."""
    response = client.get("/health")

    assert response.status_code == 200

    data = response.json()
    assert "status" in data
    assert "service" in data
    assert "version" in data
    assert data["status"] == "ok"


def test_health_endpoint_values(client):
    """Test that the health endpoint returns expected values."""
    response = client.get("/health")

    data = response.json()
    assert data["service"] == "directupload"
    assert data["version"] == "0.1.0"
