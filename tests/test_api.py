#tests/test_api.py

"""Test the health API."""

import pytest
from fastapi.testclient import TestClient

from deployment_engine.api.container import get_deployment, get_monitor
from deployment_engine.api.main import app
from deployment_engine.core.models import ServiceDescriptor
from deployment_engine.health.monitor import HealthMonitor

from conftest import SYNCED_RPC, FakeRpcClient


@pytest.fixture
def client(deployment):
    monitor = HealthMonitor(
        [ServiceDescriptor("postgres", lambda: True), ServiceDescriptor("redis", lambda: False)],
        rpc=FakeRpcClient(SYNCED_RPC),
    )
    app.dependency_overrides[get_monitor] = lambda: monitor
    app.dependency_overrides[get_deployment] = lambda: deployment
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealthApi:
    """Test API routes."""

    def test_liveness(self, client):
        """Test liveness endpoint."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_system_checks(self, client):
        """Test the full system report."""
        response = client.get("/system-checks")

        body = response.json()
        assert response.status_code == 200
        assert body["healthy"] is False
        assert body["services"] == {"up": ["postgres"], "down": ["redis"]}
        assert body["sync"]["state"] == "synced"
        assert body["certificate"] is None

    def test_services(self, client):
        """Test the services endpoint."""
        assert client.get("/system-checks/services").json()["down"] == ["redis"]

    def test_sync(self, client):
        """Test the sync endpoint."""
        body = client.get("/system-checks/sync").json()

        assert body["state"] == "synced"
        assert body["peer_count"] == 5
        assert body["current_block"] == 0x1a2b3c
