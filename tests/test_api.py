#!/usr/bin/env python3
"""
Tests for the HTTP API
"""

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from smartscale.api.server import APIServer


@pytest.fixture
def orchestrator():
    orchestrator = Mock()
    orchestrator.store.redis.ping.return_value = True
    orchestrator.store.get_history.return_value = [{"event_type": "scale_up_started"}]
    orchestrator.get_status.return_value = {"phase": "idle"}
    orchestrator.handle_tick.return_value = {"status": "noop"}
    orchestrator.handle_interruption.return_value = {"instance_id": "i-0001", "drained": True}
    return orchestrator


@pytest.fixture
def client(orchestrator):
    server = APIServer(orchestrator, {"limits": {"min_nodes": 2}})
    return TestClient(server.app)


class TestAPI:
    def test_root(self, client):
        assert client.get("/").json()["service"] == "SmartScale Autoscaler"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_unhealthy_when_store_down(self, client, orchestrator):
        orchestrator.store.redis.ping.return_value = False

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["state_store_connected"] is False

    def test_status(self, client):
        assert client.get("/status").json() == {"phase": "idle"}

    def test_history(self, client, orchestrator):
        body = client.get("/history", params={"limit": 5}).json()

        assert body["count"] == 1
        orchestrator.store.get_history.assert_called_once_with(5)

    def test_config(self, client):
        assert client.get("/config").json() == {"limits": {"min_nodes": 2}}

    def test_tick(self, client, orchestrator):
        assert client.post("/tick").json() == {"status": "noop"}
        orchestrator.handle_tick.assert_called_once()

    def test_interruption_plain(self, client, orchestrator):
        response = client.post("/interruption", json={"instance_id": "i-0001"})

        assert response.status_code == 200
        orchestrator.handle_interruption.assert_called_once_with("i-0001")

    def test_interruption_event(self, client, orchestrator):
        event = {
            "detail-type": "EC2 Spot Instance Interruption Warning",
            "source": "aws.ec2",
            "detail": {"instance-id": "i-0002", "instance-action": "terminate"}
        }

        assert client.post("/interruption", json=event).status_code == 200
        orchestrator.handle_interruption.assert_called_once_with("i-0002")

    def test_interruption_without_id(self, client, orchestrator):
        assert client.post("/interruption", json={}).status_code == 400
        orchestrator.handle_interruption.assert_not_called()

    def test_other_event_rejected(self, client, orchestrator):
        event = {"detail-type": "EC2 Instance State-change Notification", "detail": {"instance-id": "i-0002"}}

        assert client.post("/interruption", json=event).status_code == 400
        orchestrator.handle_interruption.assert_not_called()
