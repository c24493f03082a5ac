"""
Webhook Server Tests
FastAPI 엔드포인트 (TestClient)
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import delta_page, file_json, folder_json, subscription_json
from onedrive_connector.graph_onedrive_client import GraphOneDriveClient
from onedrive_connector.onedrive_errors import ErrorMessages, OneDriveMisconfigurationError
from onedrive_connector.webhook_server import create_app

PAYLOAD_URL = "https://host.example.com/payload/1"


@pytest.fixture
def app(settings, fake_graph, monkeypatch):
    monkeypatch.setattr(GraphOneDriveClient, "request", fake_graph)
    return create_app(settings)


@pytest.fixture
def client(app):
    return TestClient(app)


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "app": "onedrive"}


class TestGraphNotifications:
    """Graph 알림 수신"""

    def test_validation_token_echo(self, client):
        response = client.post("/webhooks/onedrive?validationToken=abc%20123")

        assert response.status_code == 200
        assert response.text == "abc 123"
        assert response.headers["content-type"].startswith("text/plain")

    def test_accepts_matching_client_state(self, client):
        response = client.post("/webhooks/onedrive", json={"value": [
            {"subscriptionId": "sub-1", "clientState": "test-client-state"},
        ]})

        assert response.status_code == 202
        assert response.json() == {"accepted": 1}

    def test_rejects_wrong_client_state(self, client):
        response = client.post("/webhooks/onedrive", json={"value": [
            {"subscriptionId": "sub-1", "clientState": "forged"},
        ]})

        assert response.status_code == 403

    def test_invalid_json(self, client):
        response = client.post(
            "/webhooks/onedrive", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400


class TestEventEndpoints:
    """호스트 웹훅 이벤트"""

    def test_file_event_commits_token(self, app, client, fake_graph):
        asyncio.run(app.state.token_store.store("sub-1", "T0"))
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})
        fake_graph.add("GET", "/me/drive/root/delta?token=T0", delta_page(
            [file_json("a", parent_id="F1"), file_json("b", parent_id="F2")], delta_token="T1"
        ))

        response = client.post(
            "/events/files?parentFolderId=F1",
            json={"deltaToken": "T0"},
            headers={"Authorization": "Bearer host-token"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["preflight"] is False
        assert [f["id"] for f in body["result"]["files"]] == ["a"]
        assert asyncio.run(app.state.token_store.retrieve("sub-1")) == "T1"

    def test_folder_event_preflight(self, client, fake_graph):
        fake_graph.add("GET", "/me/drive/root/delta?token=T0", delta_page(
            [folder_json("d1", "Docs", parent_id="X")], delta_token="T1"
        ))

        response = client.post("/events/folders?parentFolderId=R", json={"deltaToken": "T0"})

        assert response.json() == {"preflight": True, "result": None}

    def test_missing_delta_token(self, client):
        response = client.post("/events/files", json={})

        assert response.status_code == 400
        assert "deltaToken" in response.json()["error"]

    def test_unauthorized_graph_call(self, client, fake_graph):
        fake_graph.add("GET", "/me/drive/root/delta?token=T0",
                       OneDriveMisconfigurationError(ErrorMessages.UNAUTHORIZED, 401))

        response = client.post("/events/files", json={"deltaToken": "T0"})

        assert response.status_code == 401


class TestSubscriptionEndpoints:
    """구독 관리"""

    def test_subscribe(self, app, client, fake_graph):
        fake_graph.add("GET", "/subscriptions", {"value": []})
        fake_graph.add("POST", "/subscriptions", subscription_json("sub-new"))
        fake_graph.add("GET", "/me/drive/root/delta", delta_page([], delta_token="T0"))

        response = client.post("/subscriptions", json={"payloadUrl": PAYLOAD_URL})

        assert response.json() == {"success": True, "subscription_id": "sub-new"}
        assert app.state.fan_out.payload_urls("sub-new", "updated") == [PAYLOAD_URL]

    def test_subscribe_requires_payload_url(self, client):
        response = client.post("/subscriptions", json={})

        assert response.status_code == 400

    def test_unsubscribe(self, app, client, fake_graph):
        asyncio.run(app.state.fan_out.subscribe(PAYLOAD_URL, "sub-1", "updated"))
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})
        fake_graph.add("DELETE", "/subscriptions/sub-1", {})

        response = client.delete("/subscriptions", params={"payloadUrl": PAYLOAD_URL})

        assert response.json() == {"success": True, "remaining": 0}
        assert len(fake_graph.called("DELETE", "/subscriptions/sub-1")) == 1

    def test_renew(self, client, fake_graph):
        fake_graph.add("GET", "/subscriptions", {"value": [subscription_json("sub-1")]})
        fake_graph.add("PATCH", "/subscriptions/sub-1", subscription_json("sub-1"))

        response = client.post("/subscriptions/renew")

        assert response.json() == {"success": True, "renewed": ["sub-1"]}
