"""Tests for the HTTP surface with a runtime wired to in-memory platforms."""

import time

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from topicbridge.bridge.envelope import DestinationUpdate
from topicbridge.config.redis_config import RedisConfig
from topicbridge.config.telegram_config import TelegramConfig
from topicbridge.core.runtime import BridgeRuntime
from topicbridge.server import create_app

from tests.conftest import ADMIN_ID, ALICE, OPERATOR_CHAT_ID, make_config
from tests.fakes.fake_document_store import FakeDocumentStore
from tests.fakes.fake_source_platform import FakeSourcePlatform, text_event
from tests.fakes.fake_telegram_adapter import FakeTelegramAdapter

WEBHOOK_SECRET = "s3cret"
OPERATOR_TOKEN = "op-token"


@pytest.fixture
def runtime(tmp_path):
    return BridgeRuntime(
        bridge_config=make_config(tmp_path, operator_api_token=OPERATOR_TOKEN),
        telegram_config=TelegramConfig(bot_token="123:abc", webhook_secret=WEBHOOK_SECRET),
        redis_config=RedisConfig(),
        source=FakeSourcePlatform(),
        destination=FakeTelegramAdapter(),
        document_store=FakeDocumentStore(),
    )


@pytest.fixture
def client(runtime):
    app = create_app()
    app.state.runtime = runtime
    with TestClient(app, headers={"Authorization": f"Bearer {OPERATOR_TOKEN}"}) as test_client:
        yield test_client


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


class TestHealth:

    def test_healthy_runtime(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["store"] == "alive"
        assert body["destination"] == "connected"
        assert body["bridge_enabled"] is True

    def test_degraded_when_store_down(self, client, runtime):
        runtime.document_store.alive = False
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["store"] == "unreachable"

    def test_metrics_exposed(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "bridge_active_queues" in response.text


class TestBridgeEndpoints:

    def test_stats(self, client):
        body = client.get("/api/bridge/stats").json()

        assert body["enabled"] is True
        assert body["active_media_sessions"] == 0
        assert body["modules"]["registered"] == ["operator"]
        assert "bridge_on" in body["modules"]["commands"]

    def test_enable_disable(self, client):
        assert client.post("/api/bridge/disable").json()["enabled"] is False
        assert client.get("/health").json()["bridge_enabled"] is False
        assert client.post("/api/bridge/enable").json()["enabled"] is True

    def test_suspend_and_resume(self, client):
        url = f"/api/bridge/conversations/{ALICE}"

        assert client.post(f"{url}/suspend").json()["ok"] is True
        assert client.post(f"{url}/suspend").json()["message"] == "already suspended"
        assert ALICE in client.get("/api/bridge/stats").json()["suspended"]

        assert client.post(f"{url}/resume").json()["ok"] is True
        assert client.post(f"{url}/resume").json()["ok"] is False

    def test_resync_unknown_conversation(self, client):
        body = client.post(f"/api/bridge/conversations/{ALICE}/resync").json()
        assert body["state"] == "unmapped"

    def test_link_user_requires_mapping(self, client):
        response = client.post("/api/bridge/users", json={"destination_user_id": 42, "source_chat_id": ALICE})
        assert response.status_code == 404

    def test_source_events_flow_through_runtime(self, client, runtime):
        # The fake source queue belongs to the app event loop
        client.portal.call(runtime.source.push, text_event(ALICE, "M1", "hello"))

        assert wait_for(lambda: client.get("/api/bridge/stats").json()["outcomes"].get("delivered") == 1)
        assert client.get("/api/bridge/mappings/counts").json()["chats"] == 1

        response = client.post("/api/bridge/users", json={"destination_user_id": 42, "source_chat_id": ALICE})
        assert response.status_code == 200
        assert client.get("/api/bridge/mappings/counts").json()["users"] == 1


class TestOperatorAuth:

    def test_missing_token_rejected(self, client):
        del client.headers["Authorization"]

        assert client.post("/api/bridge/disable").status_code == 401
        assert client.get("/api/bridge/stats").status_code == 401
        assert client.get("/health").json()["bridge_enabled"] is True

    def test_wrong_token_rejected(self, client):
        response = client.post("/api/bridge/disable", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401
        assert client.get("/health").json()["bridge_enabled"] is True

    def test_unconfigured_token_closes_routes(self, client, runtime):
        runtime.bridge_config.operator_api_token = SecretStr("")

        assert client.post(f"/api/bridge/conversations/{ALICE}/suspend").status_code == 403
        assert ALICE not in runtime.operator.stats()["suspended"]

    def test_health_and_metrics_stay_open(self, client):
        del client.headers["Authorization"]

        assert client.get("/health").status_code == 200
        assert client.get("/metrics").status_code == 200


class TestRuntimeCommands:

    def test_admin_command_reaches_registered_module(self, client, runtime):
        assert runtime.controller._modules is runtime.modules

        update = DestinationUpdate(chat_id=OPERATOR_CHAT_ID, message_id=7, user_id=ADMIN_ID, text="/bridge_off")
        assert client.portal.call(runtime.controller.handle_destination_update, update) is True

        assert wait_for(lambda: runtime.controller.enabled is False)
        assert runtime.destination.texts_in(None, chat_id=OPERATOR_CHAT_ID) == ["⏸️ Bridge disabled"]


class TestWebhook:

    def test_bad_secret_rejected(self, client):
        response = client.post(
            "/api/telegram/webhook",
            json={"update_id": 1},
            headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"},
        )
        assert response.status_code == 403

    def test_missing_secret_rejected(self, client):
        assert client.post("/api/telegram/webhook", json={"update_id": 1}).status_code == 403


class TestRuntimeNotStarted:

    def test_endpoints_unavailable_before_startup(self):
        client = TestClient(create_app())
        assert client.get("/api/bridge/stats").status_code == 503
        assert client.get("/health").json()["status"] == "error"
