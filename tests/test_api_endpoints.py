"""
Tests for the HTTP and WebSocket routes with dependency overrides.
"""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from cbo_bro.core.dependencies import (
    get_admin_auth_service,
    get_chat_service,
    get_config_service,
    get_connection_registry,
    get_session_store,
    get_telegram_adapter,
    get_websocket_handler,
    get_whitelist_service,
)
from cbo_bro.main import app
from cbo_bro.services.admin_auth_service import AdminAuthService
from cbo_bro.services.chat_service import ChatService
from cbo_bro.services.llm import FakeLLMClient
from cbo_bro.services.tools import ToolRegistry
from cbo_bro.services.websocket import ConnectionRegistry, WebSocketHandler, WebSocketMessageParser

ADMIN_ID = 111
USER_ID = 222
STRANGER_ID = 333


@pytest.fixture
def auth_service():
    return AdminAuthService(secret="test-secret")


@pytest.fixture
def telegram_adapter():
    return {"adapter": None}


@pytest.fixture
def client(session_store, config_service, whitelist, auth_service, telegram_adapter):
    llm = FakeLLMClient()
    registry = ConnectionRegistry()
    chat_service = ChatService(session_store, llm, config_service)
    handler = WebSocketHandler(
        message_parser=WebSocketMessageParser(),
        session_store=session_store,
        llm_client=llm,
        tools=ToolRegistry.with_defaults(),
        registry=registry,
        llm_options=chat_service.llm_options,
    )
    app.dependency_overrides.update({
        get_session_store: lambda: session_store,
        get_config_service: lambda: config_service,
        get_whitelist_service: lambda: whitelist,
        get_admin_auth_service: lambda: auth_service,
        get_chat_service: lambda: chat_service,
        get_connection_registry: lambda: registry,
        get_websocket_handler: lambda: handler,
        get_telegram_adapter: lambda: telegram_adapter["adapter"],
    })
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(auth_service):
    return {"Authorization": f"Bearer {auth_service.create_token(ADMIN_ID, username='boss')}"}


class TestPublicRoutes:
    def test_health(self, client):
        r = client.get("/health")

        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"
        assert data["service"] == "cbo-bro"

    def test_status(self, client, session_store):
        session_store.get_or_create("s1")

        data = client.get("/api/status").json()

        assert data["status"] == "online"
        assert data["sessions"] == 1
        assert data["connections"] == 0
        assert data["sessionConnections"] is None

    def test_status_counts_session_connections(self, client):
        with client.websocket_connect("/ws?sessionId=tab-session") as ws:
            assert ws.receive_json()["type"] == "connection.established"

            shared = client.get("/api/status", params={"sessionId": "tab-session"}).json()
            other = client.get("/api/status", params={"sessionId": "nobody"}).json()

        assert shared["connections"] == 1
        assert shared["sessionConnections"] == 1
        assert other["sessionConnections"] == 0

    def test_run_enables_transport_ping(self, monkeypatch):
        import uvicorn

        from cbo_bro.core.config import config
        from cbo_bro.main import run

        uvicorn_run = MagicMock()
        monkeypatch.setattr(uvicorn, "run", uvicorn_run)

        run()

        kwargs = uvicorn_run.call_args.kwargs
        assert kwargs["ws_ping_interval"] == config.heartbeat_interval
        assert kwargs["ws_ping_timeout"] == config.heartbeat_interval


class TestChatApi:
    def test_message_and_history(self, client):
        r = client.post("/api/chat/message", json={"userId": USER_ID, "message": "hi"})

        assert r.status_code == 200
        assert r.json() == {"response": "Echo: hi"}

        history = client.get(f"/api/chat/history/{USER_ID}").json()["messages"]
        assert [(m["role"], m["content"]) for m in history] == [("user", "hi"), ("assistant", "Echo: hi")]
        assert "timestamp" in history[0]

    def test_message_rejected_for_unknown_user(self, client, session_store):
        r = client.post("/api/chat/message", json={"userId": STRANGER_ID, "message": "hi"})

        assert r.status_code == 403
        assert r.json()["error"] == "Access denied"
        assert r.json()["error_code"] == "ACCESS_DENIED"
        assert session_store.count() == 0

    def test_history_rejected_for_unknown_user(self, client):
        assert client.get(f"/api/chat/history/{STRANGER_ID}").status_code == 403

    def test_history_of_new_user_is_empty(self, client):
        assert client.get(f"/api/chat/history/{USER_ID}").json() == {"messages": []}

    def test_clear(self, client):
        client.post("/api/chat/message", json={"userId": str(USER_ID), "message": "hi"})

        r = client.post("/api/chat/clear", json={"userId": USER_ID})

        assert r.json() == {"success": True}
        assert client.get(f"/api/chat/history/{USER_ID}").json()["messages"] == []

    def test_empty_message_is_invalid(self, client):
        assert client.post("/api/chat/message", json={"userId": USER_ID, "message": ""}).status_code == 422

    @pytest.mark.parametrize(
        "user_id,expected",
        [
            (ADMIN_ID, {"authorized": True, "isAdmin": True}),
            (USER_ID, {"authorized": True, "isAdmin": False}),
            (STRANGER_ID, {"authorized": False, "isAdmin": False}),
        ],
    )
    def test_auth_check(self, client, user_id, expected):
        assert client.post("/api/auth/check", json={"userId": user_id}).json() == expected


class TestWebSocketRoute:
    def test_chat_over_websocket(self, client, session_store):
        with client.websocket_connect("/ws?sessionId=web-1") as ws:
            established = ws.receive_json()
            ws.send_json({"type": "chat", "content": "hi there"})
            received = []
            while True:
                message = ws.receive_json()
                received.append(message)
                if message["type"] in ("stream.end", "stream.error"):
                    break

        assert established["type"] == "connection.established"
        assert established["sessionId"] == "web-1"
        assert received[0]["type"] == "stream.start"
        assert received[-1] == {
            "type": "stream.end",
            "messageId": received[0]["messageId"],
            "message": "Echo: hi there",
        }
        assert "".join(m["content"] for m in received if m["type"] == "stream.chunk") == "Echo: hi there"
        assert [m.role for m in session_store.get_history("web-1")] == ["user", "assistant"]


class TestTelegramWebhook:
    @pytest.mark.parametrize("path", ["/telegram-webhook", "/webhook/main"])
    def test_without_bot(self, client, path):
        r = client.post(path, json={"update_id": 1})

        assert r.status_code == 200
        assert r.json() == {"ok": True}

    def test_processing_error_still_acknowledged(self, client, telegram_adapter):
        adapter = MagicMock()
        adapter.process_webhook = AsyncMock(side_effect=RuntimeError("boom"))
        telegram_adapter["adapter"] = adapter

        r = client.post("/telegram-webhook", json={"update_id": 1})

        assert r.status_code == 200
        assert r.json() == {"ok": True}
        adapter.process_webhook.assert_awaited_once_with({"update_id": 1})


class TestAdminAuthMiddleware:
    def test_missing_token(self, client):
        r = client.get("/api/admin/config")

        assert r.status_code == 401
        assert r.json() == {"error": "No token provided"}

    def test_invalid_token(self, client):
        r = client.get("/api/admin/config", headers={"Authorization": "Bearer garbage"})

        assert r.status_code == 401

    def test_non_admin_token(self, client, auth_service):
        token = auth_service.create_token(USER_ID)

        r = client.get("/api/admin/config", headers={"Authorization": f"Bearer {token}"})

        assert r.status_code == 403
        assert r.json() == {"error": "Admin access required"}

    def test_admin_token(self, client, admin_headers):
        r = client.get("/api/admin/config", headers=admin_headers)

        assert r.status_code == 200
        assert r.json()["model_settings"]["provider"] == "anthropic"


class TestAdminApi:
    @pytest.fixture(autouse=True)
    def development(self, monkeypatch):
        from cbo_bro.core.config import config

        monkeypatch.setattr(config, "environment", "development")

    def test_login(self, client, auth_service):
        r = client.post("/api/admin/auth", json={"id": ADMIN_ID, "username": "boss", "first_name": "Boss"})

        assert r.status_code == 200
        assert auth_service.decode_token(r.json()["token"])["userId"] == ADMIN_ID
        assert r.json()["user"]["username"] == "boss"

    def test_login_non_admin(self, client):
        r = client.post("/api/admin/auth", json={"id": USER_ID})

        assert r.status_code == 403

    def test_save_invalid_config(self, client, admin_headers):
        config = client.get("/api/admin/config", headers=admin_headers).json()
        config["model_settings"]["temperature"] = 3

        r = client.post("/api/admin/config", json={"config": config}, headers=admin_headers)

        assert r.status_code == 400
        assert r.json()["error_code"] == "CONFIG_VALIDATION_ERROR"

    def test_prompt_update(self, client, admin_headers, config_service):
        prompt = "You are CBO-Bro, a sharp business optimization advisor for founders."

        r = client.post("/api/admin/prompt", json={"prompt": prompt}, headers=admin_headers)

        assert r.json() == {"success": True}
        assert client.get("/api/admin/prompt", headers=admin_headers).json() == {"prompt": prompt}
        assert config_service.get_history()[0].system_prompt == prompt

    def test_config_test_console(self, client, admin_headers):
        r = client.post("/api/admin/test", json={"message": "Our revenue is flat"}, headers=admin_headers)

        data = r.json()
        assert data["response"] == "Echo: Our revenue is flat"
        assert data["flow"] == "Cash Flow"
        assert data["tokens"] > 0

    def test_deploy_and_rollback(self, client, admin_headers):
        deployed = client.post("/api/admin/deploy", json={"environment": "production"}, headers=admin_headers).json()

        assert deployed["success"] is True
        history = client.get("/api/admin/deploy/history", headers=admin_headers).json()
        assert history[0]["deployed_by"] == "boss"
        assert client.get("/api/admin/deploy/status", headers=admin_headers).json()["total_deployments"] == 2

        r = client.post("/api/admin/deploy/rollback", json={"version": deployed["version"]}, headers=admin_headers)
        assert r.json() == {"success": True}

        r = client.post("/api/admin/deploy/rollback", json={"version": "v0.0.1"}, headers=admin_headers)
        assert r.status_code == 404

    def test_export_import(self, client, admin_headers):
        exported = client.get("/api/admin/config/export", headers=admin_headers).json()
        exported["active_config"]["model_settings"]["max_tokens"] = 2000

        r = client.post("/api/admin/config/import", json=exported, headers=admin_headers)

        assert r.json() == {"success": True}
        assert client.get("/api/admin/config", headers=admin_headers).json()["model_settings"]["max_tokens"] == 2000

    def test_analytics(self, client, admin_headers, session_store):
        session_store.get_or_create("a")
        session_store.append_message("a", "user", "Customer churn is up")
        session_store.append_message("a", "assistant", "Let's look at retention")
        session_store.get_or_create("b")
        session_store.append_message("b", "user", "Hello")

        stats = client.get("/api/admin/analytics/stats", headers=admin_headers).json()
        flows = client.get("/api/admin/analytics/flows", headers=admin_headers).json()

        assert stats["total_queries"] == 2
        assert stats["total_sessions"] == 2
        assert flows == {"value": 1, "info": 0, "work": 0, "cash": 0, "general": 1}
