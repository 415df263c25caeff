"""
网关端到端测试

通过 FastAPI TestClient 走完整链路：握手认证 -> 注册 -> 内部接口推送 -> 客户端接收。
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from notification_gateway import main as gateway_main
from notification_gateway.gateway.authenticator import Authenticator
from notification_gateway.main import app
from notification_gateway.models.error_models import CloseCode, ErrorCode

SECRET = "e2e-secret"

GENERATION_COMPLETE = {
    "kind": "GENERATION_COMPLETE",
    "title": "Generation Complete",
    "message": "Your photo generation is ready!",
    "data": {"sessionId": "s-1", "assetId": "a-1"},
    "priority": "high",
}


@pytest.fixture
def tokens() -> Authenticator:
    return Authenticator(secret=SECRET)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", SECRET)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("INTERNAL_API_TOKEN", raising=False)
    with TestClient(app) as test_client:
        yield test_client


class TestServiceEndpoints:
    """测试 HTTP 端点"""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["components"]["listener"] == "disabled"
        assert body["statistics"] == {"online_users": 0, "connections": 0}


class TestNotificationFlow:
    """测试通知推送链路"""

    def test_multi_tab_delivery(self, client, tokens):
        token = tokens.create_access_token("user-1")

        with client.websocket_connect(f"/ws/notifications?token={token}") as tab1:
            welcome = tab1.receive_json()
            assert welcome["type"] == "CONNECTED"
            assert welcome["protocolVersion"] == "1.0"
            assert welcome["data"]["userId"] == "user-1"

            with client.websocket_connect(
                "/ws/notifications", headers={"Authorization": f"Bearer {token}"}
            ) as tab2:
                assert tab2.receive_json()["type"] == "CONNECTED"

                stats = client.get("/stats/users/user-1").json()
                assert stats == {"userId": "user-1", "online": True, "connections": 2}

                result = client.post(
                    "/internal/notifications/users/user-1", json=GENERATION_COMPLETE
                ).json()
                assert result == {"delivered": 2, "userId": "user-1", "online": True}

                frames = [tab1.receive_json(), tab2.receive_json()]
                for frame in frames:
                    assert frame["type"] == "NOTIFICATION"
                    assert frame["data"]["kind"] == "GENERATION_COMPLETE"
                    assert frame["data"]["data"] == {"sessionId": "s-1", "assetId": "a-1"}
                assert frames[0]["data"] == frames[1]["data"]

            result = client.post(
                "/internal/notifications/users/user-1", json=GENERATION_COMPLETE
            ).json()
            assert result["delivered"] == 1
            assert tab1.receive_json()["type"] == "NOTIFICATION"

        assert client.get("/stats/online").json() == {"onlineUsers": 0, "connections": 0}

    def test_offline_user_is_noop(self, client):
        response = client.post(
            "/internal/notifications/users/nobody", json=GENERATION_COMPLETE
        )

        assert response.status_code == 200
        assert response.json() == {"delivered": 0, "userId": "nobody", "online": False}

    def test_broadcast_reaches_every_user(self, client, tokens):
        token_a = tokens.create_access_token("user-a")
        token_b = tokens.create_access_token("user-b")

        with client.websocket_connect(f"/ws/notifications?token={token_a}") as ws_a:
            ws_a.receive_json()
            with client.websocket_connect(f"/ws/notifications?token={token_b}") as ws_b:
                ws_b.receive_json()

                result = client.post(
                    "/internal/notifications/broadcast",
                    json={"type": "system-message", "title": "Maintenance", "message": "Soon"},
                ).json()

                assert result["delivered"] == 2
                assert ws_a.receive_json()["data"]["kind"] == "SYSTEM_MESSAGE"
                assert ws_b.receive_json()["data"]["title"] == "Maintenance"

    def test_invalid_payload_rejected(self, client):
        response = client.post(
            "/internal/notifications/users/user-1", json={"kind": "NOPE", "title": "t"}
        )

        assert response.status_code == 422


class TestHandshakeAuthentication:
    """测试握手认证"""

    def test_expired_token_rejected(self, client, tokens):
        expired = tokens.create_access_token("user-1", expires_delta=timedelta(seconds=-1))

        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"/ws/notifications?token={expired}"):
                pass

        assert exc.value.code == CloseCode.UNAUTHORIZED
        assert client.get("/stats/online").json()["onlineUsers"] == 0

    def test_missing_token_rejected(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/notifications"):
                pass

        assert exc.value.code == CloseCode.UNAUTHORIZED

    def test_foreign_signature_rejected(self, client):
        forged = Authenticator(secret="someone-else").create_access_token("user-1")

        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"/ws/notifications?token={forged}"):
                pass

        assert exc.value.code == CloseCode.UNAUTHORIZED


class TestClientMessages:
    """测试客户端上行消息"""

    def test_ping_pong(self, client, tokens):
        token = tokens.create_access_token("user-1")

        with client.websocket_connect(f"/ws/notifications?token={token}") as ws:
            ws.receive_json()
            ws.send_json({"protocolVersion": "1.0", "type": "PING", "timestamp": 0})

            assert ws.receive_json()["type"] == "PONG"

    def test_malformed_frame_gets_error(self, client, tokens):
        token = tokens.create_access_token("user-1")

        with client.websocket_connect(f"/ws/notifications?token={token}") as ws:
            ws.receive_json()
            ws.send_text("not json")
            error = ws.receive_json()

            assert error["type"] == "ERROR"
            assert error["data"]["errorCode"] == ErrorCode.INVALID_MESSAGE_FORMAT

            # 连接仍可用
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "PONG"

    def test_unsupported_type_gets_error(self, client, tokens):
        token = tokens.create_access_token("user-1")

        with client.websocket_connect(f"/ws/notifications?token={token}") as ws:
            ws.receive_json()
            ws.send_json({"type": "SUBSCRIBE", "data": {"channel": "x"}})
            error = ws.receive_json()

            assert error["data"]["errorCode"] == ErrorCode.UNSUPPORTED_TYPE

    def test_binary_frame_gets_error(self, client, tokens):
        token = tokens.create_access_token("user-1")

        with client.websocket_connect(f"/ws/notifications?token={token}") as ws:
            ws.receive_json()
            ws.send_bytes(b"\x00\x01")
            error = ws.receive_json()

            assert error["type"] == "ERROR"
            assert error["data"]["errorCode"] == ErrorCode.INVALID_MESSAGE_FORMAT

            ws.send_json({"type": "PING"})
            assert ws.receive_json()["type"] == "PONG"

    def test_protocol_version_mismatch_gets_error(self, client, tokens):
        token = tokens.create_access_token("user-1")

        with client.websocket_connect(f"/ws/notifications?token={token}") as ws:
            ws.receive_json()
            ws.send_json({"protocolVersion": "2.0", "type": "PING"})
            error = ws.receive_json()

            assert error["data"]["errorCode"] == ErrorCode.UNSUPPORTED_PROTOCOL_VERSION


class TestInternalToken:
    """测试内部接口令牌"""

    @pytest.fixture
    def guarded_client(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", SECRET)
        monkeypatch.setenv("INTERNAL_API_TOKEN", "internal")
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with TestClient(app) as test_client:
            yield test_client

    def test_missing_token_forbidden(self, guarded_client):
        response = guarded_client.post(
            "/internal/notifications/broadcast", json=GENERATION_COMPLETE
        )

        assert response.status_code == 403

    def test_valid_token_accepted(self, guarded_client):
        response = guarded_client.post(
            "/internal/notifications/broadcast",
            json=GENERATION_COMPLETE,
            headers={"X-Internal-Token": "internal"},
        )

        assert response.status_code == 200
        assert response.json()["delivered"] == 0


class TestInProcessProducer:
    """测试同进程生产者入口"""

    def test_dispatcher_accessor_reaches_connected_user(self, client, tokens):
        token = tokens.create_access_token("user-1")

        with client.websocket_connect(f"/ws/notifications?token={token}") as ws:
            connection_id = ws.receive_json()["data"]["connectionId"]

            registry = gateway_main.get_registry()
            assert registry.get(connection_id).user_id == "user-1"

            dispatcher = gateway_main.get_dispatcher()
            delivered = client.portal.call(
                dispatcher.send_system_message, "user-1", "Scheduled maintenance"
            )

            assert delivered == 1
            frame = ws.receive_json()
            assert frame["data"]["kind"] == "SYSTEM_MESSAGE"
            assert frame["data"]["message"] == "Scheduled maintenance"


class TestDatabaseListener:
    """测试数据库通知监听器的启动与断线"""

    @pytest.fixture
    def pg_connection(self):
        connection = MagicMock()
        connection.add_listener = AsyncMock()
        connection.remove_listener = AsyncMock()
        connection.close = AsyncMock()
        return connection

    @pytest.fixture(autouse=True)
    def database_env(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", SECRET)
        monkeypatch.setenv("DATABASE_URL", "postgresql://db/app")
        monkeypatch.delenv("INTERNAL_API_TOKEN", raising=False)

    def test_unreachable_database_aborts_startup(self):
        with patch(
            "notification_gateway.gateway.event_listener.asyncpg.connect",
            AsyncMock(side_effect=OSError("connection refused")),
        ):
            with pytest.raises(OSError):
                with TestClient(app):
                    pass

        # 启动失败时探活任务尚未创建
        assert gateway_main._health_monitor is None

    def test_lost_listener_connection_reported_by_health(self, pg_connection):
        with patch(
            "notification_gateway.gateway.event_listener.asyncpg.connect",
            AsyncMock(return_value=pg_connection),
        ):
            with TestClient(app) as test_client:
                body = test_client.get("/health").json()
                assert body["components"]["listener"] == "healthy"

                on_terminated = pg_connection.add_termination_listener.call_args.args[0]
                test_client.portal.call(on_terminated, pg_connection)

                body = test_client.get("/health").json()
                assert body["status"] == "degraded"
                assert body["components"]["listener"] == "stopped"
