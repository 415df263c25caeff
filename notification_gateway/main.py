"""
通知网关服务主入口

轻量级实时通知网关，支持:
- WebSocket: /ws/notifications (已认证客户端的通知推送通道)
- HTTP REST: /, /health, /stats/* (服务状态与在线查询)
- 内部生产者接口: /internal/notifications/* (生成任务、质量分析任务调用)
- 数据库通知: notification.user / notification.broadcast (设置 DATABASE_URL 时启用)
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import GatewaySettings, load_settings
from .gateway import (
    Authenticator,
    ConnectionRegistry,
    Dispatcher,
    HealthMonitor,
    NotificationListener,
)
from .models.error_models import CloseCode, ErrorCode
from .models.notification import DispatchResult, NotificationPayload

# 配置日志
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# 全局组件实例
_settings: GatewaySettings | None = None
_registry: ConnectionRegistry | None = None
_authenticator: Authenticator | None = None
_dispatcher: Dispatcher | None = None
_health_monitor: HealthMonitor | None = None
_listener: NotificationListener | None = None


def get_dispatcher() -> Dispatcher | None:
    """获取分发器（供同进程内的生产者调用）"""
    return _dispatcher


def get_registry() -> ConnectionRegistry | None:
    return _registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理

    启动时初始化注册表、分发器、探活监控和数据库通知监听器，
    关闭时清理资源。
    """
    global _settings, _registry, _authenticator, _dispatcher
    global _health_monitor, _listener

    logger.info("Starting Notification Gateway...")

    _health_monitor = None
    _listener = None
    _settings = load_settings()
    if not _settings.jwt_secret:
        logger.warning("JWT_SECRET 未配置，所有 WebSocket 握手都将被拒绝")

    # 1. 注册表（唯一的共享可变状态）
    _registry = ConnectionRegistry()
    logger.info("ConnectionRegistry initialized")

    # 2. 认证器
    _authenticator = Authenticator(
        secret=_settings.jwt_secret,
        algorithm=_settings.jwt_algorithm,
        user_claim=_settings.jwt_user_claim,
    )

    # 3. 分发器
    _dispatcher = Dispatcher(_registry)
    logger.info("Dispatcher initialized")

    # 4. 数据库通知监听器（可选，连接失败则启动中止，此时尚未创建后台任务）
    if _settings.database_url:
        _listener = NotificationListener(_settings.database_url, _dispatcher)
        await _listener.start()
    else:
        logger.info("DATABASE_URL 未配置，跳过数据库通知监听")

    # 5. 探活监控
    _health_monitor = HealthMonitor(
        _registry,
        probe_interval_ms=_settings.probe_interval_ms,
        probe_timeout_ms=_settings.probe_timeout_ms,
    )
    await _health_monitor.start()

    logger.info("Notification Gateway started successfully")

    yield

    logger.info("Shutting down Notification Gateway...")

    # 1. 停止数据库通知监听器
    if _listener:
        await _listener.stop()
        _listener = None

    # 2. 停止探活监控
    if _health_monitor:
        await _health_monitor.stop()

    # 3. 关闭所有连接
    if _registry:
        for connection in _registry.all_connections():
            await _registry.close_connection(connection, code=CloseCode.GOING_AWAY)

    logger.info("Notification Gateway shutdown complete")


# 创建 FastAPI 应用
app = FastAPI(
    title="Notification Gateway",
    description="AI 内容生成平台实时通知网关",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=load_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _check_internal_token(token: Optional[str]) -> None:
    expected = _settings.internal_api_token if _settings else None
    if expected and token != expected:
        raise HTTPException(status_code=403, detail="Invalid internal token")


def _require_dispatcher() -> Dispatcher:
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Gateway not initialized")
    return _dispatcher


# ========== HTTP REST 端点 ==========


@app.get("/")
async def root() -> JSONResponse:
    """根路径 - 返回服务状态和版本信息"""
    return JSONResponse(
        content={
            "service": "Notification Gateway",
            "version": "1.0.0",
            "status": "running",
        }
    )


@app.get("/health")
async def health() -> JSONResponse:
    """健康检查端点

    Returns:
        健康状态 JSON 响应
    """
    listener_status = "disabled"
    if _listener is not None:
        listener_status = "healthy" if _listener.is_running else "stopped"

    status = "healthy" if _registry is not None else "starting"
    if status == "healthy" and listener_status == "stopped":
        status = "degraded"

    return JSONResponse(
        content={
            "status": status,
            "components": {
                "websocket": "healthy" if _registry is not None else "not initialized",
                "listener": listener_status,
            },
            "statistics": {
                "online_users": _registry.count_online_users() if _registry else 0,
                "connections": _registry.count_connections() if _registry else 0,
            },
        }
    )


@app.get("/stats/online")
async def online_stats() -> JSONResponse:
    """在线用户数（运维查询）"""
    return JSONResponse(
        content={
            "onlineUsers": _registry.count_online_users() if _registry else 0,
            "connections": _registry.count_connections() if _registry else 0,
        }
    )


@app.get("/stats/users/{user_id}")
async def user_stats(user_id: str) -> JSONResponse:
    """用户是否在线（运维查询）"""
    connections = _registry.connections_for(user_id) if _registry else []
    return JSONResponse(
        content={
            "userId": user_id,
            "online": bool(connections),
            "connections": len(connections),
        }
    )


# ========== 内部生产者接口 ==========


@app.post("/internal/notifications/users/{user_id}", response_model=DispatchResult)
async def notify_user(
    user_id: str,
    payload: NotificationPayload,
    x_internal_token: Optional[str] = Header(default=None),
) -> DispatchResult:
    """推送通知给指定用户（用户不在线时丢弃）"""
    _check_internal_token(x_internal_token)
    dispatcher = _require_dispatcher()
    delivered = await dispatcher.send_to_user(user_id, payload)
    return DispatchResult(delivered=delivered, user_id=user_id, online=delivered > 0)


@app.post("/internal/notifications/broadcast", response_model=DispatchResult)
async def notify_broadcast(
    payload: NotificationPayload,
    x_internal_token: Optional[str] = Header(default=None),
) -> DispatchResult:
    """广播通知给所有在线连接"""
    _check_internal_token(x_internal_token)
    dispatcher = _require_dispatcher()
    delivered = await dispatcher.broadcast(payload)
    return DispatchResult(delivered=delivered, online=delivered > 0)


# ========== WebSocket 端点 ==========


@app.websocket("/ws/notifications")
async def ws_endpoint(websocket: WebSocket) -> None:
    """WebSocket 端点 /ws/notifications

    Args:
        websocket: FastAPI WebSocket 连接
    """
    if _registry is None or _authenticator is None or _settings is None:
        await websocket.close(code=CloseCode.INTERNAL_ERROR, reason=ErrorCode.INTERNAL_ERROR)
        return

    client_host = (
        websocket.headers.get("X-Forwarded-For", "")
        or websocket.headers.get("X-Real-IP", "")
        or (websocket.client.host if websocket.client else "unknown")
    )
    logger.debug(f"WebSocket connection from {client_host}")

    from .gateway import ws_notifications as handle_ws

    try:
        await handle_ws(
            websocket=websocket,
            registry=_registry,
            authenticator=_authenticator,
            probe_interval_ms=_settings.probe_interval_ms,
            send_timeout_ms=_settings.send_timeout_ms,
        )
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected from {client_host}")
    except Exception as e:
        logger.exception(f"WebSocket error: {e}")


# ========== 启动入口 ==========


def main() -> None:
    """启动服务

    使用 uvicorn 作为 ASGI 服务器，启动前从 .env 加载环境变量。
    """
    import uvicorn
    from dotenv import load_dotenv

    load_dotenv()
    settings = load_settings()
    uvicorn.run(
        "notification_gateway.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
