"""
Gateway 模块

提供 WebSocket 连接认证、用户频道管理、通知分发和连接探活功能。

核心组件：
- Authenticator: 握手令牌校验
- ConnectionRegistry: 用户 -> 连接集合
- Dispatcher: 定向推送与广播
- HealthMonitor: 连接探活与回收
- NotificationListener: 数据库通知 -> Dispatcher
"""

from .authenticator import AuthenticationError, Authenticator
from .connection import Connection, ConnectionState
from .connection_registry import ConnectionRegistry
from .dispatcher import Dispatcher
from .event_listener import NotificationListener
from .health_monitor import HealthMonitor
from .websocket_handler import ws_notifications

__all__ = [
    "AuthenticationError",
    "Authenticator",
    "Connection",
    "ConnectionState",
    "ConnectionRegistry",
    "Dispatcher",
    "NotificationListener",
    "HealthMonitor",
    "ws_notifications",
]
