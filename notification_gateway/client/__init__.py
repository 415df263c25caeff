"""
通知客户端

- NotificationClient: 断线重连、保活、本地通知缓冲
- NotificationBuffer: 有界、最新在前的通知缓冲区
- build_alert: 通知 -> 界面临时提示
"""

from .alerts import Alert, AlertLevel, build_alert
from .notification_buffer import NotificationBuffer
from .reconnecting_client import AuthenticationRejected, ClientState, NotificationClient

__all__ = [
    "Alert",
    "AlertLevel",
    "build_alert",
    "NotificationBuffer",
    "AuthenticationRejected",
    "ClientState",
    "NotificationClient",
]
