"""
数据模型

- base: camelCase/snake_case 转换基类
- notification: 通知载荷与生产者事件
- error_models: 错误码与关闭码
"""

from .base import CamelCaseModel, SnakeCaseModel
from .error_models import CloseCode, ErrorCode, ErrorMessage
from .notification import (
    BroadcastNotificationEvent,
    DispatchResult,
    NotificationKind,
    NotificationPayload,
    NotificationPriority,
    UserNotificationEvent,
)

__all__ = [
    "CamelCaseModel",
    "SnakeCaseModel",
    "CloseCode",
    "ErrorCode",
    "ErrorMessage",
    "BroadcastNotificationEvent",
    "DispatchResult",
    "NotificationKind",
    "NotificationPayload",
    "NotificationPriority",
    "UserNotificationEvent",
]
