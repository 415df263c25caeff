"""
通知提示

把收到的通知映射为界面上的临时提示：
- GENERATION_COMPLETE -> success
- GENERATION_FAILED   -> error
- QUALITY_ALERT       -> info（带警告图标）
- SYSTEM_MESSAGE      -> info

高优先级通知显示更久。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..models.notification import (
    NotificationKind,
    NotificationPayload,
    NotificationPriority,
)

HIGH_PRIORITY_DURATION_MS = 6000
DEFAULT_DURATION_MS = 4000


class AlertLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


_KIND_TO_LEVEL: dict[NotificationKind, AlertLevel] = {
    NotificationKind.GENERATION_COMPLETE: AlertLevel.SUCCESS,
    NotificationKind.GENERATION_FAILED: AlertLevel.ERROR,
    NotificationKind.QUALITY_ALERT: AlertLevel.INFO,
    NotificationKind.SYSTEM_MESSAGE: AlertLevel.INFO,
}


@dataclass(frozen=True)
class Alert:
    """临时提示"""

    level: AlertLevel
    title: str
    message: str
    duration_ms: int
    icon: Optional[str] = None


def build_alert(notification: NotificationPayload) -> Alert:
    """根据通知类型和优先级生成提示"""
    duration = (
        HIGH_PRIORITY_DURATION_MS
        if notification.priority is NotificationPriority.HIGH
        else DEFAULT_DURATION_MS
    )
    icon = "warning" if notification.kind is NotificationKind.QUALITY_ALERT else None
    return Alert(
        level=_KIND_TO_LEVEL[notification.kind],
        title=notification.title,
        message=notification.message,
        duration_ms=duration,
        icon=icon,
    )
