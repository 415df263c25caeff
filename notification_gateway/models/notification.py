"""
通知载荷模型

生产者（生成任务、质量分析任务、运营后台）产生通知载荷，
网关只负责转发，从不修改载荷本身。分发时生成一个带投递时间戳的新副本。
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, ConfigDict, Field, field_validator

from .base import CamelCaseModel, SnakeCaseModel


class NotificationKind(str, Enum):
    """通知类型"""

    GENERATION_COMPLETE = "GENERATION_COMPLETE"
    GENERATION_FAILED = "GENERATION_FAILED"
    QUALITY_ALERT = "QUALITY_ALERT"
    SYSTEM_MESSAGE = "SYSTEM_MESSAGE"


class NotificationPriority(str, Enum):
    """通知优先级"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationPayload(CamelCaseModel):
    """通知载荷（不可变）

    推送给客户端的格式：
        {kind, title, message, data?, priority?, timestamp}

    兼容旧格式：输入中的 ``type`` 字段等同于 ``kind``，
    ``generation-complete`` 这类小写连字符写法会被规范化为枚举值。
    """

    model_config = ConfigDict(frozen=True)

    kind: NotificationKind = Field(validation_alias=AliasChoices("kind", "type"))
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    priority: Optional[NotificationPriority] = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @field_validator("kind", mode="before")
    @classmethod
    def normalize_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().upper().replace("-", "_")
        return value

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def stamped(self, at: Optional[datetime] = None) -> "NotificationPayload":
        """返回带投递时间戳的新载荷，原载荷保持不变"""
        return self.model_copy(update={"timestamp": at or _utcnow()})

    def to_wire(self) -> dict[str, Any]:
        """序列化为推送格式（省略空的可选字段）"""
        return self.model_dump(mode="json", exclude_none=True)

    def __str__(self) -> str:
        return f"NotificationPayload(kind={self.kind.value}, title={self.title})"


class UserNotificationEvent(SnakeCaseModel):
    """定向通知事件（数据库通知 notification.user 的载荷）

    格式: {"userId": "...", "notification": {...}}
    """

    user_id: str
    notification: NotificationPayload


class BroadcastNotificationEvent(SnakeCaseModel):
    """广播通知事件（数据库通知 notification.broadcast 的载荷）"""

    notification: NotificationPayload


class DispatchResult(CamelCaseModel):
    """分发结果（内部生产者接口的响应）"""

    delivered: int
    user_id: Optional[str] = None
    online: bool = False
