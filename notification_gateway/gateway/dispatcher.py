"""
通知分发器

职责:
- send_to_user: 推送给用户频道内的所有连接
- broadcast: 推送给所有已注册连接
- 生成任务 / 质量告警 / 系统消息的便捷方法

投递语义（fire-and-forget）：
- 用户不在线时直接丢弃，不排队、不持久化、不报错
- 同一次调用的所有目标连接收到完全相同的帧
- 推送失败的连接走 close_connection 拆除
- 任何异常都不会抛回给生产者
"""

import asyncio
import logging
from typing import Any, Optional

from ..models.error_models import CloseCode, ErrorCode
from ..models.notification import (
    NotificationKind,
    NotificationPayload,
    NotificationPriority,
)
from .connection import Connection
from .connection_registry import ConnectionRegistry
from .protocol import encode, format_notification_message

logger = logging.getLogger(__name__)

# 质量分低于该值时告警为高优先级
QUALITY_ALERT_HIGH_PRIORITY_THRESHOLD = 70


class Dispatcher:
    """通知分发器

    只持有注册表的引用，自身无状态，可与其他分发调用并发执行。
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def send_to_user(self, user_id: str, payload: NotificationPayload) -> int:
        """推送通知给指定用户的所有连接

        Args:
            user_id: 用户ID
            payload: 通知载荷

        Returns:
            发起推送的连接数（0 表示用户不在线，通知已丢弃）
        """
        try:
            connections = self._registry.connections_for(user_id)
            if not connections:
                logger.debug(f"[Dispatch] 用户不在线，丢弃通知: user={user_id}, kind={payload.kind.value}")
                return 0

            attempts = await self._push(connections, payload)
            logger.info(
                f"Notification sent to user {user_id}: {payload.kind.value} "
                f"({attempts} connection(s))"
            )
            return attempts
        except Exception as e:
            logger.exception(f"send_to_user failed for user {user_id}: {e}")
            return 0

    async def broadcast(self, payload: NotificationPayload) -> int:
        """推送通知给所有已注册连接

        只保证调用开始时已注册的连接收到通知。

        Returns:
            发起推送的连接数
        """
        try:
            connections = self._registry.all_connections()
            if not connections:
                logger.debug(f"[Broadcast] 没有在线连接: kind={payload.kind.value}")
                return 0

            attempts = await self._push(connections, payload)
            logger.info(f"Broadcast notification: {payload.kind.value} ({attempts} connection(s))")
            return attempts
        except Exception as e:
            logger.exception(f"broadcast failed: {e}")
            return 0

    async def _push(
        self,
        connections: list[Connection],
        payload: NotificationPayload,
    ) -> int:
        """向一组连接并发推送同一帧"""
        # 只序列化一次，保证所有连接收到的字节完全一致
        text = encode(format_notification_message(payload.stamped()))

        await asyncio.gather(
            *(self._send(connection, text) for connection in connections),
            return_exceptions=True,
        )
        return len(connections)

    async def _send(self, connection: Connection, text: str) -> bool:
        try:
            await connection.send_text(text)
            return True
        except Exception as e:
            logger.warning(
                f"[Dispatch] 推送失败 {connection.connection_id} "
                f"(user={connection.user_id}): {e!r}"
            )
            await self._registry.close_connection(
                connection,
                code=CloseCode.INTERNAL_ERROR,
                reason=ErrorCode.SEND_FAILED,
            )
            return False

    # ========== 便捷方法 ==========

    async def notify_generation_complete(
        self,
        user_id: str,
        session_id: str,
        asset_id: str,
        consistency_score: Optional[float] = None,
        thumbnail_url: Optional[str] = None,
    ) -> int:
        """生成完成通知"""
        data: dict[str, Any] = {"sessionId": session_id, "assetId": asset_id}
        if consistency_score is not None:
            data["consistencyScore"] = consistency_score
        if thumbnail_url is not None:
            data["thumbnailUrl"] = thumbnail_url

        return await self.send_to_user(
            user_id,
            NotificationPayload(
                kind=NotificationKind.GENERATION_COMPLETE,
                title="Generation Complete",
                message="Your photo generation is ready!",
                data=data,
                priority=NotificationPriority.HIGH,
            ),
        )

    async def notify_generation_failed(
        self,
        user_id: str,
        session_id: str,
        error: str,
    ) -> int:
        """生成失败通知"""
        return await self.send_to_user(
            user_id,
            NotificationPayload(
                kind=NotificationKind.GENERATION_FAILED,
                title="Generation Failed",
                message=f"Generation failed: {error}",
                data={"sessionId": session_id, "error": error},
                priority=NotificationPriority.HIGH,
            ),
        )

    async def notify_quality_alert(
        self,
        user_id: str,
        session_id: str,
        asset_id: str,
        score: float,
        issues: list[str],
    ) -> int:
        """质量告警通知

        质量分低于阈值时为高优先级，否则为中优先级。
        """
        priority = (
            NotificationPriority.HIGH
            if score < QUALITY_ALERT_HIGH_PRIORITY_THRESHOLD
            else NotificationPriority.MEDIUM
        )
        return await self.send_to_user(
            user_id,
            NotificationPayload(
                kind=NotificationKind.QUALITY_ALERT,
                title="Quality Alert",
                message=f"Generation completed with quality score: {score:.1f}",
                data={
                    "sessionId": session_id,
                    "assetId": asset_id,
                    "score": score,
                    "issues": list(issues),
                },
                priority=priority,
            ),
        )

    async def send_system_message(self, user_id: str, message: str) -> int:
        """系统消息"""
        return await self.send_to_user(
            user_id,
            NotificationPayload(
                kind=NotificationKind.SYSTEM_MESSAGE,
                title="System Message",
                message=message,
                priority=NotificationPriority.LOW,
            ),
        )
