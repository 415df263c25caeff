"""
生产者通知监听器

使用 PostgreSQL LISTEN/NOTIFY 机制接收其他进程（生成任务 worker、质量分析任务）
产生的通知，并交给 Dispatcher 分发：

- notification.user:      {"userId": "...", "notification": {...}}  -> send_to_user
- notification.broadcast: {"notification": {...}}                   -> broadcast

生产者侧示例：
    SELECT pg_notify('notification.user', '{"userId": "42", "notification": {...}}');

与 Dispatcher 一样遵循 fire-and-forget：载荷无效时记录日志并丢弃。
"""

import asyncio
import json
import logging
from typing import Optional

import asyncpg
from pydantic import ValidationError

from ..models.notification import BroadcastNotificationEvent, UserNotificationEvent
from .dispatcher import Dispatcher

logger = logging.getLogger(__name__)

USER_CHANNEL = "notification.user"
BROADCAST_CHANNEL = "notification.broadcast"


class NotificationListener:
    """数据库通知监听器"""

    def __init__(self, dsn: str, dispatcher: Dispatcher) -> None:
        """初始化通知监听器

        Args:
            dsn: 数据库连接字符串
            dispatcher: 通知分发器
        """
        self._dsn = dsn
        self._dispatcher = dispatcher
        self._connection: Optional[asyncpg.Connection] = None
        self._listener_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """启动监听器

        连接失败时抛出异常，监听器保持未运行状态。
        """
        if self._running:
            return

        # 创建独立连接用于监听
        connection = await asyncpg.connect(self._dsn)
        try:
            await connection.add_listener(USER_CHANNEL, self._on_user_notification)
            await connection.add_listener(
                BROADCAST_CHANNEL, self._on_broadcast_notification
            )
        except Exception:
            await connection.close()
            raise
        connection.add_termination_listener(self._on_connection_terminated)
        logger.info(f"Subscribed to channels: {USER_CHANNEL}, {BROADCAST_CHANNEL}")

        self._connection = connection
        self._running = True
        self._listener_task = asyncio.create_task(self._listen_loop())
        logger.info("Notification listener started")

    async def stop(self) -> None:
        """停止监听器（连接已断开时只做清理）"""
        self._running = False

        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None

        if self._connection:
            connection = self._connection
            self._connection = None
            connection.remove_termination_listener(self._on_connection_terminated)
            try:
                await connection.remove_listener(
                    USER_CHANNEL, self._on_user_notification
                )
                await connection.remove_listener(
                    BROADCAST_CHANNEL, self._on_broadcast_notification
                )
            except Exception as e:
                logger.warning(f"移除监听器时出错: {e}")

            await connection.close()

        logger.info("Notification listener stopped")

    def _on_connection_terminated(self, connection: asyncpg.Connection) -> None:
        """监听连接意外断开：标记为未运行，/health 据此报告 stopped"""
        if not self._running:
            return
        logger.error("数据库监听连接已断开，生产者通知通道不可用")
        self._running = False
        self._connection = None
        if self._listener_task:
            self._listener_task.cancel()

    async def _on_user_notification(
        self,
        connection: asyncpg.Connection,
        pid: int,
        channel: str,
        payload: str,
    ) -> None:
        """处理定向通知回调

        Args:
            connection: 数据库连接
            pid: 后端进程 ID
            channel: 通知频道
            payload: 通知载荷（JSON 字符串）
        """
        try:
            event = UserNotificationEvent.model_validate(json.loads(payload))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"解析定向通知载荷失败: {e}, payload={payload[:200]}")
            return

        logger.debug(
            f"[Notification] channel={channel}, user={event.user_id}, "
            f"kind={event.notification.kind.value}"
        )
        await self._dispatcher.send_to_user(event.user_id, event.notification)

    async def _on_broadcast_notification(
        self,
        connection: asyncpg.Connection,
        pid: int,
        channel: str,
        payload: str,
    ) -> None:
        """处理广播通知回调"""
        try:
            event = BroadcastNotificationEvent.model_validate(json.loads(payload))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"解析广播通知载荷失败: {e}, payload={payload[:200]}")
            return

        logger.debug(
            f"[Notification] channel={channel}, kind={event.notification.kind.value}"
        )
        await self._dispatcher.broadcast(event.notification)

    async def _listen_loop(self) -> None:
        """监听循环

        保持连接活跃，通知由 add_listener 注册的回调处理。
        """
        while self._running:
            try:
                await asyncio.sleep(3600)
            except asyncio.CancelledError:
                break
