"""
连接探活

每条连接的状态机：
    OPEN --(静默超过 probe_interval_ms，发送 PING)--> PROBE_PENDING
    PROBE_PENDING --(收到客户端任意消息)--> OPEN
    PROBE_PENDING --(超过 probe_timeout_ms 未响应)--> 回收

回收即调用注册表的 close_connection（注销并关闭传输）。
"""

import asyncio
import logging
from typing import Optional

from ..models.error_models import CloseCode, ErrorCode
from .connection import Connection, ConnectionState
from .connection_registry import ConnectionRegistry
from .protocol import encode, format_ping_message

logger = logging.getLogger(__name__)


class HealthMonitor:
    """连接探活监控"""

    def __init__(
        self,
        registry: ConnectionRegistry,
        probe_interval_ms: int,
        probe_timeout_ms: int,
    ) -> None:
        if probe_interval_ms <= 0 or probe_timeout_ms <= 0:
            raise ValueError("probe_interval_ms 与 probe_timeout_ms 必须大于0")

        self._registry = registry
        self._probe_interval = probe_interval_ms / 1000
        self._probe_timeout = probe_timeout_ms / 1000
        # 检查周期取两者较小值的一半，保证超时判定延迟有界
        self._tick = min(self._probe_interval, self._probe_timeout) / 2
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def probe_interval_ms(self) -> int:
        return int(self._probe_interval * 1000)

    @property
    def probe_timeout_ms(self) -> int:
        return int(self._probe_timeout * 1000)

    async def start(self) -> None:
        """启动后台探活任务"""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._monitor_loop())
        logger.info(
            f"Health monitor started (probe_interval_ms={self.probe_interval_ms}, "
            f"probe_timeout_ms={self.probe_timeout_ms})"
        )

    async def stop(self) -> None:
        """停止后台探活任务"""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Health monitor stopped")

    async def _monitor_loop(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self._tick)
                try:
                    await self.check_connections()
                except Exception as e:
                    logger.error(f"[探活] 检查连接时出错: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.debug("[探活] 监控任务已取消")
            raise

    async def check_connections(self) -> list[str]:
        """执行一轮检查：发送到期的探测，回收超时的连接

        各连接并发检查，单条连接推送卡住不会推迟其他连接的探测与回收。

        Returns:
            本轮被回收的连接ID
        """
        connections = self._registry.all_connections()
        results = await asyncio.gather(
            *(self._check(connection) for connection in connections),
            return_exceptions=True,
        )

        reaped: list[str] = []
        for connection, result in zip(connections, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"[探活] 检查连接 {connection.connection_id} 时出错: {result!r}"
                )
            elif result:
                reaped.append(connection.connection_id)
        return reaped

    async def _check(self, connection: Connection) -> bool:
        """检查单条连接，返回是否被回收"""
        if connection.probe_overdue(self._probe_timeout):
            await self._reap(connection)
            return True
        if (
            connection.state is ConnectionState.OPEN
            and connection.idle_seconds() >= self._probe_interval
        ):
            return not await self._probe(connection)
        return False

    async def _probe(self, connection: Connection) -> bool:
        connection.mark_probe_sent()
        try:
            await connection.send_text(encode(format_ping_message()))
            logger.debug(f"[探活] 发送探测: {connection.connection_id}")
            return True
        except Exception as e:
            logger.warning(f"[探活] 探测发送失败 {connection.connection_id}: {e!r}")
            await self._reap(connection)
            return False

    async def _reap(self, connection: Connection) -> None:
        logger.warning(
            f"Reaping unresponsive connection {connection.connection_id} "
            f"(user={connection.user_id})"
        )
        await self._registry.close_connection(
            connection,
            code=CloseCode.PROBE_TIMEOUT,
            reason=ErrorCode.PROBE_TIMEOUT,
        )
