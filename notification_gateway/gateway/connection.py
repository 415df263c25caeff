"""
连接句柄

一个 Connection 对应一条已通过认证的 WebSocket 会话：
- connection_id: 不透明的连接ID
- user_id: 所属用户（握手认证成功后才会创建连接句柄）
- last_seen: 最近一次收到客户端消息的时间
- state: 探活状态机 OPEN -> PROBE_PENDING -> OPEN / CLOSED

推送通过每连接一把锁串行化，保证同一连接上的帧按调用顺序写出。
"""

import asyncio
import logging
import time
import uuid
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from .protocol import encode

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """连接底层传输（FastAPI WebSocket 满足该接口）"""

    async def send_text(self, data: str) -> None: ...

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None: ...


class ConnectionState(str, Enum):
    """连接探活状态"""

    OPEN = "open"
    PROBE_PENDING = "probe_pending"
    CLOSED = "closed"


class ConnectionClosedError(ConnectionError):
    """向已关闭的连接推送"""


def new_connection_id() -> str:
    return f"conn_{uuid.uuid4().hex[:12]}"


class Connection:
    """已认证的 WebSocket 连接"""

    def __init__(
        self,
        transport: Transport,
        user_id: str,
        connection_id: Optional[str] = None,
        send_timeout: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.connection_id = connection_id or new_connection_id()
        self.user_id = user_id
        self._transport = transport
        self._clock = clock
        self._send_timeout = send_timeout
        self._send_lock = asyncio.Lock()

        self.connected_at = clock()
        self.last_seen = self.connected_at
        self.probe_sent_at: Optional[float] = None
        self.state = ConnectionState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state is not ConnectionState.CLOSED

    async def send_text(self, text: str) -> None:
        """推送文本帧

        Raises:
            ConnectionClosedError: 连接已关闭
            asyncio.TimeoutError: 超过推送超时
        """
        if not self.is_open:
            raise ConnectionClosedError(f"connection {self.connection_id} is closed")

        async with self._send_lock:
            await asyncio.wait_for(
                self._transport.send_text(text), timeout=self._send_timeout
            )

    async def send_json(self, message: dict[str, Any]) -> None:
        await self.send_text(encode(message))

    def mark_alive(self) -> None:
        """收到客户端任意消息：刷新存活时间，结束待响应的探测"""
        if not self.is_open:
            return
        self.last_seen = self._clock()
        self.probe_sent_at = None
        self.state = ConnectionState.OPEN

    def mark_probe_sent(self) -> None:
        """已发送探测帧，进入 PROBE_PENDING"""
        if not self.is_open:
            return
        self.probe_sent_at = self._clock()
        self.state = ConnectionState.PROBE_PENDING

    def idle_seconds(self) -> float:
        return self._clock() - self.last_seen

    def probe_overdue(self, timeout: float) -> bool:
        """探测是否已超时未响应"""
        if self.state is not ConnectionState.PROBE_PENDING or self.probe_sent_at is None:
            return False
        return self._clock() - self.probe_sent_at > timeout

    async def close(self, code: int = 1000, reason: str = "") -> bool:
        """关闭底层传输（幂等）

        Returns:
            本次调用是否真正执行了关闭
        """
        if self.state is ConnectionState.CLOSED:
            return False
        self.state = ConnectionState.CLOSED

        try:
            await self._transport.close(code=code, reason=reason)
        except Exception as e:
            # 对端已断开时关闭会失败
            logger.debug(f"[{self.connection_id}] 关闭传输时出错: {e}")
        return True

    def __repr__(self) -> str:
        return (
            f"Connection(id={self.connection_id}, user={self.user_id}, "
            f"state={self.state.value})"
        )
