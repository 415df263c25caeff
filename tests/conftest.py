"""
测试配置

提供假传输、可控时钟和注册表等公共夹具。
"""

import asyncio
from typing import Optional

import pytest

from notification_gateway.gateway.connection import Connection
from notification_gateway.gateway.connection_registry import ConnectionRegistry
from notification_gateway.models.notification import (
    NotificationKind,
    NotificationPayload,
    NotificationPriority,
)

TEST_JWT_SECRET = "test-secret-key"


class FakeTransport:
    """记录推送内容的假 WebSocket 传输"""

    def __init__(self, fail: bool = False, hang: bool = False) -> None:
        self.sent: list[str] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.fail = fail
        self.hang = hang

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("transport broken")
        if self.hang:
            # 对端不再读取，推送永远不会完成
            await asyncio.Event().wait()
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed = True
        self.close_code = code


class FakeClock:
    """可手动推进的单调时钟（秒）"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_connection(clock):
    """创建带假传输的连接"""

    def _make(
        user_id: str,
        connection_id: Optional[str] = None,
        fail: bool = False,
        hang: bool = False,
        send_timeout: float = 5.0,
    ) -> Connection:
        return Connection(
            transport=FakeTransport(fail=fail, hang=hang),
            user_id=user_id,
            connection_id=connection_id,
            send_timeout=send_timeout,
            clock=clock,
        )

    return _make


@pytest.fixture
def payload() -> NotificationPayload:
    return NotificationPayload(
        kind=NotificationKind.GENERATION_COMPLETE,
        title="Generation Complete",
        message="Your photo generation is ready!",
        data={"sessionId": "s-1", "assetId": "a-1"},
        priority=NotificationPriority.HIGH,
    )
