"""
客户端通知缓冲区

按接收时间倒序保存通知（最新在前），超过容量时淘汰最旧的通知。
"""

from collections import deque
from typing import Iterator

from ..models.notification import NotificationPayload

DEFAULT_BUFFER_CAPACITY = 50


class NotificationBuffer:
    """有界通知缓冲区"""

    def __init__(self, capacity: int = DEFAULT_BUFFER_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._items: deque[NotificationPayload] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, notification: NotificationPayload) -> None:
        """加入最新通知，满时自动淘汰最旧的一条"""
        self._items.appendleft(notification)

    def remove(self, index: int) -> NotificationPayload:
        """确认（已读）指定位置的通知

        Raises:
            IndexError: 位置越界
        """
        if index < 0 or index >= len(self._items):
            raise IndexError(f"notification index out of range: {index}")
        notification = self._items[index]
        del self._items[index]
        return notification

    def clear(self) -> None:
        self._items.clear()

    def items(self) -> list[NotificationPayload]:
        """最新在前的快照"""
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[NotificationPayload]:
        return iter(list(self._items))
