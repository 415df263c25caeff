"""
测试客户端通知缓冲区
"""

import pytest

from notification_gateway.client.notification_buffer import (
    DEFAULT_BUFFER_CAPACITY,
    NotificationBuffer,
)
from notification_gateway.models.notification import NotificationPayload


def make(title: str) -> NotificationPayload:
    return NotificationPayload(kind="SYSTEM_MESSAGE", title=title, message="m")


class TestNotificationBuffer:
    """测试 NotificationBuffer"""

    def test_default_capacity(self):
        assert NotificationBuffer().capacity == DEFAULT_BUFFER_CAPACITY == 50

    def test_newest_first(self):
        buffer = NotificationBuffer()
        for title in ("a", "b", "c"):
            buffer.append(make(title))

        assert [n.title for n in buffer] == ["c", "b", "a"]
        assert len(buffer) == 3

    def test_evicts_oldest_when_full(self):
        buffer = NotificationBuffer(capacity=50)
        for i in range(51):
            buffer.append(make(f"n{i}"))

        titles = [n.title for n in buffer.items()]
        assert len(titles) == 50
        assert titles[0] == "n50"
        assert "n0" not in titles

    def test_remove_by_index(self):
        buffer = NotificationBuffer()
        for title in ("a", "b", "c"):
            buffer.append(make(title))

        removed = buffer.remove(1)

        assert removed.title == "b"
        assert [n.title for n in buffer] == ["c", "a"]

    @pytest.mark.parametrize("index", [-1, 3, 10])
    def test_remove_out_of_range(self, index):
        buffer = NotificationBuffer()
        for title in ("a", "b", "c"):
            buffer.append(make(title))

        with pytest.raises(IndexError):
            buffer.remove(index)

    def test_clear(self):
        buffer = NotificationBuffer()
        buffer.append(make("a"))

        buffer.clear()

        assert len(buffer) == 0
        assert buffer.items() == []

    def test_items_is_a_snapshot(self):
        buffer = NotificationBuffer()
        buffer.append(make("a"))

        snapshot = buffer.items()
        buffer.append(make("b"))

        assert [n.title for n in snapshot] == ["a"]

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            NotificationBuffer(capacity=0)
