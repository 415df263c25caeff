"""
连接注册表

职责:
- 维护 user_id -> {connection_id} 映射（用户频道）
- 维护 connection_id -> Connection 句柄
- 提供在线查询：is_online / count_online_users
- 提供唯一的连接拆除路径 close_connection

设计要点：
- 频道不单独存储，"用户频道" 就是该用户的连接集合
- 连接集合为空时立即删除用户条目，避免频繁连接/断开造成无限增长
- register/unregister 在 asyncio.Lock 下串行执行
- 读操作返回快照，分发时不持有锁
"""

import asyncio
import logging
from typing import Optional

from .connection import Connection

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """连接注册表"""

    def __init__(self) -> None:
        # user_id -> {connection_id, ...}
        self._user_connections: dict[str, set[str]] = {}
        # connection_id -> Connection
        self._connections: dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    # ========== 写操作 ==========

    async def register(self, user_id: str, connection: Connection) -> None:
        """将连接加入用户频道

        重复注册同一连接是幂等的。

        Args:
            user_id: 用户ID
            connection: 已认证的连接

        Raises:
            ValueError: 连接ID已属于其他用户
        """
        connection_id = connection.connection_id
        async with self._lock:
            existing = self._connections.get(connection_id)
            if existing is not None and existing.user_id != user_id:
                raise ValueError(
                    f"connection {connection_id} already registered to user {existing.user_id}"
                )

            self._connections[connection_id] = connection
            self._user_connections.setdefault(user_id, set()).add(connection_id)

            logger.debug(
                f"[注册] user={user_id}, connection={connection_id}, "
                f"user_connections={len(self._user_connections[user_id])}"
            )

    async def unregister(self, connection_id: str) -> bool:
        """将连接移出其所属用户频道（幂等）

        Args:
            connection_id: 连接ID

        Returns:
            是否确实移除了连接；未注册的连接返回 False
        """
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return False

            user_id = connection.user_id
            connection_ids = self._user_connections.get(user_id)
            if connection_ids is not None:
                connection_ids.discard(connection_id)
                if not connection_ids:
                    del self._user_connections[user_id]

            logger.debug(f"[注销] user={user_id}, connection={connection_id}")
            return True

    async def close_connection(
        self,
        connection: Connection,
        code: int = 1000,
        reason: str = "",
    ) -> None:
        """拆除连接：注销并关闭底层传输

        客户端断开、推送失败、探活超时都走这一条路径，重复调用无副作用。
        """
        removed = await self.unregister(connection.connection_id)
        closed = await connection.close(code=code, reason=reason)
        if removed or closed:
            logger.info(
                f"Connection torn down: {connection.connection_id} "
                f"(user={connection.user_id}, code={code}, reason={reason or '-'})"
            )

    # ========== 读操作 ==========

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connections_for(self, user_id: str) -> list[Connection]:
        """获取用户频道内所有连接的快照"""
        connection_ids = self._user_connections.get(user_id)
        if not connection_ids:
            return []
        return [
            self._connections[cid]
            for cid in list(connection_ids)
            if cid in self._connections
        ]

    def all_connections(self) -> list[Connection]:
        """获取所有已注册连接的快照"""
        return list(self._connections.values())

    def is_online(self, user_id: str) -> bool:
        """用户是否至少有一条连接"""
        return bool(self._user_connections.get(user_id))

    def count_online_users(self) -> int:
        """在线用户数"""
        return len(self._user_connections)

    def count_connections(self) -> int:
        """连接总数"""
        return len(self._connections)

    def online_user_ids(self) -> list[str]:
        return list(self._user_connections.keys())
