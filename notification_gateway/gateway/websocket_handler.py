"""
WebSocket 处理器

处理 /ws/notifications 端点的连接：
1. 握手认证（失败则以 4401 关闭，不做任何注册）
2. 注册到用户频道并发送 CONNECTED 欢迎帧
3. 接收循环：任意消息刷新存活时间，PING 回复 PONG，无效消息回复 ERROR
4. 任何方式结束都走 close_connection 拆除
"""

import asyncio
import logging

from fastapi import WebSocket

from ..models.error_models import CloseCode, ErrorCode, ErrorMessage
from .authenticator import AuthenticationError, Authenticator
from .connection import Connection
from .connection_registry import ConnectionRegistry
from .protocol import (
    CLIENT_MESSAGE_TYPES,
    MessageFormatError,
    MessageType,
    encode,
    format_connected_message,
    format_error_message,
    format_pong_message,
    parse_message,
)

logger = logging.getLogger(__name__)


async def _safe_send(connection: Connection, message: dict) -> bool:
    """安全发送消息，捕获连接断开等异常

    Returns:
        True: 发送成功
        False: 发送失败（连接已断开）
    """
    try:
        await connection.send_text(encode(message))
        return True
    except Exception as e:
        logger.debug(f"Failed to send message to {connection.connection_id}: {e}")
        return False


async def authenticate_websocket(
    websocket: WebSocket,
    authenticator: Authenticator,
) -> str:
    """校验握手令牌，返回用户ID

    认证失败时在 accept 之前以 4401 关闭连接并重新抛出异常。
    """
    client = websocket.client
    try:
        return authenticator.authenticate(
            authorization=websocket.headers.get("authorization"),
            query_token=websocket.query_params.get("token"),
        )
    except AuthenticationError as exc:
        logger.warning(
            f"WebSocket authentication failed (client={client}, reason={exc.reason})"
        )
        await websocket.close(code=CloseCode.UNAUTHORIZED, reason=ErrorCode.UNAUTHORIZED)
        raise


async def ws_notifications(
    websocket: WebSocket,
    registry: ConnectionRegistry,
    authenticator: Authenticator,
    probe_interval_ms: int,
    send_timeout_ms: int = 5000,
) -> None:
    """WebSocket 端点 /ws/notifications

    Args:
        websocket: FastAPI WebSocket 连接
        registry: 连接注册表
        authenticator: 令牌校验器
        probe_interval_ms: 探活间隔（告知客户端）
        send_timeout_ms: 单次推送超时
    """
    try:
        user_id = await authenticate_websocket(websocket, authenticator)
    except AuthenticationError:
        return

    await websocket.accept()

    connection = Connection(
        transport=websocket,
        user_id=user_id,
        send_timeout=send_timeout_ms / 1000,
    )
    await registry.register(user_id, connection)
    logger.info(f"User {user_id} connected: {connection.connection_id}")

    close_code = CloseCode.NORMAL
    try:
        await _safe_send(
            connection,
            format_connected_message(
                connection.connection_id, user_id, probe_interval_ms
            ),
        )

        while connection.is_open:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            connection.mark_alive()

            raw_data = message.get("text")
            if raw_data is None:
                # 协议只使用 JSON 文本帧
                await _safe_send(
                    connection,
                    format_error_message(
                        ErrorCode.INVALID_MESSAGE_FORMAT,
                        ErrorMessage.invalid_message("binary frames are not supported"),
                    ),
                )
                continue

            try:
                parsed = parse_message(raw_data)
            except MessageFormatError as e:
                await _safe_send(
                    connection,
                    format_error_message(
                        e.error_code, ErrorMessage.invalid_message(str(e))
                    ),
                )
                continue

            msg_type = parsed["type"]
            if msg_type not in CLIENT_MESSAGE_TYPES:
                await _safe_send(
                    connection,
                    format_error_message(
                        ErrorCode.UNSUPPORTED_TYPE,
                        ErrorMessage.unsupported_type(msg_type),
                    ),
                )
            elif msg_type == MessageType.PING:
                await _safe_send(connection, format_pong_message())
            else:
                logger.debug(f"[{connection.connection_id}] 收到探测响应")

    except asyncio.CancelledError:
        logger.info(f"Connection cancelled: {connection.connection_id}")
        close_code = CloseCode.GOING_AWAY
        raise
    except RuntimeError as e:
        # 连接已被其他上下文关闭（如探活回收）后继续读取
        logger.debug(f"WebSocket runtime error (connection may be closed): {e}")
    finally:
        await registry.close_connection(connection, code=close_code)
        logger.info(f"User {user_id} disconnected: {connection.connection_id}")
