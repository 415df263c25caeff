"""
消息协议封装

提供 WebSocket 消息的解析和格式化功能。

所有帧的统一外层结构：
    {protocolVersion, type, timestamp, data?}

消息类型：
- CONNECTED: 握手成功后服务端发送的欢迎帧
- NOTIFICATION: 服务端推送的通知
- PING / PONG: 双向心跳（客户端保活与服务端探活共用）
- ERROR: 错误响应
"""

import json
import time
from typing import Any

from ..models.error_models import ErrorCode
from ..models.notification import NotificationPayload

PROTOCOL_VERSION = "1.0"


class MessageType:
    """WebSocket消息类型"""

    CONNECTED = "CONNECTED"
    NOTIFICATION = "NOTIFICATION"
    PING = "PING"
    PONG = "PONG"
    ERROR = "ERROR"


# 客户端可以发送的消息类型
CLIENT_MESSAGE_TYPES = frozenset({MessageType.PING, MessageType.PONG})


class MessageFormatError(ValueError):
    """客户端消息无效，error_code 为回复 ERROR 帧时使用的错误码"""

    def __init__(self, message: str, error_code: str = ErrorCode.INVALID_MESSAGE_FORMAT) -> None:
        super().__init__(message)
        self.error_code = error_code


def parse_message(raw: str) -> dict[str, Any]:
    """解析客户端消息

    Args:
        raw: 原始文本帧

    Returns:
        标准化后的消息字典

    Raises:
        MessageFormatError: 消息格式无效或协议版本不匹配
    """
    try:
        message = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MessageFormatError(f"Malformed JSON: {e.msg}") from e

    if not isinstance(message, dict):
        raise MessageFormatError("Message must be a JSON object")

    version = message.get("protocolVersion")
    if version and version != PROTOCOL_VERSION:
        raise MessageFormatError(
            f"Unsupported protocol version: {version}",
            ErrorCode.UNSUPPORTED_PROTOCOL_VERSION,
        )

    msg_type = message.get("type")
    if not msg_type or not isinstance(msg_type, str):
        raise MessageFormatError("Missing required field: type")

    return {
        "protocolVersion": version or PROTOCOL_VERSION,
        "type": msg_type.upper(),
        "timestamp": message.get("timestamp"),
        "data": message.get("data") or {},
    }


def format_connected_message(
    connection_id: str,
    user_id: str,
    probe_interval_ms: int,
) -> dict[str, Any]:
    """格式化欢迎帧"""
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "type": MessageType.CONNECTED,
        "timestamp": _timestamp_ms(),
        "data": {
            "connectionId": connection_id,
            "userId": user_id,
            "probeIntervalMs": probe_interval_ms,
        },
    }


def format_notification_message(payload: NotificationPayload) -> dict[str, Any]:
    """格式化通知推送帧

    data 字段即通知本身: {kind, title, message, data?, priority?, timestamp}
    """
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "type": MessageType.NOTIFICATION,
        "timestamp": _timestamp_ms(),
        "data": payload.to_wire(),
    }


def format_error_message(error_code: str, error_message: str) -> dict[str, Any]:
    """格式化错误帧"""
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "type": MessageType.ERROR,
        "timestamp": _timestamp_ms(),
        "data": {
            "errorCode": error_code,
            "errorMessage": error_message,
        },
    }


def format_ping_message() -> dict[str, Any]:
    """格式化心跳消息"""
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "type": MessageType.PING,
        "timestamp": _timestamp_ms(),
    }


def format_pong_message() -> dict[str, Any]:
    """格式化心跳响应消息"""
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "type": MessageType.PONG,
        "timestamp": _timestamp_ms(),
    }


def encode(message: dict[str, Any]) -> str:
    """序列化为文本帧"""
    return json.dumps(message, default=str, ensure_ascii=False)


def _timestamp_ms() -> int:
    """获取当前时间戳（毫秒）"""
    return int(time.time() * 1000)
