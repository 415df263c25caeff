"""
错误码定义

集中管理网关使用的错误码与 WebSocket 关闭码，避免硬编码。
"""


class ErrorCode:
    """
    统一错误码定义

    遵循以下约定：
    - 使用大写字母和下划线
    - 命名格式：类别_具体错误
    """

    # ==================== 通用错误 ====================
    INTERNAL_ERROR = "INTERNAL_ERROR"  # 内部服务器错误

    # ==================== 协议错误 ====================
    INVALID_MESSAGE_FORMAT = "INVALID_MESSAGE_FORMAT"  # 消息格式错误
    UNSUPPORTED_TYPE = "UNSUPPORTED_TYPE"  # 不支持的消息类型
    UNSUPPORTED_PROTOCOL_VERSION = "UNSUPPORTED_PROTOCOL_VERSION"  # 协议版本不匹配

    # ==================== 认证错误 ====================
    UNAUTHORIZED = "UNAUTHORIZED"  # 未授权

    # ==================== 连接错误 ====================
    PROBE_TIMEOUT = "PROBE_TIMEOUT"  # 探活超时
    SEND_FAILED = "SEND_FAILED"  # 推送失败


class CloseCode:
    """WebSocket 关闭码"""

    NORMAL = 1000
    GOING_AWAY = 1001
    INTERNAL_ERROR = 1011
    UNAUTHORIZED = 4401  # 握手认证失败
    PROBE_TIMEOUT = 4408  # 探活超时被回收


class ErrorMessage:
    """错误消息模板"""

    @staticmethod
    def invalid_message(details: str) -> str:
        """消息格式错误"""
        return f"Invalid message: {details}"

    @staticmethod
    def unsupported_type(msg_type: str) -> str:
        """不支持的消息类型"""
        return f"Unsupported message type: {msg_type}"
