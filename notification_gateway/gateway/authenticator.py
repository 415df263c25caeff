"""
握手认证

校验客户端在建立连接时提交的令牌，提取用户ID。
认证失败时抛出 AuthenticationError，连接在注册之前即被拒绝。

令牌来源（按优先级）：
- Authorization: Bearer <token> 请求头
- ?token=<token> 查询参数
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

logger = logging.getLogger(__name__)


@dataclass
class AuthenticationError(Exception):
    """握手认证失败"""

    message: str
    reason: str

    def __str__(self) -> str:
        return self.message


def extract_bearer_token(authorization: str | None) -> str | None:
    """从 Authorization 头中提取令牌

    Args:
        authorization: 请求头原始值

    Returns:
        令牌字符串或 None
    """
    if not authorization:
        return None

    parts = authorization.strip().split()
    if not parts:
        return None

    if parts[0].lower() == "bearer":
        return parts[1] if len(parts) > 1 else None

    return parts[-1]


class Authenticator:
    """JWT 令牌校验器

    视为纯函数：(token) -> user_id | AuthenticationError
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        user_claim: str = "userId",
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._user_claim = user_claim

    def verify(self, token: str | None) -> str:
        """校验令牌并返回用户ID

        Args:
            token: 客户端提交的令牌

        Returns:
            用户ID

        Raises:
            AuthenticationError: 令牌缺失、过期、无效或服务端未配置密钥
        """
        if not self._secret:
            raise AuthenticationError(
                "Authentication secret is not configured", reason="configuration"
            )

        if not token or not token.strip():
            raise AuthenticationError("Missing authentication token", reason="token_missing")

        try:
            payload: dict[str, Any] = jwt.decode(
                token.strip(), self._secret, algorithms=[self._algorithm]
            )
        except ExpiredSignatureError as e:
            raise AuthenticationError(
                "Authentication token has expired", reason="token_expired"
            ) from e
        except JWTError as e:
            raise AuthenticationError(
                "Invalid authentication token", reason="token_invalid"
            ) from e

        user_id = payload.get(self._user_claim) or payload.get("sub")
        if user_id is None or str(user_id).strip() == "":
            raise AuthenticationError(
                "Authentication token missing user id", reason="token_invalid"
            )

        return str(user_id)

    def authenticate(
        self,
        *,
        authorization: str | None = None,
        query_token: str | None = None,
    ) -> str:
        """从请求头或查询参数中取令牌并校验"""
        token = extract_bearer_token(authorization)
        if not token and query_token:
            token = query_token.strip() or None
        return self.verify(token)

    def create_access_token(
        self,
        user_id: str,
        expires_delta: timedelta = timedelta(days=7),
    ) -> str:
        """签发与 verify 兼容的令牌（用于测试和本地调试）

        Args:
            user_id: 用户ID
            expires_delta: 有效期，传入负值可生成已过期令牌

        Returns:
            JWT 字符串
        """
        expire = datetime.now(timezone.utc) + expires_delta
        payload = {self._user_claim: user_id, "exp": expire}
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)
