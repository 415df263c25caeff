"""
网关配置

通过环境变量配置：
- JWT_SECRET: 令牌签名密钥（必填，否则所有握手都会被拒绝）
- JWT_ALGORITHM: 令牌签名算法（默认HS256）
- JWT_USER_CLAIM: 令牌中用户ID所在的字段（默认userId）
- PROBE_INTERVAL_MS: 探活间隔（毫秒，默认25000）
- PROBE_TIMEOUT_MS: 探活超时（毫秒，默认20000）
- SEND_TIMEOUT_MS: 单次推送超时（毫秒，默认5000）
- FRONTEND_URL: 允许跨域的前端地址（逗号分隔，默认http://localhost:5173）
- DATABASE_URL: PostgreSQL连接字符串（可选，设置后启用 LISTEN/NOTIFY 生产者通道）
- INTERNAL_API_TOKEN: 内部生产者接口令牌（可选）
- LOG_LEVEL: 日志级别（默认INFO）
- HOST / PORT: 监听地址
"""

import os
from dataclasses import dataclass, field


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"环境变量 {name} 必须是整数: {raw!r}") from e


def _get_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class GatewaySettings:
    """网关运行配置"""

    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_user_claim: str = "userId"
    probe_interval_ms: int = 25000
    probe_timeout_ms: int = 20000
    send_timeout_ms: int = 5000
    cors_origins: list[str] = field(
        default_factory=lambda: ["http://localhost:5173"]
    )
    database_url: str | None = None
    internal_api_token: str | None = None
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000

    def __post_init__(self) -> None:
        if self.probe_interval_ms <= 0:
            raise ValueError("probe_interval_ms 必须大于0")
        if self.probe_timeout_ms <= 0:
            raise ValueError("probe_timeout_ms 必须大于0")
        if self.send_timeout_ms <= 0:
            raise ValueError("send_timeout_ms 必须大于0")


def load_settings() -> GatewaySettings:
    """从环境变量读取配置"""
    return GatewaySettings(
        jwt_secret=os.getenv("JWT_SECRET", ""),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_user_claim=os.getenv("JWT_USER_CLAIM", "userId"),
        probe_interval_ms=_get_int("PROBE_INTERVAL_MS", 25000),
        probe_timeout_ms=_get_int("PROBE_TIMEOUT_MS", 20000),
        send_timeout_ms=_get_int("SEND_TIMEOUT_MS", 5000),
        cors_origins=_get_list("FRONTEND_URL", "http://localhost:5173"),
        database_url=os.getenv("DATABASE_URL") or None,
        internal_api_token=os.getenv("INTERNAL_API_TOKEN") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        host=os.getenv("HOST", "0.0.0.0"),
        port=_get_int("PORT", 8000),
    )
