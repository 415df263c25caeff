"""
通知客户端（断线重连层）

在传输层反复断开/重连的情况下，对上层呈现一条连续的通知流。

状态机：
    DISCONNECTED -> CONNECTING -> AUTHENTICATED -> CONNECTED
    CONNECTED --(任意传输错误)--> DISCONNECTED --(退避后自动)--> CONNECTING

- AUTHENTICATED: 握手被服务端接受
- CONNECTED: 收到服务端 CONNECTED 欢迎帧（服务端在握手时已把连接加入用户频道，无需额外订阅）
- 连续重连次数达到上限，或令牌被服务端拒绝后，停留在 DISCONNECTED，
  直到外部再次调用 start()（例如用户重新登录）
- 每次连接都重新获取令牌

保活：CONNECTED 期间定时发送 PING，超时未收到 PONG 则主动断开并重连，
不依赖传输层自身的超时。
"""

import asyncio
import inspect
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import ValidationError
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidStatus

from ..gateway.protocol import (
    MessageType,
    encode,
    format_ping_message,
    format_pong_message,
)
from ..models.error_models import CloseCode
from ..models.notification import NotificationPayload
from .alerts import Alert, build_alert
from .notification_buffer import DEFAULT_BUFFER_CAPACITY, NotificationBuffer

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Union[str, Awaitable[str]]]


class ClientState(str, Enum):
    """客户端连接状态"""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    CONNECTED = "connected"


class AuthenticationRejected(Exception):
    """服务端拒绝了令牌"""


def _with_token(url: str, token: str) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query) if k != "token"]
    query.append(("token", token))
    return urlunsplit(parts._replace(query=urlencode(query)))


class NotificationClient:
    """带断线重连的通知客户端"""

    def __init__(
        self,
        url: str,
        token_provider: TokenProvider,
        *,
        buffer_capacity: int = DEFAULT_BUFFER_CAPACITY,
        max_reconnect_attempts: int = 5,
        reconnect_delay: float = 1.0,
        reconnect_delay_max: float = 5.0,
        keepalive_interval: float = 30.0,
        keepalive_timeout: float = 10.0,
        welcome_timeout: float = 10.0,
        on_alert: Optional[Callable[[Alert], None]] = None,
        on_state_change: Optional[Callable[[ClientState, ClientState], None]] = None,
        connect_factory: Callable[..., Awaitable[Any]] = connect,
    ) -> None:
        self._url = url
        self._token_provider = token_provider
        self._max_reconnect_attempts = max_reconnect_attempts
        self._reconnect_delay = reconnect_delay
        self._reconnect_delay_max = reconnect_delay_max
        self._keepalive_interval = keepalive_interval
        self._keepalive_timeout = keepalive_timeout
        self._welcome_timeout = welcome_timeout
        self._on_alert = on_alert
        self._on_state_change = on_state_change
        self._connect = connect_factory

        self._buffer = NotificationBuffer(buffer_capacity)
        self._state = ClientState.DISCONNECTED
        self._running = False
        self._websocket = None
        self._session_task: Optional[asyncio.Task] = None
        self._pong_event = asyncio.Event()
        self.connection_id: Optional[str] = None

    # ========== 对外接口 ==========

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_live(self) -> bool:
        """界面上的 在线/离线 指示"""
        return self._state is ClientState.CONNECTED

    @property
    def notifications(self) -> list[NotificationPayload]:
        """最新在前的通知列表"""
        return self._buffer.items()

    @property
    def buffer(self) -> NotificationBuffer:
        return self._buffer

    def mark_read(self, index: int) -> NotificationPayload:
        return self._buffer.remove(index)

    def clear(self) -> None:
        self._buffer.clear()

    async def start(self) -> None:
        """开始（或在放弃重连后重新开始）连接周期"""
        if self._session_task and not self._session_task.done():
            return
        self._running = True
        self._session_task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """主动断开，不再重连"""
        self._running = False

        if self._session_task:
            self._session_task.cancel()
            try:
                await self._session_task
            except asyncio.CancelledError:
                pass
            self._session_task = None

        await self._close_websocket()
        self._set_state(ClientState.DISCONNECTED)

    async def wait_closed(self) -> None:
        """等待连接周期结束（放弃重连或被拒绝）"""
        if self._session_task:
            await self._session_task

    # ========== 连接周期 ==========

    async def _run(self) -> None:
        attempt = 0
        while self._running:
            established = False
            self._set_state(ClientState.CONNECTING)
            try:
                established = await self._session()
            except AuthenticationRejected as e:
                logger.warning(f"令牌被拒绝，停止重连: {e}")
                self._running = False
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"连接失败: {e!r}")
            finally:
                self.connection_id = None
                self._set_state(ClientState.DISCONNECTED)

            if not self._running:
                break

            if established:
                attempt = 0
            attempt += 1
            if attempt > self._max_reconnect_attempts:
                logger.error(
                    f"重连 {self._max_reconnect_attempts} 次均失败，等待外部重新启动"
                )
                self._running = False
                break

            delay = self._backoff_delay(attempt)
            logger.info(f"等待 {delay:.2f} 秒后第 {attempt} 次重连...")
            await asyncio.sleep(delay)

    def _backoff_delay(self, attempt: int) -> float:
        return min(self._reconnect_delay * (2 ** (attempt - 1)), self._reconnect_delay_max)

    async def _session(self) -> bool:
        """建立一次连接并持续接收，直到断开

        Returns:
            本次是否进入过 CONNECTED
        """
        token = await self._resolve_token()
        try:
            websocket = await self._connect(_with_token(self._url, token))
        except InvalidStatus as e:
            status = getattr(e.response, "status_code", None)
            if status in (401, 403):
                raise AuthenticationRejected(f"handshake rejected with HTTP {status}") from e
            raise

        self._websocket = websocket
        self._set_state(ClientState.AUTHENTICATED)

        keepalive_task: Optional[asyncio.Task] = None
        established = False
        try:
            await self._await_welcome(websocket)
            self._set_state(ClientState.CONNECTED)
            established = True
            logger.info(f"已连接: connection_id={self.connection_id}")

            keepalive_task = asyncio.create_task(self._keepalive_loop(websocket))
            while True:
                raw = await websocket.recv()
                await self._handle_message(websocket, raw)

        except ConnectionClosed as e:
            if e.rcvd is not None and e.rcvd.code == CloseCode.UNAUTHORIZED:
                raise AuthenticationRejected("connection closed with 4401") from e
            logger.warning(f"连接已关闭: {e}")
        finally:
            if keepalive_task:
                keepalive_task.cancel()
                try:
                    await keepalive_task
                except asyncio.CancelledError:
                    pass
            await self._close_websocket()

        return established

    async def _await_welcome(self, websocket) -> None:
        """等待服务端 CONNECTED 欢迎帧"""
        raw = await asyncio.wait_for(websocket.recv(), timeout=self._welcome_timeout)
        message = self._decode(raw)
        if message is None or message.get("type") != MessageType.CONNECTED:
            raise ConnectionError(f"unexpected first frame: {str(raw)[:200]}")
        self.connection_id = (message.get("data") or {}).get("connectionId")

    async def _keepalive_loop(self, websocket) -> None:
        """定时发送 PING，超时未收到 PONG 则主动断开"""
        while True:
            await asyncio.sleep(self._keepalive_interval)
            self._pong_event.clear()
            try:
                await websocket.send(encode(format_ping_message()))
                await asyncio.wait_for(
                    self._pong_event.wait(), timeout=self._keepalive_timeout
                )
            except asyncio.TimeoutError:
                logger.warning("保活超时未收到 PONG，主动断开重连")
                await websocket.close()
                return
            except ConnectionClosed:
                return

    async def _handle_message(self, websocket, raw: Any) -> None:
        message = self._decode(raw)
        if message is None:
            return

        msg_type = message.get("type")
        if msg_type == MessageType.NOTIFICATION:
            self._on_notification(message.get("data") or {})
        elif msg_type == MessageType.PONG:
            self._pong_event.set()
        elif msg_type == MessageType.PING:
            await websocket.send(encode(format_pong_message()))
        elif msg_type == MessageType.ERROR:
            logger.warning(f"服务端错误: {message.get('data')}")
        else:
            logger.debug(f"忽略消息类型: {msg_type}")

    def _on_notification(self, data: dict[str, Any]) -> None:
        try:
            notification = NotificationPayload.model_validate(data)
        except ValidationError as e:
            logger.warning(f"无效的通知载荷: {e}")
            return

        self._buffer.append(notification)
        logger.debug(f"收到通知: {notification}")

        if self._on_alert:
            try:
                self._on_alert(build_alert(notification))
            except Exception as e:
                logger.error(f"提示回调出错: {e}", exc_info=True)

    # ========== 辅助方法 ==========

    def _decode(self, raw: Any) -> Optional[dict[str, Any]]:
        try:
            message = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("无效的JSON消息")
            return None
        return message if isinstance(message, dict) else None

    async def _resolve_token(self) -> str:
        token = self._token_provider()
        if inspect.isawaitable(token):
            token = await token
        return token

    async def _close_websocket(self) -> None:
        websocket = self._websocket
        self._websocket = None
        if websocket is None:
            return
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"关闭连接时出错: {e}")

    def _set_state(self, state: ClientState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        logger.debug(f"状态变化: {previous.value} -> {state.value}")
        if self._on_state_change:
            self._on_state_change(previous, state)
