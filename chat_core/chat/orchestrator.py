"""会话编排器。

ChatOrchestrator 持有一次聊天会话的全部消息，负责：

- 乐观更新：发送时先追加 user 消息，再发起请求。
- 成功时追加带 provider 标记的 assistant 消息；失败时撤回本次追加的 user 消息并给出错误。
- 重新生成：去掉最后一条 assistant 消息，用同样的 provider / 凭证重放历史。
- 单飞：同一实例同一时刻最多一个在途请求。
- 超时与取消：每个请求受 request_timeout 约束，可通过 cancel() / clear_messages() 取消。

编排器运行在单个 asyncio 事件循环上，只在等待传输层时让出控制权，
因此所有状态变更都发生在明确的转换点上，不需要加锁。
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set

from chat_core.chat.transport import ChatTransport
from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError, RequestCancelledError, RequestTimeoutError
from chat_core.domain.models import ChatRequest, ChatResponse, ConversationTurn, new_turn_id
from chat_core.infrastructure.logging.logger import logger


class OrchestratorState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    # 短暂状态：记录错误、通知回调后立即回到 IDLE
    ERROR_PRESENTED = "error_presented"


@dataclass(frozen=True)
class LastRequest:
    """最近一次真实发送的参数，供重新生成复用。仅保存在内存中。"""

    content: str
    provider_id: str
    credentials: Mapping[str, str] = field(repr=False)
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None


ErrorCallback = Callable[[Exception], None]

_USE_SETTINGS: Any = object()


class ChatOrchestrator:
    def __init__(
        self,
        transport: ChatTransport,
        *,
        initial_turns: Optional[Iterable[ConversationTurn]] = None,
        on_error: Optional[ErrorCallback] = None,
        request_timeout: Optional[float] = _USE_SETTINGS,
    ):
        self._transport = transport
        self._on_error = on_error
        self._request_timeout = (
            settings.request_timeout if request_timeout is _USE_SETTINGS else request_timeout
        )
        self._turns: List[ConversationTurn] = list(initial_turns or [])
        self._state = OrchestratorState.IDLE
        self._error: Optional[str] = None
        self._last_request: Optional[LastRequest] = None
        self._inflight: Optional[asyncio.Task] = None
        self._cancelled: Set[asyncio.Task] = set()
        # clear_messages 时递增，用于丢弃清空前发出的请求结果
        self._epoch = 0

    # ---- 只读视图 ----

    @property
    def turns(self) -> List[ConversationTurn]:
        return list(self._turns)

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._state is OrchestratorState.SENDING

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def last_request(self) -> Optional[LastRequest]:
        return self._last_request

    # ---- 操作 ----

    async def send_message(
        self,
        content: str,
        provider_id: str,
        credentials: Mapping[str, str],
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Optional[ConversationTurn]:
        """发送一条用户消息。

        Args:
            content: 用户输入，去掉首尾空白后为空则忽略
            provider_id: 目标 provider id
            credentials: 本次请求使用的凭证（按值复制）
            max_tokens: 可选的最大生成长度
            temperature: 可选的生成温度

        Returns:
            成功时返回新追加的 assistant 消息；被忽略或失败时返回 None（错误见 self.error）。
        """
        text = (content or "").strip()
        if not text or self._state is OrchestratorState.SENDING:
            return None

        self._error = None
        self._state = OrchestratorState.SENDING
        user_turn = ConversationTurn(id=new_turn_id(), role="user", content=text)
        self._turns.append(user_turn)
        self._last_request = LastRequest(
            content=text,
            provider_id=provider_id,
            credentials=dict(credentials or {}),
            max_tokens=max_tokens,
            temperature=temperature,
        )
        request = self._build_request(self._last_request)
        epoch = self._epoch
        self._log("Sending message", provider_id=provider_id, turn_count=len(self._turns))

        try:
            response = await self._dispatch(request)
        except asyncio.CancelledError:
            if epoch == self._epoch:
                self._remove_turn(user_turn.id)
                self._state = OrchestratorState.IDLE
            raise
        except Exception as exc:
            if epoch != self._epoch:
                return None
            self._remove_turn(user_turn.id)
            self._present_error(exc)
            return None

        if epoch != self._epoch:
            return None
        return self._append_assistant(response, provider_id)

    async def regenerate_last_message(self) -> Optional[ConversationTurn]:
        """用上一次发送的 provider / 凭证重新生成最后一条 assistant 消息。

        至少需要一对 user + assistant 消息，且最后一条必须是 assistant；
        否则（或正在发送、或从未发送过）直接忽略。
        失败时被移除的 assistant 消息会恢复原位，会话保持调用前的样子。
        """
        last_request = self._last_request
        if (
            self._state is OrchestratorState.SENDING
            or last_request is None
            or len(self._turns) < 2
            or self._turns[-1].role != "assistant"
        ):
            return None

        self._error = None
        self._state = OrchestratorState.SENDING
        removed = self._turns.pop()
        request = self._build_request(last_request)
        epoch = self._epoch
        self._log("Regenerating last message", provider_id=last_request.provider_id, turn_count=len(self._turns))

        try:
            response = await self._dispatch(request)
        except asyncio.CancelledError:
            if epoch == self._epoch:
                self._turns.append(removed)
                self._state = OrchestratorState.IDLE
            raise
        except Exception as exc:
            if epoch != self._epoch:
                return None
            self._turns.append(removed)
            self._present_error(exc)
            return None

        if epoch != self._epoch:
            return None
        return self._append_assistant(response, last_request.provider_id)

    def clear_messages(self) -> None:
        """清空会话、忘记上一次请求、清除错误，并取消在途请求。任意状态下可调用。"""

        self._epoch += 1
        self._cancel_inflight()
        self._turns = []
        self._error = None
        self._last_request = None
        self._state = OrchestratorState.IDLE

    def cancel(self) -> bool:
        """取消在途请求；按失败处理（撤回乐观追加的消息并给出错误）。"""

        return self._cancel_inflight()

    def load_turns(self, turns: Iterable[ConversationTurn]) -> bool:
        """用已保存的会话替换当前消息，并忘记上一次请求；正在发送时拒绝。"""

        if self._state is OrchestratorState.SENDING:
            return False
        self._turns = list(turns)
        self._error = None
        # 上一个会话的 provider / 凭证不能用于重新生成新载入的会话
        self._last_request = None
        return True

    # ---- 内部实现 ----

    def _build_request(self, last_request: LastRequest) -> ChatRequest:
        return ChatRequest(
            messages=[t.to_message() for t in self._turns],
            provider_id=last_request.provider_id,
            credentials=dict(last_request.credentials),
            stream=False,
            max_tokens=last_request.max_tokens,
            temperature=last_request.temperature,
        )

    async def _dispatch(self, request: ChatRequest) -> ChatResponse:
        task = asyncio.ensure_future(self._call_transport(request))
        self._inflight = task
        try:
            return await task
        except asyncio.CancelledError:
            if task in self._cancelled:
                raise RequestCancelledError(code="REQUEST_CANCELLED", message="Request cancelled")
            raise
        finally:
            self._cancelled.discard(task)
            if self._inflight is task:
                self._inflight = None

    async def _call_transport(self, request: ChatRequest) -> ChatResponse:
        if self._request_timeout is None:
            return await self._transport.send(request)
        try:
            return await asyncio.wait_for(self._transport.send(request), self._request_timeout)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(
                code="REQUEST_TIMEOUT",
                message=f"Request timed out after {self._request_timeout:g} seconds",
            )

    def _cancel_inflight(self) -> bool:
        task = self._inflight
        if task is None or task.done():
            return False
        if task.cancel():
            self._cancelled.add(task)
            return True
        return False

    def _append_assistant(self, response: ChatResponse, provider_id: str) -> ConversationTurn:
        turn = ConversationTurn(
            id=new_turn_id(),
            role="assistant",
            content=response.content,
            provider=provider_id,
        )
        self._turns.append(turn)
        self._state = OrchestratorState.IDLE
        self._log("Appended assistant message", provider_id=provider_id, turn_count=len(self._turns))
        return turn

    def _remove_turn(self, turn_id: str) -> None:
        self._turns = [t for t in self._turns if t.id != turn_id]

    def _present_error(self, exc: Exception) -> None:
        if isinstance(exc, BusinessError):
            message = exc.message
        else:
            message = str(exc) or "An unexpected error occurred"
        self._state = OrchestratorState.ERROR_PRESENTED
        self._error = message
        self._log("Request failed", level="warning", error=message, error_type=type(exc).__name__)
        try:
            if self._on_error is not None:
                self._on_error(exc)
        finally:
            self._state = OrchestratorState.IDLE

    @staticmethod
    def _log(message: str, level: str = "info", **fields: Any) -> None:
        payload: Dict[str, Any] = dict(fields)
        getattr(logger, level)(message, extra={"extra": payload})
