"""统一的对话与结果数据模型。

本模块定义了编排层、服务层与各 Provider 之间共享的标准数据结构：

- ConversationTurn: 会话中的一条消息（user/assistant/system），带 id 与时间戳。
- ChatMessage: 发给厂商的最小消息单元，只有 role 与 content。
- ChatRequest: 一次生成请求（消息列表 + provider id + 凭证 + 生成参数）。
- ChatResponse / ChatUsage: 生成结果与 token 统计。
- ChatStreamChunk: 流式生成的单个增量。

所有 Provider 适配器都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, get_args
from uuid import uuid4


# 会话角色（与 OpenAI 等厂商的 role 字段对应）
Role = Literal["system", "user", "assistant"]
ROLES = frozenset(get_args(Role))


def new_turn_id() -> str:
    """生成新的 turn id，基于 uuid4，不会与已有 id 冲突。"""

    return f"t-{uuid4().hex}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConversationTurn:
    """会话中的一条消息。

    - id: 唯一标识。
    - role: user / assistant / system。
    - content: 纯文本内容。
    - timestamp: 创建时间（UTC）。
    - provider: 生成该消息的 provider id，仅 assistant 消息携带。
    """

    id: str
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utc_now)
    provider: Optional[str] = None

    def to_message(self) -> "ChatMessage":
        return ChatMessage(role=self.role, content=self.content)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        if self.provider:
            payload["provider"] = self.provider
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationTurn":
        raw_ts = data.get("timestamp")
        timestamp = (
            datetime.fromisoformat(str(raw_ts).replace("Z", "+00:00")) if raw_ts else utc_now()
        )
        return cls(
            id=str(data.get("id") or new_turn_id()),
            role=data["role"],
            content=data.get("content") or "",
            timestamp=timestamp,
            provider=data.get("provider"),
        )


@dataclass
class ChatMessage:
    """发给厂商的一条消息，只保留 role 与 content。"""

    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatRequest:
    """一次完整的生成请求。

    编排层根据当前会话构造 ChatRequest，再交给传输层；
    服务层负责解析 provider 并调用对应的 ProviderClient。
    凭证只在本次请求内有效，不会被持久化。
    """

    messages: List[ChatMessage]
    provider_id: str
    credentials: Mapping[str, str]
    stream: bool = False
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        """转换为 /api/chat 所需的 JSON 请求体（camelCase）。"""

        payload: Dict[str, Any] = {
            "messages": [m.to_dict() for m in self.messages],
            "providerId": self.provider_id,
            "apiKeys": dict(self.credentials),
            "stream": self.stream,
        }
        if self.max_tokens is not None:
            payload["maxTokens"] = self.max_tokens
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        return payload


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChatUsage":
        return cls(
            prompt_tokens=int(data.get("promptTokens", 0)),
            completion_tokens=int(data.get("completionTokens", 0)),
            total_tokens=int(data.get("totalTokens", 0)),
        )


@dataclass
class ChatResponse:
    """一次生成调用的最终结果。"""

    content: str
    usage: Optional[ChatUsage] = None
    finish_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"content": self.content}
        if self.usage:
            payload["usage"] = self.usage.to_dict()
        if self.finish_reason:
            payload["finishReason"] = self.finish_reason
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChatResponse":
        usage_raw = data.get("usage")
        return cls(
            content=data.get("content") or "",
            usage=ChatUsage.from_dict(usage_raw) if usage_raw else None,
            finish_reason=data.get("finishReason"),
        )


@dataclass
class ChatStreamChunk:
    """流式生成的增量结果。

    delta 为本次新增的文本；finish_reason / usage 通常只出现在最后几块。
    """

    delta: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[ChatUsage] = None
