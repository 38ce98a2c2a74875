"""Anthropic Provider 适配器。

Messages API 与 chat/completions 的差异：
- URL: {base_url}/messages
- 认证: x-api-key 请求头，另需 anthropic-version。
- system 消息不进入 messages 数组，而是合并到顶层 system 字段。
- 响应 content 为 block 列表，只取 type == "text" 的部分。
- 流式返回为带 event 名的 SSE：content_block_delta 携带文本增量，
  message_start / message_delta 携带 usage 与 stop_reason。
"""

from typing import Any, Dict, Iterable, List, Optional

from chat_core.domain.exceptions import ApiError
from chat_core.domain.models import ChatMessage, ChatResponse, ChatStreamChunk
from chat_core.providers.base import HttpProviderClient


class AnthropicClient(HttpProviderClient):
    """Anthropic Messages API 客户端。"""

    name = "anthropic"

    def __init__(self, api_key: str, model: str, base_url: str, timeout: float = 30.0,
                 api_version: str = "2023-06-01"):
        super().__init__(api_key=api_key, model=model, base_url=base_url, timeout=timeout)
        self.api_version = api_version

    def chat(
        self, messages: List[ChatMessage], *, max_tokens: int, temperature: float
    ) -> ChatResponse:
        payload = self._build_payload(messages, max_tokens, temperature, stream=False)
        data = self._post_json(f"{self.base_url}/messages", payload)
        return self._parse_response(data)

    def chat_stream(
        self, messages: List[ChatMessage], *, max_tokens: int, temperature: float
    ) -> Iterable[ChatStreamChunk]:
        payload = self._build_payload(messages, max_tokens, temperature, stream=True)
        prompt_tokens = 0
        for data in self._stream_events(f"{self.base_url}/messages", payload):
            kind = data.get("type")
            if kind == "message_start":
                usage_raw = (data.get("message") or {}).get("usage") or {}
                prompt_tokens = int(usage_raw.get("input_tokens") or 0)
            elif kind == "content_block_delta":
                delta = data.get("delta") or {}
                if delta.get("type") == "text_delta" and delta.get("text"):
                    yield ChatStreamChunk(delta=delta["text"])
            elif kind == "message_delta":
                usage_raw = data.get("usage") or {}
                yield ChatStreamChunk(
                    finish_reason=(data.get("delta") or {}).get("stop_reason"),
                    usage=self._usage(prompt_tokens, usage_raw.get("output_tokens")),
                )
            elif kind == "error":
                err = data.get("error") or {}
                raise ApiError(
                    code="API_ERROR",
                    message=err.get("message") or "anthropic stream error",
                    provider=self.name,
                )

    # ---- 辅助方法 ----

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    def _build_payload(
        self, messages: List[ChatMessage], max_tokens: int, temperature: float, stream: bool
    ) -> Dict[str, Any]:
        system_parts = [m.content for m in messages if m.role == "system" and m.content]
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages if m.role != "system"],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": stream,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)
        return payload

    def _parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise ApiError(
                code="MALFORMED_RESPONSE", message=f"{self.name} response has no content", provider=self.name
            )
        text = "".join(b.get("text") or "" for b in blocks if b.get("type") == "text")
        usage_raw: Optional[Dict[str, Any]] = data.get("usage")
        usage = None
        if usage_raw:
            usage = self._usage(usage_raw.get("input_tokens"), usage_raw.get("output_tokens"))
        return ChatResponse(content=text, usage=usage, finish_reason=data.get("stop_reason"))
