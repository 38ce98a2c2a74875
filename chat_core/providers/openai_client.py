"""OpenAI Provider 适配器（同时覆盖 OpenAI 兼容的 Groq）。

本模块负责：

1. 接收统一的 ChatMessage 列表与生成参数。
2. 将其转换为 chat/completions 请求格式。
3. 调用 HTTP 接口并处理网络/API 异常（见 HttpProviderClient）。
4. 将响应 JSON 解析为统一的 ChatResponse / ChatStreamChunk。

- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>
"""

from typing import Any, Dict, Iterable, List

from chat_core.domain.exceptions import ApiError
from chat_core.domain.models import ChatMessage, ChatResponse, ChatStreamChunk
from chat_core.providers.base import HttpProviderClient


class OpenAIClient(HttpProviderClient):
    """OpenAI chat/completions 客户端。"""

    name = "openai"

    def chat(
        self, messages: List[ChatMessage], *, max_tokens: int, temperature: float
    ) -> ChatResponse:
        payload = self._build_payload(messages, max_tokens, temperature, stream=False)
        data = self._post_json(f"{self.base_url}/chat/completions", payload)
        return self._parse_response(data)

    def chat_stream(
        self, messages: List[ChatMessage], *, max_tokens: int, temperature: float
    ) -> Iterable[ChatStreamChunk]:
        payload = self._build_payload(messages, max_tokens, temperature, stream=True)
        for data in self._stream_events(f"{self.base_url}/chat/completions", payload):
            yield self._parse_stream_chunk(data)

    # ---- 辅助方法 ----

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(
        self, messages: List[ChatMessage], max_tokens: int, temperature: float, stream: bool
    ) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": stream,
        }

    def _parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        choices = data.get("choices") or []
        if not choices:
            raise ApiError(
                code="MALFORMED_RESPONSE", message=f"{self.name} response has no choices", provider=self.name
            )
        first = choices[0]
        message = first.get("message") or {}
        usage_raw = data.get("usage") or {}
        usage = None
        if usage_raw:
            usage = self._usage(
                usage_raw.get("prompt_tokens"),
                usage_raw.get("completion_tokens"),
                usage_raw.get("total_tokens"),
            )
        return ChatResponse(
            content=message.get("content") or "",
            usage=usage,
            finish_reason=first.get("finish_reason"),
        )

    def _parse_stream_chunk(self, data: Dict[str, Any]) -> ChatStreamChunk:
        choices = data.get("choices") or []
        delta = ""
        finish_reason = None
        if choices:
            delta = (choices[0].get("delta") or {}).get("content") or ""
            finish_reason = choices[0].get("finish_reason")
        usage_raw = data.get("usage") or {}
        usage = None
        if usage_raw:
            usage = self._usage(
                usage_raw.get("prompt_tokens"),
                usage_raw.get("completion_tokens"),
                usage_raw.get("total_tokens"),
            )
        return ChatStreamChunk(delta=delta, finish_reason=finish_reason, usage=usage)


class GroqClient(OpenAIClient):
    """Groq 使用 OpenAI 兼容接口，仅名称与 base_url 不同。"""

    name = "groq"
