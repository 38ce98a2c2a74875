"""Google Gemini Provider 适配器。

- URL: {base_url}/models/{model}:generateContent
  流式: {base_url}/models/{model}:streamGenerateContent?alt=sse
- 认证: x-goog-api-key 请求头。
- 角色映射: assistant -> model；system 消息合并进 systemInstruction。
"""

from typing import Any, Dict, Iterable, List

from chat_core.domain.exceptions import ApiError
from chat_core.domain.models import ChatMessage, ChatResponse, ChatStreamChunk
from chat_core.providers.base import HttpProviderClient


class GoogleClient(HttpProviderClient):
    """Gemini generateContent 客户端。"""

    name = "google"

    def chat(
        self, messages: List[ChatMessage], *, max_tokens: int, temperature: float
    ) -> ChatResponse:
        payload = self._build_payload(messages, max_tokens, temperature)
        data = self._post_json(f"{self.base_url}/models/{self.model}:generateContent", payload)
        candidates = data.get("candidates") or []
        if not candidates:
            raise ApiError(
                code="MALFORMED_RESPONSE", message=f"{self.name} response has no candidates", provider=self.name
            )
        return ChatResponse(
            content=self._candidate_text(candidates[0]),
            usage=self._parse_usage(data),
            finish_reason=candidates[0].get("finishReason"),
        )

    def chat_stream(
        self, messages: List[ChatMessage], *, max_tokens: int, temperature: float
    ) -> Iterable[ChatStreamChunk]:
        payload = self._build_payload(messages, max_tokens, temperature)
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent?alt=sse"
        for data in self._stream_events(url, payload):
            candidates = data.get("candidates") or []
            first = candidates[0] if candidates else {}
            yield ChatStreamChunk(
                delta=self._candidate_text(first) if first else "",
                finish_reason=first.get("finishReason"),
                usage=self._parse_usage(data),
            )

    # ---- 辅助方法 ----

    def _headers(self) -> Dict[str, str]:
        return {
            "x-goog-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def _build_payload(
        self, messages: List[ChatMessage], max_tokens: int, temperature: float
    ) -> Dict[str, Any]:
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages
            if m.role != "system"
        ]
        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": max_tokens,
                "temperature": temperature,
            },
        }
        system_parts = [{"text": m.content} for m in messages if m.role == "system" and m.content]
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        return payload

    @staticmethod
    def _candidate_text(candidate: Dict[str, Any]) -> str:
        parts = (candidate.get("content") or {}).get("parts") or []
        return "".join(p.get("text") or "" for p in parts)

    def _parse_usage(self, data: Dict[str, Any]):
        usage_raw = data.get("usageMetadata") or {}
        if not usage_raw:
            return None
        return self._usage(
            usage_raw.get("promptTokenCount"),
            usage_raw.get("candidatesTokenCount"),
            usage_raw.get("totalTokenCount"),
        )
