"""Provider 抽象接口。

服务层不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个厂商族实现一个 ProviderClient（如 OpenAIClient、AnthropicClient）。
- 负责：将统一的 ChatMessage 列表转成具体 API 请求，并把响应 JSON 解析为 ChatResponse。

registry.resolve_model 返回的“模型句柄”就是一个绑定了 API key 与模型名的 ProviderClient，
构造时不做任何网络 I/O，真正的请求发生在 chat / chat_stream 中。
"""

import json
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol

import httpx

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError
from chat_core.domain.models import ChatMessage, ChatResponse, ChatStreamChunk, ChatUsage


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: 厂商族名称，用于日志/统计。
    - model: 实际调用的厂商模型 ID。
    - chat(...): 执行一次非流式对话调用，返回统一的 ChatResponse。
    - chat_stream(...): 执行一次流式对话调用，逐步产出 ChatStreamChunk。
    """

    name: str
    model: str

    def chat(
        self, messages: List[ChatMessage], *, max_tokens: int, temperature: float
    ) -> ChatResponse:
        ...

    def chat_stream(
        self, messages: List[ChatMessage], *, max_tokens: int, temperature: float
    ) -> Iterable[ChatStreamChunk]:
        ...


class HttpProviderClient:
    """基于 httpx 的 Provider 客户端公共部分。

    子类只需实现 payload 构造与响应解析；HTTP 调用、错误映射与 SSE 行解析在这里统一处理：

    - 网络错误（DNS 失败、连接超时等）→ NetworkError
    - 429 → RateLimitError
    - 其他 >= 400 → ApiError（保留状态码）
    - 响应体不是合法 JSON → ApiError(code="MALFORMED_RESPONSE")
    """

    name = "http"

    def __init__(self, api_key: str, model: str, base_url: str, timeout: float = 30.0):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def __repr__(self) -> str:
        # 不输出 api_key
        return f"{type(self).__name__}(model={self.model!r}, base_url={self.base_url!r})"

    # ---- 子类实现 ----

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    # ---- HTTP ----

    def _post_json(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            with httpx.Client(timeout=self.timeout, trust_env=False) as client:
                resp = client.post(url, json=payload, headers=self._headers())
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        self._raise_for_status(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            raise ApiError(
                code="MALFORMED_RESPONSE",
                message=f"{self.name} returned a non-JSON response",
                provider=self.name,
            )
        if not isinstance(data, dict):
            raise ApiError(
                code="MALFORMED_RESPONSE",
                message=f"{self.name} returned an unexpected response",
                provider=self.name,
            )
        return data

    def _stream_events(self, url: str, payload: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        """POST 并逐条产出 SSE `data:` 行解析后的 JSON 对象。"""

        try:
            with httpx.Client(timeout=self.timeout, trust_env=False) as client:
                with client.stream("POST", url, json=payload, headers=self._headers()) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        self._raise_for_status(resp.status_code, resp.text)
                    for line in resp.iter_lines():
                        data = self._parse_sse_line(line)
                        if data is not None:
                            yield data
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)

    def _raise_for_status(self, status_code: int, body: str) -> None:
        if status_code == 429:
            raise RateLimitError(
                code="RATE_LIMIT", message=f"{self.name} rate limit", http_status=429, provider=self.name
            )
        if status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=self._error_message(body) or f"{self.name} request failed with status {status_code}",
                provider=self.name,
                status_code=status_code,
            )

    @staticmethod
    def _error_message(body: str) -> str:
        """厂商错误体多为 {"error": {"message": ...}}，取出其中的 message，否则返回原文。"""

        try:
            data = json.loads(body)
        except (TypeError, ValueError):
            return body
        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict) and isinstance(err.get("message"), str):
                return err["message"]
            if isinstance(err, str):
                return err
        return body

    @staticmethod
    def _parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
        if not line:
            return None
        data_str = line.strip()
        if data_str.startswith("event:") or data_str.startswith(":"):
            return None
        if data_str.startswith("data:"):
            data_str = data_str[5:].strip()
        if not data_str or data_str == "[DONE]":
            return None
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _usage(prompt: Any, completion: Any, total: Any = None) -> ChatUsage:
        prompt_tokens = int(prompt or 0)
        completion_tokens = int(completion or 0)
        return ChatUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=int(total) if total is not None else prompt_tokens + completion_tokens,
        )
