"""编排器到生成服务之间的传输层。

- LocalTransport：进程内直接调用 ChatService。
- HttpTransport：通过 HTTP 调用已运行的 /api/chat 接口。
"""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol

import httpx

from chat_core.api.service import ChatService
from chat_core.domain.exceptions import ApiError, GenerationFailure, NetworkError
from chat_core.domain.models import ChatRequest, ChatResponse


class ChatTransport(Protocol):
    async def send(self, request: ChatRequest) -> ChatResponse:
        ...


class LocalTransport:
    """进程内调用 ChatService，阻塞的厂商请求放到工作线程里执行。"""

    def __init__(self, service: ChatService) -> None:
        self._service = service

    async def send(self, request: ChatRequest) -> ChatResponse:
        return await asyncio.to_thread(self._service.generate, request)


class HttpTransport:
    """把请求 POST 到已运行的聊天接口（/api/chat），始终以非流式方式调用。"""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/api/chat"
        self._client = client
        self._timeout = timeout

    async def send(self, request: ChatRequest) -> ChatResponse:
        payload = request.to_payload()
        payload["stream"] = False
        if self._client is not None:
            return await self._post(self._client, payload)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await self._post(client, payload)

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> ChatResponse:
        try:
            resp = await client.post(self._url, json=payload)
        except httpx.RequestError as exc:
            raise NetworkError(code="NETWORK_ERROR", message=str(exc))
        try:
            data = resp.json()
        except ValueError:
            data = None
        if resp.status_code >= 400:
            message = "Failed to send message"
            if isinstance(data, dict) and data.get("error"):
                message = str(data["error"])
            raise GenerationFailure(message=message, http_status=resp.status_code)
        if not isinstance(data, dict):
            raise ApiError(code="MALFORMED_RESPONSE", message="Chat API returned an unexpected response")
        return ChatResponse.from_dict(data)
