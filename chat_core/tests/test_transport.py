import asyncio
import json

import httpx
import pytest

from chat_core.chat.transport import HttpTransport, LocalTransport
from chat_core.domain.exceptions import ApiError, GenerationFailure, NetworkError
from chat_core.domain.models import ChatMessage, ChatRequest, ChatResponse


def _request(**kw):
    base = dict(
        messages=[ChatMessage(role="user", content="hi")],
        provider_id="gpt-4",
        credentials={"OPENAI_API_KEY": "sk"},
    )
    base.update(kw)
    return ChatRequest(**base)


def _send(handler, request=None):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = HttpTransport("http://chat.local/", client=client)
            return await transport.send(request or _request())

    return asyncio.run(run())


def test_http_transport_success():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": "hey", "finishReason": "stop",
                                         "usage": {"promptTokens": 1, "completionTokens": 1, "totalTokens": 2}})

    res = _send(handler, _request(stream=True, temperature=0.0))
    assert res.content == "hey"
    assert res.usage.total_tokens == 2
    assert seen["url"] == "http://chat.local/api/chat"
    assert seen["body"]["providerId"] == "gpt-4"
    assert seen["body"]["apiKeys"] == {"OPENAI_API_KEY": "sk"}
    assert seen["body"]["stream"] is False
    assert seen["body"]["temperature"] == 0.0
    assert "maxTokens" not in seen["body"]


def test_http_transport_error_body():
    def handler(request):
        return httpx.Response(401, json={"error": "OpenAI API key not configured"})

    with pytest.raises(GenerationFailure) as ei:
        _send(handler)
    assert ei.value.message == "OpenAI API key not configured"
    assert ei.value.http_status == 401


def test_http_transport_error_without_body():
    def handler(request):
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(GenerationFailure) as ei:
        _send(handler)
    assert ei.value.message == "Failed to send message"


def test_http_transport_malformed_success_body():
    def handler(request):
        return httpx.Response(200, text="not json")

    with pytest.raises(ApiError):
        _send(handler)


def test_http_transport_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(NetworkError):
        _send(handler)


def test_local_transport_calls_service():
    class Service:
        def __init__(self):
            self.seen = None

        def generate(self, request):
            self.seen = request
            return ChatResponse(content="local")

    service = Service()
    res = asyncio.run(LocalTransport(service).send(_request()))
    assert res.content == "local"
    assert service.seen.provider_id == "gpt-4"
