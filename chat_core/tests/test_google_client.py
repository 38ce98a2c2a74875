import pytest

from chat_core.domain.exceptions import ApiError
from chat_core.domain.models import ChatMessage
from chat_core.providers.google_client import GoogleClient


def _client():
    return GoogleClient(
        api_key="gk", model="gemini-pro", base_url="https://generativelanguage.googleapis.com/v1beta", timeout=1.0
    )


def _fake_client(body, calls):
    class Resp:
        status_code = 200
        text = ""

        def json(self):
            return body

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None):
            calls.update(url=url, json=json, headers=headers)
            return Resp()

    return Client


def test_google_client_basic(monkeypatch):
    calls = {}
    body = {
        "candidates": [{"content": {"parts": [{"text": "bon"}, {"text": "jour"}]}, "finishReason": "STOP"}],
        "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 2, "totalTokenCount": 6},
    }
    monkeypatch.setattr("httpx.Client", _fake_client(body, calls))
    res = _client().chat(
        [
            ChatMessage(role="system", content="short answers"),
            ChatMessage(role="user", content="hi"),
            ChatMessage(role="assistant", content="hello"),
            ChatMessage(role="user", content="in french?"),
        ],
        max_tokens=50,
        temperature=0.7,
    )
    assert res.content == "bonjour"
    assert res.finish_reason == "STOP"
    assert res.usage.total_tokens == 6
    assert calls["url"].endswith("/models/gemini-pro:generateContent")
    assert calls["headers"]["x-goog-api-key"] == "gk"
    assert [c["role"] for c in calls["json"]["contents"]] == ["user", "model", "user"]
    assert calls["json"]["systemInstruction"] == {"parts": [{"text": "short answers"}]}
    assert calls["json"]["generationConfig"] == {"maxOutputTokens": 50, "temperature": 0.7}


def test_google_client_no_candidates(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client({"candidates": []}, {}))
    with pytest.raises(ApiError) as ei:
        _client().chat([ChatMessage(role="user", content="hi")], max_tokens=5, temperature=0.5)
    assert ei.value.code == "MALFORMED_RESPONSE"


def test_google_client_stream(monkeypatch):
    seen = {}
    stream_lines = [
        'data: {"candidates": [{"content": {"parts": [{"text": "a"}]}}]}',
        'data: {"candidates": [{"content": {"parts": [{"text": "b"}]}, "finishReason": "STOP"}], "usageMetadata": {"promptTokenCount": 1, "candidatesTokenCount": 2}}',
    ]

    class FakeResponse:
        status_code = 200

        def iter_lines(self):
            yield from stream_lines

    class StreamContext:
        def __enter__(self):
            return FakeResponse()

        def __exit__(self, *args):
            return False

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, method, url, json=None, headers=None):
            seen["url"] = url
            return StreamContext()

    monkeypatch.setattr("httpx.Client", Client)
    chunks = list(_client().chat_stream([ChatMessage(role="user", content="hi")], max_tokens=5, temperature=0.5))
    assert [c.delta for c in chunks] == ["a", "b"]
    assert chunks[-1].usage.total_tokens == 3
    assert seen["url"].endswith(":streamGenerateContent?alt=sse")
