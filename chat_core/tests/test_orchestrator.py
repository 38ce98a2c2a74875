import asyncio

from chat_core.api.service import ChatService
from chat_core.chat.orchestrator import ChatOrchestrator, OrchestratorState
from chat_core.chat.transport import LocalTransport
from chat_core.config.settings import ChatSettings
from chat_core.domain.exceptions import (
    ApiError,
    MissingCredentialError,
    RequestCancelledError,
    RequestTimeoutError,
)
from chat_core.domain.models import ChatResponse, ConversationTurn
from chat_core.providers.registry import ProviderRegistry

KEYS = {"OPENAI_API_KEY": "sk"}


class ScriptedTransport:
    """按顺序返回预设结果；结果为异常时抛出。"""

    def __init__(self, *results):
        self.results = list(results)
        self.requests = []

    async def send(self, request):
        self.requests.append(request)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return ChatResponse(content=result)


class BlockingTransport:
    def __init__(self, content="late"):
        self.content = content
        self.release = None
        self.requests = []

    async def send(self, request):
        self.requests.append(request)
        if self.release is None:
            self.release = asyncio.Event()
        await self.release.wait()
        return ChatResponse(content=self.content)


def _orch(transport, **kw):
    kw.setdefault("request_timeout", None)
    return ChatOrchestrator(transport, **kw)


def test_send_success_appends_user_and_assistant():
    transport = ScriptedTransport("hello back")
    orch = _orch(transport)
    turn = asyncio.run(orch.send_message("  hello  ", "gpt-4", KEYS))
    assert turn is not None
    assert [(t.role, t.content) for t in orch.turns] == [("user", "hello"), ("assistant", "hello back")]
    assert orch.turns[1].provider == "gpt-4"
    assert orch.turns[0].provider is None
    assert orch.state is OrchestratorState.IDLE
    assert orch.error is None
    assert orch.last_request.content == "hello"
    assert orch.last_request.provider_id == "gpt-4"
    req = transport.requests[0]
    assert [m.content for m in req.messages] == ["hello"]
    assert req.stream is False


def test_send_includes_history_and_params():
    history = [
        ConversationTurn(id="t1", role="user", content="one"),
        ConversationTurn(id="t2", role="assistant", content="two", provider="claude-3"),
    ]
    transport = ScriptedTransport("four")
    orch = _orch(transport, initial_turns=history)
    asyncio.run(orch.send_message("three", "gpt-4", KEYS, max_tokens=50, temperature=0.0))
    req = transport.requests[0]
    assert [m.content for m in req.messages] == ["one", "two", "three"]
    assert req.max_tokens == 50
    assert req.temperature == 0.0
    assert req.credentials == KEYS


def test_blank_message_is_ignored():
    transport = ScriptedTransport()
    orch = _orch(transport)
    assert asyncio.run(orch.send_message("   ", "gpt-4", KEYS)) is None
    assert orch.turns == []
    assert transport.requests == []
    assert orch.last_request is None


def test_failure_rolls_back_user_turn():
    errors = []
    history = [ConversationTurn(id="t1", role="user", content="old")]
    orch = _orch(ScriptedTransport(ApiError(code="API_ERROR", message="upstream broke")),
                 initial_turns=history, on_error=errors.append)
    assert asyncio.run(orch.send_message("new", "gpt-4", KEYS)) is None
    assert [t.id for t in orch.turns] == ["t1"]
    assert orch.error == "upstream broke"
    assert orch.state is OrchestratorState.IDLE
    assert len(errors) == 1 and isinstance(errors[0], ApiError)


def test_unexpected_error_message_fallback():
    orch = _orch(ScriptedTransport(RuntimeError()))
    asyncio.run(orch.send_message("hi", "gpt-4", KEYS))
    assert orch.error == "An unexpected error occurred"
    assert orch.turns == []


def test_error_cleared_on_next_send():
    orch = _orch(ScriptedTransport(RuntimeError("first failed"), "ok"))
    asyncio.run(orch.send_message("a", "gpt-4", KEYS))
    assert orch.error == "first failed"
    asyncio.run(orch.send_message("b", "gpt-4", KEYS))
    assert orch.error is None
    assert [t.content for t in orch.turns] == ["b", "ok"]


def test_single_flight():
    transport = BlockingTransport()
    orch = _orch(transport)

    async def scenario():
        first = asyncio.create_task(orch.send_message("a", "gpt-4", KEYS))
        await asyncio.sleep(0)
        assert orch.is_loading
        assert await orch.send_message("b", "gpt-4", KEYS) is None
        assert await orch.regenerate_last_message() is None
        assert orch.load_turns([]) is False
        await asyncio.sleep(0)
        transport.release.set()
        return await first

    turn = asyncio.run(scenario())
    assert turn.content == "late"
    assert [t.content for t in orch.turns] == ["a", "late"]
    assert len(transport.requests) == 1


def test_regenerate_replaces_last_assistant():
    transport = ScriptedTransport("first", "second")
    orch = _orch(transport)
    asyncio.run(orch.send_message("q", "gpt-4", {"OPENAI_API_KEY": "sk"}))
    first_ids = [t.id for t in orch.turns]
    turn = asyncio.run(orch.regenerate_last_message())
    assert turn.content == "second"
    assert [t.content for t in orch.turns] == ["q", "second"]
    assert orch.turns[0].id == first_ids[0]
    assert orch.turns[1].id != first_ids[1]
    replay = transport.requests[1]
    assert [m.content for m in replay.messages] == ["q"]
    assert replay.provider_id == "gpt-4"
    assert replay.credentials == {"OPENAI_API_KEY": "sk"}


def test_regenerate_failure_restores_turn():
    orch = _orch(ScriptedTransport("first", ApiError(code="API_ERROR", message="nope")))
    asyncio.run(orch.send_message("q", "gpt-4", KEYS))
    before = orch.turns
    assert asyncio.run(orch.regenerate_last_message()) is None
    assert orch.turns == before
    assert orch.error == "nope"


def test_regenerate_noop_cases():
    loaded = [
        ConversationTurn(id="t1", role="user", content="q"),
        ConversationTurn(id="t2", role="assistant", content="a", provider="gpt-4"),
    ]
    transport = ScriptedTransport()
    orch = _orch(transport, initial_turns=loaded)
    # 没有发送过，缺少可复用的 provider / 凭证
    assert asyncio.run(orch.regenerate_last_message()) is None
    assert orch.turns == loaded

    transport = ScriptedTransport(ApiError(code="API_ERROR", message="x"))
    orch = _orch(transport)
    asyncio.run(orch.send_message("q", "gpt-4", KEYS))
    assert orch.last_request is not None
    assert asyncio.run(orch.regenerate_last_message()) is None
    assert len(transport.requests) == 1


def test_credentials_are_copied():
    keys = {"OPENAI_API_KEY": "sk"}
    transport = ScriptedTransport("a", "b")
    orch = _orch(transport)
    asyncio.run(orch.send_message("q", "gpt-4", keys))
    keys["OPENAI_API_KEY"] = "changed"
    asyncio.run(orch.regenerate_last_message())
    assert transport.requests[1].credentials == {"OPENAI_API_KEY": "sk"}
    assert "sk" not in repr(orch.last_request)


def test_clear_messages_resets_everything():
    orch = _orch(ScriptedTransport("a", RuntimeError("bad")))
    asyncio.run(orch.send_message("q", "gpt-4", KEYS))
    asyncio.run(orch.send_message("q2", "gpt-4", KEYS))
    assert orch.error == "bad"
    orch.clear_messages()
    assert orch.turns == []
    assert orch.error is None
    assert orch.last_request is None
    assert asyncio.run(orch.regenerate_last_message()) is None


def test_clear_discards_inflight_result():
    errors = []
    transport = BlockingTransport()
    orch = _orch(transport, on_error=errors.append)

    async def scenario():
        task = asyncio.create_task(orch.send_message("a", "gpt-4", KEYS))
        await asyncio.sleep(0)
        orch.clear_messages()
        return await task

    assert asyncio.run(scenario()) is None
    assert orch.turns == []
    assert orch.error is None
    assert orch.state is OrchestratorState.IDLE
    assert errors == []


def test_cancel_rolls_back():
    errors = []
    orch = _orch(BlockingTransport(), on_error=errors.append)

    async def scenario():
        task = asyncio.create_task(orch.send_message("a", "gpt-4", KEYS))
        await asyncio.sleep(0)
        assert orch.cancel() is True
        return await task

    assert asyncio.run(scenario()) is None
    assert orch.turns == []
    assert orch.error == "Request cancelled"
    assert isinstance(errors[0], RequestCancelledError)
    assert orch.cancel() is False


def test_timeout_rolls_back():
    orch = _orch(BlockingTransport(), request_timeout=0.01)
    assert asyncio.run(orch.send_message("a", "gpt-4", KEYS)) is None
    assert orch.turns == []
    assert "timed out" in orch.error
    assert orch.state is OrchestratorState.IDLE


def test_timeout_error_type():
    errors = []
    orch = _orch(BlockingTransport(), request_timeout=0.01, on_error=errors.append)
    asyncio.run(orch.send_message("a", "gpt-4", KEYS))
    assert isinstance(errors[0], RequestTimeoutError)


def test_load_turns_replaces_conversation():
    orch = _orch(ScriptedTransport())
    saved = [ConversationTurn(id="t9", role="user", content="from disk")]
    assert orch.load_turns(saved) is True
    assert [t.id for t in orch.turns] == ["t9"]


class FirstThenBlockTransport:
    """第一次调用立即返回，之后的调用一直挂起。"""

    def __init__(self):
        self.requests = []

    async def send(self, request):
        self.requests.append(request)
        if len(self.requests) == 1:
            return ChatResponse(content="first")
        await asyncio.Event().wait()


def test_missing_key_through_local_service_rolls_back():
    settings = ChatSettings(openai_api_key=None, anthropic_api_key=None, google_ai_api_key=None, groq_api_key=None)
    service = ChatService(ProviderRegistry(settings=settings), settings=settings)
    errors = []
    orch = _orch(LocalTransport(service), on_error=errors.append)
    assert asyncio.run(orch.send_message("Hi", "gpt-4", {})) is None
    assert orch.turns == []
    assert "gpt-4" in orch.error
    assert "OPENAI_API_KEY" in orch.error
    assert isinstance(errors[0], MissingCredentialError)
    assert orch.state is OrchestratorState.IDLE


def test_each_successful_send_adds_two_turns():
    replies = [f"reply {i}" for i in range(4)]
    transport = ScriptedTransport(*replies)
    orch = _orch(transport)

    async def scenario():
        lengths = []
        for i in range(4):
            await orch.send_message(f"question {i}", "gpt-4", KEYS)
            lengths.append(len(orch.turns))
        return lengths

    assert asyncio.run(scenario()) == [2, 4, 6, 8]
    assert [t.role for t in orch.turns] == ["user", "assistant"] * 4
    assert [len(r.messages) for r in transport.requests] == [1, 3, 5, 7]


def test_load_turns_forgets_last_request():
    transport = ScriptedTransport("a")
    orch = _orch(transport)
    asyncio.run(orch.send_message("q", "gpt-4", KEYS))
    saved = [
        ConversationTurn(id="t1", role="user", content="other"),
        ConversationTurn(id="t2", role="assistant", content="chat", provider="claude-3"),
    ]
    assert orch.load_turns(saved) is True
    assert orch.last_request is None
    assert asyncio.run(orch.regenerate_last_message()) is None
    assert len(transport.requests) == 1
    assert orch.turns == saved


def test_cancel_regenerate_restores_turn():
    errors = []
    orch = _orch(FirstThenBlockTransport(), on_error=errors.append)

    async def scenario():
        await orch.send_message("q", "gpt-4", KEYS)
        task = asyncio.create_task(orch.regenerate_last_message())
        await asyncio.sleep(0)
        assert orch.is_loading
        assert [t.content for t in orch.turns] == ["q"]
        assert orch.cancel() is True
        return await task

    assert asyncio.run(scenario()) is None
    assert [t.content for t in orch.turns] == ["q", "first"]
    assert orch.error == "Request cancelled"
    assert isinstance(errors[0], RequestCancelledError)
    assert orch.state is OrchestratorState.IDLE


def test_regenerate_timeout_restores_turn():
    orch = _orch(FirstThenBlockTransport(), request_timeout=0.05)

    async def scenario():
        await orch.send_message("q", "gpt-4", KEYS)
        before = orch.turns
        await orch.regenerate_last_message()
        return before

    before = asyncio.run(scenario())
    assert orch.turns == before
    assert "timed out" in orch.error
    assert orch.state is OrchestratorState.IDLE
