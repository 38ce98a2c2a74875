"""HTTP 接口层（FastAPI）。

- POST /api/chat：校验请求体后调用 ChatService，支持 SSE 流式输出。
- GET /api/providers、GET /api/tools：目录查询。
- /api/conversations：已保存会话的增删查与导入导出。

所有依赖通过 create_app 注入，测试可以传入自己的 registry / service / store。
"""

import asyncio
import itertools
import json
from typing import Any, Dict, Iterator, List, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from chat_core.api.service import ChatService
from chat_core.config.settings import Settings, settings as default_settings
from chat_core.domain.conversation import ConversationStore
from chat_core.domain.exceptions import BusinessError, ValidationError
from chat_core.domain.models import ROLES, ChatMessage, ChatRequest, ChatStreamChunk, ConversationTurn
from chat_core.infrastructure.logging.logger import logger
from chat_core.infrastructure.storage.json_store import JsonConversationStore
from chat_core.providers.registry import ProviderRegistry
from chat_core.tools.registry import AVAILABLE_TOOLS


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)


def _business_error(e: BusinessError) -> JSONResponse:
    return JSONResponse({"error": e.message, "code": e.code}, status_code=e.http_status)


def _generation_status(message: str) -> int:
    return 401 if "API key" in message else 500


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise ValidationError(code="VALIDATION_ERROR", message="Invalid JSON body")


def _parse_messages(raw: List[Any]) -> List[ChatMessage]:
    messages: List[ChatMessage] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(code="VALIDATION_ERROR", message=f"Message {i} must be an object")
        role, content = item.get("role"), item.get("content")
        if role not in ROLES:
            raise ValidationError(code="VALIDATION_ERROR", message=f"Message {i} has invalid role: {role}")
        if not isinstance(content, str):
            raise ValidationError(code="VALIDATION_ERROR", message=f"Message {i} content must be a string")
        messages.append(ChatMessage(role=role, content=content))
    return messages


def _optional_number(body: Dict[str, Any], key: str, kind: type) -> Optional[Any]:
    value = body.get(key)
    if value is None:
        return None
    # bool 是 int 的子类，这里单独排除
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(code="VALIDATION_ERROR", message=f"{key} must be a number")
    return kind(value)


def _sse_events(chunks: Iterator[ChatStreamChunk]) -> Iterator[str]:
    try:
        for chunk in chunks:
            if chunk.delta:
                yield f"data: {json.dumps({'content': chunk.delta}, ensure_ascii=False)}\n\n"
    except BusinessError as e:
        # 响应头已发出，只能在流内报告错误
        yield f"data: {json.dumps({'error': e.message}, ensure_ascii=False)}\n\n"
    yield "data: [DONE]\n\n"


def create_app(
    registry: Optional[ProviderRegistry] = None,
    service: Optional[ChatService] = None,
    store: Optional[ConversationStore] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    cfg = settings or default_settings
    registry = registry or (service.registry if service else ProviderRegistry(settings=cfg))
    service = service or ChatService(registry, settings=cfg)
    store = store if store is not None else JsonConversationStore(cfg.storage_root)

    app = FastAPI(title="Chat Core API", version="0.1.0")
    app.state.registry = registry
    app.state.service = service
    app.state.store = store

    @app.exception_handler(BusinessError)
    async def handle_business_error(request: Request, exc: BusinessError):
        logger.warning(
            "Request failed",
            extra={"extra": {"path": request.url.path, "code": exc.code, "error": exc.message}},
        )
        return _business_error(exc)

    # ---- 聊天 ----

    @app.get("/api/chat")
    async def chat_status():
        return {"message": "Chat API is running"}

    @app.post("/api/chat")
    async def chat(request: Request):
        try:
            body = await _read_json(request)
        except ValidationError as e:
            return _error(400, e.message)
        if not isinstance(body, dict):
            return _error(400, "Invalid JSON body")

        raw_messages = body.get("messages")
        if not isinstance(raw_messages, list) or not raw_messages:
            return _error(400, "Messages array is required and cannot be empty")
        provider_id = body.get("providerId")
        if not provider_id or not isinstance(provider_id, str):
            return _error(400, "Provider ID is required")
        api_keys = body.get("apiKeys")
        if not isinstance(api_keys, dict):
            return _error(400, "API keys object is required")
        try:
            messages = _parse_messages(raw_messages)
            max_tokens = _optional_number(body, "maxTokens", int)
            temperature = _optional_number(body, "temperature", float)
        except ValidationError as e:
            return _error(400, e.message)
        if not registry.validate_credentials(provider_id, api_keys):
            return _error(400, f"API key not configured for provider: {provider_id}")

        chat_request = ChatRequest(
            messages=messages,
            provider_id=provider_id,
            credentials={k: v for k, v in api_keys.items() if isinstance(v, str)},
            stream=bool(body.get("stream", False)),
            max_tokens=max_tokens,
            temperature=temperature,
        )
        try:
            if chat_request.stream:
                chunks = iter(service.stream(chat_request))
                # 先取第一块，厂商请求失败时仍可返回正确的状态码
                first = await asyncio.to_thread(next, chunks, None)
                rest = itertools.chain([first], chunks) if first is not None else iter(())
                return StreamingResponse(
                    _sse_events(rest),
                    media_type="text/event-stream",
                    headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
                )
            response = await asyncio.to_thread(service.generate, chat_request)
        except Exception as e:
            message = e.message if isinstance(e, BusinessError) else (str(e) or "Internal server error")
            logger.error("Chat API error", extra={"extra": {"provider_id": provider_id, "error": message}})
            return _error(_generation_status(message), message)
        return response.to_dict()

    # ---- 目录 ----

    @app.get("/api/providers")
    async def list_providers():
        providers = [p.to_dict(registry.provider_status(p.id)) for p in registry.list_providers()]
        return {"providers": providers, "total": len(providers)}

    @app.get("/api/tools")
    async def list_tools():
        tools = [t.to_dict() for t in AVAILABLE_TOOLS]
        return {"tools": tools, "total": len(tools)}

    # ---- 已保存会话 ----

    @app.get("/api/conversations")
    async def list_conversations(q: str = ""):
        convs = store.search_conversations(q) if q.strip() else store.list_conversations()
        return {"conversations": [c.to_dict() for c in convs], "total": len(convs)}

    @app.post("/api/conversations", status_code=201)
    async def save_conversation(request: Request):
        body = await _read_json(request)
        if not isinstance(body, dict) or not isinstance(body.get("messages"), list):
            raise ValidationError(
                code="VALIDATION_ERROR",
                message="Please provide a title and ensure you have messages to save.",
            )
        try:
            turns = [ConversationTurn.from_dict(m) for m in body["messages"]]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ValidationError(code="VALIDATION_ERROR", message=f"Invalid message: {e}")
        if any(t.role not in ROLES for t in turns):
            raise ValidationError(code="VALIDATION_ERROR", message="Invalid message role")
        meta = body.get("meta") if isinstance(body.get("meta"), dict) else None
        conv = store.save_conversation(str(body.get("title") or ""), turns, meta=meta)
        logger.info("Conversation saved", extra={"extra": {"conversation_id": conv.id, "turns": len(turns)}})
        return conv.to_dict()

    # export / import 必须在 /{conversation_id} 之前注册
    @app.get("/api/conversations/export")
    async def export_conversations():
        return store.export_conversations()

    @app.post("/api/conversations/import")
    async def import_conversations(request: Request):
        imported = store.import_conversations(await _read_json(request))
        logger.info("Conversations imported", extra={"extra": {"count": imported}})
        return {"imported": imported}

    @app.get("/api/conversations/{conversation_id}")
    async def get_conversation(conversation_id: str):
        conv = store.get_conversation(conversation_id)
        return {**conv.to_dict(), "messages": [t.to_dict() for t in store.list_turns(conversation_id)]}

    @app.delete("/api/conversations/{conversation_id}", status_code=204)
    async def delete_conversation(conversation_id: str):
        store.delete_conversation(conversation_id)
        return Response(status_code=204)

    return app


def main():
    """以 uvicorn 启动 API 服务。"""
    uvicorn.run(
        create_app(),
        host=default_settings.api_host,
        port=default_settings.api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
