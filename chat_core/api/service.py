"""生成服务模块。

ChatService 是编排层与厂商之间的边界：解析 provider、补齐默认生成参数、
调用 ProviderClient，并把任何非业务异常统一包装为 GenerationFailure。
"""

import time
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

from chat_core.config.settings import Settings, settings as default_settings
from chat_core.domain.exceptions import BusinessError, GenerationFailure
from chat_core.domain.models import ChatMessage, ChatRequest, ChatResponse, ChatStreamChunk
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import ProviderRegistry


class ChatService:
    def __init__(self, registry: ProviderRegistry, settings: Optional[Settings] = None):
        self._registry = registry
        self._settings = settings or default_settings

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def generate(self, request: ChatRequest) -> ChatResponse:
        """执行一次非流式生成。

        Args:
            request: 生成请求（消息、provider id、凭证与可选的生成参数）

        Returns:
            统一的 ChatResponse

        Raises:
            UnknownProviderError / UnsupportedProviderError / MissingCredentialError:
                provider 解析失败，发生在任何网络请求之前
            GenerationFailure: 厂商调用失败
        """
        log_ctx = self._log_ctx(request)
        client = self._registry.resolve_model(request.provider_id, request.credentials)
        messages = self._messages(request)
        params = self._generation_params(request)
        log_ctx["model"] = client.model
        logger.info("Calling provider", extra={"extra": {**log_ctx, **params, "message_count": len(messages)}})

        start_time = time.time()
        try:
            response = client.chat(messages, **params)
        except BusinessError as e:
            logger.error("Chat generation failed", extra={"extra": {**log_ctx, "code": e.code, "error": e.message}})
            raise
        except Exception as e:
            logger.exception("Chat generation failed", extra={"extra": {**log_ctx, "error": str(e)}})
            raise GenerationFailure(message=str(e) or "Failed to generate response") from e

        usage_meta: Dict[str, Any] = response.usage.to_dict() if response.usage else {}
        logger.info(
            "Completed generation",
            extra={"extra": {
                **log_ctx,
                **usage_meta,
                "finish_reason": response.finish_reason,
                "elapsed_seconds": round(time.time() - start_time, 2),
            }},
        )
        return response

    def stream(self, request: ChatRequest) -> Iterator[ChatStreamChunk]:
        """执行一次流式生成，逐块产出增量。

        provider 解析在第一次迭代前完成，因此凭证错误会在开始流式输出之前抛出。
        """
        log_ctx = self._log_ctx(request)
        client = self._registry.resolve_model(request.provider_id, request.credentials)
        messages = self._messages(request)
        params = self._generation_params(request)
        log_ctx["model"] = client.model
        logger.info("Calling provider (stream)", extra={"extra": {**log_ctx, **params}})
        return self._iter_stream(client, messages, params, log_ctx)

    def _iter_stream(self, client, messages, params, log_ctx) -> Iterator[ChatStreamChunk]:
        chunk_count = 0
        try:
            for chunk in client.chat_stream(messages, **params):
                chunk_count += 1
                yield chunk
        except BusinessError as e:
            logger.error("Chat streaming failed", extra={"extra": {**log_ctx, "code": e.code, "error": e.message}})
            raise
        except Exception as e:
            logger.exception("Chat streaming failed", extra={"extra": {**log_ctx, "error": str(e)}})
            raise GenerationFailure(message=str(e) or "Failed to stream response") from e
        logger.info("Completed stream", extra={"extra": {**log_ctx, "chunks": chunk_count}})

    # ---- 辅助方法 ----

    def _generation_params(self, request: ChatRequest) -> Dict[str, Any]:
        return {
            "max_tokens": request.max_tokens or self._settings.default_max_tokens,
            "temperature": (
                request.temperature if request.temperature is not None else self._settings.default_temperature
            ),
        }

    @staticmethod
    def _messages(request: ChatRequest) -> List[ChatMessage]:
        return [ChatMessage(role=m.role, content=m.content) for m in request.messages]

    @staticmethod
    def _log_ctx(request: ChatRequest) -> Dict[str, Any]:
        # 凭证不进日志
        return {"trace_id": f"tr-{uuid4().hex}", "provider_id": request.provider_id}
