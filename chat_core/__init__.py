"""Chat Core 顶层包。

该包提供多厂商 LLM 聊天的核心实现，
包括配置加载、领域模型、Provider 目录与适配、会话编排、
HTTP 接口与已保存会话的本地存储等能力。
"""

from chat_core.chat import ChatOrchestrator, HttpTransport, LocalTransport
from chat_core.providers import ProviderRegistry

__all__ = ["ChatOrchestrator", "HttpTransport", "LocalTransport", "ProviderRegistry"]
