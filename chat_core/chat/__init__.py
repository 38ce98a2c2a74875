"""会话编排（会话状态与请求/响应周期）。"""

from .orchestrator import ChatOrchestrator, LastRequest, OrchestratorState
from .transport import ChatTransport, HttpTransport, LocalTransport

__all__ = [
    "ChatOrchestrator",
    "ChatTransport",
    "HttpTransport",
    "LastRequest",
    "LocalTransport",
    "OrchestratorState",
]
