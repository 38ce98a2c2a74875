from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from .models import ConversationTurn


@dataclass
class Conversation:
    id: str
    title: str
    provider: str
    created_at: datetime
    updated_at: datetime
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "provider": self.provider,
            "createdAt": self.created_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
            "updatedAt": self.updated_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
            "meta": self.meta,
        }


class ConversationStore(Protocol):
    def save_conversation(
        self, title: str, turns: List[ConversationTurn], meta: Optional[Dict[str, Any]] = None
    ) -> Conversation:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def list_conversations(self) -> List[Conversation]:
        ...

    def search_conversations(self, term: str) -> List[Conversation]:
        ...

    def add_turn(self, conversation_id: str, turn: ConversationTurn) -> None:
        ...

    def list_turns(self, conversation_id: str) -> List[ConversationTurn]:
        ...

    def update_conversation_title(self, conversation_id: str, title: str) -> None:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...

    def export_conversations(self) -> Dict[str, Any]:
        ...

    def import_conversations(self, payload: Dict[str, Any]) -> int:
        ...
