import json
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import Conversation, ConversationStore
from chat_core.domain.exceptions import BusinessError, ValidationError
from chat_core.domain.models import ROLES, ConversationTurn

EXPORT_VERSION = "1.0"


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(raw: Any) -> datetime:
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    """已保存会话的本地存储：每个会话一个目录，meta.json + turns.jsonl。

    只保存消息内容与 provider 标记，凭证从不落盘。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    def save_conversation(
        self, title: str, turns: List[ConversationTurn], meta: Optional[Dict[str, Any]] = None
    ) -> Conversation:
        title = (title or "").strip()
        if not title or not turns:
            raise ValidationError(
                code="VALIDATION_ERROR",
                message="Please provide a title and ensure you have messages to save.",
            )
        provider = next((t.provider for t in turns if t.provider), None) or "Unknown"
        now = datetime.now(timezone.utc)
        conv = Conversation(
            id=f"c-{uuid4().hex}",
            title=title,
            provider=provider,
            created_at=now,
            updated_at=now,
            meta=dict(meta or {}),
        )
        self._write_conversation(conv, turns)
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation:
        meta_path = self._conv_dir(conversation_id) / "meta.json"
        if not meta_path.exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
            return self._to_conversation(data)
        except (OSError, ValueError, KeyError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e), http_status=500)

    def list_conversations(self) -> List[Conversation]:
        items: List[Conversation] = []
        for cdir in self._conv_root.glob("*/"):
            meta_path = cdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                items.append(self._to_conversation(json.loads(meta_path.read_text(encoding="utf-8"))))
            except (OSError, ValueError, KeyError):
                continue
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return items

    def search_conversations(self, term: str) -> List[Conversation]:
        needle = (term or "").strip().lower()
        convs = self.list_conversations()
        if not needle:
            return convs
        return [c for c in convs if needle in c.title.lower()]

    def add_turn(self, conversation_id: str, turn: ConversationTurn) -> None:
        conv = self.get_conversation(conversation_id)
        cdir = self._conv_dir(conversation_id)
        try:
            with (cdir / "turns.jsonl").open("a", encoding="utf-8") as f:
                f.write(json.dumps(turn.to_dict(), ensure_ascii=False) + "\n")
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)
        conv.updated_at = datetime.now(timezone.utc)
        if conv.provider == "Unknown" and turn.provider:
            conv.provider = turn.provider
        self._write_meta(cdir, conv)

    def list_turns(self, conversation_id: str) -> List[ConversationTurn]:
        cdir = self._conv_dir(conversation_id)
        if not (cdir / "meta.json").exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        turns_path = cdir / "turns.jsonl"
        items: List[ConversationTurn] = []
        if not turns_path.exists():
            return items
        for line in turns_path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                items.append(ConversationTurn.from_dict(json.loads(line)))
            except (ValueError, KeyError):
                continue
        return items

    def update_conversation_title(self, conversation_id: str, title: str) -> None:
        """更新会话标题。"""
        conv = self.get_conversation(conversation_id)
        conv.title = title
        conv.updated_at = datetime.now(timezone.utc)
        self._write_meta(self._conv_dir(conversation_id), conv)

    def delete_conversation(self, conversation_id: str) -> None:
        cdir = self._conv_dir(conversation_id)
        if not cdir.exists():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        try:
            shutil.rmtree(cdir)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e), http_status=500)

    def export_conversations(self) -> Dict[str, Any]:
        """导出全部会话，格式与导入一致。"""
        return {
            "conversations": [
                {**c.to_dict(), "messages": [t.to_dict() for t in self.list_turns(c.id)]}
                for c in self.list_conversations()
            ],
            "exportedAt": _iso(datetime.now(timezone.utc)),
            "version": EXPORT_VERSION,
        }

    def import_conversations(self, payload: Dict[str, Any]) -> int:
        """导入 export_conversations 产出的数据，返回导入数量。

        导入的会话分配新 id，已有会话不受影响。
        """
        items = payload.get("conversations") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise ValidationError(code="VALIDATION_ERROR", message="Invalid file format")
        parsed = []
        for item in items:
            try:
                turns = [ConversationTurn.from_dict(m) for m in item.get("messages") or []]
                if any(t.role not in ROLES for t in turns):
                    raise ValueError("invalid role")
                now = datetime.now(timezone.utc)
                conv = Conversation(
                    id=f"c-{uuid4().hex}",
                    title=str(item.get("title") or "").strip() or "Untitled",
                    provider=item.get("provider") or "Unknown",
                    created_at=_parse_dt(item["createdAt"]) if item.get("createdAt") else now,
                    updated_at=_parse_dt(item["updatedAt"]) if item.get("updatedAt") else now,
                    meta=dict(item.get("meta") or {}),
                )
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise ValidationError(code="VALIDATION_ERROR", message=f"Invalid file format: {e}")
            parsed.append((conv, turns))
        for conv, turns in parsed:
            self._write_conversation(conv, turns)
        return len(parsed)

    # ---- 内部实现 ----

    def _conv_dir(self, conversation_id: str) -> Path:
        cdir = (self._conv_root / conversation_id).resolve()
        if cdir.parent != self._conv_root.resolve():
            raise BusinessError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        return cdir

    def _write_conversation(self, conv: Conversation, turns: List[ConversationTurn]) -> None:
        cdir = self._conv_root / conv.id
        try:
            cdir.mkdir(parents=True, exist_ok=True)
            lines = [json.dumps(t.to_dict(), ensure_ascii=False) for t in turns]
            (cdir / "turns.jsonl").write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)
        self._write_meta(cdir, conv)

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(conv.to_dict(), ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e), http_status=500)

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=data["id"],
            title=data.get("title") or "",
            provider=data.get("provider") or "Unknown",
            created_at=_parse_dt(data["createdAt"]),
            updated_at=_parse_dt(data["updatedAt"]),
            meta=data.get("meta") or {},
        )
