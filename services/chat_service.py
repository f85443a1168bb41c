from sqlalchemy import func
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
import logging

from models import Actor, ChatMessage
from services.exceptions import ForbiddenError, ValidationError
from services.realtime_hub import RealtimeHub, thread_topic

logger = logging.getLogger(__name__)

THREAD_PREFIX = "admin:"
MAX_MESSAGE_LENGTH = 2000

def thread_id_for(user_id: int) -> str:
    """Support threads pair one user with the admin desk"""
    return f"{THREAD_PREFIX}{user_id}"

def thread_owner(thread_id: str) -> Optional[int]:
    if not isinstance(thread_id, str) or not thread_id.startswith(THREAD_PREFIX):
        return None
    try:
        return int(thread_id[len(THREAD_PREFIX):])
    except ValueError:
        return None

def message_payload(message: ChatMessage) -> dict:
    return {
        "id": message.id,
        "threadId": message.thread_id,
        "from": message.from_user_id,
        "to": message.to_user_id,
        "text": message.text,
        "readAt": message.read_at.isoformat() if message.read_at else None,
        "createdAt": message.created_at.isoformat() if message.created_at else None,
    }

class ChatService:
    def __init__(self, db: Session, hub: Optional[RealtimeHub] = None):
        self.db = db
        self.hub = hub

    def can_access(self, thread_id: str, actor: Actor) -> bool:
        owner = thread_owner(thread_id)
        if owner is None:
            return False
        return actor.is_admin or owner == actor.user_id

    def _ensure_access(self, thread_id: str, actor: Actor):
        if thread_owner(thread_id) is None:
            raise ValidationError(f"Invalid thread id: {thread_id}")
        if not self.can_access(thread_id, actor):
            raise ForbiddenError("Not allowed to use this thread")

    def list_threads(self, actor: Actor, user_id: Optional[int] = None, limit: int = 50) -> List[dict]:
        """Latest message per thread, newest first"""
        if not actor.is_admin:
            user_id = actor.user_id

        query = self.db.query(func.max(ChatMessage.id)).group_by(ChatMessage.thread_id)
        if user_id is not None:
            query = query.filter(ChatMessage.thread_id == thread_id_for(user_id))
        else:
            query = query.filter(ChatMessage.thread_id.like(f"{THREAD_PREFIX}%"))
        latest_ids = [row[0] for row in query.all()]

        threads = []
        if latest_ids:
            latest = (
                self.db.query(ChatMessage)
                .filter(ChatMessage.id.in_(latest_ids))
                .order_by(ChatMessage.id.desc())
                .limit(limit)
                .all()
            )
            threads = [{"thread_id": m.thread_id, "last_message": message_payload(m)} for m in latest]

        if not threads and user_id is not None:
            threads = [{"thread_id": thread_id_for(user_id), "last_message": None}]
        return threads

    def list_messages(self, thread_id: str, actor: Actor, since: Optional[datetime] = None, limit: int = 200) -> List[ChatMessage]:
        self._ensure_access(thread_id, actor)
        query = self.db.query(ChatMessage).filter(ChatMessage.thread_id == thread_id)
        if since is not None:
            query = query.filter(ChatMessage.created_at > since)
        return query.order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc()).limit(limit).all()

    def send_message(self, thread_id: str, actor: Actor, text: str) -> ChatMessage:
        self._ensure_access(thread_id, actor)
        if text is not None and not isinstance(text, str):
            raise ValidationError("Message text must be a string")
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text is required")
        if len(text) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message text is limited to {MAX_MESSAGE_LENGTH} characters")

        owner = thread_owner(thread_id)
        message = ChatMessage(
            thread_id=thread_id,
            from_user_id=actor.user_id,
            to_user_id=owner if actor.is_admin else None,
            text=text,
        )
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)

        if self.hub is not None:
            self.hub.publish(thread_topic(thread_id), "chat:message", message_payload(message))
        return message

    def mark_read(self, thread_id: str, actor: Actor) -> int:
        """Mark messages from the other party as read; returns how many changed"""
        self._ensure_access(thread_id, actor)
        now = datetime.utcnow()
        query = self.db.query(ChatMessage).filter(
            ChatMessage.thread_id == thread_id,
            ChatMessage.read_at.is_(None),
        )
        if actor.user_id is not None:
            query = query.filter(ChatMessage.from_user_id != actor.user_id)
        updated = query.update({ChatMessage.read_at: now}, synchronize_session=False)
        self.db.commit()

        if self.hub is not None:
            self.hub.publish(thread_topic(thread_id), "chat:read", {
                "threadId": thread_id,
                "readerId": actor.user_id,
                "count": updated,
                "at": now.isoformat(),
            })
        return updated
