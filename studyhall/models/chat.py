from sqlalchemy import Column, String, Enum, Integer, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum
from .base import BaseModel, enum_values, utcnow

class ChatType(str, PyEnum):
    DIRECT = "direct"
    GROUP = "group"

def direct_chat_key(user_id1: int, user_id2: int) -> str:
    """Canonical pair key: the smaller id (by string comparison) first."""
    first, second = sorted((user_id1, user_id2), key=str)
    return f"{first}:{second}"

class Chat(BaseModel):
    __tablename__ = "chats"

    type = Column(Enum(ChatType, values_callable=enum_values), nullable=False)
    name = Column(String(100), nullable=True)  # group chats only
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    # unique per unordered user pair; null for group chats
    direct_key = Column(String(64), unique=True, nullable=True)

    last_message_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    last_message_content = Column(Text, nullable=True)
    last_message_sender_id = Column(Integer, nullable=True)
    last_message_sent_at = Column(DateTime, nullable=True)

    memberships = relationship("ChatMembership", back_populates="chat", cascade="all, delete-orphan")
    messages = relationship("Message", back_populates="chat", cascade="all, delete-orphan")

    @property
    def participant_ids(self):
        return [membership.user_id for membership in self.memberships]

    @property
    def last_message(self):
        if self.last_message_sent_at is None:
            return None
        return {
            "content": self.last_message_content,
            "sender_id": self.last_message_sender_id,
            "sent_at": self.last_message_sent_at,
        }
