from sqlalchemy import Column, Integer, ForeignKey, Text, DateTime, Boolean, String, Enum, Index
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum
from .base import BaseModel, enum_values

class MessageType(str, PyEnum):
    TEXT = "text"
    SYSTEM = "system"

class SystemAction(str, PyEnum):
    JOINED = "joined"
    LEFT = "left"
    CREATED = "created"
    RENAMED = "renamed"

SYSTEM_ACTION_LABELS = {
    SystemAction.JOINED: "joined the chat",
    SystemAction.LEFT: "left the chat",
    SystemAction.CREATED: "created the chat",
    SystemAction.RENAMED: "renamed the chat",
}

class Message(BaseModel):
    __tablename__ = "messages"

    chat_id = Column(Integer, ForeignKey("chats.id"), nullable=False, index=True)
    # null once the sender deletes their account
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    sender_deleted = Column(Boolean, default=False, nullable=False)
    content = Column(Text, nullable=False)
    type = Column(Enum(MessageType, values_callable=enum_values), default=MessageType.TEXT, nullable=False)
    system_action = Column(Enum(SystemAction, values_callable=enum_values), nullable=True)
    is_edited = Column(Boolean, default=False, nullable=False)
    edited_at = Column(DateTime, nullable=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    # client-side id used to drop resubmitted duplicates
    client_message_id = Column(String(100), nullable=True, index=True)

    chat = relationship("Chat", back_populates="messages")
    sender = relationship("User", foreign_keys=[sender_id], back_populates="sent_messages")

    __table_args__ = (
        Index("ix_messages_chat_created", "chat_id", "created_at"),
    )
