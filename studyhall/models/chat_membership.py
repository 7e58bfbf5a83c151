from sqlalchemy import Column, Integer, ForeignKey, DateTime, Boolean, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum
from .base import BaseModel, enum_values, utcnow

class MemberRole(str, PyEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"

class ChatMembership(BaseModel):
    __tablename__ = "chat_memberships"

    chat_id = Column(Integer, ForeignKey("chats.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(Enum(MemberRole, values_callable=enum_values), default=MemberRole.MEMBER, nullable=False)
    joined_at = Column(DateTime, default=utcnow, nullable=False)
    # unread cursor: messages after this instant and not authored by the member are unread
    last_read_at = Column(DateTime, default=utcnow, nullable=False)
    last_read_message_id = Column(Integer, ForeignKey("messages.id"), nullable=True)
    is_muted = Column(Boolean, default=False, nullable=False)

    chat = relationship("Chat", back_populates="memberships")
    user = relationship("User", back_populates="chat_memberships")

    __table_args__ = (
        UniqueConstraint("chat_id", "user_id", name="uq_chat_membership"),
    )
