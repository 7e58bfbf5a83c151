from sqlalchemy import Column, Integer, ForeignKey, String, Enum, Index, text
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum
from .base import BaseModel, enum_values

class FriendRequestStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"

class FriendRequest(BaseModel):
    __tablename__ = "friend_requests"

    from_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    to_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(
        Enum(FriendRequestStatus, values_callable=enum_values),
        default=FriendRequestStatus.PENDING,
        nullable=False,
    )
    message = Column(String(200), default="", nullable=False)

    from_user = relationship("User", foreign_keys=[from_user_id])
    to_user = relationship("User", foreign_keys=[to_user_id])

    # one pending request per ordered (from, to) pair
    __table_args__ = (
        Index(
            "uq_pending_friend_request",
            "from_user_id",
            "to_user_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_friend_requests_to_status", "to_user_id", "status"),
    )
