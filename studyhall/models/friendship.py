from sqlalchemy import Column, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from .base import BaseModel

def canonical_pair(user_id1: int, user_id2: int):
    """Order two user ids so that str(user_a) < str(user_b)."""
    if str(user_id1) < str(user_id2):
        return user_id1, user_id2
    return user_id2, user_id1

class Friendship(BaseModel):
    __tablename__ = "friendships"

    # always stored with str(user_a) < str(user_b)
    user_a = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    user_b = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    origin_request_id = Column(Integer, ForeignKey("friend_requests.id"), nullable=True)

    origin_request = relationship("FriendRequest")

    __table_args__ = (
        UniqueConstraint("user_a", "user_b", name="uq_friendship_pair"),
    )

    def other(self, user_id: int) -> int:
        return self.user_b if self.user_a == user_id else self.user_a
