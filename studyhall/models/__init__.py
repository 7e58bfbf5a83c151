from .base import Base
from .user import User, UserRole
from .chat import Chat, ChatType
from .chat_membership import ChatMembership, MemberRole
from .message import Message, MessageType, SystemAction
from .friendship import Friendship
from .friend_request import FriendRequest, FriendRequestStatus

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Chat",
    "ChatType",
    "ChatMembership",
    "MemberRole",
    "Message",
    "MessageType",
    "SystemAction",
    "Friendship",
    "FriendRequest",
    "FriendRequestStatus",
]
