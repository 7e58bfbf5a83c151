from sqlalchemy.ext.asyncio import AsyncSession

from studyhall.exceptions import Forbidden, NotFound
from studyhall.models.chat import Chat
from studyhall.models.chat_membership import ChatMembership
from studyhall.repositories.chat_repository import ChatRepository
from studyhall.repositories.friend_repository import FriendRepository

NOT_A_MEMBER = "You are not a member of this chat"


class AuthorizationGate:
    """Standing checks that run before any chat mutation or read.

    Every check either returns the row it verified or raises; nothing is
    applied partially.
    """

    def __init__(self, db: AsyncSession):
        self.chats = ChatRepository(db)
        self.friends = FriendRepository(db)

    async def require_chat(self, chat_id: int) -> Chat:
        chat = await self.chats.get_by_id(chat_id)
        if chat is None:
            raise NotFound("Chat not found")
        return chat

    async def require_membership(self, chat_id: int, user_id: int) -> ChatMembership:
        membership = await self.chats.get_membership(chat_id, user_id)
        if membership is None:
            raise Forbidden(NOT_A_MEMBER)
        return membership

    async def require_friendship(self, user_id: int, other_user_id: int, detail: str):
        if not await self.friends.are_friends(user_id, other_user_id):
            raise Forbidden(detail)
