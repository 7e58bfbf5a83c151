import logging
from typing import List

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from studyhall.exceptions import NotFound
from studyhall.models.user import User
from studyhall.repositories.chat_repository import ChatRepository
from studyhall.repositories.friend_repository import FriendRepository
from studyhall.repositories.message_repository import MessageRepository
from studyhall.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.users = UserRepository(db)
        self.chats = ChatRepository(db)
        self.friends = FriendRepository(db)
        self.messages = MessageRepository(db)

    async def delete_account(self, user_id: int) -> List[int]:
        """Delete a user in a single transaction.

        Friend edges, friend requests and chat memberships are removed; the
        user's messages stay in their chats, anonymized. Returns the ids of
        chats the user belonged to.
        """
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found")
        username = user.username

        try:
            await self.friends.delete_for_user(user_id)
            chat_ids = await self.chats.delete_memberships_for_user(user_id)
            await self.chats.clear_creator(user_id)
            await self.messages.anonymize_sender(user_id)
            await self.db.execute(delete(User).where(User.id == user_id))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Deleted account %s (%s); left %d chats", user_id, username, len(chat_ids))
        return chat_ids
