from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from studyhall.config import settings
from studyhall.models.base import utcnow
from studyhall.models.chat import Chat, ChatType, direct_chat_key
from studyhall.models.chat_membership import ChatMembership, MemberRole
from studyhall.models.message import Message

class ChatRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, chat_id: int) -> Optional[Chat]:
        result = await self.db.execute(
            select(Chat).options(
                selectinload(Chat.memberships)
            ).where(Chat.id == chat_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_direct_chat(self, user_id1: int, user_id2: int) -> Optional[Chat]:
        result = await self.db.execute(
            select(Chat).options(
                selectinload(Chat.memberships)
            ).where(
                Chat.direct_key == direct_chat_key(user_id1, user_id2)
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create_direct_chat(self, creator_id: int, other_user_id: int) -> Chat:
        """Direct chat for an unordered user pair, created on first use.

        The unique ``direct_key`` column is the backstop when two callers race
        to create the same pair: the loser rolls back and reads the winner's row.
        """
        existing_chat = await self.get_direct_chat(creator_id, other_user_id)
        if existing_chat:
            await self.add_member(existing_chat.id, creator_id)
            await self.add_member(existing_chat.id, other_user_id)
            return await self.get_by_id(existing_chat.id)

        key = direct_chat_key(creator_id, other_user_id)
        try:
            chat = Chat(type=ChatType.DIRECT, creator_id=creator_id, direct_key=key)
            self.db.add(chat)
            await self.db.flush()
            self.db.add_all([
                ChatMembership(chat_id=chat.id, user_id=creator_id, role=MemberRole.MEMBER),
                ChatMembership(chat_id=chat.id, user_id=other_user_id, role=MemberRole.MEMBER),
            ])
            await self.db.commit()
            chat_id = chat.id
        except IntegrityError:
            await self.db.rollback()
            existing_chat = await self.get_direct_chat(creator_id, other_user_id)
            if existing_chat is None:
                raise
            chat_id = existing_chat.id

        return await self.get_by_id(chat_id)

    async def create_group_chat(self, creator_id: int, name: str, member_ids: List[int]) -> Chat:
        """Stage a group chat with owner and member rows; the caller commits."""
        chat = Chat(type=ChatType.GROUP, name=name, creator_id=creator_id)
        self.db.add(chat)
        await self.db.flush()

        self.db.add(ChatMembership(chat_id=chat.id, user_id=creator_id, role=MemberRole.OWNER))
        for member_id in dict.fromkeys(member_ids):
            if member_id != creator_id:
                self.db.add(ChatMembership(chat_id=chat.id, user_id=member_id, role=MemberRole.MEMBER))

        await self.db.flush()
        return chat

    async def get_user_chats(self, user_id: int) -> List[Chat]:
        """Chats the user belongs to, most recent activity first."""
        result = await self.db.execute(
            select(Chat).join(ChatMembership).options(
                selectinload(Chat.memberships).selectinload(ChatMembership.user)
            ).where(
                ChatMembership.user_id == user_id
            ).order_by(Chat.last_message_at.desc(), Chat.id.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().unique().all())

    async def get_membership(self, chat_id: int, user_id: int) -> Optional[ChatMembership]:
        result = await self.db.execute(
            select(ChatMembership).where(
                ChatMembership.chat_id == chat_id,
                ChatMembership.user_id == user_id,
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def is_member(self, chat_id: int, user_id: int) -> bool:
        return await self.get_membership(chat_id, user_id) is not None

    async def get_member_ids(self, chat_id: int) -> List[int]:
        result = await self.db.execute(
            select(ChatMembership.user_id).where(ChatMembership.chat_id == chat_id)
        )
        return [row[0] for row in result.all()]

    async def add_member(
        self, chat_id: int, user_id: int, role: MemberRole = MemberRole.MEMBER, commit: bool = True
    ) -> ChatMembership:
        """Insert a membership row unless one exists (upsert, never duplicates)."""
        existing_member = await self.get_membership(chat_id, user_id)
        if existing_member:
            return existing_member

        member = ChatMembership(chat_id=chat_id, user_id=user_id, role=role)
        self.db.add(member)
        if not commit:
            await self.db.flush()
            return member

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            existing_member = await self.get_membership(chat_id, user_id)
            if existing_member is None:
                raise
            return existing_member
        return member

    async def remove_member(self, chat_id: int, user_id: int, commit: bool = True) -> bool:
        result = await self.db.execute(
            delete(ChatMembership).where(
                ChatMembership.chat_id == chat_id,
                ChatMembership.user_id == user_id,
            )
        )
        if commit:
            await self.db.commit()
        return result.rowcount > 0

    async def rename(self, chat: Chat, name: str) -> Chat:
        chat.name = name
        await self.db.flush()
        return chat

    async def set_muted(self, membership: ChatMembership, is_muted: bool) -> ChatMembership:
        membership.is_muted = is_muted
        await self.db.commit()
        return membership

    async def update_last_read(self, chat_id: int, user_id: int, message: Message) -> bool:
        """Advance the read cursor to ``message``; never moves it backwards."""
        result = await self.db.execute(
            update(ChatMembership).where(
                ChatMembership.chat_id == chat_id,
                ChatMembership.user_id == user_id,
                ChatMembership.last_read_at < message.created_at,
            ).values(
                last_read_at=message.created_at,
                last_read_message_id=message.id,
            )
        )
        await self.db.commit()
        return result.rowcount > 0

    async def update_last_message(self, chat_id: int, message: Message) -> bool:
        """Refresh the list-preview snapshot unless a newer message already holds it."""
        result = await self.db.execute(
            update(Chat).where(
                Chat.id == chat_id,
                or_(
                    Chat.last_message_sent_at.is_(None),
                    Chat.last_message_sent_at <= message.created_at,
                ),
            ).values(
                last_message_at=message.created_at,
                last_message_content=message.content[:settings.LAST_MESSAGE_PREVIEW_LENGTH],
                last_message_sender_id=message.sender_id,
                last_message_sent_at=message.created_at,
                updated_at=utcnow(),
            )
        )
        return result.rowcount > 0

    async def clear_creator(self, user_id: int):
        await self.db.execute(
            update(Chat).where(Chat.creator_id == user_id).values(creator_id=None)
        )

    async def delete_memberships_for_user(self, user_id: int) -> List[int]:
        result = await self.db.execute(
            select(ChatMembership.chat_id).where(ChatMembership.user_id == user_id)
        )
        chat_ids = [row[0] for row in result.all()]
        await self.db.execute(delete(ChatMembership).where(ChatMembership.user_id == user_id))
        return chat_ids
