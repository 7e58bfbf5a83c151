from datetime import datetime
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, or_
from sqlalchemy.orm import joinedload

from studyhall.models.base import utcnow
from studyhall.models.message import Message, MessageType, SystemAction, SYSTEM_ACTION_LABELS

class MessageRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        chat_id: int,
        sender_id: int,
        content: str,
        client_message_id: Optional[str] = None,
    ) -> Message:
        """Stage a text message; the caller commits together with the chat snapshot update."""
        message = Message(
            chat_id=chat_id,
            sender_id=sender_id,
            content=content,
            type=MessageType.TEXT,
            client_message_id=client_message_id,
        )
        self.db.add(message)
        await self.db.flush()
        return message

    async def create_system_message(
        self, chat_id: int, action: SystemAction, actor_id: Optional[int], commit: bool = True
    ) -> Message:
        message = Message(
            chat_id=chat_id,
            sender_id=actor_id,
            content=SYSTEM_ACTION_LABELS[action],
            type=MessageType.SYSTEM,
            system_action=action,
        )
        self.db.add(message)
        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        return message

    async def get_by_id(self, message_id: int) -> Optional[Message]:
        result = await self.db.execute(
            select(Message).options(
                joinedload(Message.sender)
            ).where(Message.id == message_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_client_id(self, client_message_id: str, sender_id: int, chat_id: int) -> Optional[Message]:
        result = await self.db.execute(
            select(Message).where(
                Message.client_message_id == client_message_id,
                Message.sender_id == sender_id,
                Message.chat_id == chat_id,
            )
        )
        return result.scalars().first()

    async def get_chat_messages(
        self,
        chat_id: int,
        limit: int = 50,
        before: Optional[datetime] = None,
        after: Optional[datetime] = None,
    ) -> List[Message]:
        """The newest ``limit`` live messages inside the cursor bounds, oldest first.

        ``before`` keeps messages older than the cursor, ``after`` keeps
        messages newer than it.
        """
        query = select(Message).options(
            joinedload(Message.sender)
        ).where(
            Message.chat_id == chat_id,
            Message.is_deleted.is_(False),
        )

        if before is not None:
            query = query.where(Message.created_at < before)
        elif after is not None:
            query = query.where(Message.created_at > after)

        result = await self.db.execute(
            query.order_by(Message.created_at.desc(), Message.id.desc()).limit(limit)
        )
        messages = list(result.scalars().all())
        messages.reverse()
        return messages

    async def count_unread(self, chat_id: int, user_id: int, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count(Message.id)).where(
                Message.chat_id == chat_id,
                Message.created_at > since,
                Message.is_deleted.is_(False),
                or_(Message.sender_id != user_id, Message.sender_id.is_(None)),
            )
        )
        return result.scalar() or 0

    async def update_content(self, message: Message, content: str) -> Message:
        message.content = content
        message.is_edited = True
        message.edited_at = utcnow()
        await self.db.commit()
        return message

    async def soft_delete(self, message: Message) -> Message:
        message.is_deleted = True
        message.deleted_at = utcnow()
        await self.db.commit()
        return message

    async def anonymize_sender(self, user_id: int):
        """Detach a deleted account from its messages, keeping the content."""
        await self.db.execute(
            update(Message).where(Message.sender_id == user_id).values(
                sender_id=None,
                sender_deleted=True,
            )
        )
