"""Chat lifecycle and message flow.

Every persisted change goes through here, and live events are published
only after the change is committed, so nothing reaches a socket that is not
also in the message log.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studyhall.config import settings
from studyhall.exceptions import Forbidden, NotFound, ValidationFailed
from studyhall.models.chat import Chat, ChatType
from studyhall.models.chat_membership import ChatMembership, MemberRole
from studyhall.models.message import Message, MessageType, SystemAction
from studyhall.repositories.chat_repository import ChatRepository
from studyhall.repositories.message_repository import MessageRepository
from studyhall.repositories.user_repository import UserRepository
from studyhall.schemas.chat import ChatResponse, ChatSummary
from studyhall.schemas.message import MessageResponse, MessageSender
from studyhall.schemas.user import PublicUser
from studyhall.services.authorization import AuthorizationGate

logger = logging.getLogger(__name__)

DELETED_USER = "[Deleted User]"


def chat_to_response(chat: Chat) -> ChatResponse:
    return ChatResponse(
        id=chat.id,
        type=chat.type,
        name=chat.name if chat.type == ChatType.GROUP else None,
        creator_id=chat.creator_id,
        participants=chat.participant_ids,
        last_message_at=chat.last_message_at,
        last_message=chat.last_message,
        created_at=chat.created_at,
    )


def message_to_response(message: Message) -> MessageResponse:
    if message.sender_deleted or message.sender is None:
        sender = MessageSender(id=None, username=DELETED_USER)
    else:
        sender = MessageSender(id=message.sender.id, username=message.sender.username)
    return MessageResponse(
        id=message.id,
        chat_id=message.chat_id,
        sender=sender,
        sender_deleted=message.sender_deleted,
        content=message.content,
        type=message.type,
        system_action=message.system_action,
        is_edited=message.is_edited,
        created_at=message.created_at,
        client_message_id=message.client_message_id,
    )


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _clean_content(content: Optional[str]) -> str:
    content = (content or "").strip()
    if not content:
        raise ValidationFailed("Message content is required")
    if len(content) > settings.MESSAGE_MAX_LENGTH:
        raise ValidationFailed(f"Message content cannot exceed {settings.MESSAGE_MAX_LENGTH} characters")
    return content


class ChatService:
    def __init__(self, db: AsyncSession, relay=None):
        self.db = db
        self.relay = relay
        self.chats = ChatRepository(db)
        self.messages = MessageRepository(db)
        self.users = UserRepository(db)
        self.gate = AuthorizationGate(db)

    async def get_or_create_direct_chat(self, user_id: int, other_user_id: int) -> Chat:
        if user_id == other_user_id:
            raise ValidationFailed("Cannot start a chat with yourself")

        other_user = await self.users.get_by_id(other_user_id)
        if other_user is None:
            raise NotFound("User not found")

        await self.gate.require_friendship(user_id, other_user_id, "You can only chat with friends")
        return await self.chats.get_or_create_direct_chat(user_id, other_user_id)

    async def create_group_chat(self, creator_id: int, name: str, member_ids: List[int]) -> Chat:
        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Group name is required")

        member_ids = [member_id for member_id in dict.fromkeys(member_ids or []) if member_id != creator_id]
        if not member_ids:
            raise ValidationFailed("At least one member is required")

        for member_id in member_ids:
            await self.gate.require_friendship(creator_id, member_id, "You can only add friends to group chats")

        chat = await self.chats.create_group_chat(creator_id, name, member_ids)
        system_message = await self.messages.create_system_message(
            chat.id, SystemAction.CREATED, creator_id, commit=False
        )
        await self.db.commit()
        logger.info("User %s created group chat %s with %d members", creator_id, chat.id, len(member_ids))

        await self._publish_message(chat.id, system_message.id)
        return await self.chats.get_by_id(chat.id)

    async def list_chats(self, user_id: int) -> List[ChatSummary]:
        summaries = []
        for chat in await self.chats.get_user_chats(user_id):
            membership = next(m for m in chat.memberships if m.user_id == user_id)
            participants = [
                PublicUser(id=m.user.id, username=m.user.username)
                for m in chat.memberships
                if m.user_id != user_id
            ]
            unread_count = await self.messages.count_unread(chat.id, user_id, membership.last_read_at)
            summaries.append(ChatSummary(
                id=chat.id,
                type=chat.type,
                name=chat.name if chat.type == ChatType.GROUP else None,
                participants=participants,
                last_message=chat.last_message,
                last_message_at=chat.last_message_at,
                unread_count=unread_count,
                is_muted=membership.is_muted,
            ))
        return summaries

    async def get_chat(self, chat_id: int, user_id: int) -> Chat:
        chat = await self.gate.require_chat(chat_id)
        await self.gate.require_membership(chat_id, user_id)
        return chat

    async def get_messages(
        self,
        chat_id: int,
        user_id: int,
        limit: int = settings.MESSAGES_PAGE_SIZE,
        before: Optional[datetime] = None,
        after: Optional[datetime] = None,
    ) -> List[MessageResponse]:
        await self.gate.require_membership(chat_id, user_id)

        limit = max(1, min(limit or settings.MESSAGES_PAGE_SIZE, settings.MESSAGES_PAGE_MAX))
        messages = await self.messages.get_chat_messages(
            chat_id, limit=limit, before=_naive_utc(before), after=_naive_utc(after)
        )
        if messages:
            await self.chats.update_last_read(chat_id, user_id, messages[-1])

        return [message_to_response(message) for message in messages]

    async def send_message(
        self, chat_id: int, user_id: int, content: str, client_message_id: Optional[str] = None
    ) -> MessageResponse:
        await self.gate.require_membership(chat_id, user_id)
        content = _clean_content(content)

        if client_message_id:
            duplicate = await self.messages.get_by_client_id(client_message_id, user_id, chat_id)
            if duplicate:
                duplicate = await self.messages.get_by_id(duplicate.id)
                return message_to_response(duplicate)

        message = await self.messages.create(chat_id, user_id, content, client_message_id)
        await self.chats.update_last_message(chat_id, message)
        await self.db.commit()

        return await self._publish_message(chat_id, message.id)

    async def edit_message(self, chat_id: int, message_id: int, user_id: int, content: str) -> MessageResponse:
        await self.gate.require_membership(chat_id, user_id)
        message = await self._own_message(chat_id, message_id, user_id, "You can only edit your own messages")

        message = await self.messages.update_content(message, _clean_content(content))
        response = message_to_response(message)
        await self._publish(chat_id, "chat:messageUpdated", response.model_dump(mode="json"))
        return response

    async def delete_message(self, chat_id: int, message_id: int, user_id: int):
        await self.gate.require_membership(chat_id, user_id)
        message = await self._own_message(chat_id, message_id, user_id, "You can only delete your own messages")

        await self.messages.soft_delete(message)
        await self._publish(chat_id, "chat:messageDeleted", {"chat_id": chat_id, "message_id": message_id})

    async def leave_chat(self, chat_id: int, user_id: int):
        chat = await self.gate.require_chat(chat_id)
        if chat.type != ChatType.GROUP:
            raise ValidationFailed("Cannot leave a direct chat")
        await self.gate.require_membership(chat_id, user_id)

        # participants are derived from membership rows, so this is the only write
        await self.chats.remove_member(chat_id, user_id, commit=False)
        system_message = await self.messages.create_system_message(
            chat_id, SystemAction.LEFT, user_id, commit=False
        )
        await self.db.commit()
        logger.info("User %s left chat %s", user_id, chat_id)

        if self.relay is not None:
            self.relay.revoke_chat_access(chat_id, user_id)
            await self.relay.emit_to_user(user_id, "chat:memberRemoved", {"chat_id": chat_id, "user_id": user_id})
        await self._publish_message(chat_id, system_message.id)

    async def add_member(self, chat_id: int, actor_id: int, new_member_id: int) -> Chat:
        chat = await self.gate.require_chat(chat_id)
        if chat.type != ChatType.GROUP:
            raise ValidationFailed("Cannot add members to a direct chat")
        await self.gate.require_membership(chat_id, actor_id)

        if await self.users.get_by_id(new_member_id) is None:
            raise NotFound("User not found")
        await self.gate.require_friendship(actor_id, new_member_id, "You can only add friends to group chats")

        if await self.chats.is_member(chat_id, new_member_id):
            return chat

        await self.chats.add_member(chat_id, new_member_id, MemberRole.MEMBER, commit=False)
        system_message = await self.messages.create_system_message(
            chat_id, SystemAction.JOINED, new_member_id, commit=False
        )
        try:
            await self.db.commit()
        except IntegrityError:
            # added concurrently by another member; the existing row stands
            await self.db.rollback()
            return await self.chats.get_by_id(chat_id)

        logger.info("User %s added %s to chat %s", actor_id, new_member_id, chat_id)
        await self._publish_message(chat_id, system_message.id)
        return await self.chats.get_by_id(chat_id)

    async def rename_chat(self, chat_id: int, actor_id: int, name: str) -> Chat:
        chat = await self.gate.require_chat(chat_id)
        if chat.type != ChatType.GROUP:
            raise ValidationFailed("Cannot rename a direct chat")
        membership = await self.gate.require_membership(chat_id, actor_id)
        if membership.role not in (MemberRole.OWNER, MemberRole.ADMIN):
            raise Forbidden("Only the owner or an admin can rename this chat")

        name = (name or "").strip()
        if not name:
            raise ValidationFailed("Group name is required")

        await self.chats.rename(chat, name)
        system_message = await self.messages.create_system_message(
            chat_id, SystemAction.RENAMED, actor_id, commit=False
        )
        await self.db.commit()

        await self._publish_message(chat_id, system_message.id)
        return await self.chats.get_by_id(chat_id)

    async def set_muted(self, chat_id: int, user_id: int, is_muted: bool) -> ChatMembership:
        membership = await self.gate.require_membership(chat_id, user_id)
        return await self.chats.set_muted(membership, is_muted)

    async def mark_read(self, chat_id: int, user_id: int, message_id: Optional[int] = None) -> int:
        """Advance the caller's read cursor (to the newest message by default); returns unread count."""
        await self.gate.require_membership(chat_id, user_id)

        if message_id is not None:
            message = await self.messages.get_by_id(message_id)
            if message is None or message.chat_id != chat_id:
                raise NotFound("Message not found")
        else:
            latest = await self.messages.get_chat_messages(chat_id, limit=1)
            message = latest[-1] if latest else None

        if message is not None:
            await self.chats.update_last_read(chat_id, user_id, message)
        return await self.unread_count(chat_id, user_id)

    async def unread_count(self, chat_id: int, user_id: int) -> int:
        membership = await self.gate.require_membership(chat_id, user_id)
        return await self.messages.count_unread(chat_id, user_id, membership.last_read_at)

    async def _own_message(self, chat_id: int, message_id: int, user_id: int, detail: str) -> Message:
        message = await self.messages.get_by_id(message_id)
        if message is None or message.chat_id != chat_id or message.is_deleted:
            raise NotFound("Message not found")
        if message.type == MessageType.SYSTEM or message.sender_id != user_id:
            raise Forbidden(detail)
        return message

    async def _publish_message(self, chat_id: int, message_id: int) -> MessageResponse:
        message = await self.messages.get_by_id(message_id)
        response = message_to_response(message)
        await self._publish(chat_id, "chat:newMessage", response.model_dump(mode="json"))
        return response

    async def _publish(self, chat_id: int, event: str, data: dict):
        if self.relay is None:
            return
        member_ids = await self.chats.get_member_ids(chat_id)
        await self.relay.publish_to_chat(chat_id, event, data, member_ids)
