from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from studyhall.models.chat import ChatType
from studyhall.schemas.user import PublicUser

class LastMessage(BaseModel):
    content: str
    sender_id: Optional[int] = None
    sent_at: datetime

class ChatResponse(BaseModel):
    id: int
    type: ChatType
    name: Optional[str] = None
    creator_id: Optional[int] = None
    participants: List[int]
    last_message_at: datetime
    last_message: Optional[LastMessage] = None
    created_at: datetime

class ChatSummary(BaseModel):
    id: int
    type: ChatType
    name: Optional[str] = None
    participants: List[PublicUser]
    last_message: Optional[LastMessage] = None
    last_message_at: datetime
    unread_count: int
    is_muted: bool

class ChatListResponse(BaseModel):
    chats: List[ChatSummary]

class CreateDirectChat(BaseModel):
    user_id: int

class CreateGroupChat(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    member_ids: List[int] = Field(..., min_length=1)

class ChatUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)

class AddMember(BaseModel):
    user_id: int

class MuteUpdate(BaseModel):
    is_muted: bool
