from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from studyhall.models.message import MessageType, SystemAction

class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    client_message_id: Optional[str] = Field(None, max_length=100)

class MessageUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)

class MessageSender(BaseModel):
    id: Optional[int] = None
    username: str

class MessageResponse(BaseModel):
    id: int
    chat_id: int
    sender: MessageSender
    sender_deleted: bool
    content: str
    type: MessageType
    system_action: Optional[SystemAction] = None
    is_edited: bool
    created_at: datetime
    client_message_id: Optional[str] = None

class MessagePage(BaseModel):
    messages: List[MessageResponse]

class MarkRead(BaseModel):
    message_id: Optional[int] = None

class UnreadCount(BaseModel):
    chat_id: int
    unread_count: int
