"""Inbound websocket frames.

Every frame is ``{"action": <name>, "data": {...}}``; the action name selects
the payload model, and frames that do not match a variant are rejected
before dispatch.
"""
import json
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class ChatRef(BaseModel):
    chat_id: int


class ChatMessagePayload(BaseModel):
    chat_id: int
    content: str = Field(..., min_length=1, max_length=5000)
    client_message_id: Optional[str] = Field(None, max_length=100)


class ChatJoin(BaseModel):
    action: Literal["chat:join"]
    data: ChatRef


class ChatLeave(BaseModel):
    action: Literal["chat:leave"]
    data: ChatRef


class ChatSend(BaseModel):
    action: Literal["chat:message"]
    data: ChatMessagePayload


class ChatTyping(BaseModel):
    action: Literal["chat:typing"]
    data: ChatRef


class ChatStopTyping(BaseModel):
    action: Literal["chat:stopTyping"]
    data: ChatRef


class Ping(BaseModel):
    action: Literal["ping"]
    data: dict = {}


ClientEvent = Annotated[
    Union[ChatJoin, ChatLeave, ChatSend, ChatTyping, ChatStopTyping, Ping],
    Field(discriminator="action"),
]

_client_event_adapter = TypeAdapter(ClientEvent)


def parse_client_event(raw: str):
    """Parse one text frame; raises ``ValueError`` (incl. pydantic's) on bad input."""
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        raise ValueError("Invalid JSON format")
    return _client_event_adapter.validate_python(payload)
