from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime
from studyhall.models.friend_request import FriendRequestStatus
from studyhall.schemas.user import PublicUser

class FriendRequestCreate(BaseModel):
    to_user_id: int
    message: str = Field("", max_length=200)

class FriendRequestResponse(BaseModel):
    id: int
    from_user_id: int
    to_user_id: int
    status: FriendRequestStatus
    message: str
    created_at: datetime

    class Config:
        from_attributes = True

class SendRequestResult(BaseModel):
    request: FriendRequestResponse
    friendship_id: Optional[int] = None
    auto_accepted: bool = False

class IncomingRequest(BaseModel):
    id: int
    sender: PublicUser = Field(..., alias="from")
    message: str
    created_at: datetime

    class Config:
        populate_by_name = True

class OutgoingRequest(BaseModel):
    id: int
    to: PublicUser
    message: str
    created_at: datetime

class PendingRequests(BaseModel):
    received: List[IncomingRequest]
    sent: List[OutgoingRequest]

class FriendList(BaseModel):
    friends: List[PublicUser]
    count: int

class UserSearchResult(BaseModel):
    id: int
    username: str
    is_friend: bool
    has_pending_request: bool
    pending_request_direction: Optional[Literal["sent", "received"]] = None
