"""Friend requests and the friendship graph.

Friendships are undirected edges stored once per canonical pair. Mutual
requests are not serialized by a transaction: the unique pair index is the
backstop, and losing the race to create the edge is treated as success.
"""
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studyhall.exceptions import Conflict, Forbidden, NotFound, ValidationFailed
from studyhall.models.friend_request import FriendRequest, FriendRequestStatus
from studyhall.models.friendship import Friendship
from studyhall.repositories.friend_repository import FriendRepository
from studyhall.repositories.user_repository import UserRepository
from studyhall.schemas.friend import (
    FriendList,
    FriendRequestResponse,
    IncomingRequest,
    OutgoingRequest,
    PendingRequests,
    SendRequestResult,
    UserSearchResult,
)
from studyhall.schemas.user import PublicUser

logger = logging.getLogger(__name__)


class FriendService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.friends = FriendRepository(db)
        self.users = UserRepository(db)

    async def are_friends(self, user_id: int, other_user_id: int) -> bool:
        return await self.friends.are_friends(user_id, other_user_id)

    async def send_request(self, from_user_id: int, to_user_id: int, message: str = "") -> SendRequestResult:
        if from_user_id == to_user_id:
            raise ValidationFailed("Cannot send friend request to yourself")

        if await self.users.get_by_id(to_user_id) is None:
            raise NotFound("User not found")

        if await self.friends.are_friends(from_user_id, to_user_id):
            raise Conflict("Already friends with this user")

        existing_request = await self.friends.get_pending_between(from_user_id, to_user_id)
        if existing_request:
            if existing_request.from_user_id == to_user_id:
                # they already asked us: accept instead of opening a second request
                request_id = existing_request.id
                friendship = await self._befriend(to_user_id, from_user_id, [request_id], request_id)
                request = await self.friends.get_request(request_id)
                return self._result(request, friendship)
            raise Conflict("Friend request already sent")

        try:
            request = await self.friends.create_request(from_user_id, to_user_id, message or "")
        except IntegrityError:
            await self.db.rollback()
            raise Conflict("Friend request already sent")
        request_id = request.id
        logger.info("Friend request %s sent from %s to %s", request_id, from_user_id, to_user_id)

        # a reverse request committed concurrently means both sides asked
        reverse_request = await self.friends.get_pending_request(to_user_id, from_user_id)
        if reverse_request:
            friendship = await self._befriend(
                to_user_id, from_user_id, [reverse_request.id, request_id], reverse_request.id
            )
            request = await self.friends.get_request(request_id)
            return self._result(request, friendship)

        return self._result(request)

    async def accept_request(self, request_id: int, user_id: int) -> Friendship:
        request = await self._pending_request(request_id)
        if request.to_user_id != user_id:
            raise Forbidden("Not authorized to accept this request")

        return await self._befriend(request.from_user_id, request.to_user_id, [request.id], request.id)

    async def decline_request(self, request_id: int, user_id: int) -> FriendRequest:
        request = await self._pending_request(request_id)
        if request.to_user_id != user_id:
            raise Forbidden("Not authorized to decline this request")

        return await self.friends.set_status(request, FriendRequestStatus.DECLINED)

    async def cancel_request(self, request_id: int, user_id: int):
        request = await self._pending_request(request_id)
        if request.from_user_id != user_id:
            raise Forbidden("Not authorized to cancel this request")

        await self.friends.delete_request(request)

    async def remove_friend(self, user_id: int, friend_id: int):
        if not await self.friends.remove_friendship(user_id, friend_id):
            raise NotFound("Not friends with this user")
        logger.info("Friendship between %s and %s removed", user_id, friend_id)

    async def pending_requests(self, user_id: int) -> PendingRequests:
        received = await self.friends.get_received_pending(user_id)
        sent = await self.friends.get_sent_pending(user_id)
        return PendingRequests(
            received=[
                IncomingRequest(
                    id=request.id,
                    sender=PublicUser.model_validate(request.from_user),
                    message=request.message,
                    created_at=request.created_at,
                )
                for request in received
            ],
            sent=[
                OutgoingRequest(
                    id=request.id,
                    to=PublicUser.model_validate(request.to_user),
                    message=request.message,
                    created_at=request.created_at,
                )
                for request in sent
            ],
        )

    async def list_friends(self, user_id: int) -> FriendList:
        friend_ids = await self.friends.get_friend_ids(user_id)
        friends = [PublicUser.model_validate(user) for user in await self.users.get_many(friend_ids)]
        return FriendList(friends=friends, count=len(friends))

    async def search_users(self, query: str, user_id: int, limit: int = 10) -> List[UserSearchResult]:
        results = []
        for user in await self.users.search_by_username(query, user_id, limit):
            pending = await self.friends.get_pending_between(user_id, user.id)
            direction = None
            if pending:
                direction = "sent" if pending.from_user_id == user_id else "received"
            results.append(UserSearchResult(
                id=user.id,
                username=user.username,
                is_friend=await self.friends.are_friends(user_id, user.id),
                has_pending_request=pending is not None,
                pending_request_direction=direction,
            ))
        return results

    async def _pending_request(self, request_id: int) -> FriendRequest:
        request = await self.friends.get_request(request_id)
        if request is None:
            raise NotFound("Friend request not found")
        if request.status != FriendRequestStatus.PENDING:
            raise Conflict("Request is no longer pending")
        return request

    async def _befriend(
        self, user_id1: int, user_id2: int, request_ids: List[int], origin_request_id: Optional[int]
    ) -> Friendship:
        """Mark the requests accepted and create the edge in one commit.

        If a concurrent caller created the edge first, the unique pair index
        rejects ours; the requests are still flipped and the existing edge is
        returned.
        """
        await self._mark_accepted(request_ids)
        if not await self.friends.are_friends(user_id1, user_id2):
            self.friends.add_friendship(user_id1, user_id2, origin_request_id)

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            await self._mark_accepted(request_ids)
            await self.db.commit()

        logger.info("Users %s and %s are now friends", user_id1, user_id2)
        return await self.friends.get_friendship(user_id1, user_id2)

    async def _mark_accepted(self, request_ids: List[int]):
        for request_id in request_ids:
            request = await self.friends.get_request(request_id)
            if request is not None and request.status == FriendRequestStatus.PENDING:
                request.status = FriendRequestStatus.ACCEPTED

    @staticmethod
    def _result(request: FriendRequest, friendship: Optional[Friendship] = None) -> SendRequestResult:
        return SendRequestResult(
            request=FriendRequestResponse.model_validate(request),
            friendship_id=friendship.id if friendship else None,
            auto_accepted=friendship is not None,
        )
