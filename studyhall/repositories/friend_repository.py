from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, or_, and_
from sqlalchemy.orm import joinedload

from studyhall.models.friendship import Friendship, canonical_pair
from studyhall.models.friend_request import FriendRequest, FriendRequestStatus

class FriendRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_friendship(self, user_id1: int, user_id2: int) -> Optional[Friendship]:
        user_a, user_b = canonical_pair(user_id1, user_id2)
        result = await self.db.execute(
            select(Friendship).where(Friendship.user_a == user_a, Friendship.user_b == user_b)
        )
        return result.scalar_one_or_none()

    async def are_friends(self, user_id1: int, user_id2: int) -> bool:
        return await self.get_friendship(user_id1, user_id2) is not None

    def add_friendship(self, user_id1: int, user_id2: int, request_id: Optional[int] = None) -> Friendship:
        """Stage a friendship row in canonical order; the caller commits."""
        user_a, user_b = canonical_pair(user_id1, user_id2)
        friendship = Friendship(user_a=user_a, user_b=user_b, origin_request_id=request_id)
        self.db.add(friendship)
        return friendship

    async def remove_friendship(self, user_id1: int, user_id2: int) -> bool:
        user_a, user_b = canonical_pair(user_id1, user_id2)
        result = await self.db.execute(
            delete(Friendship).where(Friendship.user_a == user_a, Friendship.user_b == user_b)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def get_friend_ids(self, user_id: int) -> List[int]:
        result = await self.db.execute(
            select(Friendship).where(
                or_(Friendship.user_a == user_id, Friendship.user_b == user_id)
            )
        )
        return [friendship.other(user_id) for friendship in result.scalars().all()]

    async def count_friendships(self, user_id1: int, user_id2: int) -> int:
        user_a, user_b = canonical_pair(user_id1, user_id2)
        result = await self.db.execute(
            select(Friendship.id).where(Friendship.user_a == user_a, Friendship.user_b == user_b)
        )
        return len(result.all())

    async def get_request(self, request_id: int) -> Optional[FriendRequest]:
        result = await self.db.execute(
            select(FriendRequest).where(FriendRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_pending_request(self, from_user_id: int, to_user_id: int) -> Optional[FriendRequest]:
        result = await self.db.execute(
            select(FriendRequest).where(
                FriendRequest.from_user_id == from_user_id,
                FriendRequest.to_user_id == to_user_id,
                FriendRequest.status == FriendRequestStatus.PENDING,
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_pending_between(self, user_id1: int, user_id2: int) -> Optional[FriendRequest]:
        """Pending request in either direction."""
        result = await self.db.execute(
            select(FriendRequest).where(
                FriendRequest.status == FriendRequestStatus.PENDING,
                or_(
                    and_(FriendRequest.from_user_id == user_id1, FriendRequest.to_user_id == user_id2),
                    and_(FriendRequest.from_user_id == user_id2, FriendRequest.to_user_id == user_id1),
                ),
            ).order_by(FriendRequest.created_at)
        )
        return result.scalars().first()

    async def create_request(self, from_user_id: int, to_user_id: int, message: str = "") -> FriendRequest:
        request = FriendRequest(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            message=message,
            status=FriendRequestStatus.PENDING,
        )
        self.db.add(request)
        await self.db.commit()
        return request

    async def set_status(self, request: FriendRequest, status: FriendRequestStatus) -> FriendRequest:
        request.status = status
        await self.db.commit()
        return request

    async def delete_request(self, request: FriendRequest):
        await self.db.delete(request)
        await self.db.commit()

    async def get_received_pending(self, user_id: int) -> List[FriendRequest]:
        result = await self.db.execute(
            select(FriendRequest).options(joinedload(FriendRequest.from_user)).where(
                FriendRequest.to_user_id == user_id,
                FriendRequest.status == FriendRequestStatus.PENDING,
            ).order_by(FriendRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_sent_pending(self, user_id: int) -> List[FriendRequest]:
        result = await self.db.execute(
            select(FriendRequest).options(joinedload(FriendRequest.to_user)).where(
                FriendRequest.from_user_id == user_id,
                FriendRequest.status == FriendRequestStatus.PENDING,
            ).order_by(FriendRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def delete_for_user(self, user_id: int):
        """Drop every friendship and friend request touching ``user_id``; no commit."""
        await self.db.execute(
            delete(Friendship).where(or_(Friendship.user_a == user_id, Friendship.user_b == user_id))
        )
        await self.db.execute(
            delete(FriendRequest).where(
                or_(FriendRequest.from_user_id == user_id, FriendRequest.to_user_id == user_id)
            )
        )
