from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_

from studyhall.models.user import User
from studyhall.schemas.user import UserCreate
from studyhall.auth import get_password_hash

class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, user_data: UserCreate) -> User:
        hashed_password = get_password_hash(user_data.password)
        db_user = User(
            username=user_data.username,
            email=user_data.email,
            hashed_password=hashed_password
        )
        self.db.add(db_user)
        await self.db.commit()
        await self.db.refresh(db_user)
        return db_user

    async def get_by_id(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_many(self, user_ids: List[int]) -> List[User]:
        if not user_ids:
            return []
        result = await self.db.execute(
            select(User).where(User.id.in_(user_ids)).order_by(User.username)
        )
        return list(result.scalars().all())

    async def search_by_username(self, query: str, exclude_user_id: int, limit: int = 10) -> List[User]:
        """Case-insensitive substring match on username; `%` and `_` match literally."""
        pattern = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        result = await self.db.execute(
            select(User).where(
                User.id != exclude_user_id,
                User.is_active.is_(True),
                User.username.ilike(f"%{pattern}%", escape="\\"),
            ).order_by(User.username).limit(limit)
        )
        return list(result.scalars().all())

    async def exists_by_username_or_email(self, username: str, email: str) -> bool:
        result = await self.db.execute(
            select(User.id).where(
                or_(User.username == username, User.email == email)
            ).limit(1)
        )
        return result.first() is not None
