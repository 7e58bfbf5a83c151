from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request, Response
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from studyhall.config import settings
from studyhall.database import get_db
from studyhall.exceptions import Unauthorized
from studyhall.models.user import User

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def _encode(data: dict, secret: str, expires_delta: timedelta, token_type: str) -> str:
    to_encode = data.copy()
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta, "type": token_type})
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    expires = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode(data, settings.SECRET_KEY, expires, "access")


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    expires = expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    return _encode(data, settings.REFRESH_SECRET_KEY, expires, "refresh")


def _decode(token: str, secret: str, token_type: str) -> int:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid token")

    subject = payload.get("sub")
    if subject is None or payload.get("type") != token_type:
        raise Unauthorized("Invalid token")
    try:
        return int(subject)
    except ValueError:
        raise Unauthorized("Invalid token")


def decode_access_token(token: str) -> int:
    """Return the user id carried by a valid access token."""
    return _decode(token, settings.SECRET_KEY, "access")


def decode_refresh_token(token: str) -> int:
    return _decode(token, settings.REFRESH_SECRET_KEY, "refresh")


def issue_tokens(user: User) -> dict:
    data = {"sub": str(user.id)}
    return {
        "access_token": create_access_token(data),
        "refresh_token": create_refresh_token(data),
    }


def set_access_cookie(response: Response, access_token: str):
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict" if settings.COOKIE_SECURE else "lax",
    )


def set_auth_cookies(response: Response, tokens: dict):
    set_access_cookie(response, tokens["access_token"])
    response.set_cookie(
        REFRESH_COOKIE,
        tokens["refresh_token"],
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite="strict" if settings.COOKIE_SECURE else "lax",
    )


def clear_auth_cookies(response: Response):
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def authenticate_user(db: AsyncSession, email: str, password: str) -> Optional[User]:
    user = await get_user_by_email(db, email)
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


async def get_current_user(
    request: Request,
    response: Response,
    bearer_token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the caller from the access cookie (or bearer header).

    When the access token is missing or expired but the refresh cookie is
    still valid, a fresh access cookie is set on the response.
    """
    access_token = request.cookies.get(ACCESS_COOKIE) or bearer_token
    refresh_token = request.cookies.get(REFRESH_COOKIE)

    if not access_token and not refresh_token:
        raise Unauthorized()

    user_id = None
    if access_token:
        try:
            user_id = decode_access_token(access_token)
        except Unauthorized:
            if not refresh_token:
                raise

    refreshed = False
    if user_id is None:
        try:
            user_id = decode_refresh_token(refresh_token)
        except Unauthorized:
            raise Unauthorized("Invalid or expired session")
        refreshed = True

    user = await get_user_by_id(db, user_id)
    if user is None:
        raise Unauthorized("User not found")

    if refreshed:
        set_access_cookie(response, create_access_token({"sub": str(user.id)}))

    request.state.user_id = user.id
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_active:
        raise Unauthorized("Inactive user")
    return current_user
