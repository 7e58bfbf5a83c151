import logging

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from studyhall.auth import (
    REFRESH_COOKIE,
    authenticate_user,
    clear_auth_cookies,
    create_access_token,
    decode_refresh_token,
    get_current_active_user,
    get_user_by_id,
    issue_tokens,
    set_access_cookie,
    set_auth_cookies,
)
from studyhall.config import settings
from studyhall.database import get_db
from studyhall.exceptions import Conflict, Unauthorized
from studyhall.models.user import User
from studyhall.rate_limit import client_ip, login_limiter, signup_limiter
from studyhall.repositories.user_repository import UserRepository
from studyhall.schemas.user import AuthResponse, Token, UserCreate, UserLogin, UserResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _auth_response(user: User, response: Response) -> AuthResponse:
    tokens = issue_tokens(user)
    set_auth_cookies(response, tokens)
    return AuthResponse(
        access_token=tokens["access_token"],
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    user_data: UserCreate,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    await signup_limiter.hit(request, client_ip(request))

    user_repo = UserRepository(db)
    if await user_repo.exists_by_username_or_email(user_data.username, user_data.email):
        raise Conflict("User already exists")

    try:
        user = await user_repo.create(user_data)
    except IntegrityError:
        await db.rollback()
        raise Conflict("User already exists")

    logger.info("User %s signed up", user.id)
    return _auth_response(user, response)


@router.post("/login", response_model=AuthResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    await login_limiter.hit(request, f"{client_ip(request)}:{credentials.email.lower()}")

    user = await authenticate_user(db, credentials.email, credentials.password)
    if not user:
        raise Unauthorized("Invalid credentials")
    if not user.is_active:
        raise Unauthorized("Inactive user")

    return _auth_response(user, response)


@router.post("/refresh", response_model=Token)
async def refresh(request: Request, response: Response, db: AsyncSession = Depends(get_db)):
    refresh_token = request.cookies.get(REFRESH_COOKIE)
    if not refresh_token:
        raise Unauthorized("Refresh token required")

    user = await get_user_by_id(db, decode_refresh_token(refresh_token))
    if user is None or not user.is_active:
        raise Unauthorized("User not found")

    access_token = create_access_token({"sub": str(user.id)})
    set_access_cookie(response, access_token)
    return Token(access_token=access_token, expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60)


@router.post("/logout")
async def logout(response: Response):
    clear_auth_cookies(response)
    return {"message": "Logged out"}


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: User = Depends(get_current_active_user)):
    return current_user
