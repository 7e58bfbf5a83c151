import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from studyhall.config import settings
from studyhall.database import create_rate_limit_store, create_tables
from studyhall.exceptions import AppError, app_error_handler, unhandled_error_handler
from studyhall.rate_limit import RedisRateLimitStore
from studyhall.websocket_manager import ConnectionManager

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables()
    app.state.connection_manager = ConnectionManager()
    app.state.rate_limit_store = create_rate_limit_store()
    logger.info("%s %s started", settings.APP_NAME, settings.VERSION)
    yield
    await app.state.connection_manager.close_all()
    if isinstance(app.state.rate_limit_store, RedisRateLimitStore):
        await app.state.rate_limit_store.close()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="StudyHall chat and friends API",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000
    level = logging.WARNING if response.status_code >= 400 else logging.INFO
    logger.log(level, "%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms)
    return response

from studyhall.api.v1 import auth, users, chats, messages, friends, websocket

app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/v1/users", tags=["users"])
app.include_router(chats.router, prefix="/api/v1/chats", tags=["chats"])
app.include_router(messages.router, prefix="/api/v1/chats", tags=["messages"])
app.include_router(friends.router, prefix="/api/v1/friends", tags=["friends"])
app.include_router(websocket.router, prefix="/api/v1/ws", tags=["websocket"])

@app.get("/")
async def root():
    return {"message": "StudyHall API", "version": settings.VERSION}

@app.get("/health")
async def health():
    return {"status": "ok"}
