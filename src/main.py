"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000

With SCHEDULER_ENABLED the round scheduler runs as a background task of
this process. Serverless deployments disable it and hit
GET /api/v1/game/heartbeat from an external cron instead.
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from config.settings import settings
from src.ar_account.api.leaderboard_router import router as leaderboard_router
from src.ar_account.api.router import router as account_router
from src.ar_common.database import async_session_factory, engine, ping_database
from src.ar_common.errors import AppError, PersistenceError
from src.ar_common.redis_client import close_redis, get_redis
from src.ar_common.response import error_response
from src.ar_game.api.router import get_game_service
from src.ar_game.api.router import router as game_router
from src.ar_gateway.api.router import router as auth_router
from src.ar_gateway.middleware.request_log import RequestLogMiddleware

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis, start the scheduler. Shutdown: stop and dispose."""
    await ping_database()
    await get_redis()

    stop = asyncio.Event()
    scheduler_task: asyncio.Task[None] | None = None
    if settings.SCHEDULER_ENABLED:
        scheduler = get_game_service().scheduler
        scheduler_task = asyncio.create_task(
            scheduler.run_forever(async_session_factory, stop)
        )
    yield
    stop.set()
    if scheduler_task is not None:
        await scheduler_task
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


@app.exception_handler(SQLAlchemyError)
async def persistence_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Unhandled persistence error on %s: %s", request.url.path, exc)
    err = PersistenceError()
    resp = error_response(err.code, err.message)
    return JSONResponse(status_code=err.http_status, content=resp.model_dump())


app.include_router(auth_router, prefix="/api/v1")
app.include_router(account_router, prefix="/api/v1")
app.include_router(leaderboard_router, prefix="/api/v1")
app.include_router(game_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
