"""Auth API router: register, login, refresh, me.

Every response is an ApiResponse envelope; request_id comes from
request.state (set by RequestLogMiddleware).
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ar_common.database import get_db_session
from src.ar_common.response import ApiResponse, success_response
from src.ar_gateway.auth.dependencies import get_current_user
from src.ar_gateway.user.db_models import UserModel
from src.ar_gateway.user.schemas import (
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RegisterResponse,
    UserInfo,
)
from src.ar_gateway.user.service import UserService

router = APIRouter(prefix="/auth", tags=["auth"])
_service = UserService()

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
_TOKEN_TTL_SECONDS = settings.JWT_EXPIRE_MINUTES * 60


def _with_message(resp: ApiResponse, message: str) -> ApiResponse:
    resp.message = message
    return resp


async def _user_info(user: UserModel, db: AsyncSession) -> UserInfo:
    return UserInfo(
        user_id=str(user.id),
        username=user.username,
        email=user.email,
        coins=await _service.get_coins(str(user.id), db),
    )


@router.post("/register", status_code=status.HTTP_201_CREATED, summary="Create a player")
async def register(body: RegisterRequest, db: DbSession, request: Request) -> ApiResponse:
    # User row and starting coins commit together
    async with db.begin():
        user, account = await _service.register(body.username, body.email, body.password, db)

    data = RegisterResponse(
        user_id=str(user.id),
        username=user.username,
        email=user.email,
        coins=account.balance,
        created_at=user.created_at.isoformat(),
    )
    return _with_message(success_response(data.model_dump(), request), "Player registered")


@router.post("/login", summary="Exchange credentials for a token pair")
async def login(body: LoginRequest, db: DbSession, request: Request) -> ApiResponse:
    user, access_token, refresh_token = await _service.login(
        body.username_or_email, body.password, db
    )
    data = LoginResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=_TOKEN_TTL_SECONDS,
        user=await _user_info(user, db),
    )
    return _with_message(success_response(data.model_dump(), request), "Login successful")


@router.post("/refresh", summary="Mint a new access token")
async def refresh(body: RefreshRequest, request: Request) -> ApiResponse:
    data = RefreshResponse(
        access_token=await _service.refresh(body.refresh_token),
        expires_in=_TOKEN_TTL_SECONDS,
    )
    return _with_message(success_response(data.model_dump(), request), "Token refreshed")


@router.get("/me", summary="Current player and coin balance")
async def me(
    current_user: Annotated[UserModel, Depends(get_current_user)],
    db: DbSession,
    request: Request,
) -> ApiResponse:
    data = await _user_info(current_user, db)
    return success_response(data.model_dump(), request)
