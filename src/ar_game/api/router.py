"""ar_game REST API — rounds, wagers, history and the serverless heartbeat.

Read endpoints accept anonymous callers; wager and settle endpoints need a
Bearer token.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.ar_common.database import get_db_session
from src.ar_common.response import ApiResponse, success_response
from src.ar_game.application.schemas import PlaceWagerRequest, ReplaceWagersRequest
from src.ar_game.application.service import GameApplicationService
from src.ar_gateway.auth.dependencies import get_current_user, get_optional_user
from src.ar_gateway.user.db_models import UserModel

router = APIRouter(prefix="/game", tags=["game"])

_service = GameApplicationService()


def get_game_service() -> GameApplicationService:
    return _service


GameService = Annotated[GameApplicationService, Depends(get_game_service)]
DbSession = Annotated[AsyncSession, Depends(get_db_session)]


@router.get("/outcomes")
async def list_outcomes(service: GameService, request: Request) -> ApiResponse:
    return success_response(service.list_outcomes().model_dump(), request)


@router.get("/state")
async def get_state(
    service: GameService,
    db: DbSession,
    request: Request,
    current_user: Annotated[UserModel | None, Depends(get_optional_user)],
) -> ApiResponse:
    user_id = str(current_user.id) if current_user else None
    data = await service.get_state(db, user_id)
    return success_response(data.model_dump(), request)


@router.post("/wagers", status_code=201)
async def place_wager(
    body: PlaceWagerRequest,
    service: GameService,
    db: DbSession,
    request: Request,
    current_user: Annotated[UserModel, Depends(get_current_user)],
) -> ApiResponse:
    data = await service.place_wager(db, str(current_user.id), body)
    return success_response(data.model_dump(), request)


@router.put("/wagers")
async def replace_wagers(
    body: ReplaceWagersRequest,
    service: GameService,
    db: DbSession,
    request: Request,
    current_user: Annotated[UserModel, Depends(get_current_user)],
) -> ApiResponse:
    data = await service.replace_wagers(db, str(current_user.id), body)
    return success_response(data.model_dump(), request)


@router.get("/history")
async def get_history(
    service: GameService,
    db: DbSession,
    request: Request,
    current_user: Annotated[UserModel | None, Depends(get_optional_user)],
    limit: int = Query(10, ge=1, le=50),
    page: int = Query(1, ge=1),
) -> ApiResponse:
    user_id = str(current_user.id) if current_user else None
    data = await service.get_history(db, user_id, limit, page)
    return success_response(data.model_dump(), request)


@router.get("/heartbeat")
async def heartbeat(service: GameService, db: DbSession, request: Request) -> ApiResponse:
    """One scheduler cycle, for deployments without a background loop."""
    data = await service.heartbeat(db)
    return success_response(data.model_dump(), request)


@router.post("/rounds")
async def open_round(service: GameService, db: DbSession, request: Request) -> ApiResponse:
    """Anonymous like /heartbeat; returns the running round while one is open."""
    data = await service.open_round(db)
    return success_response(data.model_dump(), request)


@router.post("/rounds/{round_id}/settle")
async def settle_round(
    round_id: int,
    service: GameService,
    db: DbSession,
    request: Request,
    current_user: Annotated[UserModel, Depends(get_current_user)],
) -> ApiResponse:
    data = await service.settle_round(db, round_id)
    return success_response(data.model_dump(), request)
