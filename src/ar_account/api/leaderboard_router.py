"""Leaderboard — public, sorted by coin balance."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.ar_account.application.service import AccountApplicationService
from src.ar_common.database import get_db_session
from src.ar_common.response import ApiResponse, success_response

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])

_service = AccountApplicationService()


@router.get("")
async def get_leaderboard(
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    limit: int = Query(10, ge=1, le=100),
) -> ApiResponse:
    data = await _service.get_leaderboard(db, limit)
    return success_response(data.model_dump(), request)


@router.get("/rank/{user_id}")
async def get_rank(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    data = await _service.get_rank(db, user_id)
    return success_response(data.model_dump(), request)
