"""FastAPI dependencies resolving the caller's identity.

    @router.post("/wagers")
    async def place(user: UserModel = Depends(get_current_user)): ...

    @router.get("/state")
    async def state(user: UserModel | None = Depends(get_optional_user)): ...
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.ar_common.database import get_db_session
from src.ar_common.errors import AccountDisabledError, InvalidCredentialsError
from src.ar_gateway.auth.jwt_handler import decode_token
from src.ar_gateway.user.db_models import UserModel

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)

_CREDENTIALS_EXCEPTION = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Invalid or expired token",
    headers={"WWW-Authenticate": "Bearer"},
)


async def _resolve_user(token: str, db: AsyncSession) -> UserModel:
    try:
        payload = decode_token(token, expected_type="access")
    except InvalidCredentialsError:
        raise _CREDENTIALS_EXCEPTION from None

    user_id: str | None = payload.get("sub")
    if not user_id:
        raise _CREDENTIALS_EXCEPTION

    result = await db.execute(select(UserModel).where(UserModel.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise _CREDENTIALS_EXCEPTION

    if not user.is_active:
        raise AccountDisabledError()

    return user


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> UserModel:
    """Validate the Bearer token and return the UserModel.

    Raises HTTP 401 if the token is missing, invalid, or expired.
    """
    return await _resolve_user(token, db)


async def get_optional_user(
    token: str | None = Depends(optional_oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> UserModel | None:
    """Like get_current_user, but anonymous callers (no token) yield None.

    A token that IS presented must still be valid.
    """
    if token is None:
        return None
    return await _resolve_user(token, db)
