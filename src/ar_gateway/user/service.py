"""User service: register, login, refresh, profile.

All DB operations use the injected AsyncSession. Transactions are managed
by the caller (router layer) via `async with db.begin()`.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ar_account.domain.models import Account
from src.ar_account.domain.repository import AccountRepositoryProtocol
from src.ar_account.infrastructure.persistence import AccountRepository
from src.ar_common.errors import (
    AccountDisabledError,
    AccountNotFoundError,
    EmailExistsError,
    InvalidCredentialsError,
    UsernameExistsError,
)
from src.ar_gateway.auth.jwt_handler import (
    create_access_token,
    create_refresh_token,
    decode_token,
)
from src.ar_gateway.auth.password import hash_password, verify_password
from src.ar_gateway.user.db_models import UserModel


class UserService:
    """Stateless service — instantiate once, reuse across requests."""

    def __init__(self, account_repo: AccountRepositoryProtocol | None = None) -> None:
        self._accounts: AccountRepositoryProtocol = account_repo or AccountRepository()

    async def register(
        self,
        username: str,
        email: str,
        password: str,
        db: AsyncSession,
    ) -> tuple[UserModel, Account]:
        """Register a new user and open their coin account in the same transaction.

        The caller must wrap this in `async with db.begin()`.
        """
        result = await db.execute(
            select(UserModel).where(UserModel.username == username)
        )
        if result.scalar_one_or_none() is not None:
            raise UsernameExistsError()

        result = await db.execute(
            select(UserModel).where(UserModel.email == email)
        )
        if result.scalar_one_or_none() is not None:
            raise EmailExistsError()

        user = UserModel(
            username=username,
            email=email,
            password_hash=hash_password(password),
            is_active=True,
        )
        db.add(user)
        await db.flush()  # Get user.id without committing

        account = await self._accounts.open_account(
            db, str(user.id), settings.STARTING_COINS
        )
        return user, account

    async def login(
        self,
        username_or_email: str,
        password: str,
        db: AsyncSession,
    ) -> tuple[UserModel, str, str]:
        """Authenticate and return (user, access_token, refresh_token).

        Input containing "@" is matched against email, anything else against
        username. Unknown user and wrong password raise the same error.
        """
        column = UserModel.email if "@" in username_or_email else UserModel.username
        result = await db.execute(select(UserModel).where(column == username_or_email))
        user = result.scalar_one_or_none()

        if user is None or not verify_password(password, user.password_hash):
            raise InvalidCredentialsError()

        if not user.is_active:
            raise AccountDisabledError()

        return (
            user,
            create_access_token(str(user.id)),
            create_refresh_token(str(user.id)),
        )

    async def refresh(self, refresh_token: str) -> str:
        """Validate refresh token and return a new access token."""
        payload = decode_token(refresh_token, expected_type="refresh")
        user_id: str = str(payload["sub"])
        return create_access_token(user_id)

    async def get_coins(self, user_id: str, db: AsyncSession) -> int:
        account = await self._accounts.get_account_by_user_id(db, user_id)
        if account is None:
            raise AccountNotFoundError(user_id)
        return account.balance
