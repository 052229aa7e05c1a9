"""WagerLedger — wager placement and batch replacement.

Both writes run in one transaction: the round row is read FOR SHARE, the
balance is moved with the guarded UPDATE, the wager rows are written, and
the whole unit commits or rolls back together. The share lock means a
settler's close UPDATE waits for in-flight wager transactions, so a wager
is either visible to settlement or rejected as late.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.ar_account.domain.repository import AccountRepositoryProtocol
from src.ar_account.infrastructure.persistence import AccountRepository
from src.ar_common.coins import validate_amount
from src.ar_common.datetime_utils import utc_now
from src.ar_common.enums import LedgerEntryType
from src.ar_common.errors import (
    AccountNotFoundError,
    EmptyWagerSetError,
    InsufficientBalanceError,
    InvalidWagerAmountError,
    PersistenceError,
    RoundClosedError,
    RoundNotFoundError,
)
from src.ar_game.domain.models import Round, Wager, WagerPlacement
from src.ar_game.domain.outcomes import get_wagerable_outcome
from src.ar_game.domain.repository import RoundRepositoryProtocol, WagerRepositoryProtocol
from src.ar_game.infrastructure.persistence import RoundRepository, WagerRepository

logger = logging.getLogger(__name__)


def _check_amount(amount: object) -> int:
    try:
        validate_amount(amount)  # type: ignore[arg-type]
    except ValueError:
        raise InvalidWagerAmountError(amount) from None
    return amount  # type: ignore[return-value]


def normalize_allocation(wagers_by_outcome: Mapping[str, int]) -> dict[str, int]:
    """Validate a batch allocation and drop zero-amount entries.

    Raises InvalidOutcomeError / InvalidWagerAmountError for bad entries and
    EmptyWagerSetError when nothing positive remains.
    """
    allocation: dict[str, int] = {}
    for outcome_id, amount in wagers_by_outcome.items():
        outcome = get_wagerable_outcome(outcome_id)
        if amount == 0 and not isinstance(amount, bool):
            continue
        allocation[outcome.id] = _check_amount(amount)
    if not allocation:
        raise EmptyWagerSetError()
    return allocation


class WagerLedger:
    def __init__(
        self,
        round_repo: RoundRepositoryProtocol | None = None,
        wager_repo: WagerRepositoryProtocol | None = None,
        account_repo: AccountRepositoryProtocol | None = None,
        clock: Callable[[], datetime] = utc_now,
        single_grace: timedelta | None = None,
        batch_grace: timedelta | None = None,
    ) -> None:
        self._rounds: RoundRepositoryProtocol = round_repo or RoundRepository()
        self._wagers: WagerRepositoryProtocol = wager_repo or WagerRepository()
        self._accounts: AccountRepositoryProtocol = account_repo or AccountRepository()
        self._clock = clock
        self._single_grace = (
            single_grace
            if single_grace is not None
            else timedelta(seconds=settings.SINGLE_WAGER_GRACE_SECONDS)
        )
        self._batch_grace = (
            batch_grace
            if batch_grace is not None
            else timedelta(seconds=settings.BATCH_WAGER_GRACE_SECONDS)
        )

    async def _lock_open_round(
        self, db: AsyncSession, round_id: int, grace: timedelta
    ) -> Round:
        round_ = await self._rounds.get_round_for_wager(db, round_id)
        if round_ is None:
            raise RoundNotFoundError(round_id)
        if not round_.accepts_wagers(self._clock(), grace):
            raise RoundClosedError(round_id)
        return round_

    async def place_wager(
        self,
        db: AsyncSession,
        round_id: int,
        user_id: str,
        outcome_id: str,
        amount: int,
    ) -> WagerPlacement:
        """Debit `amount` and record one wager on an open round."""
        amount = _check_amount(amount)
        outcome = get_wagerable_outcome(outcome_id)
        try:
            await self._lock_open_round(db, round_id, self._single_grace)
            account, _ = await self._accounts.adjust_balance(
                db, user_id, -amount, LedgerEntryType.WAGER_PLACED,
                "ROUND", str(round_id), f"Wager on {outcome.id}",
            )
            wagers = await self._wagers.insert_wagers(
                db, round_id, user_id, [(outcome.id, amount)]
            )
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise PersistenceError(f"Wager placement failed: {exc}") from exc
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "User %s wagered %d on %s in round %s", user_id, amount, outcome.id, round_id
        )
        return WagerPlacement(
            round_id=round_id,
            user_id=user_id,
            wagers=wagers,
            total_amount=amount,
            previous_total=0,
            net_amount=amount,
            balance=account.balance,
        )

    async def replace_wagers(
        self,
        db: AsyncSession,
        round_id: int,
        user_id: str,
        wagers_by_outcome: Mapping[str, int],
    ) -> WagerPlacement:
        """Replace all of a user's wagers on a round with a new allocation.

        Only the difference between the new and the previous total moves
        through the balance, so resubmitting a batch never double-debits.
        """
        allocation = normalize_allocation(wagers_by_outcome)
        new_total = sum(allocation.values())
        try:
            await self._lock_open_round(db, round_id, self._batch_grace)
            previous_total = await self._wagers.sum_user_wagers(db, round_id, user_id)
            account = await self._accounts.get_account_by_user_id(db, user_id)
            if account is None:
                raise AccountNotFoundError(user_id)
            available = account.balance + previous_total
            if available < new_total:
                raise InsufficientBalanceError(new_total, available)

            net = new_total - previous_total
            await self._wagers.delete_user_wagers(db, round_id, user_id)
            wagers = await self._wagers.insert_wagers(
                db, round_id, user_id, list(allocation.items())
            )
            balance = account.balance
            if net != 0:
                account, _ = await self._accounts.adjust_balance(
                    db, user_id, -net, LedgerEntryType.WAGER_REPLACED,
                    "ROUND", str(round_id), f"Wager set replaced ({len(wagers)} outcomes)",
                )
                balance = account.balance
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise PersistenceError(f"Wager replacement failed: {exc}") from exc
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "User %s replaced wagers in round %s: total %d (net %+d)",
            user_id, round_id, new_total, net,
        )
        return WagerPlacement(
            round_id=round_id,
            user_id=user_id,
            wagers=wagers,
            total_amount=new_total,
            previous_total=previous_total,
            net_amount=net,
            balance=balance,
        )

    async def wagers_for_round(self, db: AsyncSession, round_id: int) -> list[Wager]:
        return await self._wagers.list_for_round(db, round_id)
