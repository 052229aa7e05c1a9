"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth/User
  2xxx: Account
  3xxx: Round
  4xxx: Wager
  9xxx: System
"""

from datetime import datetime


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Auth/User ---

class UsernameExistsError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Username already exists", 409)


class EmailExistsError(AppError):
    def __init__(self) -> None:
        super().__init__(1002, "Email already exists", 409)


class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1003, "Invalid username or password", 401)


class AccountDisabledError(AppError):
    def __init__(self) -> None:
        super().__init__(1004, "Account is disabled", 403)


class InvalidRefreshTokenError(AppError):
    def __init__(self) -> None:
        super().__init__(1005, "Refresh token is invalid or expired", 401)


# --- 2xxx: Account ---

class InsufficientBalanceError(AppError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            2001,
            f"Insufficient balance: required {required} coins, available {available} coins",
            422,
        )
        self.required = required
        self.available = available


class AccountNotFoundError(AppError):
    def __init__(self, user_id: str) -> None:
        super().__init__(2002, f"Account not found for user {user_id}", 404)


# --- 3xxx: Round ---

class RoundNotFoundError(AppError):
    def __init__(self, round_id: int | None = None) -> None:
        detail = "No active round" if round_id is None else f"Round not found: {round_id}"
        super().__init__(3001, detail, 404)
        self.round_id = round_id


class RoundClosedError(AppError):
    def __init__(self, round_id: int) -> None:
        super().__init__(3002, f"Betting time has ended for round {round_id}", 422)
        self.round_id = round_id


class RoundNotDueError(AppError):
    def __init__(self, round_id: int, closes_at: datetime) -> None:
        super().__init__(
            3003,
            f"Round {round_id} is still open for betting until {closes_at.isoformat()}",
            409,
        )
        self.round_id = round_id
        self.closes_at = closes_at


# --- 4xxx: Wager ---

class ValidationError(AppError):
    """Rejected input; never retried."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(code, message, 422)


class InvalidWagerAmountError(ValidationError):
    def __init__(self, amount: object) -> None:
        super().__init__(4001, f"Invalid wager amount: {amount!r}")


class InvalidOutcomeError(ValidationError):
    def __init__(self, outcome_id: str) -> None:
        super().__init__(4002, f"Invalid outcome: {outcome_id}")
        self.outcome_id = outcome_id


class EmptyWagerSetError(ValidationError):
    def __init__(self) -> None:
        super().__init__(4003, "Total wager amount must be greater than 0")


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class PersistenceError(AppError):
    """Transient store failure — the whole operation is safe to retry."""

    def __init__(self, detail: str = "Persistence store unavailable") -> None:
        super().__init__(9003, detail, 503)


class PartialSettlementFailure(AppError):
    """One wager of a round failed to settle; flagged for reconciliation.

    Collected on the settlement result and logged, never raised to callers.
    """

    def __init__(self, round_id: int, wager_id: int, user_id: str, reason: str) -> None:
        super().__init__(
            9004,
            f"Wager {wager_id} of round {round_id} (user {user_id}) not settled: {reason}",
            500,
        )
        self.round_id = round_id
        self.wager_id = wager_id
        self.user_id = user_id
        self.reason = reason
