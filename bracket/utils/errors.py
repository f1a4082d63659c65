"""Custom exception classes for bracket progression errors.

Provides structured error handling with error codes and operator-friendly messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for bracket errors."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"

    # Lookup errors
    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"
    BATTLE_NOT_FOUND = "BATTLE_NOT_FOUND"

    # Flow control
    PRECONDITION_NOT_MET = "PRECONDITION_NOT_MET"
    ROUND_ALREADY_EXISTS = "ROUND_ALREADY_EXISTS"

    # Battle lifecycle
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_WINNER = "INVALID_WINNER"

    # Pairing
    INVALID_PAIRING = "INVALID_PAIRING"

    # Infrastructure
    TRANSIENT_INFRA_FAILURE = "TRANSIENT_INFRA_FAILURE"
    DATA_INVARIANT_VIOLATION = "DATA_INVARIANT_VIOLATION"


class BracketError(Exception):
    """Base exception for bracket-related errors.

    Attributes:
        code: Error code for programmatic handling
        message: Human-readable error message
        details: Additional error details
        recoverable: Whether retrying the operation can succeed
    """

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ):
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "errorCode": self.code,
            "errorMessage": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class TournamentNotFoundError(BracketError):
    """Raised when a tournament is not found."""

    def __init__(self, tournament_id: int):
        super().__init__(
            code=ErrorCode.TOURNAMENT_NOT_FOUND,
            message=f"Tournament not found: {tournament_id}",
            details={"tournamentId": tournament_id},
        )


class BattleNotFoundError(BracketError):
    """Raised when a battle is not found."""

    def __init__(self, battle_id: int):
        super().__init__(
            code=ErrorCode.BATTLE_NOT_FOUND,
            message=f"Battle not found: {battle_id}",
            details={"battleId": battle_id},
        )


class PreconditionNotMetError(BracketError):
    """Raised when an operation is attempted in the wrong tournament state.

    Used by manual operations; the advancement job treats the same
    conditions as quiet no-ops.
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.PRECONDITION_NOT_MET,
    ):
        super().__init__(
            code=code,
            message=message,
            details=details,
            recoverable=True,
        )


class InvalidBattleTransitionError(BracketError):
    """Raised when a battle status change is not allowed."""

    def __init__(self, battle_id: int | None, from_status: str, to_status: str):
        super().__init__(
            code=ErrorCode.INVALID_TRANSITION,
            message=f"Battle {battle_id} cannot move from {from_status} to {to_status}",
            details={
                "battleId": battle_id,
                "fromStatus": from_status,
                "toStatus": to_status,
            },
        )


class InvalidWinnerError(BracketError):
    """Raised when a declared winner is missing or not one of the battle players."""

    def __init__(self, battle_id: int | None, winner_id: int | None):
        super().__init__(
            code=ErrorCode.INVALID_WINNER,
            message=f"Player {winner_id} cannot win battle {battle_id}",
            details={"battleId": battle_id, "winnerId": winner_id},
        )


class InvalidPairingError(BracketError):
    """Raised when a pairing input is malformed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.INVALID_PAIRING,
            message=message,
            details=details,
        )


class TransientInfraError(BracketError):
    """Raised when a dependency (DB, Redis, queue) is temporarily unavailable."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.TRANSIENT_INFRA_FAILURE,
            message=message,
            details=details,
            recoverable=True,
        )


class DataInvariantViolationError(BracketError):
    """Raised when persisted bracket data breaks an engine invariant."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            code=ErrorCode.DATA_INVARIANT_VIOLATION,
            message=message,
            details=details,
        )
