"""Database models."""

from bracket.models.base import Base, TimestampMixin
from bracket.models.tournament import (
    BYE_OPPONENT,
    TERMINAL_BATTLE_STATUSES,
    BattleStatus,
    ParticipantStatus,
    Tournament,
    TournamentBattle,
    TournamentParticipant,
    TournamentQualificationAttempt,
    TournamentStatus,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Tournament
    "Tournament",
    "TournamentStatus",
    "TournamentParticipant",
    "ParticipantStatus",
    "TournamentQualificationAttempt",
    # Battle
    "TournamentBattle",
    "BattleStatus",
    "BYE_OPPONENT",
    "TERMINAL_BATTLE_STATUSES",
]
