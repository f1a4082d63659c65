"""Tournament bracket models.

- Tournament: qualification window, bracket size, round delay, final winner
- TournamentParticipant: player registration with approval status
- TournamentQualificationAttempt: scored qualifier submissions (immutable)
- TournamentBattle: one pairing (or bye) inside a bracket round
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from bracket.models.base import Base, BigIntPK, TimestampMixin
from bracket.utils.clock import ensure_aware

# player2_id value of a bye battle
BYE_OPPONENT = None


class TournamentStatus(str, Enum):
    """Tournament lifecycle states."""

    UPCOMING = "upcoming"  # qualification window open or awaiting seeding
    ACTIVE = "active"  # bracket rounds in progress
    COMPLETED = "completed"


class ParticipantStatus(str, Enum):
    """Registration approval status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class BattleStatus(str, Enum):
    """Battle lifecycle states."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BYE = "bye"


TERMINAL_BATTLE_STATUSES = frozenset({BattleStatus.COMPLETED, BattleStatus.BYE})


class Tournament(Base, TimestampMixin):
    """Single-elimination tournament."""

    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[TournamentStatus] = mapped_column(
        SQLEnum(
            TournamentStatus,
            name="tournament_status",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        default=TournamentStatus.UPCOMING,
        nullable=False,
        index=True,
    )

    # Qualification window
    start_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Qualification deadline",
    )

    # Bracket configuration
    bracket_slots: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Number of seeds taken from qualification; unset uses the configured default",
    )
    round_delay_days: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="Days between rounds (takes precedence over rules)",
    )
    rules: Mapped[Any] = mapped_column(
        JSON,
        nullable=True,
        comment="Free-form rules; mapping or serialized JSON string",
    )

    # Result
    winner_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def qualification_closed(self, now: datetime) -> bool:
        """True once the qualification deadline has passed."""
        if self.end_date is None:
            return False
        return now >= ensure_aware(self.end_date)

    def __repr__(self) -> str:
        return f"<Tournament id={self.id} status={self.status.value}>"


class TournamentParticipant(Base, TimestampMixin):
    """Tournament registration."""

    __tablename__ = "tournament_participants"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    player_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[ParticipantStatus] = mapped_column(
        SQLEnum(
            ParticipantStatus,
            name="participant_status",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        default=ParticipantStatus.PENDING,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "player_id", name="uq_participant_tournament_player"),
    )

    def __repr__(self) -> str:
        return f"<TournamentParticipant tournament={self.tournament_id} player={self.player_id}>"


class TournamentQualificationAttempt(Base, TimestampMixin):
    """Qualifier submission. The primary key doubles as the submission order."""

    __tablename__ = "tournament_qualification_attempts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    player_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    score: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        default=Decimal("0"),
        nullable=False,
    )
    duration_seconds: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
        comment="NULL ranks as the slowest possible time",
    )

    def __repr__(self) -> str:
        return f"<QualificationAttempt id={self.id} player={self.player_id} score={self.score}>"


class TournamentBattle(Base, TimestampMixin):
    """A bracket pairing. A bye is a battle with no player2."""

    __tablename__ = "tournament_battles"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"),
        nullable=False,
    )
    round: Mapped[int] = mapped_column(Integer, nullable=False)

    player1_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    player2_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    winner_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    player1_score: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    player2_score: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    forfeit_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[BattleStatus] = mapped_column(
        SQLEnum(
            BattleStatus,
            name="battle_status",
            values_callable=lambda obj: [e.value for e in obj],
        ),
        default=BattleStatus.SCHEDULED,
        nullable=False,
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        # A player appears at most once per round
        UniqueConstraint("tournament_id", "round", "player1_id", name="uq_battle_round_player1"),
        UniqueConstraint("tournament_id", "round", "player2_id", name="uq_battle_round_player2"),
        Index("ix_battle_tournament_round", "tournament_id", "round"),
    )

    @property
    def is_bye(self) -> bool:
        return self.player2_id is BYE_OPPONENT

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BATTLE_STATUSES

    @property
    def is_decided(self) -> bool:
        """Terminal with a recorded winner."""
        return self.is_terminal and self.winner_id is not None

    @property
    def player_ids(self) -> tuple[int, ...]:
        if self.is_bye:
            return (self.player1_id,)
        return (self.player1_id, self.player2_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tournament_id": self.tournament_id,
            "round": self.round,
            "player1_id": self.player1_id,
            "player2_id": self.player2_id,
            "winner_id": self.winner_id,
            "status": self.status.value,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"<TournamentBattle id={self.id} round={self.round} "
            f"{self.player1_id} vs {self.player2_id} status={self.status.value}>"
        )
