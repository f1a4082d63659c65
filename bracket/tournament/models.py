"""
Bracket domain values.

Immutable representations passed between the ranking, pairing and
advancement components. Persistence lives in ``bracket.models``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4
import json

from pydantic import BaseModel, Field

from bracket.models.tournament import BattleStatus
from bracket.utils.clock import utc_now

# Round number used in events emitted for the qualification phase
QUALIFICATION_ROUND = 0


class BracketEventType(Enum):
    """Event types published on the bracket event bus."""

    ROUND_CREATED = auto()
    ROUND_CLOSED = auto()
    BATTLE_COMPLETED = auto()
    BATTLE_FORFEITED = auto()


@dataclass(frozen=True)
class QualificationEntry:
    """One qualifier submission as seen by the ranking selector."""

    player_id: int
    score: Decimal
    duration_seconds: Optional[int]
    submission_id: int

    @classmethod
    def from_attempt(cls, attempt: Any) -> "QualificationEntry":
        return cls(
            player_id=attempt.player_id,
            score=Decimal(attempt.score),
            duration_seconds=attempt.duration_seconds,
            submission_id=attempt.id,
        )


@dataclass(frozen=True)
class RankedQualifier:
    """Qualifier leaderboard row."""

    rank: int
    player_id: int
    score: Decimal
    duration_seconds: Optional[int]
    submission_id: int
    qualified: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "player_id": self.player_id,
            "score": str(self.score),
            "duration_seconds": self.duration_seconds,
            "submission_id": self.submission_id,
            "qualified": self.qualified,
        }


@dataclass(frozen=True)
class BattlePlan:
    """A battle the pairing generator wants persisted."""

    round: int
    player1_id: int
    player2_id: Optional[int]
    status: BattleStatus
    scheduled_at: Optional[datetime]
    winner_id: Optional[int] = None
    completed_at: Optional[datetime] = None

    @property
    def is_bye(self) -> bool:
        return self.player2_id is None


@dataclass(frozen=True)
class RoundPairing:
    """Pairing generator output for one round."""

    round: int
    battles: Tuple[BattlePlan, ...]

    @property
    def byes(self) -> Tuple[BattlePlan, ...]:
        return tuple(b for b in self.battles if b.is_bye)

    @property
    def player_ids(self) -> List[int]:
        ids: List[int] = []
        for battle in self.battles:
            ids.append(battle.player1_id)
            if battle.player2_id is not None:
                ids.append(battle.player2_id)
        return ids


@dataclass(frozen=True)
class BracketEvent:
    """
    Envelope for everything published on the event bus.

    Consumed by UI push channels and monitoring; delivery is at-least-once.
    """

    event_id: str = field(default_factory=lambda: str(uuid4()))
    event_type: BracketEventType = BracketEventType.ROUND_CREATED
    tournament_id: int = 0
    timestamp: datetime = field(default_factory=utc_now)
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.name,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass(frozen=True)
class RoundCreated:
    """A round's battles were persisted."""

    tournament_id: int
    round: int
    battles: Tuple[Dict[str, Any], ...]

    def to_event(self) -> BracketEvent:
        return BracketEvent(
            event_type=BracketEventType.ROUND_CREATED,
            tournament_id=self.tournament_id,
            data={"round": self.round, "battles": list(self.battles)},
        )


@dataclass(frozen=True)
class RoundClosed:
    """A round (or the qualification phase, round 0) was decided."""

    tournament_id: int
    round: int
    winners: Tuple[int, ...]
    next_round: Optional[int] = None
    tournament_complete: bool = False
    tournament_winner: Optional[int] = None

    def to_event(self) -> BracketEvent:
        return BracketEvent(
            event_type=BracketEventType.ROUND_CLOSED,
            tournament_id=self.tournament_id,
            data={
                "round": self.round,
                "winners": list(self.winners),
                "next_round": self.next_round,
                "tournament_complete": self.tournament_complete,
                "tournament_winner": self.tournament_winner,
            },
        )


class AdvancementOutcome(str, Enum):
    """What a round advancement run did."""

    TOURNAMENT_NOT_FOUND = "tournament_not_found"
    NOT_ACTIVE = "not_active"
    NO_BATTLES = "no_battles"
    ROUND_INCOMPLETE = "round_incomplete"
    ALREADY_ADVANCED = "already_advanced"
    NO_WINNERS = "no_winners"
    FINALIZED = "finalized"
    ROUND_CREATED = "round_created"

    @property
    def changed_state(self) -> bool:
        return self in (AdvancementOutcome.FINALIZED, AdvancementOutcome.ROUND_CREATED)


@dataclass(frozen=True)
class AdvancementResult:
    tournament_id: int
    outcome: AdvancementOutcome
    round: Optional[int] = None
    next_round: Optional[int] = None
    winners: Tuple[int, ...] = ()
    battles_created: int = 0
    byes: Tuple[int, ...] = ()
    tournament_winner: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "outcome": self.outcome.value,
            "round": self.round,
            "next_round": self.next_round,
            "winners": list(self.winners),
            "battles_created": self.battles_created,
            "byes": list(self.byes),
            "tournament_winner": self.tournament_winner,
        }


class QualificationOutcome(str, Enum):
    """What a qualification finalizer run did."""

    TOURNAMENT_NOT_FOUND = "tournament_not_found"
    NOT_UPCOMING = "not_upcoming"
    WINDOW_OPEN = "window_open"
    ALREADY_SEEDED = "already_seeded"
    NO_QUALIFIERS = "no_qualifiers"
    FINALIZED = "finalized"
    BRACKET_SEEDED = "bracket_seeded"
    FAILED = "failed"


@dataclass(frozen=True)
class QualificationResult:
    tournament_id: int
    outcome: QualificationOutcome
    seeds: Tuple[int, ...] = ()
    battles_created: int = 0
    tournament_winner: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "outcome": self.outcome.value,
            "seeds": list(self.seeds),
            "battles_created": self.battles_created,
            "tournament_winner": self.tournament_winner,
            "error": self.error,
        }


class RoundAdvancementPayload(BaseModel):
    """Job payload for the round advancement queue."""

    tournament_id: int = Field(..., gt=0)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff schedule for the advancement job."""

    max_retries: int = 3
    backoff_seconds: Tuple[int, ...] = (60, 120, 300, 900)

    def countdown(self, retries: int) -> int:
        """Delay before retry number ``retries + 1``; the last value repeats."""
        index = min(retries, len(self.backoff_seconds) - 1)
        return self.backoff_seconds[index]

    def exhausted(self, retries: int) -> bool:
        return retries >= self.max_retries
