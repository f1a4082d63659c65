"""
Battle State Machine.

    scheduled ──> in_progress ──> completed
        │                            ^
        └────────────────────────────┘
    bye (terminal from creation)

Transitions are applied to a battle row and handed to listeners registered
with ``subscribe``. Listeners are notified only when the caller says the
mutation is durable (``notify``), so they never observe uncommitted state.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from bracket.logging_config import get_logger
from bracket.models.tournament import BattleStatus, TournamentBattle
from bracket.utils.errors import InvalidBattleTransitionError, InvalidWinnerError

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[BattleStatus, FrozenSet[BattleStatus]] = {
    BattleStatus.SCHEDULED: frozenset({BattleStatus.IN_PROGRESS, BattleStatus.COMPLETED}),
    BattleStatus.IN_PROGRESS: frozenset({BattleStatus.COMPLETED}),
    BattleStatus.COMPLETED: frozenset(),
    BattleStatus.BYE: frozenset(),
}


@dataclass(frozen=True)
class BattleTransition:
    """An applied status change."""

    battle_id: int
    tournament_id: int
    round: int
    previous_status: BattleStatus
    status: BattleStatus
    winner_id: Optional[int]
    occurred_at: datetime

    @property
    def newly_completed(self) -> bool:
        """The completed-with-winner edge the round detector reacts to."""
        return (
            self.previous_status != BattleStatus.COMPLETED
            and self.status == BattleStatus.COMPLETED
            and self.winner_id is not None
        )


TransitionListener = Callable[[BattleTransition], Awaitable[None]]


class BattleStateMachine:
    """Validates and applies battle status changes."""

    def __init__(self) -> None:
        self._listeners: List[TransitionListener] = []

    def subscribe(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: TransitionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def can_transition(self, from_status: BattleStatus, to_status: BattleStatus) -> bool:
        return to_status in ALLOWED_TRANSITIONS[from_status]

    def start(self, battle: TournamentBattle, now: datetime) -> BattleTransition:
        """scheduled -> in_progress."""
        return self._apply(battle, BattleStatus.IN_PROGRESS, None, now)

    def complete(
        self,
        battle: TournamentBattle,
        winner_id: int,
        now: datetime,
        player1_score: Optional[Decimal] = None,
        player2_score: Optional[Decimal] = None,
    ) -> BattleTransition:
        """Record the result and move the battle to completed."""
        if winner_id is None or winner_id not in battle.player_ids:
            raise InvalidWinnerError(battle.id, winner_id)

        transition = self._apply(battle, BattleStatus.COMPLETED, winner_id, now)
        if player1_score is not None:
            battle.player1_score = player1_score
        if player2_score is not None:
            battle.player2_score = player2_score
        return transition

    def forfeit(
        self,
        battle: TournamentBattle,
        forfeiting_player_id: int,
        now: datetime,
        reason: Optional[str] = None,
    ) -> BattleTransition:
        """Complete the battle in favour of the opponent of ``forfeiting_player_id``."""
        if battle.is_bye or forfeiting_player_id not in battle.player_ids:
            raise InvalidWinnerError(battle.id, forfeiting_player_id)

        winner_id = (
            battle.player2_id
            if forfeiting_player_id == battle.player1_id
            else battle.player1_id
        )
        transition = self._apply(battle, BattleStatus.COMPLETED, winner_id, now)
        battle.forfeit_reason = reason or "forfeit"
        return transition

    async def notify(self, transition: BattleTransition) -> None:
        """Hand a committed transition to every listener.

        A failing listener is logged; it never undoes the transition or
        stops the remaining listeners.
        """
        for listener in list(self._listeners):
            try:
                await listener(transition)
            except Exception as e:
                logger.error(
                    "battle_transition_listener_failed",
                    battle_id=transition.battle_id,
                    tournament_id=transition.tournament_id,
                    error=str(e),
                )

    def _apply(
        self,
        battle: TournamentBattle,
        to_status: BattleStatus,
        winner_id: Optional[int],
        now: datetime,
    ) -> BattleTransition:
        previous = battle.status
        if not self.can_transition(previous, to_status):
            raise InvalidBattleTransitionError(battle.id, previous.value, to_status.value)

        battle.status = to_status
        if to_status == BattleStatus.COMPLETED:
            battle.winner_id = winner_id
            battle.completed_at = now

        return BattleTransition(
            battle_id=battle.id,
            tournament_id=battle.tournament_id,
            round=battle.round,
            previous_status=previous,
            status=to_status,
            winner_id=battle.winner_id,
            occurred_at=now,
        )
