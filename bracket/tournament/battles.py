"""Battle result reporting.

The entry point gameplay uses to move battles through their lifecycle.
Every mutation is committed before state machine listeners hear about it.
"""

from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bracket.logging_config import get_logger
from bracket.models.tournament import TournamentBattle
from bracket.utils.clock import Clock, utc_now
from bracket.utils.errors import BattleNotFoundError

from .event_bus import BracketEventBus
from .models import BracketEvent, BracketEventType
from .repository import TournamentRepository
from .state_machine import BattleStateMachine, BattleTransition

logger = get_logger(__name__)


class BattleService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        state_machine: BattleStateMachine,
        event_bus: Optional[BracketEventBus] = None,
        clock: Clock = utc_now,
    ):
        self.session_factory = session_factory
        self.state_machine = state_machine
        self.event_bus = event_bus
        self.clock = clock

    async def start(self, battle_id: int) -> TournamentBattle:
        """Mark a scheduled battle as in progress."""
        return await self._mutate(
            battle_id,
            lambda battle, now: self.state_machine.start(battle, now),
        )

    async def complete(
        self,
        battle_id: int,
        winner_id: int,
        player1_score: Optional[Decimal] = None,
        player2_score: Optional[Decimal] = None,
    ) -> TournamentBattle:
        """Record a battle result."""
        battle = await self._mutate(
            battle_id,
            lambda battle, now: self.state_machine.complete(
                battle, winner_id, now, player1_score, player2_score
            ),
        )
        await self._emit(BracketEventType.BATTLE_COMPLETED, battle)
        return battle

    async def forfeit(
        self,
        battle_id: int,
        forfeiting_player_id: int,
        reason: Optional[str] = None,
    ) -> TournamentBattle:
        """Award the battle to the opponent of ``forfeiting_player_id``."""
        battle = await self._mutate(
            battle_id,
            lambda battle, now: self.state_machine.forfeit(
                battle, forfeiting_player_id, now, reason
            ),
        )
        await self._emit(BracketEventType.BATTLE_FORFEITED, battle)
        return battle

    async def _mutate(
        self,
        battle_id: int,
        apply: Callable[[TournamentBattle, object], BattleTransition],
    ) -> TournamentBattle:
        async with self.session_factory() as session:
            async with session.begin():
                battle = await TournamentRepository(session).get_battle(battle_id, for_update=True)
                if battle is None:
                    raise BattleNotFoundError(battle_id)
                transition = apply(battle, self.clock())

        logger.info(
            "battle_transitioned",
            battle_id=battle_id,
            tournament_id=transition.tournament_id,
            round=transition.round,
            from_status=transition.previous_status.value,
            to_status=transition.status.value,
            winner_id=transition.winner_id,
        )
        await self.state_machine.notify(transition)
        return battle

    async def _emit(self, event_type: BracketEventType, battle: TournamentBattle) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            BracketEvent(
                event_type=event_type,
                tournament_id=battle.tournament_id,
                data=battle.to_dict(),
            )
        )
