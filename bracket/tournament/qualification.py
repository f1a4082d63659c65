"""
Qualification Finalizer.

Closes a tournament's qualification phase once its deadline has passed:

- no eligible qualifier: nothing happens, the tournament stays upcoming
- one qualifier: the tournament completes with that player as winner
- two or more: the tournament becomes active and round 1 is seeded
  from the qualifier ranking, playable immediately

Everything for one tournament happens in one transaction. A failure rolls
the transaction back, is logged, and leaves the tournament for the next
sweep.
"""

from contextlib import nullcontext
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bracket.logging_config import get_logger
from bracket.models.tournament import Tournament, TournamentStatus
from bracket.utils.clock import Clock, utc_now
from bracket.utils.errors import TournamentNotFoundError

from .distributed_lock import DistributedLockManager, LockType
from .event_bus import BracketEventBus
from .models import (
    QUALIFICATION_ROUND,
    QualificationOutcome,
    QualificationResult,
    RankedQualifier,
    RoundClosed,
    RoundCreated,
)
from .ranking import DEFAULT_BRACKET_SLOTS, RankingSelector
from .repository import TournamentRepository

logger = get_logger(__name__)

FIRST_ROUND = 1


def seed_slots(tournament: Tournament, default_slots: int = DEFAULT_BRACKET_SLOTS) -> int:
    """Seeds taken from qualification; an unset tournament value uses the default."""
    if tournament.bracket_slots is None:
        return default_slots
    return tournament.bracket_slots


async def qualifier_leaderboard(
    repo: TournamentRepository,
    tournament_id: int,
    default_slots: int = DEFAULT_BRACKET_SLOTS,
) -> List[RankedQualifier]:
    """Current qualifier leaderboard for a tournament.

    Raises:
        TournamentNotFoundError: Unknown tournament
    """
    tournament = await repo.get_tournament(tournament_id)
    if tournament is None:
        raise TournamentNotFoundError(tournament_id)

    selector = RankingSelector(seed_slots(tournament, default_slots))
    return selector.leaderboard(
        await repo.qualification_entries(tournament_id),
        await repo.approved_player_ids(tournament_id),
    )


async def qualifier_standing(
    repo: TournamentRepository,
    tournament_id: int,
    player_id: int,
    default_slots: int = DEFAULT_BRACKET_SLOTS,
) -> Optional[RankedQualifier]:
    """One player's leaderboard row, or None if they have no counted attempt."""
    for row in await qualifier_leaderboard(repo, tournament_id, default_slots):
        if row.player_id == player_id:
            return row
    return None


class QualificationFinalizer:
    """Turns closed qualification windows into seeded brackets."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_manager: Optional[DistributedLockManager] = None,
        event_bus: Optional[BracketEventBus] = None,
        clock: Clock = utc_now,
        default_bracket_slots: int = DEFAULT_BRACKET_SLOTS,
    ):
        self.session_factory = session_factory
        self.lock_manager = lock_manager
        self.event_bus = event_bus
        self.clock = clock
        self.default_bracket_slots = default_bracket_slots

    async def finalize_due(self) -> List[QualificationResult]:
        """Finalize every upcoming tournament whose deadline has passed."""
        now = self.clock()
        async with self.session_factory() as session:
            due = await TournamentRepository(session).list_due_qualifications(now)

        if due:
            logger.info("qualification_sweep_started", tournaments=len(due))

        results = []
        for tournament_id in due:
            results.append(await self.finalize(tournament_id))
        return results

    async def finalize(self, tournament_id: int) -> QualificationResult:
        """Finalize one tournament's qualification. Never raises."""
        events: List = []

        try:
            async with self._critical_section(tournament_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await self._finalize_locked(
                            TournamentRepository(session),
                            tournament_id,
                            events,
                        )
        except Exception as e:
            logger.error(
                "qualification_finalize_failed",
                tournament_id=tournament_id,
                error=str(e),
                exc_info=True,
            )
            return QualificationResult(
                tournament_id=tournament_id,
                outcome=QualificationOutcome.FAILED,
                error=str(e),
            )

        if self.event_bus is not None:
            for event in events:
                if isinstance(event, RoundCreated):
                    await self.event_bus.emit_round_created(event)
                else:
                    await self.event_bus.emit_round_closed(event)

        return result

    def _critical_section(self, tournament_id: int):
        if self.lock_manager is None:
            return nullcontext()
        return self.lock_manager.lock(tournament_id, LockType.BRACKET)

    async def _finalize_locked(
        self,
        repo: TournamentRepository,
        tournament_id: int,
        events: List,
    ) -> QualificationResult:
        tournament = await repo.get_tournament(tournament_id, for_update=True)
        if tournament is None:
            return QualificationResult(tournament_id, QualificationOutcome.TOURNAMENT_NOT_FOUND)

        if tournament.status != TournamentStatus.UPCOMING:
            return QualificationResult(tournament_id, QualificationOutcome.NOT_UPCOMING)

        now = self.clock()
        if not tournament.qualification_closed(now):
            return QualificationResult(tournament_id, QualificationOutcome.WINDOW_OPEN)

        if await repo.round_exists(tournament_id, FIRST_ROUND):
            logger.info("qualification_already_seeded", tournament_id=tournament_id)
            return QualificationResult(tournament_id, QualificationOutcome.ALREADY_SEEDED)

        selector = RankingSelector(seed_slots(tournament, self.default_bracket_slots))
        seeds = selector.select(
            await repo.qualification_entries(tournament_id),
            await repo.approved_player_ids(tournament_id),
        )

        if not seeds:
            logger.warning("qualification_no_qualifiers", tournament_id=tournament_id)
            return QualificationResult(tournament_id, QualificationOutcome.NO_QUALIFIERS)

        if len(seeds) == 1:
            winner_id = seeds[0]
            await repo.finalize_tournament(tournament, winner_id, now)
            events.append(
                RoundClosed(
                    tournament_id=tournament_id,
                    round=QUALIFICATION_ROUND,
                    winners=(winner_id,),
                    tournament_complete=True,
                    tournament_winner=winner_id,
                )
            )
            logger.info(
                "qualification_single_qualifier",
                tournament_id=tournament_id,
                winner_id=winner_id,
            )
            return QualificationResult(
                tournament_id,
                QualificationOutcome.FINALIZED,
                seeds=(winner_id,),
                tournament_winner=winner_id,
            )

        await repo.activate_tournament(tournament)
        battles = await repo.create_battles_for_round(
            tournament_id,
            seeds,
            FIRST_ROUND,
            scheduled_at=now,
            now=now,
        )

        events.append(
            RoundClosed(
                tournament_id=tournament_id,
                round=QUALIFICATION_ROUND,
                winners=tuple(seeds),
                next_round=FIRST_ROUND,
            )
        )
        events.append(
            RoundCreated(
                tournament_id=tournament_id,
                round=FIRST_ROUND,
                battles=tuple(b.to_dict() for b in battles),
            )
        )

        logger.info(
            "bracket_seeded",
            tournament_id=tournament_id,
            seeds=len(seeds),
            battles=len(battles),
        )
        return QualificationResult(
            tournament_id,
            QualificationOutcome.BRACKET_SEEDED,
            seeds=tuple(seeds),
            battles_created=len(battles),
        )
