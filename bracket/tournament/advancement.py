"""
Round Advancement.

Moves a tournament from a fully decided round to the next one, or to its
final result. Safe to run any number of times for the same tournament:
a round that is still open, or one that already has a successor, is left
alone.

Critical section (per tournament):
1. Redis lock ``lock:tournament:{id}:bracket``
2. ``SELECT ... FOR UPDATE`` on the tournament row
3. One database transaction for every row written
Events are published only after that transaction commits.
"""

from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bracket.logging_config import get_logger
from bracket.models.tournament import TournamentBattle, TournamentStatus
from bracket.utils.clock import Clock, utc_now
from bracket.utils.errors import (
    DataInvariantViolationError,
    ErrorCode,
    PreconditionNotMetError,
    TournamentNotFoundError,
    TransientInfraError,
)

from .distributed_lock import DistributedLockManager, LockAcquisitionError, LockType
from .event_bus import BracketEventBus
from .models import (
    AdvancementOutcome,
    AdvancementResult,
    RoundClosed,
    RoundCreated,
)
from .pairing import scheduled_start
from .repository import TournamentRepository
from .round_delay import DEFAULT_ROUND_DELAY_MINUTES, round_delay_for

logger = get_logger(__name__)


def distinct_winners(battles: Sequence[TournamentBattle]) -> List[int]:
    """Winners of a round in battle order, each player once."""
    winners: List[int] = []
    for battle in battles:
        if battle.winner_id is not None and battle.winner_id not in winners:
            winners.append(battle.winner_id)
    return winners


@dataclass
class _PendingEvents:
    """Events collected inside the transaction, published after commit."""

    closed: Optional[RoundClosed] = None
    created: Optional[RoundCreated] = None
    byes: Tuple[int, ...] = field(default_factory=tuple)


class RoundAdvancementService:
    """Runs round advancement and manual round generation for tournaments."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_manager: Optional[DistributedLockManager] = None,
        event_bus: Optional[BracketEventBus] = None,
        clock: Clock = utc_now,
        default_delay_minutes: int = DEFAULT_ROUND_DELAY_MINUTES,
    ):
        self.session_factory = session_factory
        self.lock_manager = lock_manager
        self.event_bus = event_bus
        self.clock = clock
        self.default_delay_minutes = default_delay_minutes

    async def advance(self, tournament_id: int) -> AdvancementResult:
        """
        Advance ``tournament_id`` past its latest round if that round is decided.

        Returns:
            AdvancementResult describing what happened (no-ops included)

        Raises:
            TransientInfraError: If the tournament lock cannot be acquired
        """
        pending = _PendingEvents()

        try:
            async with self._critical_section(tournament_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await self._advance_locked(
                            TournamentRepository(session),
                            tournament_id,
                            pending,
                        )
        except LockAcquisitionError as e:
            raise TransientInfraError(
                "Tournament bracket is locked by another worker",
                details={"tournamentId": tournament_id, "error": str(e)},
            ) from e
        except IntegrityError:
            # Unique constraints caught a concurrent round creation
            logger.warning("round_creation_conflict", tournament_id=tournament_id)
            return AdvancementResult(
                tournament_id=tournament_id,
                outcome=AdvancementOutcome.ALREADY_ADVANCED,
            )

        await self._publish(tournament_id, pending)
        return result

    async def create_round(
        self,
        tournament_id: int,
        player_ids: Sequence[int],
        round_number: int,
    ) -> AdvancementResult:
        """
        Operator-driven round generation with explicit participants.

        A single participant finalizes the tournament. Creating round 1 on an
        upcoming tournament activates it.

        Raises:
            TournamentNotFoundError: Unknown tournament
            PreconditionNotMetError: Tournament completed, round exists, or no players
            InvalidPairingError: Duplicate ids or a non-positive round
        """
        pending = _PendingEvents()
        player_ids = list(player_ids)

        async with self._critical_section(tournament_id):
            async with self.session_factory() as session:
                async with session.begin():
                    repo = TournamentRepository(session)
                    tournament = await repo.get_tournament(tournament_id, for_update=True)
                    if tournament is None:
                        raise TournamentNotFoundError(tournament_id)

                    if tournament.status == TournamentStatus.COMPLETED:
                        raise PreconditionNotMetError(
                            "Tournament is already completed",
                            details={"tournamentId": tournament_id},
                        )
                    if not player_ids:
                        raise PreconditionNotMetError(
                            "At least one participant is required",
                            details={"tournamentId": tournament_id},
                        )
                    if await repo.round_exists(tournament_id, round_number):
                        raise PreconditionNotMetError(
                            f"Round {round_number} already exists",
                            details={"tournamentId": tournament_id, "round": round_number},
                            code=ErrorCode.ROUND_ALREADY_EXISTS,
                        )

                    now = self.clock()

                    if len(player_ids) == 1:
                        winner_id = player_ids[0]
                        await repo.finalize_tournament(tournament, winner_id, now)
                        pending.closed = RoundClosed(
                            tournament_id=tournament_id,
                            round=round_number - 1,
                            winners=(winner_id,),
                            tournament_complete=True,
                            tournament_winner=winner_id,
                        )
                        result = AdvancementResult(
                            tournament_id=tournament_id,
                            outcome=AdvancementOutcome.FINALIZED,
                            round=round_number - 1,
                            winners=(winner_id,),
                            tournament_winner=winner_id,
                        )
                    else:
                        if round_number == 1 and tournament.status == TournamentStatus.UPCOMING:
                            await repo.activate_tournament(tournament)
                        result = await self._create_next_round(
                            repo,
                            tournament,
                            player_ids,
                            round_number,
                            now,
                            pending,
                        )

        logger.info(
            "round_created_manually",
            tournament_id=tournament_id,
            round=round_number,
            outcome=result.outcome.value,
        )
        await self._publish(tournament_id, pending)
        return result

    def _critical_section(self, tournament_id: int):
        if self.lock_manager is None:
            return nullcontext()
        return self.lock_manager.lock(tournament_id, LockType.BRACKET)

    async def _advance_locked(
        self,
        repo: TournamentRepository,
        tournament_id: int,
        pending: _PendingEvents,
    ) -> AdvancementResult:
        tournament = await repo.get_tournament(tournament_id, for_update=True)
        if tournament is None:
            logger.info("advancement_tournament_not_found", tournament_id=tournament_id)
            return AdvancementResult(tournament_id, AdvancementOutcome.TOURNAMENT_NOT_FOUND)

        if tournament.status != TournamentStatus.ACTIVE:
            logger.info(
                "advancement_skipped_not_active",
                tournament_id=tournament_id,
                status=tournament.status.value,
            )
            return AdvancementResult(tournament_id, AdvancementOutcome.NOT_ACTIVE)

        max_round = await repo.max_round(tournament_id)
        if max_round is None:
            return AdvancementResult(tournament_id, AdvancementOutcome.NO_BATTLES)

        battles = await repo.battles_in_round(tournament_id, max_round)
        if not battles:
            return AdvancementResult(tournament_id, AdvancementOutcome.NO_BATTLES, round=max_round)

        undecided = [b.id for b in battles if not b.is_decided]
        if undecided:
            logger.debug(
                "round_not_complete",
                tournament_id=tournament_id,
                round=max_round,
                pending_battles=len(undecided),
            )
            return AdvancementResult(
                tournament_id,
                AdvancementOutcome.ROUND_INCOMPLETE,
                round=max_round,
            )

        next_round = max_round + 1
        if await repo.round_exists(tournament_id, next_round):
            logger.info(
                "round_already_advanced",
                tournament_id=tournament_id,
                round=max_round,
                next_round=next_round,
            )
            return AdvancementResult(
                tournament_id,
                AdvancementOutcome.ALREADY_ADVANCED,
                round=max_round,
                next_round=next_round,
            )

        winners = distinct_winners(battles)
        now = self.clock()

        if not winners:
            violation = DataInvariantViolationError(
                "Decided round has no winners",
                details={"tournamentId": tournament_id, "round": max_round},
            )
            logger.error("round_has_no_winners", **violation.to_dict())
            return AdvancementResult(tournament_id, AdvancementOutcome.NO_WINNERS, round=max_round)

        if len(winners) == 1:
            winner_id = winners[0]
            await repo.finalize_tournament(tournament, winner_id, now)
            pending.closed = RoundClosed(
                tournament_id=tournament_id,
                round=max_round,
                winners=(winner_id,),
                tournament_complete=True,
                tournament_winner=winner_id,
            )
            logger.info(
                "tournament_finalized",
                tournament_id=tournament_id,
                round=max_round,
                winner_id=winner_id,
            )
            return AdvancementResult(
                tournament_id,
                AdvancementOutcome.FINALIZED,
                round=max_round,
                winners=(winner_id,),
                tournament_winner=winner_id,
            )

        pending.closed = RoundClosed(
            tournament_id=tournament_id,
            round=max_round,
            winners=tuple(winners),
            next_round=next_round,
        )
        result = await self._create_next_round(repo, tournament, winners, next_round, now, pending)
        return AdvancementResult(
            tournament_id,
            result.outcome,
            round=max_round,
            next_round=next_round,
            winners=tuple(winners),
            battles_created=result.battles_created,
            byes=result.byes,
        )

    async def _create_next_round(
        self,
        repo: TournamentRepository,
        tournament,
        player_ids: Sequence[int],
        round_number: int,
        now: datetime,
        pending: _PendingEvents,
    ) -> AdvancementResult:
        delay_minutes = round_delay_for(tournament, self.default_delay_minutes)
        battles = await repo.create_battles_for_round(
            tournament.id,
            player_ids,
            round_number,
            scheduled_at=scheduled_start(now, delay_minutes),
            now=now,
        )
        byes = tuple(b.player1_id for b in battles if b.is_bye)

        pending.created = RoundCreated(
            tournament_id=tournament.id,
            round=round_number,
            battles=tuple(b.to_dict() for b in battles),
        )
        pending.byes = byes

        logger.info(
            "round_created",
            tournament_id=tournament.id,
            round=round_number,
            battles=len(battles),
            delay_minutes=delay_minutes,
        )
        return AdvancementResult(
            tournament.id,
            AdvancementOutcome.ROUND_CREATED,
            next_round=round_number,
            winners=tuple(player_ids),
            battles_created=len(battles),
            byes=byes,
        )

    async def _publish(self, tournament_id: int, pending: _PendingEvents) -> None:
        if self.event_bus is not None:
            if pending.closed is not None:
                await self.event_bus.emit_round_closed(pending.closed)
            if pending.created is not None:
                await self.event_bus.emit_round_created(pending.created)

        for player_id in pending.byes:
            logger.info(
                "bye_auto_advanced",
                tournament_id=tournament_id,
                round=pending.created.round if pending.created else None,
                player_id=player_id,
            )
