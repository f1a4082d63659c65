"""Tournament persistence.

Thin query layer over an ``AsyncSession``. Callers own the transaction;
methods only flush.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Set

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bracket.logging_config import get_logger
from bracket.models.tournament import (
    ParticipantStatus,
    Tournament,
    TournamentBattle,
    TournamentParticipant,
    TournamentQualificationAttempt,
    TournamentStatus,
)

from .models import QualificationEntry
from .pairing import generate_pairings

logger = get_logger(__name__)


class TournamentRepository:
    """Reads and writes tournament, participant, attempt and battle rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # =========================================================================
    # Tournament
    # =========================================================================

    async def get_tournament(
        self,
        tournament_id: int,
        for_update: bool = False,
    ) -> Optional[Tournament]:
        """Load a tournament, optionally taking a row lock."""
        query = select(Tournament).where(Tournament.id == tournament_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_due_qualifications(self, now: datetime) -> List[int]:
        """Upcoming tournaments whose qualification window has closed."""
        result = await self.db.execute(
            select(Tournament.id)
            .where(
                Tournament.status == TournamentStatus.UPCOMING,
                Tournament.end_date.is_not(None),
                Tournament.end_date <= now,
            )
            .order_by(Tournament.id)
        )
        return list(result.scalars().all())

    async def activate_tournament(self, tournament: Tournament) -> None:
        """upcoming -> active."""
        tournament.status = TournamentStatus.ACTIVE
        await self.db.flush()

    async def finalize_tournament(
        self,
        tournament: Tournament,
        winner_id: Optional[int],
        now: datetime,
    ) -> bool:
        """
        Mark the tournament completed with ``winner_id``.

        Idempotent: an already completed tournament is left untouched.

        Returns:
            True if the tournament was finalized by this call
        """
        if tournament.status == TournamentStatus.COMPLETED:
            logger.info(
                "tournament_already_completed",
                tournament_id=tournament.id,
                winner_id=tournament.winner_id,
            )
            return False

        if winner_id is None:
            logger.error("tournament_finalize_without_winner", tournament_id=tournament.id)
            return False

        tournament.status = TournamentStatus.COMPLETED
        tournament.winner_id = winner_id
        tournament.completed_at = now
        await self.db.flush()
        return True

    # =========================================================================
    # Qualification
    # =========================================================================

    async def approved_player_ids(self, tournament_id: int) -> Set[int]:
        result = await self.db.execute(
            select(TournamentParticipant.player_id).where(
                TournamentParticipant.tournament_id == tournament_id,
                TournamentParticipant.status == ParticipantStatus.APPROVED,
            )
        )
        return set(result.scalars().all())

    async def qualification_entries(self, tournament_id: int) -> List[QualificationEntry]:
        result = await self.db.execute(
            select(TournamentQualificationAttempt)
            .where(TournamentQualificationAttempt.tournament_id == tournament_id)
            .order_by(TournamentQualificationAttempt.id)
        )
        return [QualificationEntry.from_attempt(a) for a in result.scalars().all()]

    # =========================================================================
    # Battles
    # =========================================================================

    async def get_battle(
        self,
        battle_id: int,
        for_update: bool = False,
    ) -> Optional[TournamentBattle]:
        query = select(TournamentBattle).where(TournamentBattle.id == battle_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def max_round(self, tournament_id: int) -> Optional[int]:
        """Highest round with battle rows, or None before seeding."""
        result = await self.db.execute(
            select(func.max(TournamentBattle.round)).where(
                TournamentBattle.tournament_id == tournament_id
            )
        )
        return result.scalar_one_or_none()

    async def battles_in_round(self, tournament_id: int, round_number: int) -> List[TournamentBattle]:
        result = await self.db.execute(
            select(TournamentBattle)
            .where(
                TournamentBattle.tournament_id == tournament_id,
                TournamentBattle.round == round_number,
            )
            .order_by(TournamentBattle.id)
        )
        return list(result.scalars().all())

    async def round_exists(self, tournament_id: int, round_number: int) -> bool:
        result = await self.db.execute(
            select(
                exists().where(
                    TournamentBattle.tournament_id == tournament_id,
                    TournamentBattle.round == round_number,
                )
            )
        )
        return bool(result.scalar())

    async def list_battles(self, tournament_id: int) -> List[TournamentBattle]:
        result = await self.db.execute(
            select(TournamentBattle)
            .where(TournamentBattle.tournament_id == tournament_id)
            .order_by(TournamentBattle.round, TournamentBattle.id)
        )
        return list(result.scalars().all())

    async def create_battles_for_round(
        self,
        tournament_id: int,
        ordered_player_ids: Sequence[int],
        round_number: int,
        scheduled_at: datetime,
        now: datetime,
    ) -> List[TournamentBattle]:
        """Pair ``ordered_player_ids`` and persist the round's battles."""
        pairing = generate_pairings(
            ordered_player_ids,
            round_number,
            scheduled_at=scheduled_at,
            created_at=now,
        )

        battles = [
            TournamentBattle(
                tournament_id=tournament_id,
                round=plan.round,
                player1_id=plan.player1_id,
                player2_id=plan.player2_id,
                winner_id=plan.winner_id,
                status=plan.status,
                scheduled_at=plan.scheduled_at,
                completed_at=plan.completed_at,
            )
            for plan in pairing.battles
        ]
        self.db.add_all(battles)
        await self.db.flush()
        return battles
