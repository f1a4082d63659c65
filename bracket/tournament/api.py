"""
Tournament Bracket API Router.

Read endpoints for the bracket and qualifier leaderboard, result reporting
for battles, and operator endpoints for driving progression by hand.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bracket.config import get_settings
from bracket.logging_config import get_logger
from bracket.models.tournament import BattleStatus, TournamentStatus
from bracket.utils.db import get_db, get_session_factory
from bracket.utils.errors import BracketError, ErrorCode, TournamentNotFoundError
from bracket.utils.redis_client import get_redis

from .advancement import RoundAdvancementService
from .battles import BattleService
from .detector import RoundCompletionDetector
from .distributed_lock import DistributedLockManager
from .event_bus import BracketEventBus
from .models import QualificationOutcome, RoundAdvancementPayload
from .qualification import (
    QualificationFinalizer,
    qualifier_leaderboard,
    qualifier_standing,
    seed_slots,
)
from .queue import CeleryRoundAdvancementQueue, RoundAdvancementQueue
from .repository import TournamentRepository
from .state_machine import BattleStateMachine

logger = get_logger(__name__)

# BracketError code -> HTTP status
ERROR_STATUS: Dict[str, int] = {
    ErrorCode.TOURNAMENT_NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorCode.BATTLE_NOT_FOUND.value: status.HTTP_404_NOT_FOUND,
    ErrorCode.PRECONDITION_NOT_MET.value: status.HTTP_409_CONFLICT,
    ErrorCode.ROUND_ALREADY_EXISTS.value: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_TRANSITION.value: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_WINNER.value: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_PAIRING.value: status.HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_REQUEST.value: status.HTTP_400_BAD_REQUEST,
    ErrorCode.TRANSIENT_INFRA_FAILURE.value: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for_error(exc: BracketError) -> int:
    return ERROR_STATUS.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)


# =============================================================================
# Request/Response Models
# =============================================================================


class BattleResponse(BaseModel):
    """Bracket battle."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    round: int
    player1_id: int
    player2_id: Optional[int] = None
    winner_id: Optional[int] = None
    status: BattleStatus
    player1_score: Optional[Decimal] = None
    player2_score: Optional[Decimal] = None
    forfeit_reason: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class RoundResponse(BaseModel):
    round: int
    complete: bool
    battles: List[BattleResponse]


class BracketResponse(BaseModel):
    """Whole bracket, rounds ascending."""

    tournament_id: int
    status: TournamentStatus
    winner_id: Optional[int] = None
    rounds: List[RoundResponse]


class QualifierEntry(BaseModel):
    rank: int
    player_id: int
    score: Decimal
    duration_seconds: Optional[int] = None
    submission_id: int
    qualified: bool


class QualifierLeaderboardResponse(BaseModel):
    tournament_id: int
    bracket_slots: int
    entries: List[QualifierEntry]


class QualificationResultResponse(BaseModel):
    tournament_id: int
    outcome: str
    seeds: List[int]
    battles_created: int
    tournament_winner: Optional[int] = None


class CreateRoundRequest(BaseModel):
    """Manual round generation request."""

    round: int = Field(..., ge=1)
    player_ids: List[int] = Field(..., min_length=1)


class AdvancementResultResponse(BaseModel):
    tournament_id: int
    outcome: str
    round: Optional[int] = None
    next_round: Optional[int] = None
    winners: List[int]
    battles_created: int
    byes: List[int]
    tournament_winner: Optional[int] = None


class AdvanceResponse(BaseModel):
    tournament_id: int
    queued: bool


class CompleteBattleRequest(BaseModel):
    winner_id: int
    player1_score: Optional[Decimal] = Field(default=None, ge=0)
    player2_score: Optional[Decimal] = Field(default=None, ge=0)


class ForfeitBattleRequest(BaseModel):
    player_id: int = Field(..., description="Player who forfeits")
    reason: Optional[str] = Field(default=None, max_length=255)


# =============================================================================
# Dependencies
# =============================================================================


def get_advancement_queue() -> RoundAdvancementQueue:
    return CeleryRoundAdvancementQueue()


def get_lock_manager(redis_client: Redis = Depends(get_redis)) -> DistributedLockManager:
    settings = get_settings()
    return DistributedLockManager(
        redis_client,
        default_lock_timeout_ms=settings.advancement_lock_timeout_ms,
        default_acquire_timeout_ms=settings.advancement_lock_acquire_timeout_ms,
    )


def get_event_bus(redis_client: Redis = Depends(get_redis)) -> BracketEventBus:
    settings = get_settings()
    return BracketEventBus(
        redis_client,
        stream_key=settings.event_stream_key,
        stream_max_len=settings.event_stream_max_len,
    )


def get_state_machine(
    queue: RoundAdvancementQueue = Depends(get_advancement_queue),
) -> BattleStateMachine:
    state_machine = BattleStateMachine()
    RoundCompletionDetector(queue).attach(state_machine)
    return state_machine


def get_battle_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    state_machine: BattleStateMachine = Depends(get_state_machine),
    event_bus: BracketEventBus = Depends(get_event_bus),
) -> BattleService:
    return BattleService(session_factory, state_machine, event_bus=event_bus)


def get_advancement_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    lock_manager: DistributedLockManager = Depends(get_lock_manager),
    event_bus: BracketEventBus = Depends(get_event_bus),
) -> RoundAdvancementService:
    return RoundAdvancementService(
        session_factory,
        lock_manager=lock_manager,
        event_bus=event_bus,
        default_delay_minutes=get_settings().default_round_delay_minutes,
    )


def get_qualification_finalizer(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    lock_manager: DistributedLockManager = Depends(get_lock_manager),
    event_bus: BracketEventBus = Depends(get_event_bus),
) -> QualificationFinalizer:
    return QualificationFinalizer(
        session_factory,
        lock_manager=lock_manager,
        event_bus=event_bus,
        default_bracket_slots=get_settings().default_bracket_slots,
    )


def _operation_failed(operation: str, tournament_id: int, error: Exception) -> HTTPException:
    logger.error(
        "admin_operation_failed",
        operation=operation,
        tournament_id=tournament_id,
        error=str(error),
        exc_info=True,
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {operation}",
    )


# =============================================================================
# Bracket Endpoints
# =============================================================================

router = APIRouter(prefix="/api/v1", tags=["Tournament Bracket"])


@router.get("/tournaments/{tournament_id}/bracket", response_model=BracketResponse)
async def get_bracket(tournament_id: int, db: AsyncSession = Depends(get_db)):
    """Rounds and battles of a tournament."""
    repo = TournamentRepository(db)
    tournament = await repo.get_tournament(tournament_id)
    if tournament is None:
        raise TournamentNotFoundError(tournament_id)

    rounds: Dict[int, List[Any]] = {}
    for battle in await repo.list_battles(tournament_id):
        rounds.setdefault(battle.round, []).append(battle)

    return BracketResponse(
        tournament_id=tournament.id,
        status=tournament.status,
        winner_id=tournament.winner_id,
        rounds=[
            RoundResponse(
                round=number,
                complete=all(b.is_decided for b in battles),
                battles=[BattleResponse.model_validate(b) for b in battles],
            )
            for number, battles in sorted(rounds.items())
        ],
    )


@router.get(
    "/tournaments/{tournament_id}/qualifiers",
    response_model=QualifierLeaderboardResponse,
)
async def get_qualifiers(tournament_id: int, db: AsyncSession = Depends(get_db)):
    """Qualifier leaderboard; the top ``bracket_slots`` entries are seeded."""
    default_slots = get_settings().default_bracket_slots
    repo = TournamentRepository(db)
    entries = await qualifier_leaderboard(repo, tournament_id, default_slots)
    tournament = await repo.get_tournament(tournament_id)

    return QualifierLeaderboardResponse(
        tournament_id=tournament_id,
        bracket_slots=seed_slots(tournament, default_slots),
        entries=[QualifierEntry(**e.to_dict()) for e in entries],
    )


@router.get(
    "/tournaments/{tournament_id}/qualifiers/{player_id}",
    response_model=QualifierEntry,
)
async def get_qualifier_standing(
    tournament_id: int,
    player_id: int,
    db: AsyncSession = Depends(get_db),
):
    """One player's qualifier standing."""
    row = await qualifier_standing(
        TournamentRepository(db),
        tournament_id,
        player_id,
        get_settings().default_bracket_slots,
    )
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Player has no ranked qualification attempt",
        )
    return QualifierEntry(**row.to_dict())


# =============================================================================
# Battle Result Endpoints
# =============================================================================


@router.post("/battles/{battle_id}/start", response_model=BattleResponse)
async def start_battle(
    battle_id: int,
    service: BattleService = Depends(get_battle_service),
):
    battle = await service.start(battle_id)
    return BattleResponse.model_validate(battle)


@router.post("/battles/{battle_id}/complete", response_model=BattleResponse)
async def complete_battle(
    battle_id: int,
    request: CompleteBattleRequest,
    service: BattleService = Depends(get_battle_service),
):
    """Report a result. Completing the last open battle of a round queues advancement."""
    battle = await service.complete(
        battle_id,
        request.winner_id,
        player1_score=request.player1_score,
        player2_score=request.player2_score,
    )
    return BattleResponse.model_validate(battle)


@router.post("/battles/{battle_id}/forfeit", response_model=BattleResponse)
async def forfeit_battle(
    battle_id: int,
    request: ForfeitBattleRequest,
    service: BattleService = Depends(get_battle_service),
):
    battle = await service.forfeit(battle_id, request.player_id, reason=request.reason)
    return BattleResponse.model_validate(battle)


# =============================================================================
# Admin Endpoints
# =============================================================================

admin_router = APIRouter(prefix="/api/v1/admin/tournaments", tags=["Tournament Admin"])


@admin_router.post(
    "/{tournament_id}/finalize-qualification",
    response_model=QualificationResultResponse,
)
async def finalize_qualification(
    tournament_id: int,
    finalizer: QualificationFinalizer = Depends(get_qualification_finalizer),
):
    """Close qualification now instead of waiting for the sweep."""
    result = await finalizer.finalize(tournament_id)

    if result.outcome == QualificationOutcome.TOURNAMENT_NOT_FOUND:
        raise TournamentNotFoundError(tournament_id)
    if result.outcome == QualificationOutcome.FAILED:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to finalize qualification",
        )

    return QualificationResultResponse(**result.to_dict())


@admin_router.post("/{tournament_id}/advance", response_model=AdvanceResponse)
async def advance_tournament(
    tournament_id: int,
    db: AsyncSession = Depends(get_db),
    queue: RoundAdvancementQueue = Depends(get_advancement_queue),
):
    """Re-dispatch the advancement job, e.g. after it exhausted its retries."""
    if await TournamentRepository(db).get_tournament(tournament_id) is None:
        raise TournamentNotFoundError(tournament_id)

    try:
        await queue.enqueue(RoundAdvancementPayload(tournament_id=tournament_id))
    except Exception as e:
        raise _operation_failed("queue advancement", tournament_id, e)

    logger.info("round_advancement_redispatched", tournament_id=tournament_id)
    return AdvanceResponse(tournament_id=tournament_id, queued=True)


@admin_router.post("/{tournament_id}/rounds", response_model=AdvancementResultResponse)
async def create_round(
    tournament_id: int,
    request: CreateRoundRequest,
    service: RoundAdvancementService = Depends(get_advancement_service),
):
    """Generate a round from an explicit participant list."""
    try:
        result = await service.create_round(tournament_id, request.player_ids, request.round)
    except BracketError:
        raise
    except Exception as e:
        raise _operation_failed("create round", tournament_id, e)

    return AdvancementResultResponse(**result.to_dict())
