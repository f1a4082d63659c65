"""Battle result reporting tests, through to round advancement."""

from decimal import Decimal

import pytest

from bracket.models import BattleStatus, Tournament, TournamentStatus
from bracket.tournament.advancement import RoundAdvancementService
from bracket.tournament.battles import BattleService
from bracket.tournament.detector import RoundCompletionDetector
from bracket.tournament.event_bus import BracketEventBus
from bracket.tournament.models import AdvancementOutcome
from bracket.tournament.queue import InMemoryRoundAdvancementQueue
from bracket.tournament.repository import TournamentRepository
from bracket.tournament.state_machine import BattleStateMachine
from bracket.utils.errors import BattleNotFoundError, InvalidWinnerError

A, B, C, D = 1, 2, 3, 4


@pytest.fixture
def queue():
    return InMemoryRoundAdvancementQueue()


@pytest.fixture
def state_machine(queue):
    machine = BattleStateMachine()
    RoundCompletionDetector(queue).attach(machine)
    return machine


@pytest.fixture
def service(session_factory, state_machine, mock_redis, clock):
    return BattleService(
        session_factory,
        state_machine,
        event_bus=BracketEventBus(mock_redis),
        clock=clock,
    )


class TestBattleService:
    @pytest.mark.asyncio
    async def test_complete_persists_and_enqueues(self, service, factory, session_factory, queue):
        t = await factory.tournament()
        battle = await factory.battle(t.id, 1, A, B)

        updated = await service.complete(battle.id, B, Decimal("1.5"), Decimal("3"))

        assert updated.status == BattleStatus.COMPLETED
        assert [p.tournament_id for p in queue.payloads] == [t.id]

        async with session_factory() as session:
            stored = await TournamentRepository(session).get_battle(battle.id)
        assert stored.winner_id == B
        assert stored.player2_score == Decimal("3")

    @pytest.mark.asyncio
    async def test_start_does_not_enqueue(self, service, factory, queue):
        t = await factory.tournament()
        battle = await factory.battle(t.id, 1, A, B)

        updated = await service.start(battle.id)

        assert updated.status == BattleStatus.IN_PROGRESS
        assert queue.payloads == []

    @pytest.mark.asyncio
    async def test_forfeit(self, service, factory, queue, mock_redis):
        t = await factory.tournament()
        battle = await factory.battle(t.id, 1, A, B)

        updated = await service.forfeit(battle.id, B, reason="disconnected")

        assert updated.winner_id == A
        assert updated.forfeit_reason == "disconnected"
        assert len(queue.payloads) == 1
        [entry] = mock_redis.streams[BracketEventBus.STREAM_KEY]
        assert entry["event_type"] == "BATTLE_FORFEITED"

    @pytest.mark.asyncio
    async def test_rejected_result_is_not_persisted(self, service, factory, session_factory, queue):
        t = await factory.tournament()
        battle = await factory.battle(t.id, 1, A, B)

        with pytest.raises(InvalidWinnerError):
            await service.complete(battle.id, C)

        async with session_factory() as session:
            stored = await TournamentRepository(session).get_battle(battle.id)
        assert stored.status == BattleStatus.SCHEDULED
        assert queue.payloads == []

    @pytest.mark.asyncio
    async def test_unknown_battle(self, service):
        with pytest.raises(BattleNotFoundError):
            await service.start(404)


class TestBracketProgression:
    @pytest.mark.asyncio
    async def test_four_players_to_champion(self, service, factory, session_factory, queue, clock):
        t = await factory.tournament()
        semi1 = await factory.battle(t.id, 1, A, B)
        semi2 = await factory.battle(t.id, 1, C, D)
        advancement = RoundAdvancementService(session_factory, clock=clock)

        await service.complete(semi1.id, A)
        assert (await advancement.advance(t.id)).outcome == AdvancementOutcome.ROUND_INCOMPLETE

        await service.complete(semi2.id, D)
        created = await advancement.advance(t.id)
        assert created.outcome == AdvancementOutcome.ROUND_CREATED

        async with session_factory() as session:
            [final] = await TournamentRepository(session).battles_in_round(t.id, 2)
        assert (final.player1_id, final.player2_id) == (A, D)

        await service.complete(final.id, D)
        finished = await advancement.advance(t.id)

        assert finished.outcome == AdvancementOutcome.FINALIZED
        assert len(queue.payloads) == 3
        async with session_factory() as session:
            tournament = await session.get(Tournament, t.id)
        assert tournament.status == TournamentStatus.COMPLETED
        assert tournament.winner_id == D
