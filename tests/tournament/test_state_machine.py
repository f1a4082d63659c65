"""Battle state machine and round completion detector tests."""

import threading
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from bracket.models.tournament import BattleStatus, TournamentBattle
from bracket.tasks.tournament import advance_tournament_round_task
from bracket.tournament.detector import RoundCompletionDetector
from bracket.tournament.models import RoundAdvancementPayload
from bracket.tournament.queue import CeleryRoundAdvancementQueue, InMemoryRoundAdvancementQueue
from bracket.tournament.state_machine import BattleStateMachine
from bracket.utils.errors import InvalidBattleTransitionError, InvalidWinnerError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

A, B, C = 1, 2, 3


def make_battle(status=BattleStatus.SCHEDULED, player2_id=B, winner_id=None):
    return TournamentBattle(
        id=10,
        tournament_id=7,
        round=1,
        player1_id=A,
        player2_id=player2_id,
        status=status,
        winner_id=winner_id,
    )


@pytest.fixture
def machine():
    return BattleStateMachine()


class TestTransitions:
    def test_start_then_complete(self, machine):
        battle = make_battle()

        started = machine.start(battle, NOW)
        assert started.previous_status == BattleStatus.SCHEDULED
        assert battle.status == BattleStatus.IN_PROGRESS
        assert not started.newly_completed

        completed = machine.complete(battle, B, NOW, Decimal("3"), Decimal("5"))
        assert battle.status == BattleStatus.COMPLETED
        assert battle.winner_id == B
        assert battle.completed_at == NOW
        assert battle.player2_score == Decimal("5")
        assert completed.newly_completed

    def test_complete_directly_from_scheduled(self, machine):
        battle = make_battle()

        transition = machine.complete(battle, A, NOW)

        assert transition.previous_status == BattleStatus.SCHEDULED
        assert transition.newly_completed

    def test_winner_must_be_a_player(self, machine):
        battle = make_battle()

        with pytest.raises(InvalidWinnerError):
            machine.complete(battle, C, NOW)
        assert battle.status == BattleStatus.SCHEDULED

    def test_completed_is_terminal(self, machine):
        battle = make_battle(status=BattleStatus.COMPLETED, winner_id=A)

        with pytest.raises(InvalidBattleTransitionError):
            machine.complete(battle, B, NOW)

    def test_bye_is_terminal(self, machine):
        battle = make_battle(status=BattleStatus.BYE, player2_id=None, winner_id=A)

        with pytest.raises(InvalidBattleTransitionError):
            machine.start(battle, NOW)

    def test_cannot_restart(self, machine):
        battle = make_battle(status=BattleStatus.IN_PROGRESS)

        with pytest.raises(InvalidBattleTransitionError):
            machine.start(battle, NOW)

    def test_forfeit_awards_opponent(self, machine):
        battle = make_battle()

        transition = machine.forfeit(battle, A, NOW, reason="no show")

        assert transition.winner_id == B
        assert battle.forfeit_reason == "no show"
        assert battle.status == BattleStatus.COMPLETED

    def test_forfeit_by_outsider_rejected(self, machine):
        with pytest.raises(InvalidWinnerError):
            machine.forfeit(make_battle(), C, NOW)


class TestListeners:
    @pytest.mark.asyncio
    async def test_listener_receives_notified_transition(self, machine):
        listener = AsyncMock()
        machine.subscribe(listener)

        transition = machine.complete(make_battle(), A, NOW)
        listener.assert_not_awaited()

        await machine.notify(transition)
        listener.assert_awaited_once_with(transition)

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, machine):
        healthy = AsyncMock()
        machine.subscribe(AsyncMock(side_effect=RuntimeError("listener down")))
        machine.subscribe(healthy)

        await machine.notify(machine.complete(make_battle(), A, NOW))

        healthy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, machine):
        listener = AsyncMock()
        machine.subscribe(listener)
        machine.unsubscribe(listener)

        await machine.notify(machine.complete(make_battle(), A, NOW))

        listener.assert_not_awaited()


class TestRoundCompletionDetector:
    @pytest.mark.asyncio
    async def test_enqueues_once_per_completion(self, machine):
        queue = InMemoryRoundAdvancementQueue()
        RoundCompletionDetector(queue).attach(machine)

        battle = make_battle()
        await machine.notify(machine.start(battle, NOW))
        await machine.notify(machine.complete(battle, A, NOW))

        assert [p.tournament_id for p in queue.payloads] == [7]

    @pytest.mark.asyncio
    async def test_queue_failure_is_contained(self, machine):
        queue = AsyncMock()
        queue.enqueue.side_effect = ConnectionError("broker down")
        RoundCompletionDetector(queue).attach(machine)
        battle = make_battle()

        await machine.notify(machine.complete(battle, A, NOW))

        queue.enqueue.assert_awaited_once()
        assert battle.status == BattleStatus.COMPLETED


class TestCeleryQueue:
    @pytest.mark.asyncio
    async def test_dispatch_runs_off_the_event_loop_thread(self):
        loop_thread = threading.get_ident()
        dispatch_threads = []

        def apply_async(kwargs):
            dispatch_threads.append(threading.get_ident())
            return MagicMock(id="task-1")

        with patch.object(advance_tournament_round_task, "apply_async", side_effect=apply_async) as dispatch:
            await CeleryRoundAdvancementQueue().enqueue(RoundAdvancementPayload(tournament_id=7))

        dispatch.assert_called_once_with(kwargs={"tournament_id": 7})
        assert dispatch_threads and dispatch_threads[0] != loop_thread
