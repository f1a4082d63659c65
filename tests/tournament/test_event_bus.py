"""Bracket event bus tests."""

import json
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from bracket.tournament.event_bus import BracketEventBus
from bracket.tournament.models import BracketEventType, RoundClosed, RoundCreated


def round_created():
    return RoundCreated(
        tournament_id=3,
        round=2,
        battles=({"id": 11, "player1_id": 2, "player2_id": 3},),
    )


class TestPublish:
    @pytest.mark.asyncio
    async def test_stream_entry_shape(self, mock_redis):
        bus = BracketEventBus(mock_redis, stream_key="test:events")

        assert await bus.emit_round_created(round_created()) is True

        [entry] = mock_redis.streams["test:events"]
        assert entry["event_type"] == "ROUND_CREATED"
        assert entry["tournament_id"] == "3"
        assert json.loads(entry["data"])["round"] == 2

    @pytest.mark.asyncio
    async def test_round_closed_payload(self, mock_redis):
        bus = BracketEventBus(mock_redis)

        await bus.emit_round_closed(
            RoundClosed(
                tournament_id=3,
                round=2,
                winners=(2,),
                tournament_complete=True,
                tournament_winner=2,
            )
        )

        data = json.loads(mock_redis.streams[BracketEventBus.STREAM_KEY][0]["data"])
        assert data == {
            "round": 2,
            "winners": [2],
            "next_round": None,
            "tournament_complete": True,
            "tournament_winner": 2,
        }

    @pytest.mark.asyncio
    async def test_local_subscribers_filtered_by_tournament(self, mock_redis):
        bus = BracketEventBus(mock_redis)
        mine, others = AsyncMock(), AsyncMock()
        bus.subscribe({BracketEventType.ROUND_CREATED}, mine, tournament_id=3)
        bus.subscribe({BracketEventType.ROUND_CREATED}, others, tournament_id=4)

        await bus.emit_round_created(round_created())

        mine.assert_awaited_once()
        others.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, mock_redis):
        bus = BracketEventBus(mock_redis)
        handler = AsyncMock()
        sub_id = bus.subscribe({BracketEventType.ROUND_CREATED}, handler)

        assert bus.unsubscribe(sub_id) is True
        await bus.emit_round_created(round_created())

        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_failure_is_logged_not_raised(self, mock_redis):
        bus = BracketEventBus(mock_redis)
        healthy = AsyncMock()
        bus.subscribe({BracketEventType.ROUND_CREATED}, AsyncMock(side_effect=RuntimeError("boom")))
        bus.subscribe({BracketEventType.ROUND_CREATED}, healthy)

        assert await bus.emit_round_created(round_created()) is True
        healthy.assert_awaited_once()
        assert len(mock_redis.streams[BracketEventBus.STREAM_KEY]) == 1

    @pytest.mark.asyncio
    async def test_without_redis_only_local_dispatch(self):
        bus = BracketEventBus(None)
        handler = AsyncMock()
        bus.subscribe({BracketEventType.ROUND_CREATED}, handler)

        assert await bus.emit_round_created(round_created()) is True
        handler.assert_awaited_once()


class TestStreamFailures:
    @pytest.mark.asyncio
    async def test_transient_error_retried(self, mock_redis):
        mock_redis.xadd = AsyncMock(side_effect=[redis.ConnectionError("reset"), "1-0"])
        bus = BracketEventBus(mock_redis, retry_wait_max_seconds=0)

        assert await bus.emit_round_created(round_created()) is True
        assert mock_redis.xadd.await_count == 2

    @pytest.mark.asyncio
    async def test_persistent_failure_swallowed(self, mock_redis):
        mock_redis.xadd = AsyncMock(side_effect=redis.TimeoutError("slow"))
        bus = BracketEventBus(mock_redis, retry_wait_max_seconds=0)

        assert await bus.emit_round_created(round_created()) is False
        assert mock_redis.xadd.await_count == 3

    @pytest.mark.asyncio
    async def test_non_transient_error_not_retried(self, mock_redis):
        mock_redis.xadd = AsyncMock(side_effect=redis.ResponseError("WRONGTYPE"))
        bus = BracketEventBus(mock_redis, retry_wait_max_seconds=0)

        assert await bus.emit_round_created(round_created()) is False
        assert mock_redis.xadd.await_count == 1
