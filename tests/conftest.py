"""Shared test fixtures.

Service tests run against in-memory SQLite (aiosqlite); Redis is replaced
by ``MockRedis``.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("APP_ENV", "test")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from bracket.models import (
    Base,
    BattleStatus,
    ParticipantStatus,
    Tournament,
    TournamentBattle,
    TournamentParticipant,
    TournamentQualificationAttempt,
    TournamentStatus,
)
from bracket.utils.db import make_session_factory

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class MockRedis:
    """In-memory stand-in for the redis.asyncio client."""

    def __init__(self):
        self._data = {}
        self.streams = {}
        self.closed = False

    async def set(self, key, value, nx=False, px=None):
        if nx and key in self._data:
            return None
        self._data[key] = value
        return True

    async def get(self, key):
        return self._data.get(key)

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def exists(self, key):
        return 1 if key in self._data else 0

    def register_script(self, script):
        # Only the owner-checked release script is registered
        async def release(keys=None, args=None):
            if self._data.get(keys[0]) == args[0]:
                del self._data[keys[0]]
                return 1
            return 0

        return release

    async def xadd(self, stream, data, maxlen=None, approximate=False):
        entries = self.streams.setdefault(stream, [])
        entries.append(data)
        return f"{len(entries)}-0"

    async def aclose(self):
        self.closed = True


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


class BracketFactory:
    """Inserts committed rows for test setup."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _save(self, *rows):
        async with self.session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows

    async def tournament(
        self,
        status: TournamentStatus = TournamentStatus.ACTIVE,
        end_date: Optional[datetime] = None,
        bracket_slots: Optional[int] = 8,
        round_delay_days: Optional[int] = None,
        rules=None,
        name: str = "Spring Cup",
    ) -> Tournament:
        tournament = Tournament(
            name=name,
            status=status,
            start_date=FIXED_NOW - timedelta(days=7),
            end_date=end_date,
            bracket_slots=bracket_slots,
            round_delay_days=round_delay_days,
            rules=rules,
        )
        await self._save(tournament)
        return tournament

    async def participants(
        self,
        tournament_id: int,
        player_ids: Iterable[int],
        status: ParticipantStatus = ParticipantStatus.APPROVED,
    ) -> None:
        await self._save(
            *[
                TournamentParticipant(tournament_id=tournament_id, player_id=p, status=status)
                for p in player_ids
            ]
        )

    async def attempt(
        self,
        tournament_id: int,
        player_id: int,
        score,
        duration_seconds: Optional[int] = None,
    ) -> TournamentQualificationAttempt:
        attempt = TournamentQualificationAttempt(
            tournament_id=tournament_id,
            player_id=player_id,
            score=Decimal(str(score)),
            duration_seconds=duration_seconds,
        )
        await self._save(attempt)
        return attempt

    async def battle(
        self,
        tournament_id: int,
        round_number: int,
        player1_id: int,
        player2_id: Optional[int],
        status: BattleStatus = BattleStatus.SCHEDULED,
        winner_id: Optional[int] = None,
    ) -> TournamentBattle:
        if player2_id is None:
            status, winner_id = BattleStatus.BYE, player1_id
        battle = TournamentBattle(
            tournament_id=tournament_id,
            round=round_number,
            player1_id=player1_id,
            player2_id=player2_id,
            status=status,
            winner_id=winner_id,
            scheduled_at=FIXED_NOW,
            completed_at=FIXED_NOW if status in (BattleStatus.COMPLETED, BattleStatus.BYE) else None,
        )
        await self._save(battle)
        return battle


@pytest.fixture
def factory(session_factory):
    return BracketFactory(session_factory)
