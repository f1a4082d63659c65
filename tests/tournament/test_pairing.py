"""Round pairing tests."""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, strategies as st

from bracket.models.tournament import BattleStatus
from bracket.tournament.pairing import generate_pairings, scheduled_start
from bracket.utils.errors import InvalidPairingError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
LATER = NOW + timedelta(minutes=5)

A, B, C, D = 1, 2, 3, 4


class TestGeneratePairings:
    def test_odd_count_gets_trailing_bye(self):
        pairing = generate_pairings([B, A, C], 1, scheduled_at=LATER, created_at=NOW)

        first, bye = pairing.battles
        assert (first.player1_id, first.player2_id) == (B, A)
        assert first.status == BattleStatus.SCHEDULED
        assert first.scheduled_at == LATER
        assert first.winner_id is None

        assert bye.player1_id == C
        assert bye.player2_id is None
        assert bye.status == BattleStatus.BYE
        assert bye.winner_id == C
        assert bye.completed_at == NOW

    def test_even_count_has_no_bye(self):
        pairing = generate_pairings([A, B, C, D], 2, scheduled_at=LATER, created_at=NOW)

        assert [(b.player1_id, b.player2_id) for b in pairing.battles] == [(A, B), (C, D)]
        assert pairing.byes == ()
        assert all(b.round == 2 for b in pairing.battles)

    def test_single_player_is_a_bye(self):
        pairing = generate_pairings([A], 3, scheduled_at=LATER, created_at=NOW)

        assert len(pairing.battles) == 1
        assert pairing.battles[0].is_bye

    def test_empty_input(self):
        assert generate_pairings([], 1, scheduled_at=LATER, created_at=NOW).battles == ()

    def test_duplicate_ids_rejected(self):
        with pytest.raises(InvalidPairingError):
            generate_pairings([A, B, A], 1, scheduled_at=LATER, created_at=NOW)

    def test_non_positive_round_rejected(self):
        with pytest.raises(InvalidPairingError):
            generate_pairings([A, B], 0, scheduled_at=LATER, created_at=NOW)

    def test_scheduled_start(self):
        assert scheduled_start(NOW, 1440) == NOW + timedelta(days=1)


class TestPairingProperties:
    @given(players=st.lists(st.integers(min_value=1, max_value=10_000), unique=True, max_size=64))
    def test_every_player_exactly_once(self, players):
        pairing = generate_pairings(players, 1, scheduled_at=LATER, created_at=NOW)

        assert sorted(pairing.player_ids) == sorted(players)

    @given(players=st.lists(st.integers(min_value=1, max_value=10_000), unique=True, max_size=64))
    def test_bye_iff_odd(self, players):
        pairing = generate_pairings(players, 1, scheduled_at=LATER, created_at=NOW)

        assert len(pairing.byes) == len(players) % 2
        if pairing.byes:
            assert pairing.byes[0].player1_id == players[-1]
