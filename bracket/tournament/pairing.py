"""
Round Pairing Generator.

Pairs an ordered list of advancing players for one round: element 2i meets
element 2i+1. An odd player out receives a bye, recorded as an already
completed battle with no opponent so that round completion can be judged
from battle rows alone.
"""

from datetime import datetime, timedelta
from typing import List, Sequence

from bracket.models.tournament import BYE_OPPONENT, BattleStatus
from bracket.utils.errors import InvalidPairingError

from .models import BattlePlan, RoundPairing


def scheduled_start(now: datetime, delay_minutes: int) -> datetime:
    """When a round created at ``now`` becomes playable."""
    return now + timedelta(minutes=delay_minutes)


def generate_pairings(
    player_ids: Sequence[int],
    round_number: int,
    scheduled_at: datetime,
    created_at: datetime,
) -> RoundPairing:
    """
    Build the battles for ``round_number``.

    Args:
        player_ids: Advancing players in seed / bracket order
        round_number: Positive round number the battles belong to
        scheduled_at: When the round's battles become playable
        created_at: Creation time, recorded as the bye's completion time

    Returns:
        RoundPairing covering every input id exactly once

    Raises:
        InvalidPairingError: On a non-positive round or duplicate ids
    """
    player_ids = list(player_ids)
    if round_number < 1:
        raise InvalidPairingError(
            f"Round must be positive, got {round_number}",
            details={"round": round_number},
        )

    if len(set(player_ids)) != len(player_ids):
        raise InvalidPairingError(
            "Player ids must be distinct within a round",
            details={"round": round_number, "playerIds": list(player_ids)},
        )

    battles: List[BattlePlan] = []

    for i in range(0, len(player_ids) - 1, 2):
        battles.append(
            BattlePlan(
                round=round_number,
                player1_id=player_ids[i],
                player2_id=player_ids[i + 1],
                status=BattleStatus.SCHEDULED,
                scheduled_at=scheduled_at,
            )
        )

    if len(player_ids) % 2 == 1:
        bye_player = player_ids[-1]
        battles.append(
            BattlePlan(
                round=round_number,
                player1_id=bye_player,
                player2_id=BYE_OPPONENT,
                status=BattleStatus.BYE,
                scheduled_at=scheduled_at,
                winner_id=bye_player,
                completed_at=created_at,
            )
        )

    return RoundPairing(round=round_number, battles=tuple(battles))
