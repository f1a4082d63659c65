"""
Qualifier Ranking Selector.

Turns qualification attempts into the ordered bracket seed.

Ordering rules:
1. Only approved participants are ranked
2. Only each player's latest attempt (highest submission id) counts
3. Score descending, then duration ascending (missing duration is slowest),
   then submission id ascending (earlier submission wins the tie)
"""

import math
from typing import Iterable, List, Optional, Set, Tuple

from .models import QualificationEntry, RankedQualifier

DEFAULT_BRACKET_SLOTS = 8


def latest_attempts(entries: Iterable[QualificationEntry]) -> List[QualificationEntry]:
    """Keep the highest-submission-id entry per player."""
    latest: dict[int, QualificationEntry] = {}
    for entry in entries:
        current = latest.get(entry.player_id)
        if current is None or entry.submission_id > current.submission_id:
            latest[entry.player_id] = entry
    return list(latest.values())


def ranking_key(entry: QualificationEntry) -> Tuple:
    """Sort key implementing score desc, duration asc (None last), submission asc."""
    duration = math.inf if entry.duration_seconds is None else entry.duration_seconds
    return (-entry.score, duration, entry.submission_id)


class RankingSelector:
    """
    Deterministic qualifier ranking.

    Pure with respect to its inputs: the same attempts and approvals always
    yield the same seed list.
    """

    def __init__(self, bracket_slots: int = DEFAULT_BRACKET_SLOTS):
        if bracket_slots < 1:
            raise ValueError("bracket_slots must be positive")
        self.bracket_slots = bracket_slots

    def rank(
        self,
        entries: Iterable[QualificationEntry],
        approved_player_ids: Set[int],
    ) -> List[QualificationEntry]:
        """Every eligible player's counted attempt, best first."""
        eligible = [e for e in entries if e.player_id in approved_player_ids]
        return sorted(latest_attempts(eligible), key=ranking_key)

    def select(
        self,
        entries: Iterable[QualificationEntry],
        approved_player_ids: Set[int],
    ) -> List[int]:
        """Seeded player ids, capped at ``bracket_slots``."""
        ranked = self.rank(entries, approved_player_ids)
        return [e.player_id for e in ranked[: self.bracket_slots]]

    def leaderboard(
        self,
        entries: Iterable[QualificationEntry],
        approved_player_ids: Set[int],
    ) -> List[RankedQualifier]:
        """Full qualifier leaderboard with 1-based ranks and qualified flags."""
        return [
            RankedQualifier(
                rank=position,
                player_id=entry.player_id,
                score=entry.score,
                duration_seconds=entry.duration_seconds,
                submission_id=entry.submission_id,
                qualified=position <= self.bracket_slots,
            )
            for position, entry in enumerate(
                self.rank(entries, approved_player_ids), start=1
            )
        ]

    def standing(
        self,
        entries: Iterable[QualificationEntry],
        approved_player_ids: Set[int],
        player_id: int,
    ) -> Optional[RankedQualifier]:
        """Leaderboard row for one player, or None if they are not ranked."""
        for row in self.leaderboard(entries, approved_player_ids):
            if row.player_id == player_id:
                return row
        return None
