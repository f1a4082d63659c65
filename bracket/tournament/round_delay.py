"""Round delay policy.

Resolution order:
1. ``round_delay_days`` on the tournament (non-zero), converted to minutes
2. ``round_delay_minutes`` inside the tournament rules
3. The configured default (5 minutes)

Rules arrive either as a mapping or as a serialized JSON string; both are
normalised through ``TournamentRules``.
"""

import json
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from bracket.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_ROUND_DELAY_MINUTES = 5
MINUTES_PER_DAY = 24 * 60


class TournamentRules(BaseModel):
    """Typed view of the free-form rules column."""

    model_config = ConfigDict(extra="allow")

    round_delay_minutes: Optional[int] = None

    @classmethod
    def parse(cls, raw: Any) -> "TournamentRules":
        """Accept a mapping, a JSON string, or nothing."""
        if raw is None or raw == "":
            return cls()

        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError:
                logger.warning("tournament_rules_unparseable")
                return cls()

        if not isinstance(raw, dict):
            return cls()

        try:
            return cls.model_validate(raw)
        except ValidationError:
            logger.warning("tournament_rules_invalid", keys=sorted(raw.keys()))
            return cls()


def resolve_round_delay_minutes(
    round_delay_days: Optional[int],
    rules: Any,
    default_minutes: int = DEFAULT_ROUND_DELAY_MINUTES,
) -> int:
    """Minutes before next-round battles become playable."""
    if round_delay_days:
        return int(round_delay_days) * MINUTES_PER_DAY

    parsed = TournamentRules.parse(rules)
    if parsed.round_delay_minutes is not None:
        return parsed.round_delay_minutes

    return default_minutes


def round_delay_for(tournament: Any, default_minutes: int = DEFAULT_ROUND_DELAY_MINUTES) -> int:
    """Round delay for a tournament row."""
    return resolve_round_delay_minutes(
        tournament.round_delay_days,
        tournament.rules,
        default_minutes,
    )
