"""
Round Completion Detector.

Subscribed to the battle state machine. Every battle that newly reaches
``completed`` with a winner enqueues one advancement job for its
tournament; the job itself decides whether the round is actually done.
"""

from bracket.logging_config import get_logger

from .models import RoundAdvancementPayload
from .queue import RoundAdvancementQueue
from .state_machine import BattleStateMachine, BattleTransition

logger = get_logger(__name__)


class RoundCompletionDetector:
    def __init__(self, queue: RoundAdvancementQueue):
        self.queue = queue

    def attach(self, state_machine: BattleStateMachine) -> None:
        state_machine.subscribe(self.on_transition)

    async def on_transition(self, transition: BattleTransition) -> None:
        if not transition.newly_completed:
            return

        await self.queue.enqueue(RoundAdvancementPayload(tournament_id=transition.tournament_id))
        logger.debug(
            "round_completion_check_requested",
            tournament_id=transition.tournament_id,
            battle_id=transition.battle_id,
            round=transition.round,
        )
