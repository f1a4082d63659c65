"""
Single-elimination bracket progression.

This module provides:
- Qualifier ranking and bracket seeding
- Round pairing with byes for odd player counts
- Battle lifecycle with explicit transition listeners
- Idempotent, lock-protected round advancement
- Event publishing to in-process subscribers and a Redis Stream
"""

from .advancement import RoundAdvancementService
from .battles import BattleService
from .detector import RoundCompletionDetector
from .distributed_lock import DistributedLockManager, LockType
from .event_bus import BracketEventBus
from .models import (
    AdvancementOutcome,
    AdvancementResult,
    BracketEvent,
    BracketEventType,
    QualificationOutcome,
    QualificationResult,
    RetryPolicy,
    RoundAdvancementPayload,
    RoundClosed,
    RoundCreated,
)
from .pairing import generate_pairings
from .qualification import QualificationFinalizer
from .ranking import RankingSelector
from .round_delay import TournamentRules, resolve_round_delay_minutes
from .state_machine import BattleStateMachine, BattleTransition

__all__ = [
    "RoundAdvancementService",
    "BattleService",
    "RoundCompletionDetector",
    "DistributedLockManager",
    "LockType",
    "BracketEventBus",
    "AdvancementOutcome",
    "AdvancementResult",
    "BracketEvent",
    "BracketEventType",
    "QualificationOutcome",
    "QualificationResult",
    "RetryPolicy",
    "RoundAdvancementPayload",
    "RoundClosed",
    "RoundCreated",
    "generate_pairings",
    "QualificationFinalizer",
    "RankingSelector",
    "TournamentRules",
    "resolve_round_delay_minutes",
    "BattleStateMachine",
    "BattleTransition",
]
