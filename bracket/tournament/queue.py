"""Round advancement job queue seam."""

import asyncio
from typing import List, Protocol

from bracket.logging_config import get_logger

from .models import RoundAdvancementPayload

logger = get_logger(__name__)


class RoundAdvancementQueue(Protocol):
    async def enqueue(self, payload: RoundAdvancementPayload) -> None: ...


class CeleryRoundAdvancementQueue:
    """Dispatches advancement payloads to the Celery worker pool.

    ``apply_async`` is a blocking broker round trip, so it runs in a worker
    thread and a slow broker never stalls the event loop.
    """

    async def enqueue(self, payload: RoundAdvancementPayload) -> None:
        # Imported lazily so the API process does not build the worker app at import
        from bracket.tasks.tournament import advance_tournament_round_task

        result = await asyncio.to_thread(
            advance_tournament_round_task.apply_async,
            kwargs=payload.model_dump(),
        )
        logger.info(
            "round_advancement_enqueued",
            tournament_id=payload.tournament_id,
            task_id=result.id,
        )


class InMemoryRoundAdvancementQueue:
    """Collects payloads instead of dispatching them."""

    def __init__(self) -> None:
        self.payloads: List[RoundAdvancementPayload] = []

    async def enqueue(self, payload: RoundAdvancementPayload) -> None:
        self.payloads.append(payload)
