"""
Bracket Event Bus.

Publishes round-created / round-closed notifications after the underlying
state change has committed.

Design:
1. Fire-and-Forget: a failed publish is logged, never raised to the caller
2. Fan-Out: in-process subscribers are called independently of each other
3. Durable transport: events are appended to a bounded Redis Stream that
   UI gateways and monitoring consume
"""

import asyncio
import json
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Set,
)
from uuid import uuid4

import redis.asyncio as redis
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from bracket.logging_config import get_logger

from .models import BracketEvent, BracketEventType, RoundClosed, RoundCreated

logger = get_logger(__name__)

# Type alias for event handlers
EventHandler = Callable[[BracketEvent], Awaitable[None]]

STREAM_RETRY_ATTEMPTS = 3


@dataclass
class Subscription:
    """Event subscription metadata."""

    subscription_id: str
    event_types: Set[BracketEventType]
    handler: EventHandler
    tournament_id: Optional[int] = None  # None = all tournaments
    is_active: bool = True


class BracketEventBus:
    """
    Event bus for bracket progression events.

    [Producer] -> [local handlers]
               -> [Redis Stream] -> [external consumers]
    """

    STREAM_KEY = "bracket:events"

    STREAM_MAX_LEN = 10000

    def __init__(
        self,
        redis_client: Optional[redis.Redis],
        stream_key: Optional[str] = None,
        stream_max_len: Optional[int] = None,
        retry_wait_max_seconds: float = 2.0,
    ):
        self.redis = redis_client
        self.stream_key = stream_key or self.STREAM_KEY
        self.stream_max_len = stream_max_len or self.STREAM_MAX_LEN
        self.retry_wait_max_seconds = retry_wait_max_seconds

        self._subscriptions: Dict[str, Subscription] = {}
        self._handlers_by_type: Dict[BracketEventType, List[Subscription]] = (
            defaultdict(list)
        )

    def subscribe(
        self,
        event_types: Set[BracketEventType],
        handler: EventHandler,
        tournament_id: Optional[int] = None,
    ) -> str:
        """
        Subscribe to bracket events.

        Args:
            event_types: Set of event types to listen for
            handler: Async function to call on event
            tournament_id: Filter for specific tournament (None = all)

        Returns:
            Subscription ID for unsubscribe
        """
        subscription_id = str(uuid4())
        subscription = Subscription(
            subscription_id=subscription_id,
            event_types=event_types,
            handler=handler,
            tournament_id=tournament_id,
        )

        self._subscriptions[subscription_id] = subscription

        for event_type in event_types:
            self._handlers_by_type[event_type].append(subscription)

        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove subscription."""
        subscription = self._subscriptions.pop(subscription_id, None)
        if not subscription:
            return False

        subscription.is_active = False

        for event_type in subscription.event_types:
            handlers = self._handlers_by_type[event_type]
            self._handlers_by_type[event_type] = [
                h for h in handlers if h.subscription_id != subscription_id
            ]

        return True

    async def publish(self, event: BracketEvent) -> bool:
        """
        Publish event to local subscribers and the Redis Stream.

        Returns:
            True if the stream write succeeded (or no stream is configured)
        """
        await self._dispatch_local(event)

        delivered = True
        if self.redis is not None:
            try:
                await self._publish_to_stream(event)
            except Exception as e:
                delivered = False
                logger.error(
                    "event_publish_failed",
                    event_type=event.event_type.name,
                    tournament_id=event.tournament_id,
                    error=str(e),
                )

        return delivered

    async def _publish_to_stream(self, event: BracketEvent) -> str:
        """Append one event to the Redis Stream, retrying connection errors."""
        data = {
            "event_id": event.event_id,
            "event_type": event.event_type.name,
            "tournament_id": str(event.tournament_id),
            "timestamp": event.timestamp.isoformat(),
            "data": json.dumps(event.data),
        }

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(STREAM_RETRY_ATTEMPTS),
            wait=wait_exponential(multiplier=0.1, max=self.retry_wait_max_seconds),
            retry=retry_if_exception_type((redis.ConnectionError, redis.TimeoutError)),
            reraise=True,
        ):
            with attempt:
                entry_id = await self.redis.xadd(
                    self.stream_key,
                    data,
                    maxlen=self.stream_max_len,
                    approximate=True,
                )
        return entry_id

    async def _dispatch_local(self, event: BracketEvent) -> None:
        """Dispatch event to in-process handlers; one failure never blocks the rest."""
        handlers = self._handlers_by_type.get(event.event_type, [])

        tasks = []
        for subscription in handlers:
            if not subscription.is_active:
                continue

            if (
                subscription.tournament_id is not None
                and subscription.tournament_id != event.tournament_id
            ):
                continue

            tasks.append(
                asyncio.create_task(
                    self._safe_handler_call(subscription.handler, event)
                )
            )

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _safe_handler_call(
        self,
        handler: EventHandler,
        event: BracketEvent,
    ) -> None:
        """Call handler, logging instead of propagating failures."""
        try:
            start_time = time.monotonic()
            await handler(event)
            elapsed_ms = (time.monotonic() - start_time) * 1000
            logger.debug(
                "event_handler_completed",
                event_type=event.event_type.name,
                elapsed_ms=round(elapsed_ms, 2),
            )
        except Exception as e:
            logger.error(
                "event_handler_failed",
                event_type=event.event_type.name,
                tournament_id=event.tournament_id,
                error=str(e),
            )

    # =========================================================================
    # Convenience methods for bracket events
    # =========================================================================

    async def emit_round_created(self, event: RoundCreated) -> bool:
        """Emit round created event."""
        return await self.publish(event.to_event())

    async def emit_round_closed(self, event: RoundClosed) -> bool:
        """Emit round closed / tournament complete event."""
        return await self.publish(event.to_event())
