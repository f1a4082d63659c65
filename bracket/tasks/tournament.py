"""Bracket progression tasks.

- advance_tournament_round_task: enqueued whenever a battle completes
- finalize_due_qualifications_task: beat sweep over closed qualification windows

Each run gets its own event loop, a NullPool engine and a fresh Redis
client, all disposed before the task returns.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
from pydantic import ValidationError
from sqlalchemy.exc import InterfaceError, OperationalError

from bracket.config import get_settings
from bracket.logging_config import bind_context, clear_context, get_logger
from bracket.middleware.sentry import capture_advancement_failure, set_tournament_context
from bracket.tasks.celery_app import celery_app
from bracket.tournament.advancement import RoundAdvancementService
from bracket.tournament.distributed_lock import DistributedLockManager, LockAcquisitionError
from bracket.tournament.event_bus import BracketEventBus
from bracket.tournament.models import RetryPolicy, RoundAdvancementPayload
from bracket.tournament.qualification import QualificationFinalizer
from bracket.utils.db import create_worker_engine, make_session_factory
from bracket.utils.errors import TransientInfraError
from bracket.utils.redis_client import create_redis

logger = get_logger(__name__)

settings = get_settings()

# Failures worth another attempt after backoff
TRANSIENT_EXCEPTIONS = (
    TransientInfraError,
    LockAcquisitionError,
    OperationalError,
    InterfaceError,
    redis.ConnectionError,
    redis.TimeoutError,
)


def retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=settings.advancement_max_retries,
        backoff_seconds=tuple(settings.advancement_backoff_seconds),
    )


def _build_lock_manager(redis_client: redis.Redis) -> DistributedLockManager:
    return DistributedLockManager(
        redis_client,
        default_lock_timeout_ms=settings.advancement_lock_timeout_ms,
        default_acquire_timeout_ms=settings.advancement_lock_acquire_timeout_ms,
    )


def _build_event_bus(redis_client: redis.Redis) -> BracketEventBus:
    return BracketEventBus(
        redis_client,
        stream_key=settings.event_stream_key,
        stream_max_len=settings.event_stream_max_len,
    )


@celery_app.task(
    bind=True,
    name="bracket.tasks.tournament.advance_tournament_round_task",
    max_retries=settings.advancement_max_retries,
)
def advance_tournament_round_task(self, tournament_id: int) -> dict[str, Any]:
    """Advance a tournament past its latest round if that round is decided.

    Idempotent: re-running for an already advanced round is a no-op.

    Args:
        tournament_id: Tournament whose bracket to check

    Returns:
        Summary dict with the advancement outcome
    """
    try:
        payload = RoundAdvancementPayload(tournament_id=tournament_id)
    except ValidationError as e:
        logger.error("round_advancement_invalid_payload", tournament_id=tournament_id)
        return _error_result(tournament_id, str(e))

    policy = retry_policy()
    retries = self.request.retries or 0
    bind_context(tournament_id=payload.tournament_id)
    set_tournament_context(tournament_id=payload.tournament_id, task_id=self.request.id)

    try:
        logger.info("round_advancement_started", attempt=retries + 1)
        result = asyncio.run(_run_advancement(payload.tournament_id))

    except TRANSIENT_EXCEPTIONS as e:
        if policy.exhausted(retries):
            logger.error(
                "round_advancement_failed_permanently",
                retries=retries,
                error=str(e),
            )
            capture_advancement_failure(e, payload.tournament_id, retries)
            return {
                "status": "failed",
                "tournament_id": payload.tournament_id,
                "retries": retries,
                "error": str(e),
                "processed_at": datetime.now(timezone.utc).isoformat(),
            }

        countdown = policy.countdown(retries)
        logger.warning(
            "round_advancement_retry_scheduled",
            retries=retries,
            countdown=countdown,
            error=str(e),
        )
        raise self.retry(exc=e, countdown=countdown, max_retries=policy.max_retries)

    except Exception as e:
        logger.error("round_advancement_error", error=str(e), exc_info=True)
        return _error_result(payload.tournament_id, str(e))

    finally:
        clear_context()

    logger.info(
        "round_advancement_finished",
        tournament_id=payload.tournament_id,
        outcome=result["outcome"],
    )
    return {"status": "success", **result}


async def _run_advancement(tournament_id: int) -> dict[str, Any]:
    engine = create_worker_engine()
    redis_client = create_redis()

    try:
        service = RoundAdvancementService(
            make_session_factory(engine),
            lock_manager=_build_lock_manager(redis_client),
            event_bus=_build_event_bus(redis_client),
            default_delay_minutes=settings.default_round_delay_minutes,
        )
        result = await service.advance(tournament_id)
        return result.to_dict()
    finally:
        await redis_client.aclose()
        await engine.dispose()


@celery_app.task(
    name="bracket.tasks.tournament.finalize_due_qualifications_task",
)
def finalize_due_qualifications_task() -> dict[str, Any]:
    """Finalize every upcoming tournament whose qualification window closed.

    Returns:
        Summary dict with one entry per processed tournament
    """
    try:
        results = asyncio.run(_run_qualification_sweep())
    except Exception as e:
        logger.error("qualification_sweep_failed", error=str(e), exc_info=True)
        return {
            "status": "error",
            "error": str(e),
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }

    if results:
        logger.info("qualification_sweep_finished", processed=len(results))

    return {
        "status": "success",
        "processed": len(results),
        "results": results,
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }


async def _run_qualification_sweep() -> list[dict[str, Any]]:
    engine = create_worker_engine()
    redis_client = create_redis()

    try:
        finalizer = QualificationFinalizer(
            make_session_factory(engine),
            lock_manager=_build_lock_manager(redis_client),
            event_bus=_build_event_bus(redis_client),
            default_bracket_slots=settings.default_bracket_slots,
        )
        return [r.to_dict() for r in await finalizer.finalize_due()]
    finally:
        await redis_client.aclose()
        await engine.dispose()


def _error_result(tournament_id: Any, error: str) -> dict[str, Any]:
    return {
        "status": "error",
        "tournament_id": tournament_id,
        "error": error,
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }
