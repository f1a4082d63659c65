"""Sentry error tracking integration.

Initialised by both the API process and the Celery worker. Expected
bracket flow-control errors (precondition no-ops, caller mistakes) are not
reported.
"""

import logging
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from bracket.config import get_settings

EXPECTED_ERRORS = {
    "PreconditionNotMetError",
    "TournamentNotFoundError",
    "BattleNotFoundError",
    "InvalidBattleTransitionError",
    "InvalidWinnerError",
    "InvalidPairingError",
    "ValidationError",
}


def init_sentry(
    dsn: str | None = None,
    environment: str | None = None,
    traces_sample_rate: float | None = None,
) -> bool:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN. Falls back to ``settings.sentry_dsn``.
        environment: Environment name. Falls back to ``settings.app_env``.
        traces_sample_rate: Percentage of transactions to trace (0.0 to 1.0)

    Returns:
        True if Sentry was initialized, False otherwise
    """
    settings = get_settings()
    sentry_dsn = dsn or settings.sentry_dsn

    if not sentry_dsn:
        return False

    logging_integration = LoggingIntegration(
        level=logging.INFO,  # breadcrumbs
        event_level=logging.ERROR,  # events
    )

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=environment or settings.app_env,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            RedisIntegration(),
            CeleryIntegration(),
            logging_integration,
        ],
        traces_sample_rate=(
            settings.sentry_traces_sample_rate
            if traces_sample_rate is None
            else traces_sample_rate
        ),
        send_default_pii=False,
        before_send=_before_send,
        before_send_transaction=_before_send_transaction,
    )

    return True


def _before_send(event: dict, hint: dict) -> dict | None:
    """Drop expected bracket errors."""
    if "exc_info" in hint:
        exc_type, _, _ = hint["exc_info"]
        if exc_type.__name__ in EXPECTED_ERRORS:
            return None

    return event


def _before_send_transaction(event: dict, hint: dict) -> dict | None:
    """Drop health check transactions."""
    transaction_name = event.get("transaction", "")
    if "/health" in transaction_name:
        return None

    return event


def set_tournament_context(
    tournament_id: int | None = None,
    round_number: int | None = None,
    task_id: str | None = None,
) -> None:
    """Tag subsequent Sentry events with bracket context."""
    if tournament_id is not None:
        sentry_sdk.set_tag("tournament_id", str(tournament_id))
    if round_number is not None:
        sentry_sdk.set_tag("round", str(round_number))
    if task_id:
        sentry_sdk.set_tag("task_id", task_id)


def capture_advancement_failure(
    error: Exception,
    tournament_id: int,
    retries: int,
    extra: dict[str, Any] | None = None,
) -> str | None:
    """Report an advancement job that exhausted its retries."""
    with sentry_sdk.push_scope() as scope:
        scope.set_level("error")
        scope.set_tag("tournament_id", str(tournament_id))
        scope.set_tag("advancement_failure", "true")
        scope.set_extra("retries", retries)
        if extra:
            for key, value in extra.items():
                scope.set_extra(key, value)

        return sentry_sdk.capture_exception(error)
