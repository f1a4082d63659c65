"""Celery task tests.

The async runners are patched out; these tests cover retry and failure
handling at the task boundary.
"""

from unittest.mock import AsyncMock, patch

import pytest
import redis.asyncio as redis
from celery.exceptions import Retry

from bracket.tasks import tournament as tasks
from bracket.tournament.models import RetryPolicy
from bracket.utils.errors import TransientInfraError

RESULT = {
    "tournament_id": 5,
    "outcome": "round_created",
    "round": 1,
    "next_round": 2,
    "winners": [2, 3],
    "battles_created": 1,
    "byes": [],
    "tournament_winner": None,
}


class TestRetryPolicy:
    def test_countdown_follows_schedule_then_repeats(self):
        policy = RetryPolicy(max_retries=6, backoff_seconds=(60, 120, 300, 900))

        assert [policy.countdown(n) for n in range(6)] == [60, 120, 300, 900, 900, 900]

    def test_exhausted(self):
        policy = RetryPolicy(max_retries=3)

        assert not policy.exhausted(2)
        assert policy.exhausted(3)

    def test_policy_from_settings(self):
        policy = tasks.retry_policy()

        assert policy.max_retries == 3
        assert policy.backoff_seconds == (60, 120, 300, 900)


class TestAdvanceTournamentRoundTask:
    def test_success(self):
        with patch.object(tasks, "_run_advancement", AsyncMock(return_value=RESULT)) as runner:
            result = tasks.advance_tournament_round_task(tournament_id=5)

        runner.assert_awaited_once_with(5)
        assert result["status"] == "success"
        assert result["outcome"] == "round_created"

    @pytest.mark.parametrize(
        "error",
        [
            TransientInfraError("locked"),
            redis.ConnectionError("reset"),
        ],
    )
    def test_transient_error_retries_with_backoff(self, error):
        task = tasks.advance_tournament_round_task
        with patch.object(tasks, "_run_advancement", AsyncMock(side_effect=error)), \
                patch.object(task, "retry", side_effect=Retry()) as retry:
            with pytest.raises(Retry):
                task(tournament_id=5)

        retry.assert_called_once()
        assert retry.call_args.kwargs["countdown"] == 60
        assert retry.call_args.kwargs["exc"] is error

    def test_exhausted_retries_reported_as_failed(self):
        with patch.object(tasks, "_run_advancement", AsyncMock(side_effect=TransientInfraError("down"))), \
                patch.object(tasks, "capture_advancement_failure") as capture:
            eager = tasks.advance_tournament_round_task.apply(
                kwargs={"tournament_id": 5},
                retries=3,
            )

        result = eager.get()
        assert result["status"] == "failed"
        assert result["retries"] == 3
        capture.assert_called_once()

    def test_exhausted_retries_with_real_sentry_helper(self):
        with patch.object(tasks, "_run_advancement", AsyncMock(side_effect=TransientInfraError("down"))):
            eager = tasks.advance_tournament_round_task.apply(
                kwargs={"tournament_id": 5},
                retries=3,
            )

        assert eager.get()["status"] == "failed"

    def test_unexpected_error_returns_error_result(self):
        with patch.object(tasks, "_run_advancement", AsyncMock(side_effect=KeyError("winner"))):
            result = tasks.advance_tournament_round_task(tournament_id=5)

        assert result["status"] == "error"
        assert result["tournament_id"] == 5

    def test_invalid_payload(self):
        with patch.object(tasks, "_run_advancement", AsyncMock()) as runner:
            result = tasks.advance_tournament_round_task(tournament_id=0)

        assert result["status"] == "error"
        runner.assert_not_awaited()


class TestFinalizeDueQualificationsTask:
    def test_success(self):
        summaries = [{"tournament_id": 1, "outcome": "bracket_seeded"}]
        with patch.object(tasks, "_run_qualification_sweep", AsyncMock(return_value=summaries)):
            result = tasks.finalize_due_qualifications_task()

        assert result["status"] == "success"
        assert result["processed"] == 1

    def test_failure_is_contained(self):
        with patch.object(
            tasks,
            "_run_qualification_sweep",
            AsyncMock(side_effect=redis.ConnectionError("down")),
        ):
            result = tasks.finalize_due_qualifications_task()

        assert result["status"] == "error"
