"""Celery Beat schedule configuration.

Tasks:
- Every minute: finalize tournaments whose qualification window closed
"""

from datetime import timedelta

from bracket.config import get_settings

settings = get_settings()


# Celery Beat schedule
CELERY_BEAT_SCHEDULE = {
    # Seed brackets (or crown sole qualifiers) once qualification closes
    "finalize-due-qualifications": {
        "task": "bracket.tasks.tournament.finalize_due_qualifications_task",
        "schedule": timedelta(seconds=settings.qualification_sweep_seconds),
        "options": {"queue": "bracket"},
    },
}


# Task routing configuration
CELERY_TASK_ROUTES = {
    # Round advancement and qualification share one ordered queue
    "bracket.tasks.tournament.*": {"queue": "bracket"},
}
