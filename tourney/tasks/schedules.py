"""Celery Beat schedule configuration.

Tasks:
- Every minute: check-in finalization, check-in reminders
- Hourly: expired balance hold release
- Daily: wallet reconciliation report
"""

from celery.schedules import crontab


CELERY_BEAT_SCHEDULE = {
    # ==========================================================================
    # Every Minute
    # ==========================================================================

    # Close check-in for tournaments that have started
    "finalize-due-checkins": {
        "task": "tourney.tasks.checkin.finalize_due_checkins_task",
        "schedule": crontab(),
        "options": {"queue": "checkin"},
    },

    # Notify registrants when a check-in window opens
    "send-checkin-reminders": {
        "task": "tourney.tasks.checkin.send_checkin_reminders_task",
        "schedule": crontab(),
        "options": {"queue": "notification"},
    },

    # ==========================================================================
    # Hourly Tasks
    # ==========================================================================

    "expire-holds-hourly": {
        "task": "tourney.tasks.wallet.expire_holds_task",
        "schedule": crontab(minute=5),  # Every hour at :05
        "options": {"queue": "settlement"},
    },

    # ==========================================================================
    # Daily Tasks
    # ==========================================================================

    # Report only; repairs are applied on demand
    "daily-wallet-reconciliation": {
        "task": "tourney.tasks.wallet.reconcile_wallets_task",
        "schedule": crontab(hour=3, minute=0),
        "options": {"queue": "settlement"},
    },
}


CELERY_TASK_ROUTES = {
    "tourney.tasks.checkin.finalize_due_checkins_task": {"queue": "checkin"},
    "tourney.tasks.checkin.send_checkin_reminders_task": {"queue": "notification"},
    "tourney.tasks.wallet.*": {"queue": "settlement"},
}
