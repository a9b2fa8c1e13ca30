"""Celery tasks: check-in finalization and reminders, wallet maintenance."""
