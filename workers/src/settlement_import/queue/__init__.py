"""Queue management module for the settlement import workers"""

from .celery_app import celery_app, health_check

__all__ = ["celery_app", "health_check"]
