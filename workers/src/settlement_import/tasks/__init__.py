"""Celery tasks for the settlement import workers"""

from .import_tasks import deploy_file, profile_file, validate_file

__all__ = [
    "profile_file",
    "validate_file",
    "deploy_file",
]
