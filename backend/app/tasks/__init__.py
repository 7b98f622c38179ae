"""
Celery tasks.

Import task modules here so autodiscovery registers them with the worker.
"""

from app.tasks import sync_tasks

__all__ = ["sync_tasks"]
