"""
Celery tasks module
Import all tasks here so Celery can discover them
"""
from . import reconcile_tasks

__all__ = ['reconcile_tasks']
