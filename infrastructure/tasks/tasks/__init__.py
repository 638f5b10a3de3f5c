"""Task modules grouped by domain.

Import side effects register Celery tasks once this package is imported.
"""
from . import deferred_events, notifications  # noqa: F401 to register tasks

__all__ = ["deferred_events", "notifications"]
