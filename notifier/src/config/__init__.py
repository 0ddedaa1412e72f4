"""
Configuration for the notification worker.
"""

from notifier.src.config.settings import WorkerSettings, get_settings

__all__ = ["WorkerSettings", "get_settings"]
