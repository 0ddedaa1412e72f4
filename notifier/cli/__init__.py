"""
Command-line interface for the notification worker.
"""

__version__ = "1.0.0"
