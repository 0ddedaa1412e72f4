"""
Utility modules for the notification worker.
"""
