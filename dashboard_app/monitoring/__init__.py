"""
Logging setup for the dashboard cache.
"""

from .logger_setup import setup_logging

__all__ = ["setup_logging"]
