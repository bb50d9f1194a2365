"""
TELECONSULT+ Shared Module

Common utilities used across all services.
"""

from .utils import (
    Clock,
    setup_logger,
    success_response,
    error_response,
    get_now,
    get_now_iso,
    isoformat_or_none,
)

__all__ = [
    'Clock',
    'setup_logger',
    'success_response',
    'error_response',
    'get_now',
    'get_now_iso',
    'isoformat_or_none',
]
