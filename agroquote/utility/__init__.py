"""
agroquote.utility package exports.
"""

from agroquote.utility.logging_client import (
    AppLogger,
    generate_request_id,
    get_request_id,
    logger,
    set_request_id,
)

__all__ = [
    "AppLogger",
    "logger",
    "get_request_id",
    "set_request_id",
    "generate_request_id",
]
