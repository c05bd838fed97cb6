"""
API response helpers.

Consistent success envelope (`status`, `data`, `message`).
"""

from __future__ import annotations

from typing import Any, Dict, Optional


def ok(*, data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Success response."""
    payload: Dict[str, Any] = {"status": "success"}
    if message is not None:
        payload["message"] = message
    payload["data"] = data
    return payload
