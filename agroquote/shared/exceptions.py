"""
Custom exceptions for the application.

Centralized exception hierarchy for better error handling and debugging.
"""

from typing import Any, Dict, Optional


class AgroQuoteError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        """
        Initialize base exception.

        Args:
            message: Human-readable error message
            details: Additional context (dict)
            original_error: Original exception if wrapped
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """String representation with details."""
        base = self.message
        if self.details:
            base += f" | Details: {self.details}"
        if self.original_error:
            base += f" | Caused by: {type(self.original_error).__name__}"
        return base


class BrokerConnectionError(AgroQuoteError, ConnectionError):
    """Connecting to the broker or declaring its topology failed."""

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[BaseException] = None,
    ):
        """
        Args:
            message: Error message
            step: Which connect step failed (connect/declare_exchange/...)
            details: Additional context
            original_error: Original exception
        """
        super().__init__(message, details, original_error)
        self.step = step

    def __str__(self) -> str:
        base = super().__str__()
        if self.step:
            base = f"[{self.step}] {base}"
        return base


class ChannelUnavailableError(AgroQuoteError):
    """Broker channel requested while the connection is not established."""

    pass


class MessageDecodeError(AgroQuoteError):
    """Consumed payload is not valid JSON."""

    pass


class AlertDispatchError(AgroQuoteError):
    """Alert handler failed to process a message."""

    pass


__all__ = [
    "AgroQuoteError",
    "BrokerConnectionError",
    "ChannelUnavailableError",
    "MessageDecodeError",
    "AlertDispatchError",
]
