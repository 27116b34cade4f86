"""
Tunegraph exception hierarchy.

All errors raised while building a graph inherit from TunegraphError so
callers can catch them in one place.
"""
from typing import Optional


class TunegraphError(Exception):
    """Base exception for all tunegraph errors."""

    def __init__(self, message: str, context: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self):
        base = f"{self.__class__.__name__}: {self.message}"
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{base} (context: {ctx_str})"
        return base


class ShapeMismatch(TunegraphError, ValueError):
    """Shapes of the operands cannot be combined by the requested operation."""
    pass


class AxisOutOfRange(ShapeMismatch):
    """An axis index falls outside [0, rank) after resolution."""
    pass


class ConfigurationError(TunegraphError, RuntimeError):
    """Programmer misuse: missing candidates, unimplemented variants, bad config."""
    pass
