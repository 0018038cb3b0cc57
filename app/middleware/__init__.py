"""Middleware components for the access API."""

from .logging import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
