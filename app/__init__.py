"""
BuildPro access API package.

This package contains the FastAPI components that expose access_core:
routes, dependencies, middleware and exception handlers.
"""

from .error_handlers import register_exception_handlers

__version__ = "1.0.0"

__all__ = ["register_exception_handlers"]
