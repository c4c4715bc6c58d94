"""
Routes package for the promptmill API.

- compile: Compile preview and fragment listing endpoints
"""

from .compile import router as compile_router

__all__ = ["compile_router"]
