"""
promptmill API - FastAPI endpoints for previewing compiles.

Endpoints:
    POST   /api/compile/preview      - Compile document text without writing
    GET    /api/compile/fragments    - List fragments under the configured roots
    GET    /api/health               - Health check
"""

from .server import create_app

__all__ = ["create_app"]
