"""
FastAPI server exposing compile previews.

Usage:
    # Run standalone
    python -m promptmill.api.server

    # Or via factory
    from promptmill.api import create_app
    app = create_app()
    uvicorn.run(app, port=5002)

API Structure:
    /api/compile/  - Compile preview endpoints (from routes/compile.py)
    /api/health    - Health check
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .. import __version__
from ..config.compiler_config import CompilerConfig, load_compiler_config
from .routes import compile_router

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Response for health check endpoint."""

    status: str
    timestamp: str
    version: str
    config_source: str
    fragment_roots: List[str]


def create_app(
    config: Optional[CompilerConfig] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Compiler configuration; loaded from promptmill.yaml and the
            environment when omitted.
        enable_cors: Whether to enable CORS middleware.

    Returns:
        Configured FastAPI application.
    """
    if config is None:
        config = load_compiler_config()

    app = FastAPI(
        title="promptmill API",
        description="Preview how agent definitions compile into modular prompt files.",
        version=__version__,
    )
    app.state.compiler_config = config

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(compile_router, prefix="/api")

    @app.get("/api/health", response_model=HealthResponse)
    def health():
        """Health check endpoint."""
        return HealthResponse(
            status="ok",
            timestamp=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            version=__version__,
            config_source=config.source,
            fragment_roots=[str(r) for r in config.fragment_roots],
        )

    logger.info("promptmill API ready (fragment roots: %s)", ", ".join(str(r) for r in config.fragment_roots))
    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    uvicorn.run(create_app(), host="127.0.0.1", port=5002)
