"""HTTP surface for the evaluation pipeline.

A scheduler (cron, a cloud timer, a queue trigger) posts to
``/evaluate-articles`` repeatedly; each request is one invocation.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from abstract_screener import __version__

from .config import PipelineConfiguration
from .invocation import InvocationHandler, PipelineContext

logger = logging.getLogger(__name__)


def create_app(
    context: PipelineContext | None = None,
    *,
    config: PipelineConfiguration | None = None,
    init_db: bool = True,
) -> FastAPI:
    """Build the FastAPI application around one pipeline context."""
    if context is None:
        context = PipelineContext.build(config or PipelineConfiguration.from_env())
    if init_db:
        context.repository.database.init_db()
    handler = InvocationHandler(context)

    app = FastAPI(title="Abstract Screener", version=__version__)
    app.state.handler = handler

    @app.get("/health", response_model=Dict[str, Any])
    async def health_check() -> Dict[str, Any]:
        """Liveness probe; does not touch the database or the LLM."""
        return {"status": "healthy", "version": __version__}

    @app.post("/evaluate-articles")
    async def evaluate_articles(request: Request) -> JSONResponse:
        raw = await request.body()
        body: Any = None
        if raw.strip():
            try:
                body = json.loads(raw)
            except json.JSONDecodeError:
                return JSONResponse(status_code=400, content={"error": "Request body is not valid JSON"})
        # The pipeline blocks on the database and the LLM.
        status_code, payload = await run_in_threadpool(handler.handle, body)
        return JSONResponse(status_code=status_code, content=payload)

    return app


def run(
    host: str = "0.0.0.0",
    port: int = 8000,
    *,
    config: PipelineConfiguration | None = None,
) -> None:
    """Serve the pipeline with uvicorn."""
    import uvicorn

    app = create_app(config=config)
    logger.info("Starting abstract screener on %s:%s", host, port)
    uvicorn.run(app, host=host, port=port, log_level="info")
