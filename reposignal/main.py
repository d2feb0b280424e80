"""
Reposignal Bot - FastAPI Application

Webhook receiver for the Reposignal GitHub App.

- POST /webhook: one delivery per request, routed through the event table
- GET  /, /health: liveness plus cleanup queue and worker pool state

The cleanup worker pool starts with the application and stops with it.
Webhook signature verification is NOT performed here; deploy behind a
proxy that verifies it.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__, SERVICE_NAME
from .config import load_settings
from .events import dispatch_event, event_kind
from .runtime import BotRuntime, build_runtime

# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("reposignal_bot")


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------
class WebhookAck(BaseModel):
    status: str
    event: str


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    cleanup: Dict[str, Any]


# -----------------------------------------------------------------------------
# Application
# -----------------------------------------------------------------------------
def create_app(runtime: BotRuntime) -> FastAPI:
    """Build the webhook application around an already-constructed runtime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await runtime.pool.start()
        logger.info(f"{SERVICE_NAME} v{__version__} started")
        try:
            yield
        finally:
            await runtime.pool.stop()
            logger.info(f"{SERVICE_NAME} stopped")

    app = FastAPI(
        title="Reposignal Bot",
        description="Comment-command bot for the Reposignal discovery platform",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime

    @app.get("/")
    async def root():
        return {
            "service": SERVICE_NAME,
            "status": "running",
            "version": __version__,
        }

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Queue counts and worker pool state."""
        return HealthResponse(
            status="healthy" if runtime.pool.running else "degraded",
            timestamp=datetime.now(timezone.utc).isoformat(),
            version=__version__,
            cleanup=await runtime.pool.get_status(),
        )

    @app.post("/webhook", response_model=WebhookAck)
    async def webhook(
        request: Request,
        x_github_event: Optional[str] = Header(None),
    ):
        if not x_github_event:
            raise HTTPException(status_code=400, detail="Missing X-GitHub-Event header")
        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON payload")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Payload must be a JSON object")

        kind = event_kind(x_github_event, payload)
        handled = await dispatch_event(kind, payload, runtime)
        if not handled:
            return JSONResponse(status_code=200, content={"status": "ignored", "event": kind})
        return JSONResponse(status_code=202, content={"status": "accepted", "event": kind})

    return app


def main() -> None:
    import uvicorn

    settings = load_settings()
    app = create_app(build_runtime(settings))
    uvicorn.run(app, host="0.0.0.0", port=3000)


if __name__ == "__main__":
    main()
