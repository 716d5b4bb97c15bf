"""FastAPI event intake for slacknote.

Endpoints:
- POST /slack/events - Slack Events API callbacks (signature required)
- GET /status - buffer, artifact and in-flight state (optional bearer auth)
- GET /health - health check (no auth)

Slack expects an acknowledgement within three seconds, so callbacks are
answered immediately and dispatched in a background task. Platform retries
(``X-Slack-Retry-Num``) are acknowledged and dropped.
"""

from __future__ import annotations

import hmac
import json
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from loguru import logger

from slacknote import __version__
from slacknote.slack.signature import verify_signature

if TYPE_CHECKING:
    from slacknote.aggregation.pipeline import AggregationPipeline
    from slacknote.config.schema import GatewayConfig, SlackConfig
    from slacknote.slack.events import SlackEventRouter


def _check_auth(auth_header: str | None, expected_token: str) -> bool:
    """Validate Bearer token auth."""
    if not auth_header or not auth_header.startswith("Bearer "):
        return False
    return hmac.compare_digest(auth_header[7:], expected_token)


def create_app(
    *,
    router: SlackEventRouter,
    aggregation: AggregationPipeline,
    slack: SlackConfig,
    gateway: GatewayConfig,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    """Create the FastAPI application around an already wired runtime."""
    started_at = time.monotonic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"event intake listening on http://{gateway.host}:{gateway.port}/slack/events")
        yield
        logger.info("event intake shutting down")
        if on_shutdown is not None:
            await on_shutdown()

    app = FastAPI(title="slacknote", version=__version__, lifespan=lifespan)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/status", tags=["status"])
    async def get_status(request: Request) -> dict[str, Any]:
        if gateway.status_token and not _check_auth(request.headers.get("Authorization"), gateway.status_token):
            raise HTTPException(
                status_code=401,
                detail="Invalid or missing authentication token",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return {
            "status": "running",
            "version": __version__,
            "uptime_seconds": round(time.monotonic() - started_at, 2),
            "timestamp": datetime.now(UTC).isoformat(),
            **aggregation.status(),
        }

    @app.post("/slack/events", tags=["slack"])
    async def slack_events(request: Request, background: BackgroundTasks):
        body = await request.body()
        if not verify_signature(
            slack.signing_secret,
            request.headers.get("X-Slack-Request-Timestamp"),
            request.headers.get("X-Slack-Signature"),
            body,
            max_skew_seconds=slack.signature_max_skew_seconds,
        ):
            logger.warning("rejected request with invalid Slack signature")
            raise HTTPException(status_code=401, detail="invalid signature")

        try:
            envelope = json.loads(body or b"{}")
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid JSON body")
        if not isinstance(envelope, dict):
            raise HTTPException(status_code=400, detail="invalid JSON body")

        kind = envelope.get("type")
        if kind == "url_verification":
            return PlainTextResponse(str(envelope.get("challenge") or ""))

        retry = request.headers.get("X-Slack-Retry-Num")
        if retry:
            logger.debug(
                "ignoring Slack retry #{} ({})", retry, request.headers.get("X-Slack-Retry-Reason") or "unknown"
            )
            return JSONResponse({"ok": True})

        if kind == "event_callback":
            background.add_task(router.dispatch, envelope)
        return JSONResponse({"ok": True})

    return app


def run_server(
    *,
    router: SlackEventRouter,
    aggregation: AggregationPipeline,
    slack: SlackConfig,
    gateway: GatewayConfig,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
    log_level: str = "info",
) -> None:
    """Run the event intake until interrupted (blocking)."""
    import uvicorn

    app = create_app(router=router, aggregation=aggregation, slack=slack, gateway=gateway, on_shutdown=on_shutdown)
    uvicorn.run(app, host=gateway.host, port=gateway.port, log_level=log_level.lower())
