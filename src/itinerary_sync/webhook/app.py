"""Webhook server -- FastAPI application factory.

Routes:

- ``POST /webhooks/calendar`` -- Google Calendar push notifications.
  The ``sync`` handshake is acknowledged immediately; any other
  notification reconciles the trip that owns the channel.
- ``GET /healthz`` -- liveness check.

When started with ``poll=True`` the lifespan handler also runs the
periodic workspace poll in the same event loop.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from ..core.async_utils import init_semaphore, run_periodic, run_sync
from ..runtime import SyncRuntime

logger = logging.getLogger(__name__)


def create_app(runtime: SyncRuntime, poll: bool = False) -> FastAPI:
    """Create the webhook application around an already wired runtime.

    Args:
        runtime: Service collaborators (store, runner ...).
        poll: Run the workspace poll every ``poll_interval`` seconds while
            the app is up.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_semaphore(runtime.config.max_parallel_trips)
        stop = asyncio.Event()
        poller = None
        if poll:
            poller = asyncio.create_task(
                run_periodic(
                    runtime.runner.run_workspace_poll,
                    runtime.config.poll_interval,
                    stop=stop,
                )
            )
            logger.info(
                "Workspace poll scheduled every %ds", runtime.config.poll_interval
            )

        yield

        stop.set()
        if poller is not None:
            await poller
        logger.info("Webhook server stopped")

    app = FastAPI(title="Itinerary Sync", lifespan=lifespan)
    app.state.runtime = runtime

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok"}

    @app.post("/webhooks/calendar", response_class=PlainTextResponse)
    async def calendar_webhook(request: Request) -> PlainTextResponse:
        headers = request.headers
        if headers.get("x-goog-resource-state") == "sync":
            return PlainTextResponse("Sync OK")

        channel_id = headers.get("x-goog-channel-id")
        resource_id = headers.get("x-goog-resource-id")
        if not channel_id or not resource_id:
            return PlainTextResponse("Missing headers", status_code=400)

        if runtime.runner.calendar is None:
            logger.warning(
                "Calendar notification for channel %s but calendar sync is disabled",
                channel_id,
            )
            return PlainTextResponse("Ignored")

        try:
            report = await run_sync(
                runtime.runner.sync_calendar_channel, channel_id
            )
        except Exception:
            logger.exception(
                "Calendar notification for channel %s failed", channel_id
            )
            return PlainTextResponse("Internal Server Error", status_code=500)

        if report is None:
            return PlainTextResponse("Ignored")
        if report.requires_full_resync:
            return PlainTextResponse("Sync token cleared")
        if report.error:
            return PlainTextResponse("Internal Server Error", status_code=500)
        return PlainTextResponse("Sync Completed")

    return app
