from __future__ import annotations

import asyncio

import structlog
import uvicorn
from fastapi import FastAPI

from crossrun.app import create_app
from crossrun.hub import TestHub
from crossrun.settings import HubSettings


logger = structlog.get_logger(__name__)


class HubServer(uvicorn.Server):
    """uvicorn server that releases held long-polls before it starts draining connections."""

    def __init__(self, config: uvicorn.Config, hub: TestHub) -> None:
        super().__init__(config)
        self.hub = hub
        self._loop: asyncio.AbstractEventLoop | None = None

    async def serve(self, sockets=None) -> None:
        self._loop = asyncio.get_running_loop()
        await super().serve(sockets=sockets)

    def handle_exit(self, sig, frame) -> None:
        if self._loop is not None and not self.hub.closed:
            self._loop.call_soon_threadsafe(self.hub.shutdown)
        super().handle_exit(sig, frame)


def build_server(settings: HubSettings, *, hub: TestHub | None = None) -> tuple[HubServer, FastAPI]:
    hub = hub or TestHub()
    app = create_app(settings, hub=hub)
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        access_log=False,
        # Long-polls are released by the shutdown broadcast; do not wait on stragglers forever.
        timeout_graceful_shutdown=5,
    )
    return HubServer(config, hub), app


def main() -> None:
    from crossrun.logs import configure_logging
    from crossrun.settings import load_settings

    settings = load_settings()
    configure_logging(settings.log_level)
    server, _app = build_server(settings)
    logger.info("crossrun hub listening", url=settings.base_url, root=settings.serve_root)
    server.run()


if __name__ == "__main__":
    main()
