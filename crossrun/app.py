from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Literal

import structlog
from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response, StreamingResponse
from fastapi.templating import Jinja2Templates

from crossrun import __version__
from crossrun.batches import make_batch_id
from crossrun.correlator import NEXT_TEST_INSTRUCTION
from crossrun.dispatch import WaitingConnection
from crossrun.errors import InvalidBatch, PathOutsideRoot, UnknownBatch
from crossrun.files import (
    INC_DIR,
    cache_headers,
    is_html,
    reporter_injection,
    resolve_asset,
    resolve_project_path,
    send_file,
)
from crossrun.hub import TestHub
from crossrun.schema import AddTestsRequest, HealthResponse
from crossrun.settings import HubSettings


logger = structlog.get_logger(__name__)

# Browsers should not come back after a shutdown; EventSource honours `retry`.
_SHUTDOWN_RETRY_MS = 24 * 60 * 60 * 1000


def bootstrap_script(options: dict[str, Any]) -> str:
    """Client start call for the landing page; safe to drop inside an inline <script>."""
    data = json.dumps(options).replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
    return f"CROSSRUN.start({data})"


def format_sse(payload: dict[str, Any]) -> str:
    prefix = f"retry: {_SHUTDOWN_RETRY_MS}\n" if payload.get("shutdown") else ""
    return f"{prefix}data: {json.dumps(payload)}\n\n"


async def _cancel_on_disconnect(
    is_disconnected: Callable[[], Awaitable[bool]],
    task: asyncio.Future[Any],
    *,
    poll_seconds: float,
) -> None:
    while not task.done():
        if await is_disconnected():
            task.cancel()
            return
        await asyncio.sleep(poll_seconds)


def create_app(settings: HubSettings | None = None, *, hub: TestHub | None = None) -> FastAPI:
    app = FastAPI(title="crossrun", version=__version__)
    app.state.settings = settings or HubSettings()
    app.state.hub = hub or TestHub()
    app.state.cachebuster = make_batch_id()

    templates_dir = Path(__file__).parent / "templates"
    app.state.templates = Jinja2Templates(directory=str(templates_dir))

    def _hub() -> TestHub:
        return app.state.hub

    def _poll_seconds() -> float:
        return float(app.state.settings.disconnect_poll_seconds)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        # Normally already done by the signal handler; a second broadcast reaches nobody.
        _hub().shutdown()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        hub = _hub()
        return HealthResponse(
            ok=not hub.closed,
            ts=time.time(),
            batches=len(hub.registry),
            waiting=hub.dispatcher.waiting,
        )

    @app.get("/", response_class=HTMLResponse)
    async def index(
        req: Request,
        transport: Literal["xhr", "eventsource"] | None = None,
        timeout: int | None = None,
    ) -> HTMLResponse:
        logger.info("visitor", ua=req.headers.get("user-agent", ""))
        bootstrap: dict[str, Any] = {}
        if transport:
            bootstrap["transport"] = transport
        if timeout:
            bootstrap["timeout"] = timeout
        resp = app.state.templates.TemplateResponse(
            req,
            "index.html",
            {
                "bootstrap": bootstrap_script(bootstrap),
                "cachebuster": app.state.cachebuster,
                "version": __version__,
            },
        )
        resp.headers.update(cache_headers(False))
        return resp

    # -----------------
    # Driver API
    # -----------------
    @app.put("/tests/add", response_class=PlainTextResponse)
    async def tests_add(req: AddTestsRequest | None = None) -> PlainTextResponse:
        hub = _hub()
        if hub.closed:
            raise HTTPException(status_code=503, detail="hub_shutting_down")
        try:
            batch_id = hub.registry.register_batch(req.tests if req is not None else [])
        except InvalidBatch as exc:
            raise HTTPException(status_code=400, detail="empty_batch") from exc
        logger.info("tests/add: registered batch", batch_id=batch_id)
        return PlainTextResponse(batch_id)

    @app.get("/status/{batch_id}")
    async def status(req: Request, batch_id: str) -> Response:
        poll = asyncio.ensure_future(_hub().correlator.poll_status(batch_id))
        watcher = asyncio.create_task(_cancel_on_disconnect(req.is_disconnected, poll, poll_seconds=_poll_seconds()))
        try:
            await asyncio.wait({poll})
        finally:
            watcher.cancel()
            poll.cancel()

        if poll.cancelled():
            # Driver hung up; nobody reads this.
            return Response(status_code=204)
        exc = poll.exception()
        if isinstance(exc, UnknownBatch):
            raise HTTPException(status_code=404, detail=str(exc))
        if exc is not None:
            raise exc
        return JSONResponse(poll.result().to_dict())

    # -----------------
    # Browser API
    # -----------------
    def _open_wait(req: Request, transport: str) -> tuple[WaitingConnection, asyncio.Task[None]]:
        dispatcher = _hub().dispatcher
        conn = dispatcher.open(transport=transport)
        watcher = asyncio.create_task(
            dispatcher.watch_disconnect(conn, req.is_disconnected, poll_seconds=_poll_seconds())
        )
        return conn, watcher

    @app.get("/tests/wait")
    async def tests_wait_stream(req: Request) -> StreamingResponse:
        async def _events() -> AsyncIterator[str]:
            conn, watcher = _open_wait(req, "eventsource")
            try:
                payload = await conn.wait()
                if payload is not None:
                    yield format_sse(payload)
            finally:
                watcher.cancel()
                _hub().dispatcher.close(conn, "stream_closed")

        return StreamingResponse(_events(), media_type="text/event-stream", headers=cache_headers(False))

    @app.post("/tests/wait")
    async def tests_wait_xhr(req: Request) -> Response:
        conn, watcher = _open_wait(req, "xhr")
        try:
            payload = await conn.wait()
        finally:
            watcher.cancel()
            _hub().dispatcher.close(conn, "exchange_closed")
        if payload is None:
            return Response(status_code=204)
        return JSONResponse(payload, headers=cache_headers(False))

    @app.post("/results", response_class=HTMLResponse)
    async def results(
        req: Request,
        id: str = Form(""),  # noqa: A002
        useragent: str = Form(""),
        results: str = Form(""),
    ) -> HTMLResponse:
        ua = useragent or req.headers.get("user-agent", "")
        try:
            payload = json.loads(results)
        except ValueError:
            logger.warning("results: malformed submission", batch_id=id, ua=ua)
            return HTMLResponse(NEXT_TEST_INSTRUCTION, status_code=400)
        return HTMLResponse(_hub().correlator.submit_result(id, ua, payload))

    # -----------------
    # File server
    # -----------------
    @app.get("/project/{splat:path}")
    async def project_file(req: Request, splat: str) -> Response:
        settings: HubSettings = app.state.settings
        try:
            file_path, nocache = resolve_project_path(settings.serve_root, splat, _hub().registry.__contains__)
        except PathOutsideRoot as exc:
            logger.warning("rejected project file", path=exc.path, root=exc.root)
            raise HTTPException(status_code=403, detail="path_outside_root") from exc

        append = reporter_injection(app.state.cachebuster) if is_html(req.url.path) else ""
        return await send_file(file_path, append=append, cache=not nocache)

    @app.get("/inc/{name:path}")
    async def inc_file(name: str) -> Response:
        return await _send_asset(name, cache=True)

    @app.get("/dyn/{cachebuster}/{name:path}")
    async def dyn_file(cachebuster: str, name: str) -> Response:
        return await _send_asset(name, cache=False)

    @app.get("/favicon.ico")
    async def favicon() -> Response:
        return Response(status_code=204)

    async def _send_asset(name: str, *, cache: bool) -> Response:
        try:
            path = resolve_asset(INC_DIR, name)
        except PathOutsideRoot as exc:
            raise HTTPException(status_code=403, detail="path_outside_root") from exc
        return await send_file(path, cache=cache)

    return app


app = create_app()
