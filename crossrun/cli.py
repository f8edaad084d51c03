from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import structlog

from crossrun import __version__
from crossrun.batches import Result
from crossrun.client import HubClient
from crossrun.hub import TestHub
from crossrun.logs import configure_logging
from crossrun.reporter import LocalReporter
from crossrun.server import HubServer, build_server
from crossrun.settings import HubSettings, load_settings
from crossrun.visitor import BrowserVisitor, compose_urls


logger = structlog.get_logger("crossrun")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="crossrun", description="Run browser test pages across many browsers.")
    parser.add_argument("--version", action="version", version=f"crossrun {__version__}")
    parser.add_argument("--config", default=None, help="YAML settings file (default: $CROSSRUN_CONFIG or crossrun.yaml)")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--path", dest="serve_root", default=None, help="Only serve files inside this directory")
    parser.add_argument("--log-level", default=None)
    parser.add_argument(
        "--browser",
        dest="browsers",
        action="append",
        default=None,
        help="Browser engine to launch (chromium, firefox, webkit); repeatable",
    )

    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Start a hub and wait for browsers")
    serve.add_argument("--force-visit", action="store_true", default=None, help="Open --browser engines at the hub")

    run = sub.add_parser("run", help="Run test documents on the hub, or locally when none is listening")
    run.add_argument("files", nargs="+")
    run.add_argument("--results", type=int, default=None, help="Results to wait for (default: one per file)")
    return parser


def _settings_from_args(args: argparse.Namespace) -> HubSettings:
    return load_settings(
        args.config,
        host=args.host,
        port=args.port,
        serve_root=args.serve_root,
        log_level=args.log_level,
        browsers=args.browsers,
        force_visit=getattr(args, "force_visit", None),
    )


async def _start(server: HubServer) -> asyncio.Task[None]:
    task = asyncio.create_task(server.serve())
    while not server.started:
        if task.done():
            # serve() exits early on bind failures
            await task
            raise RuntimeError("hub failed to start")
        await asyncio.sleep(0.05)
    return task


async def serve(settings: HubSettings) -> int:
    server, _app = build_server(settings)
    task = await _start(server)
    logger.info(f"crossrun will only serve files inside {settings.serve_root}")
    logger.info(f"Visit {settings.base_url}, then run: crossrun run <test document>")

    if settings.force_visit and settings.browsers:
        logger.info("Running tests locally", browsers=settings.browsers)
        async with BrowserVisitor(settings.browsers) as visitor:
            await visitor.visit([settings.base_url])
            await task
    else:
        await task
    return 0


async def run_batch(client: HubClient, paths: list[str], expected: int, reporter: LocalReporter) -> int:
    batch_id = await client.add_batch(paths)
    logger.info("Waiting for results", batch_id=batch_id, expected=expected)
    for _ in range(expected):
        data = await client.wait_status(batch_id)
        ua = str(data.pop("ua", "") or "")
        reporter.report(Result(batch_id=batch_id, user_agent=ua, payload=data))
    return reporter.failures


async def run_local(settings: HubSettings, paths: list[str], expected: int) -> int:
    """No hub listening: host one and send the browsers straight to the documents."""
    if not settings.browsers:
        logger.error("No hub is listening and no --browser was given")
        return 2

    hub = TestHub()
    server, _app = build_server(settings, hub=hub)
    task = await _start(server)
    urls = compose_urls(settings.base_url, "project", paths)
    wanted = expected * len(settings.browsers)
    try:
        async with BrowserVisitor(settings.browsers) as visitor:
            await visitor.visit(urls)
            while len(hub.reporter.results) < wanted and not task.done():
                await asyncio.sleep(0.2)
    finally:
        hub.shutdown()
        server.should_exit = True
        await task
    return hub.reporter.failures


async def run(settings: HubSettings, files: list[str], expected: int | None) -> int:
    paths = [str(Path(f).resolve()) for f in files]
    want = expected or len(paths)
    async with HubClient(settings.base_url, status_timeout=settings.status_timeout_seconds) as client:
        if await client.is_running():
            failures = await run_batch(client, paths, want, LocalReporter())
            return 1 if failures else 0
    failures = await run_local(settings, paths, want)
    return 1 if failures else 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = _settings_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))
    configure_logging(settings.log_level)

    if args.command == "run":
        return asyncio.run(run(settings, args.files, args.results))
    return asyncio.run(serve(settings))


if __name__ == "__main__":
    sys.exit(main())
