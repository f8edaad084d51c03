"""Launches local browsers against a hub using Playwright."""

from __future__ import annotations

from typing import Any

import structlog
from playwright.async_api import Browser, BrowserContext, Page, async_playwright


logger = structlog.get_logger(__name__)

BROWSER_ENGINES = ("chromium", "firefox", "webkit")
_ALIASES = {
    "chrome": "chromium",
    "chromium": "chromium",
    "firefox": "firefox",
    "ff": "firefox",
    "safari": "webkit",
    "webkit": "webkit",
}


def normalize_browser(name: str) -> str:
    engine = _ALIASES.get(str(name or "").strip().lower(), "")
    if not engine:
        raise ValueError(f"Unknown browser {name!r}; expected one of {', '.join(BROWSER_ENGINES)}")
    return engine


def compose_urls(base_url: str, prefix: str, files: list[str]) -> list[str]:
    """Join each file onto `base_url/prefix`, collapsing duplicate slashes."""
    base = str(base_url or "").rstrip("/")
    head = str(prefix or "").strip("/")
    out: list[str] = []
    for f in files:
        tail = str(f or "").lstrip("/")
        parts = [p for p in (head, tail) if p]
        out.append(base + "/" + "/".join(parts))
    return out


class BrowserVisitor:
    """Opens every URL in every requested browser and keeps the pages alive until stopped."""

    def __init__(self, browsers: list[str], *, headless: bool = True) -> None:
        self.engines = [normalize_browser(b) for b in browsers]
        self.headless = headless
        self.browsers: list[Browser] = []
        self.contexts: list[BrowserContext] = []
        self.pages: list[Page] = []
        self._playwright: Any = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        if self._playwright is None:
            self._playwright = await async_playwright().start()

    async def visit(self, urls: list[str]) -> list[Page]:
        await self.start()
        opened: list[Page] = []
        for engine in self.engines:
            logger.info("Launching browser", browser=engine, urls=len(urls))
            browser = await getattr(self._playwright, engine).launch(headless=self.headless)
            context = await browser.new_context()
            self.browsers.append(browser)
            self.contexts.append(context)
            for url in urls:
                page = await context.new_page()
                await page.goto(url, wait_until="domcontentloaded")
                opened.append(page)
        self.pages.extend(opened)
        return opened

    async def stop(self) -> None:
        logger.info("Stopping browsers", count=len(self.browsers))
        for context in self.contexts:
            await context.close()
        for browser in self.browsers:
            await browser.close()
        self.contexts.clear()
        self.browsers.clear()
        self.pages.clear()
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
