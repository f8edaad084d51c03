"""Sandboxed delivery of project files, with reporter injection for test pages."""

from __future__ import annotations

import asyncio
import mimetypes
import re
from pathlib import Path
from typing import Callable
from urllib.parse import unquote

from fastapi.responses import Response

from crossrun.errors import PathOutsideRoot


_HTML_RE = re.compile(r"\.html?$", re.IGNORECASE)

INC_DIR = Path(__file__).parent / "inc"


def is_html(path: str) -> bool:
    return bool(_HTML_RE.search(str(path or "")))


def reporter_injection(cachebuster: str) -> str:
    return (
        f'<script src="/dyn/{cachebuster}/inject.js"></script>'
        '<script>$crossrun({url:"/results"});</script>'
    )


def resolve_project_path(root: str, splat: str, is_batch: Callable[[str], bool]) -> tuple[Path, bool]:
    """
    Map a `/project/...` remainder onto the filesystem.

    A leading batch id segment is dropped; those URLs are unique per batch, so the
    second element of the result says the response must not be cached. The decoded
    path is absolute from the filesystem root and must stay inside `root`.
    """
    parts = str(splat or "").split("/")
    nocache = False
    if parts and parts[0] and is_batch(parts[0]):
        parts.pop(0)
        nocache = True
    while parts and parts[0] == "":
        parts.pop(0)

    raw = "/" + unquote("/".join(parts))
    base = Path(root).resolve()
    file_path = Path(raw).resolve()
    if file_path != base and base not in file_path.parents:
        raise PathOutsideRoot(raw, str(base))
    return file_path, nocache


def cache_headers(cache: bool) -> dict[str, str]:
    if cache:
        return {"Cache-Control": "public, max-age=3600"}
    return {"Cache-Control": "no-cache", "Pragma": "no-cache", "Expires": "0"}


async def send_file(path: Path, *, append: str = "", prepend: str = "", cache: bool = True) -> Response:
    if not path.is_file():
        return Response(status_code=404, content="Not Found", media_type="text/plain")
    data = await asyncio.to_thread(path.read_bytes)
    if prepend or append:
        data = prepend.encode("utf-8") + data + append.encode("utf-8")
    media_type, _ = mimetypes.guess_type(str(path))
    return Response(
        content=data,
        media_type=media_type or "application/octet-stream",
        headers=cache_headers(cache),
    )


def resolve_asset(root: Path, name: str) -> Path:
    base = root.resolve()
    path = (base / str(name or "")).resolve()
    if base not in path.parents:
        raise PathOutsideRoot(str(name), str(base))
    return path
