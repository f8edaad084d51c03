from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from crossrun.app import create_app
from crossrun.hub import TestHub
from crossrun.settings import HubSettings


def _app(tmp_path: Path, *ids: str):
    counter = iter(ids)
    hub = TestHub(id_factory=lambda: next(counter))
    settings = HubSettings(serve_root=str(tmp_path), disconnect_poll_seconds=0.02)
    return create_app(settings, hub=hub), hub


async def _until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_held_xhr_waits_are_all_fulfilled_by_one_registration(tmp_path: Path) -> None:
    app, hub = _app(tmp_path, "77")
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://hub") as client:
        waits = [asyncio.ensure_future(client.post("/tests/wait", timeout=5)) for _ in range(2)]
        await _until(lambda: hub.dispatcher.waiting == 2)

        r = await client.put("/tests/add", json={"tests": ["/x.html"]})
        assert r.text == "77"

        responses = await asyncio.wait_for(asyncio.gather(*waits), timeout=5)

    assert [resp.json() for resp in responses] == [{"tests": ["/project/77/x.html"]}] * 2
    assert hub.registry.queued_ids() == []
    assert hub.bus.topics() == []


@pytest.mark.asyncio
async def test_status_poll_suspends_until_result_arrives(tmp_path: Path) -> None:
    app, hub = _app(tmp_path, "5")
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://hub") as client:
        await client.put("/tests/add", json={"tests": ["/a.html"]})
        assert (await client.post("/tests/wait")).json() == {"tests": ["/project/5/a.html"]}

        status = asyncio.ensure_future(client.get("/status/5", timeout=5))
        await _until(lambda: hub.bus.has_subscribers("5"))

        r = await client.post(
            "/results",
            data={"id": "5", "useragent": "UA", "results": json.dumps({"passed": 1})},
        )
        assert r.status_code == 200

        resp = await asyncio.wait_for(status, timeout=5)

    assert resp.status_code == 200
    assert resp.json() == {"passed": 1, "ua": "UA"}
    assert hub.registry.pending_results("5") == 0


@pytest.mark.asyncio
async def test_shutdown_releases_held_waits(tmp_path: Path) -> None:
    app, hub = _app(tmp_path)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://hub") as client:
        xhr = asyncio.ensure_future(client.post("/tests/wait", timeout=5))
        stream = asyncio.ensure_future(client.get("/tests/wait", timeout=5))
        await _until(lambda: hub.dispatcher.waiting == 2)

        assert hub.shutdown() == 2
        xhr_resp, stream_resp = await asyncio.wait_for(asyncio.gather(xhr, stream), timeout=5)

    assert xhr_resp.json() == {"shutdown": True}
    assert stream_resp.text.endswith('data: {"shutdown": true}\n\n')
    assert "retry:" in stream_resp.text
    assert hub.bus.topics() == []
