"""Driver-side HTTP client for a running hub."""

from __future__ import annotations

from typing import Any

import httpx

from crossrun.errors import InvalidBatch, UnknownBatch


class HubClient:
    def __init__(self, base_url: str, *, client: httpx.AsyncClient | None = None, status_timeout: float | None = None) -> None:
        self.base_url = str(base_url or "").rstrip("/")
        self._client = client
        self._owns_client = client is None
        self.status_timeout = status_timeout

    async def __aenter__(self) -> "HubClient":
        if self._client is None:
            self._client = httpx.AsyncClient(headers={"User-Agent": "crossrun driver"})
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("HubClient used outside of `async with`")
        return self._client

    async def is_running(self) -> bool:
        try:
            resp = await self.http.get(f"{self.base_url}/health", timeout=2.0)
        except httpx.HTTPError:
            return False
        return resp.status_code == 200

    async def add_batch(self, paths: list[str]) -> str:
        resp = await self.http.put(f"{self.base_url}/tests/add", json={"tests": list(paths)}, timeout=20.0)
        if resp.status_code == 400:
            raise InvalidBatch(resp.text)
        resp.raise_for_status()
        return resp.text.strip()

    async def wait_status(self, batch_id: str) -> dict[str, Any]:
        """Block until the hub hands over the next result for `batch_id`."""
        resp = await self.http.get(f"{self.base_url}/status/{batch_id}", timeout=self.status_timeout)
        if resp.status_code == 404:
            raise UnknownBatch(batch_id)
        resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, dict) else {"results": data}
