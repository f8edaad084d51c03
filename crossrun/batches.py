"""In-memory registry of test batches and their buffered results."""

from __future__ import annotations

import secrets
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from crossrun.bus import ADD_TOPIC, TopicBus
from crossrun.errors import InvalidBatch


logger = structlog.get_logger(__name__)

_ID_SPACE = 0x1000000


def make_batch_id() -> str:
    return str(secrets.randbelow(_ID_SPACE))


def project_url(batch_id: str, path: str) -> str:
    p = str(path or "")
    if not p.startswith("/"):
        p = "/" + p
    return f"/project/{batch_id}{p}"


@dataclass
class Batch:
    id: str
    urls: list[str]
    delivered: bool = False


@dataclass(frozen=True)
class Result:
    batch_id: str
    user_agent: str
    payload: Any

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.payload) if isinstance(self.payload, dict) else {"results": self.payload}
        out["ua"] = self.user_agent
        return out


@dataclass
class BatchRegistry:
    """
    Owns every batch a driver registered on this hub.

    A batch is announced on the `add` topic as soon as it is registered. When no
    browser is waiting the announcement reaches nobody, so the batch is parked in
    the queued set until the next waiting connection drains it. Results are only
    buffered for delivered batches.
    """

    bus: TopicBus
    id_factory: Callable[[], str] = make_batch_id
    _batches: dict[str, Batch] = field(default_factory=dict, init=False, repr=False)
    # Insertion-ordered; values unused.
    _queued: dict[str, None] = field(default_factory=dict, init=False, repr=False)
    _results: dict[str, deque[Result]] = field(default_factory=dict, init=False, repr=False)

    def _mint_id(self) -> str:
        for _ in range(16):
            batch_id = self.id_factory()
            if batch_id not in self._batches:
                return batch_id
        raise RuntimeError("could not mint an unused batch id")

    def register_batch(self, paths: list[str]) -> str:
        if not paths:
            raise InvalidBatch("a batch needs at least one test path")
        batch_id = self._mint_id()
        urls = [project_url(batch_id, p) for p in paths]
        self._batches[batch_id] = Batch(id=batch_id, urls=urls)
        logger.debug("registered batch", batch_id=batch_id, urls=urls)

        if self.bus.publish(ADD_TOPIC, batch_id, list(urls)) == 0:
            self._queued[batch_id] = None
            logger.debug("no browser waiting, batch queued", batch_id=batch_id)
        return batch_id

    def get(self, batch_id: str) -> Batch | None:
        return self._batches.get(batch_id)

    def __contains__(self, batch_id: object) -> bool:
        return batch_id in self._batches

    def __len__(self) -> int:
        return len(self._batches)

    def mark_delivered(self, batch_id: str) -> None:
        batch = self._batches.get(batch_id)
        if batch is not None and not batch.delivered:
            batch.delivered = True
            logger.debug("batch delivered", batch_id=batch_id)

    def is_delivered(self, batch_id: str) -> bool:
        batch = self._batches.get(batch_id)
        return bool(batch is not None and batch.delivered)

    def queued_ids(self) -> list[str]:
        return list(self._queued)

    def take_queued(self) -> list[Batch]:
        out = [self._batches[bid] for bid in self._queued if bid in self._batches]
        self._queued = {}
        return out

    def enqueue(self, batch_id: str) -> None:
        if batch_id in self._batches:
            self._queued[batch_id] = None

    def push_result(self, batch_id: str, result: Result) -> bool:
        if not self.is_delivered(batch_id):
            return False
        self._results.setdefault(batch_id, deque()).append(result)
        return True

    def pop_result(self, batch_id: str) -> Result | None:
        buf = self._results.get(batch_id)
        if not buf:
            self._results.pop(batch_id, None)
            return None
        result = buf.popleft()
        if not buf:
            del self._results[batch_id]
        return result

    def pending_results(self, batch_id: str) -> int:
        return len(self._results.get(batch_id) or ())
