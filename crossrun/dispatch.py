"""Long-poll dispatch: hands queued or newly announced batches to waiting browsers."""

from __future__ import annotations

import asyncio
import enum
from typing import Any, Awaitable, Callable

import structlog

from crossrun.batches import BatchRegistry
from crossrun.bus import ADD_TOPIC, SHUTDOWN_TOPIC, TopicBus


logger = structlog.get_logger(__name__)

SHUTDOWN_PAYLOAD: dict[str, Any] = {"shutdown": True}


class ConnectionState(str, enum.Enum):
    OPEN = "open"
    FULFILLED = "fulfilled"
    SHUT_DOWN = "shut_down"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class WaitingConnection:
    """
    One browser waiting for work over a held request or an event stream.

    The connection is a pending responder: the first of `add`, `shutdown` or a
    transport disconnect decides its outcome, and the bus subscriptions are torn
    down exactly once no matter how many disconnect signals follow.
    """

    def __init__(self, bus: TopicBus, registry: BatchRegistry, *, transport: str = "xhr") -> None:
        self.bus = bus
        self.registry = registry
        self.transport = transport
        self.state = ConnectionState.OPEN
        self.batch_id: str | None = None
        self.close_reason: str | None = None
        self._payload: asyncio.Future[dict[str, Any] | None] = asyncio.get_running_loop().create_future()
        self._torn_down = False

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def attach(self) -> None:
        self.bus.subscribe(ADD_TOPIC, self._on_add)
        self.bus.subscribe(SHUTDOWN_TOPIC, self.release_shutdown)

    def _on_add(self, batch_id: str, urls: list[str]) -> None:
        if not self.is_open:
            return
        logger.debug("wait: send", transport=self.transport, batch_id=batch_id, urls=urls)
        self._fulfill({"tests": list(urls)})
        self.registry.mark_delivered(batch_id)
        self.batch_id = batch_id
        self.state = ConnectionState.FULFILLED
        self._teardown()

    def release_shutdown(self) -> None:
        """Answer this connection with the shutdown payload if it is still open."""
        if not self.is_open:
            return
        logger.debug("wait: shutdown", transport=self.transport)
        self._fulfill(dict(SHUTDOWN_PAYLOAD))
        self.state = ConnectionState.SHUT_DOWN
        self._teardown()

    def disconnect(self, reason: str) -> None:
        """Handle a transport termination signal; every call after the first is a no-op."""
        if self.state is ConnectionState.CLOSED:
            return
        if self.is_open:
            self.state = ConnectionState.DISCONNECTED
            logger.debug("wait: disconnected", transport=self.transport, reason=reason)
        self.close_reason = reason
        self._teardown()
        self._fulfill(None)
        self.state = ConnectionState.CLOSED

    def _teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        self.bus.unsubscribe(ADD_TOPIC, self._on_add)
        self.bus.unsubscribe(SHUTDOWN_TOPIC, self.release_shutdown)

    def _fulfill(self, payload: dict[str, Any] | None) -> None:
        if not self._payload.done():
            self._payload.set_result(payload)

    async def wait(self) -> dict[str, Any] | None:
        """Suspend until a batch or shutdown arrives; None when the browser went away first."""
        return await asyncio.shield(self._payload)


class LongPollDispatcher:
    def __init__(self, bus: TopicBus, registry: BatchRegistry) -> None:
        self.bus = bus
        self.registry = registry
        self._open: set[WaitingConnection] = set()
        # Set once the hub broadcast shutdown; late arrivals are released straight away.
        self.closed = False

    @property
    def waiting(self) -> int:
        return sum(1 for c in self._open if c.is_open)

    def open(self, *, transport: str = "xhr") -> WaitingConnection:
        """Attach a new waiting connection and hand it any batch queued while nobody was polling."""
        conn = WaitingConnection(self.bus, self.registry, transport=transport)
        conn.attach()
        self._open.add(conn)
        if self.closed:
            conn.release_shutdown()
            return conn

        for batch in self.registry.take_queued():
            if self.bus.publish(ADD_TOPIC, batch.id, list(batch.urls)) == 0:
                self.registry.enqueue(batch.id)
        return conn

    def close(self, conn: WaitingConnection, reason: str) -> None:
        conn.disconnect(reason)
        self._open.discard(conn)

    async def watch_disconnect(self, conn: WaitingConnection, is_disconnected: Callable[[], Awaitable[bool]], *, poll_seconds: float) -> None:
        """Poll the transport until it reports the peer gone, then close `conn`."""
        while conn.state is not ConnectionState.CLOSED:
            if await is_disconnected():
                self.close(conn, "client_disconnect")
                return
            await asyncio.sleep(poll_seconds)
