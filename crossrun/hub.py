"""Per-server state: one bus, one registry and the components built on them."""

from __future__ import annotations

from typing import Callable

import structlog

from crossrun.batches import BatchRegistry, make_batch_id
from crossrun.bus import SHUTDOWN_TOPIC, TopicBus
from crossrun.correlator import ResultCorrelator
from crossrun.dispatch import LongPollDispatcher
from crossrun.reporter import LocalReporter


logger = structlog.get_logger(__name__)


class TestHub:
    """Everything one listening hub owns. Separate hubs share nothing."""

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        *,
        bus: TopicBus | None = None,
        reporter: LocalReporter | None = None,
        id_factory: Callable[[], str] = make_batch_id,
    ) -> None:
        self.bus = bus or TopicBus()
        self.registry = BatchRegistry(bus=self.bus, id_factory=id_factory)
        self.reporter = reporter or LocalReporter()
        self.dispatcher = LongPollDispatcher(self.bus, self.registry)
        self.correlator = ResultCorrelator(self.bus, self.registry, self.reporter)
        self.closed = False

    def shutdown(self) -> int:
        """Release every waiting browser with a shutdown payload; returns how many were notified."""
        self.closed = True
        self.dispatcher.closed = True
        notified = self.bus.publish(SHUTDOWN_TOPIC)
        logger.info("hub shutdown broadcast", notified=notified)
        return notified
