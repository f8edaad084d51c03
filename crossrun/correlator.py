"""Routes browser results to status pollers or the per-batch buffer."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from crossrun.batches import BatchRegistry, Result
from crossrun.bus import TopicBus
from crossrun.errors import UnknownBatch
from crossrun.reporter import LocalReporter


logger = structlog.get_logger(__name__)

# Test pages live in an iframe two levels below the client page.
NEXT_TEST_INSTRUCTION = "<script>parent.parent.CROSSRUN.next()</script>"


class ResultCorrelator:
    def __init__(self, bus: TopicBus, registry: BatchRegistry, reporter: LocalReporter) -> None:
        self.bus = bus
        self.registry = registry
        self.reporter = reporter

    def submit_result(self, batch_id: str, user_agent: str, payload: Any) -> str:
        """
        Accept one result posted by a browser.

        Results for a delivered batch go straight to a waiting status poll when there
        is one, otherwise into the batch buffer. Results for any other id were not
        produced through a long-poll assignment and are reported locally.

        Returns the instruction telling the posting page to advance to its next test.
        """
        result = Result(batch_id=batch_id, user_agent=user_agent, payload=payload)
        logger.debug("results received", batch_id=batch_id, ua=user_agent)

        if self.registry.is_delivered(batch_id):
            # A poller cancelled mid-turn is still subscribed but refuses the result.
            claims: list[Result] = []
            if self.bus.has_subscribers(batch_id):
                self.bus.publish(batch_id, result, claims)
            if not claims:
                self.registry.push_result(batch_id, result)
        else:
            self.reporter.report(result)
        return NEXT_TEST_INSTRUCTION

    async def poll_status(self, batch_id: str) -> Result:
        if not self.registry.is_delivered(batch_id):
            raise UnknownBatch(batch_id)

        buffered = self.registry.pop_result(batch_id)
        if buffered is not None:
            return buffered

        fut: asyncio.Future[Result] = asyncio.get_running_loop().create_future()

        def _deliver(result: Result, claims: list[Result]) -> None:
            if not fut.done():
                fut.set_result(result)
                claims.append(result)

        self.bus.subscribe_once(batch_id, _deliver)
        try:
            return await fut
        finally:
            # No-op after delivery. If the poller left first, later results must buffer.
            self.bus.unsubscribe(batch_id, _deliver)
