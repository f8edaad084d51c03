"""Console reporting for results that arrive outside any delivered batch."""

from __future__ import annotations

from typing import Any

import structlog

from crossrun.batches import Result


logger = structlog.get_logger(__name__)


def summarize(payload: Any) -> dict[str, Any]:
    """Pull the headline counts out of a test framework result payload."""
    if not isinstance(payload, dict):
        return {}
    out: dict[str, Any] = {}
    for key in ("name", "passed", "failed", "ignored", "total", "duration"):
        if key in payload:
            out[key] = payload[key]
    return out


class LocalReporter:
    def __init__(self) -> None:
        self.results: list[Result] = []

    def report(self, result: Result) -> None:
        self.results.append(result)
        summary = summarize(result.payload)
        failed = summary.get("failed")
        try:
            failing = int(failed or 0) > 0
        except (TypeError, ValueError):
            failing = False
        if failing:
            logger.warning("test results", ua=result.user_agent, **summary)
        else:
            logger.info("test results", ua=result.user_agent, **summary)

    @property
    def failures(self) -> int:
        total = 0
        for r in self.results:
            try:
                total += int(summarize(r.payload).get("failed") or 0)
            except (TypeError, ValueError):
                continue
        return total
