"""Synchronous topic bus shared by the batch registry and waiting connections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import structlog


logger = structlog.get_logger(__name__)

ADD_TOPIC = "add"
SHUTDOWN_TOPIC = "shutdown"

Handler = Callable[..., Any]


@dataclass(eq=False)
class _Subscription:
    handler: Handler
    once: bool


class TopicBus:
    """
    String-keyed publish/subscribe.

    Handlers run synchronously inside `publish`, in subscription order. Topics are
    either fixed names (`add`, `shutdown`) or batch ids minted at runtime; a topic
    entry disappears once its last subscriber is removed.
    """

    def __init__(self) -> None:
        self._subs: dict[str, list[_Subscription]] = {}

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._subs.setdefault(topic, []).append(_Subscription(handler=handler, once=False))

    def subscribe_once(self, topic: str, handler: Handler) -> None:
        self._subs.setdefault(topic, []).append(_Subscription(handler=handler, once=True))

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        subs = self._subs.get(topic)
        if not subs:
            return
        for i, sub in enumerate(subs):
            if sub.handler == handler:
                del subs[i]
                break
        if not subs:
            self._subs.pop(topic, None)

    def publish(self, topic: str, *payload: Any) -> int:
        """Deliver `payload` to every current subscriber of `topic`; returns how many ran."""
        subs = self._subs.get(topic)
        if not subs:
            return 0
        delivered = 0
        for sub in list(subs):
            current = self._subs.get(topic)
            # Skipped when an earlier handler in this publish removed it.
            if not current or sub not in current:
                continue
            if sub.once:
                current.remove(sub)
                if not current:
                    self._subs.pop(topic, None)
            sub.handler(*payload)
            delivered += 1
        logger.debug("bus publish", topic=topic, delivered=delivered)
        return delivered

    def has_subscribers(self, topic: str) -> bool:
        return bool(self._subs.get(topic))

    def subscriber_count(self, topic: str) -> int:
        return len(self._subs.get(topic) or ())

    def topics(self) -> list[str]:
        return list(self._subs)
