from __future__ import annotations

import itertools

import pytest

from crossrun.batches import BatchRegistry, Result, make_batch_id, project_url
from crossrun.bus import ADD_TOPIC, TopicBus
from crossrun.errors import InvalidBatch


def _registry(*ids: str) -> BatchRegistry:
    counter = iter(ids) if ids else (str(i) for i in itertools.count(100))
    return BatchRegistry(bus=TopicBus(), id_factory=lambda: next(counter))


def test_empty_batch_is_rejected_without_state() -> None:
    reg = _registry()
    with pytest.raises(InvalidBatch):
        reg.register_batch([])
    assert len(reg) == 0
    assert reg.queued_ids() == []


def test_register_without_listeners_queues_and_stays_undelivered() -> None:
    reg = _registry("123")
    batch_id = reg.register_batch(["/a.html", "b.html"])

    assert batch_id == "123"
    assert reg.get("123").urls == ["/project/123/a.html", "/project/123/b.html"]
    assert reg.queued_ids() == ["123"]
    assert not reg.is_delivered("123")


def test_register_with_listener_announces_and_skips_queue() -> None:
    reg = _registry("7")
    seen: list[tuple[str, list[str]]] = []
    reg.bus.subscribe(ADD_TOPIC, lambda bid, urls: seen.append((bid, urls)))

    reg.register_batch(["/t.html"])

    assert seen == [("7", ["/project/7/t.html"])]
    assert reg.queued_ids() == []
    # Announcing is not delivering; the dispatcher decides that.
    assert not reg.is_delivered("7")


def test_colliding_ids_are_redrawn() -> None:
    reg = _registry("5", "5", "6")
    assert reg.register_batch(["/a.html"]) == "5"
    assert reg.register_batch(["/a.html"]) == "6"


def test_take_queued_clears_in_registration_order() -> None:
    reg = _registry("1", "2")
    reg.register_batch(["/a.html"])
    reg.register_batch(["/b.html"])

    taken = reg.take_queued()
    assert [b.id for b in taken] == ["1", "2"]
    assert reg.queued_ids() == []

    reg.enqueue("2")
    reg.enqueue("unknown")
    assert reg.queued_ids() == ["2"]


def test_mark_delivered_is_idempotent() -> None:
    reg = _registry("1")
    reg.register_batch(["/a.html"])
    reg.mark_delivered("1")
    reg.mark_delivered("1")
    reg.mark_delivered("nope")
    assert reg.is_delivered("1")
    assert not reg.is_delivered("nope")


def test_results_only_buffer_for_delivered_batches() -> None:
    reg = _registry("1")
    reg.register_batch(["/a.html"])
    r = Result(batch_id="1", user_agent="UA", payload={"passed": 1})

    assert reg.push_result("1", r) is False
    assert reg.pending_results("1") == 0

    reg.mark_delivered("1")
    assert reg.push_result("1", r) is True
    assert reg.pending_results("1") == 1


def test_pop_result_is_fifo_and_drops_empty_buffer() -> None:
    reg = _registry("1")
    reg.register_batch(["/a.html"])
    reg.mark_delivered("1")
    for n in range(3):
        reg.push_result("1", Result(batch_id="1", user_agent=f"ua{n}", payload=n))

    assert [reg.pop_result("1").user_agent for _ in range(3)] == ["ua0", "ua1", "ua2"]
    assert reg.pop_result("1") is None
    assert reg.pending_results("1") == 0


def test_project_url_adds_missing_slash() -> None:
    assert project_url("9", "x/y.html") == "/project/9/x/y.html"
    assert project_url("9", "/x.html") == "/project/9/x.html"


def test_make_batch_id_is_a_decimal_token() -> None:
    bid = make_batch_id()
    assert bid.isdigit()
    assert 0 <= int(bid) < 0x1000000


def test_result_to_dict_carries_user_agent() -> None:
    assert Result("1", "UA", {"failed": 0}).to_dict() == {"failed": 0, "ua": "UA"}
    assert Result("1", "UA", [1, 2]).to_dict() == {"results": [1, 2], "ua": "UA"}
