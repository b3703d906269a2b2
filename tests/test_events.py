from __future__ import annotations

import pytest

from orbitagent.core.console import silent_log
from orbitagent.core.events import ApplicationCompleteData, CoreEventBus


def test_emit_delivers_to_all_listeners_in_order():
    bus = CoreEventBus(log_fn=silent_log)
    received: list[tuple[str, object]] = []
    bus.on("jobs:new", lambda payload: received.append(("a", payload)))
    bus.on("jobs:new", lambda payload: received.append(("b", payload)))

    assert bus.emit("jobs:new", {"id": 1}) is True
    assert received == [("a", {"id": 1}), ("b", {"id": 1})]


def test_emit_without_listeners_returns_false():
    bus = CoreEventBus(log_fn=silent_log)
    assert bus.emit("automation:status", {}) is False


def test_failing_listener_does_not_block_others():
    logs: list[tuple[str, str]] = []
    bus = CoreEventBus(log_fn=lambda msg, level="info": logs.append((level, msg)))
    received = []

    def broken(_payload):
        raise RuntimeError("listener crashed")

    bus.on("application:complete", broken)
    bus.on("application:complete", received.append)

    payload = ApplicationCompleteData(job_id=7, success=True)
    bus.emit("application:complete", payload)

    assert received == [payload]
    assert any(level == "error" and "listener crashed" in msg for level, msg in logs)


def test_unsubscribe_and_once():
    bus = CoreEventBus(log_fn=silent_log)
    seen: list[int] = []
    unsubscribe = bus.on("jobs:new", seen.append)
    bus.once("jobs:new", lambda payload: seen.append(payload * 10))

    bus.emit("jobs:new", 1)
    unsubscribe()
    bus.emit("jobs:new", 2)

    assert seen == [1, 10]
    assert bus.listener_count("jobs:new") == 0


def test_listener_cap_raises():
    bus = CoreEventBus(max_listeners=2, log_fn=silent_log)
    bus.on("automation:status", lambda _p: None)
    bus.on("automation:status", lambda _p: None)
    with pytest.raises(ValueError):
        bus.on("automation:status", lambda _p: None)


def test_unknown_event_rejected_and_clear():
    bus = CoreEventBus(log_fn=silent_log)
    with pytest.raises(ValueError):
        bus.on("jobs:deleted", lambda _p: None)

    bus.on("jobs:new", lambda _p: None)
    bus.clear()
    assert bus.listener_count("jobs:new") == 0
