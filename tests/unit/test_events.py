"""Unit tests for the core event bus."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "wooligotchi-core"))

from wooligotchi.events import EventBus, EventKind


class TestEventBus:
    def test_notify_reaches_subscribers_of_that_kind(self):
        bus = EventBus()
        fed, deaths = [], []
        bus.subscribe(EventKind.FED, lambda kind, data: fed.append(data))
        bus.subscribe(EventKind.DEATH, lambda kind, data: deaths.append(data))

        bus.notify(EventKind.FED, {"hunger": 90})

        assert fed == [{"hunger": 90}]
        assert deaths == []

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(EventKind.DEATH, lambda kind, data: seen.append(kind))
        unsubscribe()
        unsubscribe()
        bus.notify(EventKind.DEATH)
        assert seen == []

    def test_unknown_kind_rejected(self):
        with pytest.raises(TypeError):
            EventBus().subscribe("fed", lambda kind, data: None)

    def test_failing_handler_is_isolated(self):
        bus = EventBus()
        seen = []

        def boom(kind, data):
            raise RuntimeError("renderer crashed")

        bus.subscribe(EventKind.FED, boom)
        bus.subscribe(EventKind.FED, lambda kind, data: seen.append(kind))
        bus.notify(EventKind.FED)
        assert seen == [EventKind.FED]

    def test_payload_is_copied_per_notify(self):
        bus = EventBus()
        payload = {"lives": 1}
        received = []
        bus.subscribe(EventKind.LIVES_UPDATED, lambda kind, data: received.append(data))
        bus.notify(EventKind.LIVES_UPDATED, payload)
        payload["lives"] = 2
        assert received == [{"lives": 1}]

    def test_status_message(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventKind.STATUS_MESSAGE, lambda kind, data: received.append(data))
        bus.status("Transaction failed.", level="error")
        assert received == [{"message": "Transaction failed.", "level": "error"}]
