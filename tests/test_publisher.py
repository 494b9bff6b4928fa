import asyncio

import pytest
from pydantic import ValidationError

from models.events import NotificationType
from models.workflow import WorkflowState
from workflow.notifications import (
    NOTIFICATION_CATALOG,
    NotificationKey,
    NotificationOverrides,
    create_notification,
)
from workflow.publisher import EventPublisher
from workflow.scheduler import Scheduler


def test_catalog_covers_every_key():
    assert set(NOTIFICATION_CATALOG) == set(NotificationKey)


def test_notification_uses_catalog_entry_and_overrides():
    n = create_notification(
        NotificationKey.TEMPLATE_LOW_CONFIDENCE,
        NotificationOverrides(payment_id="P1", portal_id="portalX", confidence=0.65),
    )
    assert n.type is NotificationType.WARNING
    assert n.message_key == "TEMPLATE_LOW_CONFIDENCE"
    assert n.blocking is False
    assert n.payment_id == "P1"
    assert n.confidence == 0.65

    wire = n.to_wire()
    assert wire["messageKey"] == "TEMPLATE_LOW_CONFIDENCE"
    assert wire["humanMessage"] == "Template confidence low. Please verify fields."
    assert "pageKey" not in wire


def test_blocking_errors():
    n = create_notification(NotificationKey.PAYMENT_FETCH_FAILED)
    assert n.type is NotificationType.ERROR
    assert n.blocking is True


def test_overrides_reject_unknown_fields():
    with pytest.raises(ValidationError):
        NotificationOverrides(human_message="spoofed")


def test_failing_subscriber_does_not_block_others():
    publisher = EventPublisher()
    received = []

    def broken(message):
        raise RuntimeError("popup closed")

    async def async_listener(message):
        received.append(("async", message["state"]))

    publisher.subscribe(broken)
    publisher.subscribe(async_listener)
    publisher.subscribe(lambda m: received.append(("sync", m["state"])))

    asyncio.run(publisher.state_changed(WorkflowState.FETCHING))
    assert received == [("async", "FETCHING"), ("sync", "FETCHING")]


def test_unsubscribe_stops_delivery():
    publisher = EventPublisher()
    received = []
    unsubscribe = publisher.subscribe(received.append)

    async def scenario():
        await publisher.publish({"type": "A"})
        unsubscribe()
        unsubscribe()
        await publisher.publish({"type": "B"})

    asyncio.run(scenario())
    assert [m["type"] for m in received] == ["A"]


def test_publish_without_subscribers_is_fine():
    asyncio.run(EventPublisher().publish({"type": "STATE_CHANGED", "state": "IDLE"}))


def test_scheduler_rejects_duplicate_names_and_keeps_running_after_job_errors():
    scheduler = Scheduler()
    runs = []

    async def job():
        runs.append(1)
        raise RuntimeError("boom")

    ticker = scheduler.every("flaky", 0.01, job)
    with pytest.raises(ValueError):
        scheduler.every("flaky", 1, job)

    async def scenario():
        scheduler.start()
        for _ in range(100):
            if len(runs) >= 2:
                break
            await asyncio.sleep(0.01)
        assert ticker.running
        await scheduler.shutdown()
        assert not ticker.running

    asyncio.run(scenario())
    assert len(runs) >= 2
