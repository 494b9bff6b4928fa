import asyncio

import httpx
import pytest

from conftest import FakeCapture, payment_payload, template_payload
from models.payment import Payment, PortalTemplate
from models.workflow import WorkflowContext, WorkflowState
from storage.state_store import MemoryStore, WorkflowStateStore
from workflow.collaborators import FileCapture, PublishedPageChannel
from workflow.publisher import EventPublisher
from workflow.runtime import build_runtime


def _runtime(store=None):
    transport = httpx.MockTransport(lambda request: httpx.Response(204))
    return build_runtime(capture=FakeCapture(), store=store or MemoryStore(), transport=transport)


def test_runtime_lifecycle_starts_and_stops_tickers():
    runtime = _runtime()

    async def scenario():
        async with runtime:
            assert all(t.running for t in runtime.scheduler._tickers.values())
            result = await runtime.dispatcher.dispatch({"type": "RESET_STATE"})
            assert result == {"success": True}
        assert not any(t.running for t in runtime.scheduler._tickers.values())

    asyncio.run(scenario())
    assert set(runtime.scheduler._tickers) == {"token-refresh", "telemetry-flush"}
    assert runtime.machine.state is WorkflowState.IDLE


def test_runtime_restores_previous_snapshot():
    store = MemoryStore()
    snapshot = WorkflowContext(state=WorkflowState.ACTIVE, payment=Payment.model_validate(payment_payload()))
    asyncio.run(WorkflowStateStore(store).save(snapshot))

    runtime = _runtime(store)

    async def scenario():
        async with runtime:
            return runtime.machine.context

    ctx = asyncio.run(scenario())
    assert ctx.state is WorkflowState.ACTIVE
    assert ctx.payment.id == "P1"


def test_runtime_broadcasts_state_changes():
    runtime = _runtime()
    events = []
    runtime.publisher.subscribe(events.append)

    async def scenario():
        async with runtime:
            runtime.dispatcher.submit({"type": "RESET_STATE"})

    asyncio.run(scenario())
    assert {"type": "STATE_CHANGED", "state": "IDLE"} in events


def test_published_page_channel_sends_autofill_and_learning():
    publisher = EventPublisher()
    sent = []
    publisher.subscribe(sent.append)
    channel = PublishedPageChannel(publisher)
    payment = Payment.model_validate(payment_payload())
    template = PortalTemplate.model_validate(template_payload())

    async def scenario():
        await channel.autofill(payment, template)
        await channel.start_learning()

    asyncio.run(scenario())
    assert sent[0]["type"] == "AUTOFILL"
    assert sent[0]["template"]["id"] == "tmpl_1"
    assert sent[0]["payment"]["id"] == "P1"
    assert sent[1] == {"type": "START_LEARNING"}


def test_file_capture_reads_latest_artifact(tmp_path):
    target = tmp_path / "latest.png"
    capture = FileCapture(str(target))
    with pytest.raises(FileNotFoundError):
        asyncio.run(capture.capture())
    target.write_bytes(b"\x89PNG")
    assert asyncio.run(capture.capture()) == b"\x89PNG"
