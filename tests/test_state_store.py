import asyncio
import json

from conftest import payment_payload
from models.payment import Payment
from models.workflow import WorkflowContext, WorkflowState
from storage.state_store import JsonFileStore, MemoryStore, WorkflowStateStore


def _context() -> WorkflowContext:
    return WorkflowContext(
        state=WorkflowState.ACTIVE,
        payment=Payment.model_validate(payment_payload()),
        portal_id="portalX",
        page_key="payment_form",
    )


def test_file_store_round_trips_snapshot(tmp_path):
    store = WorkflowStateStore(JsonFileStore(str(tmp_path)), slot="stateContext")

    async def scenario():
        await store.save(_context())
        return await store.load()

    restored = asyncio.run(scenario())
    assert restored.state is WorkflowState.ACTIVE
    assert restored.payment.id == "P1"
    assert restored.page_key == "payment_form"

    on_disk = json.loads((tmp_path / "stateContext.json").read_text(encoding="utf-8"))
    assert on_disk["state"] == "ACTIVE"
    assert on_disk["portalId"] == "portalX"
    assert not list(tmp_path.glob("*.tmp"))


def test_missing_slot_loads_none(tmp_path):
    store = WorkflowStateStore(JsonFileStore(str(tmp_path)), slot="stateContext")
    assert asyncio.run(store.load()) is None


def test_corrupt_snapshot_is_discarded(tmp_path):
    (tmp_path / "stateContext.json").write_text("{not json", encoding="utf-8")
    store = WorkflowStateStore(JsonFileStore(str(tmp_path)), slot="stateContext")
    assert asyncio.run(store.load()) is None


def test_invalid_snapshot_is_discarded():
    kv = MemoryStore()
    store = WorkflowStateStore(kv, slot="stateContext")

    async def scenario():
        await kv.set("stateContext", {"state": "NOT_A_STATE"})
        return await store.load()

    assert asyncio.run(scenario()) is None


def test_clear_removes_snapshot(tmp_path):
    store = WorkflowStateStore(JsonFileStore(str(tmp_path)), slot="stateContext")

    async def scenario():
        await store.save(_context())
        await store.clear()
        await store.clear()
        return await store.load()

    assert asyncio.run(scenario()) is None


def test_memory_store_hands_out_copies():
    kv = MemoryStore()

    async def scenario():
        await kv.set("k", {"items": [1]})
        first = await kv.get("k")
        first["items"].append(2)
        return await kv.get("k")

    assert asyncio.run(scenario()) == {"items": [1]}


def test_clear_payment_drops_the_whole_group():
    ctx = _context()
    ctx.pending_evidence = {"confirmationNumber": "C1"}
    ctx.clear_payment()
    assert ctx.payment is None
    assert ctx.portal_id is None
    assert ctx.page_key is None
    assert ctx.template is None
    assert ctx.pending_evidence is None
    assert ctx.state is WorkflowState.ACTIVE
