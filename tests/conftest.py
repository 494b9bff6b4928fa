"""
Shared fixtures: in-memory fakes for every backend service plus a harness
that wires a WorkflowStateMachine the way the runtime does.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, List, Optional

import pytest

from clients.services import QueueResponse, UploadTarget
from models.events import TelemetryEvent
from models.payment import Payment, PortalTemplate
from storage.state_store import MemoryStore, WorkflowStateStore
from utils.retry import RetryPolicy
from workflow.evidence import EvidencePipeline
from workflow.publisher import EventPublisher
from workflow.state_machine import WorkflowStateMachine
from workflow.telemetry import TelemetryBuffer
from workflow.template_matcher import SignatureVerifier, TemplateMatcher


async def no_sleep(_: float) -> None:
    return None


def no_retry(label: str = "test") -> RetryPolicy:
    return RetryPolicy(max_retries=0, initial_delay=0.0, jitter=0.0, label=label, sleep=no_sleep)


def payment_payload(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": "P1",
        "accountId": "acc_456",
        "clientId": "client_789",
        "vendorId": "vendor_abc",
        "vendorName": "Test Vendor Corp",
        "amount": 1234.56,
        "currency": "USD",
        "invoiceNumbers": ["INV-001", "INV-002"],
        "portalId": "portalX",
        "portalUrl": "https://portal.example.com/pay",
        "virtualCard": {"cardNumber": "4111111111111111", "expiry": "12/29", "cvv": "123"},
        "metadata": {"priority": "high"},
    }
    data.update(overrides)
    return data


def template_payload(**overrides: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": "tmpl_1",
        "portalId": "portalX",
        "accountId": "acc_456",
        "clientId": "client_789",
        "vendorId": "vendor_abc",
        "pageKey": "payment_form",
        "fields": [
            {
                "selector": "#amount",
                "semanticType": "amount",
                "inputType": "number",
                "label": "Amount",
                "confidence": 0.9,
            },
            {
                "selector": "[name=cardNumber]",
                "semanticType": "card_number",
                "inputType": "text",
                "confidence": 0.8,
            },
        ],
        "confidence": 0.95,
        "version": 1,
        "signature": "",
    }
    data.update(overrides)
    return data


# ── Fakes ─────────────────────────────────────────────────────────────────────


class FakeAuth:
    def __init__(self, authenticated: bool = True, fail: Optional[Exception] = None) -> None:
        self.authenticated = authenticated
        self.fail = fail
        self.operator_id: Optional[str] = "op_1"
        self.authenticate_calls = 0

    async def is_authenticated(self) -> bool:
        return self.authenticated

    async def authenticate(self) -> None:
        self.authenticate_calls += 1
        if self.fail:
            raise self.fail
        self.authenticated = True

    async def refresh_if_needed(self) -> None:
        return None


class FakeQueue:
    def __init__(self) -> None:
        self.responses: List[Any] = []
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None

    async def get_next_payment(self, timeout: Optional[float] = None) -> Optional[QueueResponse]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if not self.responses:
            return None
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakePayments:
    def __init__(self) -> None:
        self.records: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []

    async def get_payment(self, payment_id: str) -> Payment:
        self.calls.append(payment_id)
        return Payment.model_validate(self.records[payment_id])


class FakeTemplates:
    def __init__(self) -> None:
        self.template: Optional[Dict[str, Any]] = None
        self.error: Optional[Exception] = None
        self.lookups: List[tuple] = []
        self.created: List[Dict[str, Any]] = []
        self.usage: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None

    async def get_template(self, portal_id, account_id, client_id, vendor_id, page_key="default"):
        self.lookups.append((portal_id, account_id, client_id, vendor_id, page_key))
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise self.error
        return PortalTemplate.model_validate(self.template) if self.template else None

    async def create_template(self, submission: Dict[str, Any]):
        if self.error:
            raise self.error
        self.created.append(copy.deepcopy(submission))
        return PortalTemplate.model_validate(template_payload(id="tmpl_learned", confidence=submission["confidence"]))

    async def update_usage(self, template_id, success, fields_filled, total_fields) -> None:
        self.usage.append((template_id, success, fields_filled, total_fields))


class FakeExceptions:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.created: List[tuple] = []

    async def create_exception(self, payment_id: str, reason: str) -> None:
        if self.error:
            raise self.error
        self.created.append((payment_id, reason))


class FakeEvidenceService:
    def __init__(self) -> None:
        self.upload_failures = 0
        self.target_error: Optional[Exception] = None
        self.targets: List[tuple] = []
        self.uploads: List[bytes] = []
        self.metadata: List[tuple] = []

    async def get_upload_target(self, payment_id: str, path: str, filename: str) -> UploadTarget:
        if self.target_error:
            raise self.target_error
        self.targets.append((payment_id, path, filename))
        return UploadTarget(url=f"https://storage.example.com/{path}?sig=abc")

    async def upload_artifact(self, target: UploadTarget, content: bytes, content_type: str = "image/png") -> None:
        if self.upload_failures > 0:
            self.upload_failures -= 1
            raise ConnectionError("upload reset")
        self.uploads.append(content)

    async def upload_metadata(self, payment_id: str, record: Dict[str, Any]) -> None:
        self.metadata.append((payment_id, record))


class FakeCapture:
    def __init__(self, data: bytes = b"\x89PNG-fake") -> None:
        self.data = data
        self.calls = 0

    async def capture(self) -> bytes:
        self.calls += 1
        return self.data


class FakePage:
    def __init__(self) -> None:
        self.signals: List[str] = []

    async def autofill(self, payment, template) -> None:
        self.signals.append(f"autofill:{template.id}")

    async def start_learning(self) -> None:
        self.signals.append("start_learning")


class RecordingTelemetryService:
    def __init__(self) -> None:
        self.batches: List[List[TelemetryEvent]] = []
        self.failures = 0

    @property
    def enabled(self) -> bool:
        return True

    async def send_events(self, events: List[TelemetryEvent]) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("telemetry sink down")
        self.batches.append(list(events))


# ── Harness ───────────────────────────────────────────────────────────────────


class Harness:
    def __init__(self, threshold: float = 0.7, auto_fetch: bool = True) -> None:
        self.auth = FakeAuth()
        self.queue = FakeQueue()
        self.payments = FakePayments()
        self.templates = FakeTemplates()
        self.exceptions = FakeExceptions()
        self.evidence_service = FakeEvidenceService()
        self.capture = FakeCapture()
        self.page = FakePage()
        self.telemetry_service = RecordingTelemetryService()
        self.telemetry = TelemetryBuffer(self.telemetry_service, batch_size=100, max_buffer=1000)
        self.kv = MemoryStore()
        self.store = WorkflowStateStore(self.kv, slot="stateContext")
        self.publisher = EventPublisher()
        self.events: List[Dict[str, Any]] = []
        self.publisher.subscribe(self.events.append)
        self.evidence = EvidencePipeline(
            self.evidence_service,
            self.capture,
            self.telemetry,
            upload_retry=RetryPolicy(max_retries=3, initial_delay=0.0, jitter=0.0, sleep=no_sleep),
            organization_id="org_1",
        )
        self.machine = WorkflowStateMachine(
            auth=self.auth,
            queue=self.queue,
            payments=self.payments,
            templates=self.templates,
            exceptions=self.exceptions,
            evidence=self.evidence,
            telemetry=self.telemetry,
            state_store=self.store,
            publisher=self.publisher,
            page=self.page,
            matcher=TemplateMatcher(SignatureVerifier(""), threshold=threshold),
            auto_fetch_enabled=auto_fetch,
        )

    def queue_payment(self, **overrides: Any) -> None:
        self.queue.responses.append(
            QueueResponse(payment=payment_payload(**overrides), queue_position=1, estimated_wait_time=0)
        )

    def notifications(self) -> List[str]:
        return [e["notification"]["messageKey"] for e in self.events if e["type"] == "NOTIFICATION"]

    def states(self) -> List[str]:
        return [e["state"] for e in self.events if e["type"] == "STATE_CHANGED"]

    def telemetry_types(self) -> List[str]:
        return [e.event_type for e in self.telemetry.pending]


@pytest.fixture
def harness() -> Harness:
    return Harness()
